"""
StageMap -- external board list to canonical production stage.

Responsibility:
    Holds the stage catalog (slug + display label) and the immutable mapping
    from board list id to stage slug, and resolves a list to a stage.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Built once at
    startup by production_config from YAML; never mutated afterwards.

Invariants enforced:
    - Every mapped slug exists in the catalog (validate()).
    - Unknown list ids resolve to None: boards may carry lists this system
      does not track, and moves into them are ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_REPEATED_UNDERSCORE = re.compile(r"_+")


def stage_key(name: str) -> str:
    """
    Normalise a list or stage name to slug form.

    "Cleaning & Packing" -> "cleaning_and_packing",
    " Ready for Delivery/Collection " -> "ready_for_delivery_collection".
    """
    key = name.strip().lower().replace("&", "and")
    key = _NON_ALNUM.sub("_", key).strip("_")
    return _REPEATED_UNDERSCORE.sub("_", key)


@dataclass(frozen=True)
class StageDefinition:
    """One canonical production stage."""

    slug: str
    label: str


@dataclass(frozen=True)
class StageMap:
    """
    Immutable stage catalog plus list-id mapping.

    Contract:
        resolve() is a pure lookup.  When resolve_by_name is enabled, a list
        id missing from the map falls back to matching the list's name
        against catalog slugs (after stage_key normalisation).

    Guarantees:
        - list_to_stage is read-only (MappingProxyType).
        - Catalog order is pipeline order.
    """

    stages: tuple[StageDefinition, ...]
    list_to_stage: Mapping[str, str] = field(default_factory=dict)
    resolve_by_name: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "list_to_stage", MappingProxyType(dict(self.list_to_stage)))

    @property
    def slugs(self) -> tuple[str, ...]:
        return tuple(stage.slug for stage in self.stages)

    def is_known_stage(self, slug: str) -> bool:
        return slug in self.slugs

    def label_for(self, slug: str) -> str:
        for stage in self.stages:
            if stage.slug == slug:
                return stage.label
        return slug

    def position(self, slug: str) -> int | None:
        """Zero-based pipeline position of a stage, None if unknown."""
        try:
            return self.slugs.index(slug)
        except ValueError:
            return None

    def resolve(self, list_id: str | None, list_name: str | None = None) -> str | None:
        """
        Map a board list to a stage slug.

        Args:
            list_id: External list identifier.
            list_name: Display name of the list, used only when
                resolve_by_name is enabled.

        Returns:
            The stage slug, or None when the list is not tracked.
        """
        if list_id and list_id in self.list_to_stage:
            return self.list_to_stage[list_id]
        if self.resolve_by_name and list_name:
            candidate = stage_key(list_name)
            if self.is_known_stage(candidate):
                return candidate
        return None

    def validate(self, required_stages: tuple[str, ...] = ()) -> list[str]:
        """Return a list of consistency errors (empty when valid)."""
        errors: list[str] = []
        seen: set[str] = set()
        for stage in self.stages:
            if stage.slug in seen:
                errors.append(f"duplicate stage slug {stage.slug!r}")
            seen.add(stage.slug)
            if stage.slug != stage_key(stage.slug):
                errors.append(f"stage slug {stage.slug!r} is not normalised")
        for list_id, slug in self.list_to_stage.items():
            if slug not in seen:
                errors.append(f"list {list_id!r} maps to unknown stage {slug!r}")
        for slug in required_stages:
            if slug not in seen:
                errors.append(f"required stage {slug!r} missing from catalog")
        return errors
