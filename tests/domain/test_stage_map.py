"""
Tests for StageMap (``production_kernel.domain.stage_map``).

Covers list resolution (by id, optional by name), catalog queries and
validation of the configured table.
"""

import pytest

from production_kernel.domain.stage_map import StageDefinition, StageMap, stage_key

STAGES = (
    StageDefinition("orders", "Orders"),
    StageDefinition("printing", "Printing"),
    StageDefinition("cleaning_packing", "Cleaning & Packing"),
)


def _map(**kwargs) -> StageMap:
    return StageMap(stages=STAGES, list_to_stage={"list-o": "orders", "list-p": "printing"}, **kwargs)


class TestStageKey:

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Printing", "printing"),
            ("  Ready for Delivery/Collection ", "ready_for_delivery_collection"),
            ("Cleaning & Packing", "cleaning_and_packing"),
            ("Layouts Busy (Colline)", "layouts_busy_colline"),
        ],
    )
    def test_normalisation(self, name, expected):
        assert stage_key(name) == expected


class TestResolve:

    def test_mapped_list(self):
        assert _map().resolve("list-p") == "printing"

    def test_unmapped_list_is_none(self):
        assert _map().resolve("list-x", "Printing") is None

    @pytest.mark.parametrize("list_id", [None, ""])
    def test_missing_list_id(self, list_id):
        assert _map().resolve(list_id) is None

    def test_name_fallback_when_enabled(self):
        assert _map(resolve_by_name=True).resolve("list-x", " Printing ") == "printing"

    def test_name_fallback_needs_exact_slug(self):
        """The name "Cleaning & Packing" normalises to cleaning_and_packing."""
        assert _map(resolve_by_name=True).resolve("list-x", "Cleaning & Packing") is None

    def test_id_wins_over_name(self):
        assert _map(resolve_by_name=True).resolve("list-o", "Printing") == "orders"


class TestCatalog:

    def test_slugs_in_pipeline_order(self):
        assert _map().slugs == ("orders", "printing", "cleaning_packing")

    def test_position(self):
        assert _map().position("printing") == 1
        assert _map().position("unknown") is None

    def test_label_for(self):
        assert _map().label_for("cleaning_packing") == "Cleaning & Packing"
        assert _map().label_for("unknown") == "unknown"

    def test_mapping_is_read_only(self):
        with pytest.raises(TypeError):
            _map().list_to_stage["list-z"] = "orders"


class TestValidate:

    def test_valid_map(self):
        assert _map().validate(required_stages=("printing",)) == []

    def test_unknown_target_stage(self):
        stage_map = StageMap(stages=STAGES, list_to_stage={"list-z": "pressing"})
        errors = stage_map.validate()
        assert len(errors) == 1
        assert "pressing" in errors[0]

    def test_required_stage_missing(self):
        errors = _map().validate(required_stages=("pressing",))
        assert errors == ["required stage 'pressing' missing from catalog"]

    def test_duplicate_and_unnormalised_slugs(self):
        stage_map = StageMap(
            stages=(StageDefinition("orders", "Orders"), StageDefinition("orders", "Again"),
                    StageDefinition("Bad Slug", "Bad")),
        )
        errors = stage_map.validate()
        assert any("duplicate" in e for e in errors)
        assert any("not normalised" in e for e in errors)
