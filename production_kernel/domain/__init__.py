"""Pure domain logic: parsing, stage mapping, aggregation, DTOs, time."""
