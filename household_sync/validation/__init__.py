"""Input validation package."""

from household_sync.validation.validator import (
    InputValidator,
    parse_amount_minor,
    parse_quantity,
)

__all__ = ["InputValidator", "parse_amount_minor", "parse_quantity"]
