"""
Tests for Household Sync

Test strategy:
1. Unit tests for individual components (models, validators, settlement)
2. Flow tests for coordinators and sessions (with the in-memory backend)
3. No real network calls in tests
"""

import pytest
from datetime import datetime, timezone
from uuid import uuid4

from household_sync.config import AppSettings, SyncSettings
from household_sync.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Expense,
    Household,
    HouseholdEvent,
    Member,
    PantryItem,
    Recipe,
    RecipeIngredient,
    RemoteId,
    ShoppingItem,
    Todo,
    ValidationIssue,
    ValidationResult,
    new_local_id,
)


class TestRecordIds:
    """Tests for the LocalId / RemoteId tagged variant."""

    def test_local_ids_are_unique(self):
        """Test that every new local id is distinct."""
        assert new_local_id() != new_local_id()

    def test_local_and_remote_never_equal(self):
        """Test that a local id never equals a remote id with the same text."""
        local = new_local_id()
        remote = RemoteId(value=str(local.value))
        assert local != remote

    def test_ids_are_hashable(self):
        """Test that ids can key dictionaries."""
        remote = RemoteId(value="r1")
        lookup = {remote: "x"}
        assert lookup[RemoteId(value="r1")] == "x"

    def test_local_id_display(self):
        """Test the display form of a local id."""
        local = new_local_id()
        assert str(local) == f"temp-{local.value}"
        assert str(RemoteId(value="r1")) == "r1"

    def test_record_accepts_either_variant(self):
        """Test that a record validates both id kinds."""
        local = ShoppingItem(id=new_local_id(), household_id="h1", text="milk")
        remote = ShoppingItem(id=RemoteId(value="r1"), household_id="h1", text="milk")
        assert local.is_local is True
        assert remote.is_local is False


class TestRecordModels:
    """Tests for household record models."""

    def test_from_row_builds_remote_record(self):
        """Test that remote rows become confirmed records."""
        item = ShoppingItem.from_row({
            "id": "r1",
            "household_id": "h1",
            "text": "milk",
            "checked": True,
            "unexpected_column": 1,
        })
        assert item.id == RemoteId(value="r1")
        assert item.checked is True

    def test_text_is_stripped(self):
        """Test that whitespace is stripped from text."""
        item = ShoppingItem(id=new_local_id(), household_id="h1", text="  milk  ")
        assert item.text == "milk"

    def test_empty_text_rejected(self):
        """Test that blank text is rejected."""
        with pytest.raises(ValueError):
            ShoppingItem(id=new_local_id(), household_id="h1", text="   ")

    def test_insert_row_excludes_server_fields(self):
        """Test that id and created_at are never sent on insert."""
        todo = Todo(
            id=new_local_id(),
            household_id="h1",
            title="Vacuum",
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        row = todo.to_insert_row()
        assert "id" not in row
        assert "created_at" not in row
        assert row == {"household_id": "h1", "title": "Vacuum", "done": False}

    def test_with_patch_applies_and_validates(self):
        """Test that patches produce a new validated record."""
        item = PantryItem(id=RemoteId(value="p1"), household_id="h1", name="Rice")
        patched = item.with_patch({"qty": "2", "unit": "kg"})
        assert patched.qty == 2.0
        assert patched.unit == "kg"
        assert patched.id == item.id
        assert item.qty is None

    def test_with_patch_rejects_unknown_fields(self):
        """Test that only mutable fields can be patched."""
        item = ShoppingItem(id=RemoteId(value="r1"), household_id="h1", text="milk")
        with pytest.raises(ValueError, match="cannot be patched"):
            item.with_patch({"household_id": "h2"})

    def test_blank_pantry_unit_is_none(self):
        """Test that an empty unit is stored as None."""
        item = PantryItem(id=new_local_id(), household_id="h1", name="Salt", unit="  ")
        assert item.unit is None

    def test_expense_rejects_non_positive_amount(self):
        """Test that expenses need a positive minor-unit amount."""
        with pytest.raises(ValueError):
            Expense(
                id=new_local_id(),
                household_id="h1",
                paid_by="u1",
                title="Ica",
                amount_minor=0,
                created_by="u1",
            )

    def test_expense_is_immutable(self):
        """Test that expenses cannot be patched."""
        expense = Expense(
            id=RemoteId(value="e1"),
            household_id="h1",
            paid_by="u1",
            title="Ica",
            amount_minor=12950,
            created_by="u1",
        )
        assert Expense.IMMUTABLE is True
        with pytest.raises(ValueError):
            expense.with_patch({"amount_minor": 1})

    def test_event_requires_start(self):
        """Test that events need starts_at."""
        with pytest.raises(ValueError):
            HouseholdEvent(id=new_local_id(), household_id="h1", title="Party")

    def test_recipe_null_tags_are_empty(self):
        recipe = Recipe.from_row({"id": "rc1", "household_id": "h1", "title": "Soup", "tags": None})
        assert recipe.tags == []

    def test_ingredient_unit_defaults_to_pieces(self):
        """Test that a missing or blank unit reads as 'st'."""
        row = {"id": "i1", "household_id": "h1", "recipe_id": "rc1", "name": "Eggs", "unit": " "}
        ingredient = RecipeIngredient.from_row(row)
        assert ingredient.unit == "st"
        assert ingredient.qty is None

    def test_ingredient_needs_recipe(self):
        with pytest.raises(ValueError):
            RecipeIngredient(id=new_local_id(), household_id="h1", name="Eggs")


class TestHousehold:
    """Tests for households and members."""

    def test_null_household_name_is_blank(self):
        household = Household.model_validate({"id": "h1", "name": None, "created_at": "x"})
        assert household.name == ""

    def test_label_uses_display_name(self):
        member = Member(user_id="abcdef123", display_name="  Anna ")
        assert member.label() == "Anna"

    def test_label_falls_back_to_user_id_prefix(self):
        member = Member(user_id="abcdef123", display_name="  ")
        assert member.label() == "abcdef"


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.CREATE_APPLIED,
            description="Optimistic create",
        )
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEventBuilder.create_applied("shopping", "temp-1", uuid4())
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "create_applied"
        assert log_dict["collection"] == "shopping"
        assert log_dict["record_id"] == "temp-1"

    def test_rolled_back_is_warning(self):
        """Test that rollbacks are logged as warnings with the error."""
        correlation_id = uuid4()
        event = AuditEventBuilder.rolled_back(
            "delete", "shopping", "r1", "permission denied", correlation_id,
        )
        assert event.event_type == AuditEventType.DELETE_ROLLED_BACK
        assert event.severity == AuditSeverity.WARNING
        assert event.error_message == "permission denied"
        assert event.correlation_id == correlation_id

    def test_deferred_update_type(self):
        """Test that debounced updates have their own event type."""
        event = AuditEventBuilder.update_applied("pantry", "p1", ["qty"], True, uuid4())
        assert event.event_type == AuditEventType.UPDATE_DEFERRED


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_has_errors(self):
        result = ValidationResult(
            is_valid=False,
            issues=[
                ValidationIssue(field="amount", issue_type="not_positive", message="Bad amount"),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.first_error == "Bad amount"

    def test_warnings_only(self):
        result = ValidationResult(
            is_valid=True,
            issues=[
                ValidationIssue(field="notes", issue_type="long", message="Long", severity="warning"),
            ],
        )
        assert result.has_errors is False
        assert result.first_error is None


class TestSettings:
    """Tests for configuration models."""

    def test_sync_defaults(self):
        settings = SyncSettings()
        assert settings.debounce_ms == 350
        assert settings.event_debounce_ms == 400
        assert settings.debounce_seconds == pytest.approx(0.35)

    def test_retry_window_validated(self):
        with pytest.raises(ValueError):
            SyncSettings(reload_retry_min_wait_s=2.0, reload_retry_max_wait_s=1.0)

    def test_log_level_normalised(self):
        assert AppSettings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValueError):
            AppSettings(log_level="loud")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
