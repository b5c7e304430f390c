"""
Input Validation

DESIGN DECISION: What a member typed is checked and normalised before it
becomes an optimistic record. Invalid input never reaches the
coordinator, so it never produces a create-then-rollback flicker.

Checks are deliberately small:
- Required text is trimmed and must be non-empty
- Amounts are decimal text ("129,50" or "129.50") converted to minor units
- Quantities are optional numbers
- Events need a start time
- Ingredient units default to "st" (pieces)

IMPORTANT: Validation NEVER silently fixes issues beyond trimming and
decimal-comma normalisation. It reports them.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence, Union

from household_sync.models.household import Member
from household_sync.models.validation import ValidationIssue, ValidationResult


MINOR_UNITS_PER_MAJOR = 100


def _decimal_from_text(text: str) -> Optional[Decimal]:
    cleaned = text.replace(",", ".").strip()
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def parse_amount_minor(text: str) -> Optional[int]:
    """
    Convert major-unit decimal text to integer minor units.

    Returns None when the text is not a number greater than zero.
    """
    value = _decimal_from_text(text or "")
    if value is None or value <= 0:
        return None
    minor = (value * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    if minor <= 0:
        return None
    return int(minor)


def parse_quantity(text: Optional[str]) -> tuple[bool, Optional[float]]:
    """
    Parse an optional quantity.

    Returns (ok, value); blank input is ok with value None.
    """
    if text is None or not text.strip():
        return True, None
    value = _decimal_from_text(text)
    if value is None:
        return False, None
    return True, float(value)


class InputValidator:
    """Validates the add/edit forms of every household collection."""

    def __init__(self, max_text_length: int = 200):
        self._max_text_length = max_text_length

    def _required_text(
        self,
        field: str,
        value: Optional[str],
        issues: list[ValidationIssue],
        label: str,
    ) -> str:
        text = (value or "").strip()
        if not text:
            issues.append(ValidationIssue(
                field=field,
                issue_type="missing",
                message=f"{label} is required.",
            ))
        elif len(text) > self._max_text_length:
            issues.append(ValidationIssue(
                field=field,
                issue_type="too_long",
                message=f"{label} can be at most {self._max_text_length} characters.",
            ))
        return text

    @staticmethod
    def _result(issues: list[ValidationIssue], cleaned: dict) -> ValidationResult:
        is_valid = not any(i.severity == "error" for i in issues)
        return ValidationResult(
            is_valid=is_valid,
            issues=issues,
            cleaned=cleaned if is_valid else {},
        )

    def validate_shopping_item(self, text: Optional[str]) -> ValidationResult:
        issues: list[ValidationIssue] = []
        cleaned_text = self._required_text("text", text, issues, "Item")
        return self._result(issues, {"text": cleaned_text, "checked": False})

    def validate_pantry_item(
        self,
        name: Optional[str],
        qty_text: Optional[str] = None,
        unit: Optional[str] = None,
    ) -> ValidationResult:
        issues: list[ValidationIssue] = []
        cleaned_name = self._required_text("name", name, issues, "Name")
        ok, qty = parse_quantity(qty_text)
        if not ok:
            issues.append(ValidationIssue(
                field="qty",
                issue_type="not_a_number",
                message="Quantity must be a number.",
            ))
        cleaned_unit = (unit or "").strip() or None
        return self._result(issues, {"name": cleaned_name, "qty": qty, "unit": cleaned_unit})

    def validate_todo(
        self,
        title: Optional[str],
        assigned_to: Optional[str] = None,
        members: Optional[Sequence[Member]] = None,
    ) -> ValidationResult:
        issues: list[ValidationIssue] = []
        cleaned_title = self._required_text("title", title, issues, "Title")
        assignee = (assigned_to or "").strip() or None
        if assignee and members is not None and assignee not in {m.user_id for m in members}:
            issues.append(ValidationIssue(
                field="assigned_to",
                issue_type="unknown_member",
                message="The chosen member is not part of this household.",
            ))
        return self._result(issues, {"title": cleaned_title, "done": False, "assigned_to": assignee})

    def validate_event(
        self,
        title: Optional[str],
        starts_at: Union[datetime, str, None],
        notes: Optional[str] = None,
    ) -> ValidationResult:
        issues: list[ValidationIssue] = []
        cleaned_title = self._required_text("title", title, issues, "Title")

        start: Optional[datetime] = None
        if isinstance(starts_at, datetime):
            start = starts_at
        elif starts_at and starts_at.strip():
            try:
                start = datetime.fromisoformat(starts_at.strip())
            except ValueError:
                issues.append(ValidationIssue(
                    field="starts_at",
                    issue_type="invalid_format",
                    message="Start time is not a valid date and time.",
                ))
        if start is None and not any(i.field == "starts_at" for i in issues):
            issues.append(ValidationIssue(
                field="starts_at",
                issue_type="missing",
                message="Pick a date and time for the event.",
            ))
        if start is not None and start.tzinfo is None:
            # Naive input is wall-clock time where the member is
            start = start.astimezone()

        cleaned_notes = (notes or "").strip() or None
        return self._result(issues, {"title": cleaned_title, "starts_at": start, "notes": cleaned_notes})

    def validate_expense(self, title: Optional[str], amount_text: Optional[str]) -> ValidationResult:
        issues: list[ValidationIssue] = []
        cleaned_title = self._required_text("title", title, issues, "Title")
        amount_minor = parse_amount_minor(amount_text or "")
        if amount_minor is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="not_positive",
                message="Amount must be a number greater than 0.",
            ))
        return self._result(issues, {"title": cleaned_title, "amount_minor": amount_minor})

    def validate_recipe(
        self,
        title: Optional[str],
        tags: Union[str, Sequence[str], None] = None,
    ) -> ValidationResult:
        """Tags may be a list or comma-separated text; blank tags are dropped."""
        issues: list[ValidationIssue] = []
        cleaned_title = self._required_text("title", title, issues, "Title")
        if isinstance(tags, str):
            tags = tags.split(",")
        cleaned_tags = [t.strip() for t in tags or () if t and t.strip()]
        return self._result(issues, {"title": cleaned_title, "tags": cleaned_tags})

    def validate_ingredient(
        self,
        name: Optional[str],
        qty_text: Optional[str] = None,
        unit: Optional[str] = "st",
    ) -> ValidationResult:
        issues: list[ValidationIssue] = []
        cleaned_name = self._required_text("name", name, issues, "Ingredient")
        ok, qty = parse_quantity(qty_text)
        if not ok:
            issues.append(ValidationIssue(
                field="qty",
                issue_type="not_a_number",
                message="Quantity must be a number.",
            ))
        cleaned_unit = (unit or "").strip() or "st"
        return self._result(issues, {"name": cleaned_name, "qty": qty, "unit": cleaned_unit})

    def validate_household_name(self, name: Optional[str]) -> ValidationResult:
        issues: list[ValidationIssue] = []
        cleaned_name = self._required_text("name", name, issues, "Household name")
        return self._result(issues, {"name": cleaned_name})
