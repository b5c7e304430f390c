"""
Record Models for Household Sync

These models define the shared, mutable household records that members
edit concurrently: shopping items, pantry stock, chores, events and
shared expenses.

DESIGN DECISION: A record's identity is a tagged variant. A record that
has not been confirmed by the remote store carries a LocalId; once the
store returns its durable id the record carries a RemoteId. Code never
inspects string prefixes to tell the two apart.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# =============================================================================
# IDENTIFIERS
# =============================================================================

class LocalId(BaseModel):
    """Placeholder identity for a record the remote store has not confirmed."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = "local"
    value: UUID = Field(default_factory=uuid4)

    def __str__(self) -> str:
        return f"temp-{self.value}"


class RemoteId(BaseModel):
    """Durable identity assigned by the remote store."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["remote"] = "remote"
    value: str = Field(..., min_length=1)

    def __str__(self) -> str:
        return self.value


RecordId = Annotated[Union[LocalId, RemoteId], Field(discriminator="kind")]


def new_local_id() -> LocalId:
    """Generate a fresh placeholder id for an optimistic create."""
    return LocalId()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# BASE RECORD
# =============================================================================

class HouseholdRecord(BaseModel):
    """
    Common shape of every editable household record.

    Subclasses declare:
    - MUTABLE_FIELDS: fields a member may patch after creation
    - IMMUTABLE: True for ledger-style records that can only be deleted
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    MUTABLE_FIELDS: ClassVar[frozenset[str]] = frozenset()
    IMMUTABLE: ClassVar[bool] = False

    id: RecordId
    household_id: str = Field(..., min_length=1)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_local(self) -> bool:
        """True until the remote store has confirmed this record."""
        return isinstance(self.id, LocalId)

    @classmethod
    def remote_fields(cls) -> tuple[str, ...]:
        """Columns of the backing table this record reads."""
        return tuple(cls.model_fields)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "HouseholdRecord":
        """Build a confirmed record from a remote row; unknown columns are ignored."""
        data = {name: row[name] for name in cls.remote_fields() if name in row}
        data["id"] = RemoteId(value=str(row["id"]))
        return cls.model_validate(data)

    def to_insert_row(self) -> dict[str, Any]:
        """Columns sent on insert. The id and created_at are server-owned."""
        return self.model_dump(
            mode="json",
            include=set(self.remote_fields()) - {"id", "created_at"},
            exclude_none=True,
        )

    def with_patch(self, patch: dict[str, Any]) -> "HouseholdRecord":
        """
        Return a copy with `patch` applied and re-validated.

        Raises ValueError for fields that are not patchable.
        """
        unknown = set(patch) - self.MUTABLE_FIELDS
        if unknown:
            raise ValueError(
                f"{type(self).__name__} fields cannot be patched: {', '.join(sorted(unknown))}"
            )
        data = self.model_dump()
        data["id"] = self.id
        data.update(patch)
        return type(self).model_validate(data)

    def values_of(self, fields) -> dict[str, Any]:
        return {name: getattr(self, name) for name in fields}


# =============================================================================
# CONCRETE RECORDS
# =============================================================================

class ShoppingItem(HouseholdRecord):
    """An entry on the shared shopping list."""
    MUTABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({"text", "checked"})

    text: str = Field(..., min_length=1, max_length=200)
    checked: bool = False


class PantryItem(HouseholdRecord):
    """Something the household already has at home."""
    MUTABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({"name", "qty", "unit"})

    name: str = Field(..., min_length=1, max_length=200)
    qty: Optional[float] = None
    unit: Optional[str] = Field(default=None, max_length=20)

    @field_validator("unit")
    @classmethod
    def blank_unit_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class Todo(HouseholdRecord):
    """A household chore, optionally assigned to a member."""
    MUTABLE_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"title", "done", "assigned_to", "done_at"}
    )

    title: str = Field(..., min_length=1, max_length=200)
    done: bool = False
    assigned_to: Optional[str] = None
    done_at: Optional[datetime] = None


class HouseholdEvent(HouseholdRecord):
    """An important date on the household calendar."""
    MUTABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({"title", "starts_at", "notes"})

    title: str = Field(..., min_length=1, max_length=200)
    starts_at: datetime
    notes: Optional[str] = Field(default=None, max_length=2000)


class Expense(HouseholdRecord):
    """
    One entry of the shared expense ledger.

    CRITICAL: Amounts are integer minor currency units. An expense is
    never edited in place, only created or deleted.
    """
    IMMUTABLE: ClassVar[bool] = True

    paid_by: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    amount_minor: int = Field(..., gt=0, description="Amount in minor units (e.g. öre)")
    created_by: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)


class Recipe(HouseholdRecord):
    """A household recipe; its ingredients live in their own collection."""
    MUTABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({"title", "tags"})

    title: str = Field(..., min_length=1, max_length=200)
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def null_tags_are_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class RecipeIngredient(HouseholdRecord):
    """One ingredient line of a recipe. Scoped by recipe_id, not only by household."""
    MUTABLE_FIELDS: ClassVar[frozenset[str]] = frozenset({"name", "qty", "unit"})

    recipe_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    qty: Optional[float] = None
    unit: str = Field(default="st", max_length=20)

    @field_validator("unit", mode="before")
    @classmethod
    def blank_unit_is_default(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return "st"
        return v
