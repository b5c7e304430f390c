"""
Collection Definitions

One CollectionSpec per household collection: which table backs it, how
the remote read is ordered, which fields are debounced, and where new
records appear locally.
"""

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from household_sync.config import SyncSettings
from household_sync.models.records import (
    Expense,
    HouseholdEvent,
    HouseholdRecord,
    PantryItem,
    Recipe,
    RecipeIngredient,
    ShoppingItem,
    Todo,
)


class CollectionSpec(BaseModel):
    """Static description of one synchronised collection."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., description="Short name used in logs and topics")
    table: str = Field(..., description="Remote table")
    record_type: type[HouseholdRecord]
    order: tuple[tuple[str, bool], ...] = (("created_at", True),)
    debounced_fields: frozenset[str] = frozenset()
    debounce_setting: str = Field(
        default="debounce_ms",
        pattern="^(debounce_ms|event_debounce_ms)$",
        description="Which SyncSettings delay applies to debounced fields"
    )
    prepend: bool = Field(
        default=False,
        description="New local records go first instead of last"
    )
    sort_key: Optional[Callable[[HouseholdRecord], Any]] = None
    topic_prefix: Optional[str] = None
    scope_column: str = Field(
        default="household_id",
        description="Column every record of one collection instance shares"
    )

    @property
    def immutable(self) -> bool:
        return self.record_type.IMMUTABLE

    def delay_ms(self, settings: SyncSettings) -> int:
        return getattr(settings, self.debounce_setting)

    def topic(self, scope_id: str) -> str:
        return f"{self.topic_prefix or self.name}:{scope_id}"


SHOPPING = CollectionSpec(
    name="shopping",
    table="shopping_items",
    record_type=ShoppingItem,
    debounced_fields=frozenset({"text"}),
)

PANTRY = CollectionSpec(
    name="pantry",
    table="pantry_items",
    record_type=PantryItem,
    debounced_fields=frozenset({"name", "qty", "unit"}),
)

TODOS = CollectionSpec(
    name="todos",
    table="household_todos",
    record_type=Todo,
    order=(("done", True), ("created_at", False)),
    debounced_fields=frozenset({"title"}),
    prepend=True,
)

EVENTS = CollectionSpec(
    name="events",
    table="important_events",
    record_type=HouseholdEvent,
    order=(("starts_at", True),),
    debounced_fields=frozenset({"title", "starts_at", "notes"}),
    debounce_setting="event_debounce_ms",
    sort_key=lambda record: record.starts_at,
)

EXPENSES = CollectionSpec(
    name="expenses",
    table="expenses",
    record_type=Expense,
    order=(("created_at", False),),
    prepend=True,
    topic_prefix="economy",
)

RECIPES = CollectionSpec(
    name="recipes",
    table="recipes",
    record_type=Recipe,
    order=(("created_at", False),),
    debounced_fields=frozenset({"title"}),
    prepend=True,
    topic_prefix="mat:recipes",
)

# Opened per recipe, not per household
RECIPE_INGREDIENTS = CollectionSpec(
    name="ingredients",
    table="recipe_ingredients",
    record_type=RecipeIngredient,
    debounced_fields=frozenset({"name", "qty", "unit"}),
    topic_prefix="ri",
    scope_column="recipe_id",
)

ALL_COLLECTIONS: tuple[CollectionSpec, ...] = (SHOPPING, PANTRY, TODOS, EVENTS, EXPENSES, RECIPES)
