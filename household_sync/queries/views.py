"""
Derived Views

DESIGN DECISION: Views are computed from the current observable
collections, never fetched. They are pure and deterministic, like the
settlement engine, and only ever see reconciled local state.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from household_sync.models.household import Member
from household_sync.models.records import (
    Expense,
    HouseholdEvent,
    PantryItem,
    RecipeIngredient,
    ShoppingItem,
    Todo,
)


class TodoFilter(str, Enum):
    """Which chores a member is looking at."""
    ALL = "all"
    MINE = "mine"
    UNASSIGNED = "unassigned"


class MemberExpenses(BaseModel):
    """The expenses one member paid for."""

    member: Member
    items: list[Expense] = Field(default_factory=list)
    total_minor: int = 0


def expenses_by_member(
    expenses: Iterable[Expense],
    members: Sequence[Member],
) -> list[MemberExpenses]:
    """Group expenses by payer, one entry per member in roster order."""
    grouped: dict[str, list[Expense]] = {}
    for expense in expenses:
        grouped.setdefault(expense.paid_by, []).append(expense)

    return [
        MemberExpenses(
            member=member,
            items=grouped.get(member.user_id, []),
            total_minor=sum(e.amount_minor for e in grouped.get(member.user_id, [])),
        )
        for member in members
    ]


def can_delete_expense(expense: Expense, user_id: Optional[str]) -> bool:
    """Only the member who recorded an expense may delete it."""
    return user_id is not None and expense.created_by == user_id


def filter_todos(
    todos: Iterable[Todo],
    mode: TodoFilter,
    user_id: Optional[str],
) -> list[Todo]:
    todos = list(todos)
    if user_id is None or mode == TodoFilter.ALL:
        return todos
    if mode == TodoFilter.MINE:
        return [t for t in todos if t.assigned_to == user_id]
    return [t for t in todos if t.assigned_to is None]


def open_todo_count(todos: Iterable[Todo]) -> int:
    return sum(1 for t in todos if not t.done)


def upcoming_event_count(
    events: Iterable[HouseholdEvent],
    now: Optional[datetime] = None,
) -> int:
    """Events starting at or after `now`."""
    now = now or datetime.now(timezone.utc)
    return sum(1 for e in events if e.starts_at >= now)


def label_for_user(
    user_id: Optional[str],
    members: Sequence[Member],
    me: Optional[str] = None,
    prefix_length: int = 6,
) -> str:
    """
    How a member is shown next to a chore or expense.

    A chosen display name always wins, including for the current user.
    """
    if not user_id:
        return "Unassigned"
    for member in members:
        if member.user_id == user_id:
            name = (member.display_name or "").strip()
            if name:
                return name
            break
    if user_id == me:
        return "Me"
    return f"Member {user_id[:prefix_length]}"


def format_minor(amount_minor: int, currency: str = "SEK") -> str:
    """Render minor units as major units with two decimals, e.g. '129.50 SEK'."""
    sign = "-" if amount_minor < 0 else ""
    major = Decimal(abs(amount_minor)) / 100
    return f"{sign}{major:,.2f} {currency}"


def normalize_name(text: str) -> str:
    return text.strip().lower()


def missing_ingredients(
    ingredients: Iterable[RecipeIngredient],
    pantry: Iterable[PantryItem],
    shopping: Iterable[ShoppingItem] = (),
) -> list[str]:
    """
    Normalised names of ingredients the household lacks.

    An ingredient is missing when no pantry item has the same name.
    Names already on the shopping list are left out, and each name is
    listed once, in recipe order.
    """
    have = {normalize_name(p.name) for p in pantry}
    listed = {normalize_name(s.text) for s in shopping}
    missing: list[str] = []
    for ingredient in ingredients:
        name = normalize_name(ingredient.name)
        if name and name not in have and name not in listed and name not in missing:
            missing.append(name)
    return missing
