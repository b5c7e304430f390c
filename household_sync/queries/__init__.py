"""Derived read-only views over synchronised collections."""

from household_sync.queries.views import (
    MemberExpenses,
    TodoFilter,
    can_delete_expense,
    expenses_by_member,
    filter_todos,
    format_minor,
    label_for_user,
    missing_ingredients,
    normalize_name,
    open_todo_count,
    upcoming_event_count,
)

__all__ = [
    "MemberExpenses",
    "TodoFilter",
    "can_delete_expense",
    "expenses_by_member",
    "filter_todos",
    "format_minor",
    "label_for_user",
    "missing_ingredients",
    "normalize_name",
    "open_todo_count",
    "upcoming_event_count",
]
