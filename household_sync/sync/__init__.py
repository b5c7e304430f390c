"""
Sync Package

The local-first mutation layer: optimistic writes, debounced edits,
rollback on rejection and change-driven reloads.
"""

from household_sync.sync.collections import (
    ALL_COLLECTIONS,
    EVENTS,
    EXPENSES,
    PANTRY,
    RECIPE_INGREDIENTS,
    RECIPES,
    SHOPPING,
    TODOS,
    CollectionSpec,
)
from household_sync.sync.coordinator import MutationCoordinator
from household_sync.sync.debounce import DebounceScheduler
from household_sync.sync.observable import Observable
from household_sync.sync.subscriber import ChangeStreamSubscriber

__all__ = [
    "ALL_COLLECTIONS",
    "EVENTS",
    "EXPENSES",
    "PANTRY",
    "RECIPE_INGREDIENTS",
    "RECIPES",
    "SHOPPING",
    "TODOS",
    "ChangeStreamSubscriber",
    "CollectionSpec",
    "DebounceScheduler",
    "MutationCoordinator",
    "Observable",
]
