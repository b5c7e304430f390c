"""
Data Models Package

This package contains all Pydantic models used in Household Sync.
All data flowing through the sync layer must conform to these schemas.
"""

from household_sync.models.records import (
    Expense,
    HouseholdEvent,
    HouseholdRecord,
    LocalId,
    PantryItem,
    Recipe,
    RecipeIngredient,
    RecordId,
    RemoteId,
    ShoppingItem,
    Todo,
    new_local_id,
    utcnow,
)
from household_sync.models.household import (
    Household,
    HouseholdContext,
    Member,
)
from household_sync.models.settlement import (
    Balance,
    SettlementResult,
    TransferLine,
)
from household_sync.models.validation import (
    ValidationIssue,
    ValidationResult,
)
from household_sync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "Expense",
    "HouseholdEvent",
    "HouseholdRecord",
    "LocalId",
    "PantryItem",
    "Recipe",
    "RecipeIngredient",
    "RecordId",
    "RemoteId",
    "ShoppingItem",
    "Todo",
    "new_local_id",
    "utcnow",
    # Household models
    "Household",
    "HouseholdContext",
    "Member",
    # Settlement models
    "Balance",
    "SettlementResult",
    "TransferLine",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
