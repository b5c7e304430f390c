"""Settlement package."""

from household_sync.settlement.engine import (
    SettlementEngine,
    compute_balances,
    plan_transfers,
    round_half_up,
)

__all__ = [
    "SettlementEngine",
    "compute_balances",
    "plan_transfers",
    "round_half_up",
]
