"""
Settlement Engine

DESIGN DECISION: Settlement is a pure function of (ledger, roster). It
has no I/O and no state, so it can run whenever either input changes.

Algorithm:
1. total = sum of all expense amounts
2. share = total / member count, kept as an exact fraction
3. balance = round_half_up(paid - share) per member
4. Creditors (balance > 0) and debtors (balance < 0, as magnitude) are
   sorted descending; ties keep roster order
5. Greedy two-pointer match emits min(debtor, creditor) per step

Rounding happens per balance, so balances may not sum to zero. The
leftover (at most N-1 minor units) is not settled. The greedy plan is
not guaranteed to use the minimum possible number of transfers.
"""

import math
from fractions import Fraction
from typing import Iterable, Sequence

from household_sync.models.household import Member
from household_sync.models.records import Expense
from household_sync.models.settlement import Balance, SettlementResult, TransferLine


def round_half_up(value: Fraction) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return math.floor(value + Fraction(1, 2))


def compute_balances(
    ledger: Iterable[Expense],
    members: Sequence[Member],
    label_prefix_length: int = 6,
) -> tuple[int, list[Balance]]:
    """
    Per-member balances in roster order.

    Expenses paid by someone outside the roster count toward the total
    but toward nobody's paid amount.

    Returns:
        (total_minor, balances)
    """
    total = 0
    paid_by: dict[str, int] = {}
    for entry in ledger:
        total += entry.amount_minor
        paid_by[entry.paid_by] = paid_by.get(entry.paid_by, 0) + entry.amount_minor

    if not members:
        return total, []

    share = Fraction(total, len(members))
    balances = []
    for member in members:
        paid = paid_by.get(member.user_id, 0)
        balances.append(Balance(
            user_id=member.user_id,
            display_name=member.label(label_prefix_length),
            paid_minor=paid,
            balance_minor=round_half_up(paid - share),
        ))
    return total, balances


def plan_transfers(balances: Sequence[Balance]) -> list[TransferLine]:
    """Greedy debtor-to-creditor matching."""
    # sorted() is stable, so equal balances keep roster order
    creditors = sorted(
        ([b, b.balance_minor] for b in balances if b.balance_minor > 0),
        key=lambda pair: -pair[1],
    )
    debtors = sorted(
        ([b, -b.balance_minor] for b in balances if b.balance_minor < 0),
        key=lambda pair: -pair[1],
    )

    lines: list[TransferLine] = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(debtor[1], creditor[1])
        if amount > 0:
            lines.append(TransferLine(
                from_user_id=debtor[0].user_id,
                from_name=debtor[0].display_name,
                to_user_id=creditor[0].user_id,
                to_name=creditor[0].display_name,
                amount_minor=amount,
            ))
        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] <= 0:
            i += 1
        if creditor[1] <= 0:
            j += 1
    return lines


class SettlementEngine:
    """
    Entry point used by the session and the UI.

    Usage:
        result = SettlementEngine.compute(expenses, members)
    """

    @staticmethod
    def compute(
        ledger: Iterable[Expense],
        members: Sequence[Member],
        label_prefix_length: int = 6,
    ) -> SettlementResult:
        total, balances = compute_balances(ledger, members, label_prefix_length)
        transfers = plan_transfers(balances)
        share = round_half_up(Fraction(total, max(1, len(members))))
        return SettlementResult(
            total_minor=total,
            member_count=len(members),
            share_minor=share,
            balances=tuple(balances),
            transfers=tuple(transfers),
        )
