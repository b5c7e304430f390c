"""
Settlement Models

Balances and transfer lines are derived, never stored. All amounts are
integer minor currency units.
"""

from pydantic import BaseModel, ConfigDict, Field


class Balance(BaseModel):
    """
    One member's position in the shared ledger.

    Positive: paid more than their share (is owed money).
    Negative: paid less than their share (owes money).
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str
    paid_minor: int = Field(..., ge=0)
    balance_minor: int


class TransferLine(BaseModel):
    """A single payment in the settlement plan."""
    model_config = ConfigDict(frozen=True)

    from_user_id: str
    from_name: str
    to_user_id: str
    to_name: str
    amount_minor: int = Field(..., gt=0)


class SettlementResult(BaseModel):
    """Balances plus the greedy transfer plan for one ledger snapshot."""
    model_config = ConfigDict(frozen=True)

    total_minor: int = Field(..., ge=0)
    member_count: int = Field(..., ge=0)
    share_minor: int = Field(
        ...,
        description="Per-member share rounded half-up (display only)"
    )
    balances: tuple[Balance, ...] = ()
    transfers: tuple[TransferLine, ...] = ()

    @property
    def rounding_slack(self) -> int:
        """
        Sum of all balances.

        Non-zero only because each balance is rounded on its own; bounded
        in magnitude by the member count.
        """
        return sum(b.balance_minor for b in self.balances)

    @property
    def is_settled(self) -> bool:
        return not self.transfers

    def balance_for(self, user_id: str) -> int:
        for balance in self.balances:
            if balance.user_id == user_id:
                return balance.balance_minor
        raise KeyError(user_id)
