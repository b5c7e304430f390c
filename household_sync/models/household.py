"""
Household and Membership Models

Households and memberships are provisioned outside this package. These
models describe what the sync layer reads about them; renaming a
household is the only write.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Household(BaseModel):
    """A named group of members sharing one set of collections."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str = Field(default="", max_length=200)
    join_code: Optional[str] = Field(
        default=None,
        description="Opaque token granting membership"
    )

    @field_validator("name", mode="before")
    @classmethod
    def null_name_is_blank(cls, v):
        return "" if v is None else v


class Member(BaseModel):
    """
    A user's membership within exactly one household.

    Rows come from the `get_household_members` procedure, which does not
    always include the household id.
    """

    user_id: str = Field(..., min_length=1)
    household_id: Optional[str] = None
    role: str = Field(default="member")
    display_name: Optional[str] = None

    def label(self, prefix_length: int = 6) -> str:
        """Trimmed display name, or the start of the user id when unnamed."""
        name = (self.display_name or "").strip()
        return name or self.user_id[:prefix_length]


class HouseholdContext(BaseModel):
    """Who is signed in and which household they act on."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    household_id: str = Field(..., min_length=1)
