"""
Input Validation Models

Results of checking what a member typed before it becomes an
optimistic record.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """A single problem with user input."""

    field: str = Field(..., description="Which input field has the issue")
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'not_a_number', 'not_positive')"
    )
    message: str = Field(..., description="Human-readable description")
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Outcome of validating one input form.

    `cleaned` holds normalised values ready to build a record from; it is
    only meaningful when `is_valid` is True.
    """

    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    cleaned: dict[str, Any] = Field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def first_error(self) -> Optional[str]:
        for issue in self.issues:
            if issue.severity == "error":
                return issue.message
        return None
