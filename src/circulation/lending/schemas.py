"""Pydantic schemas for the loan policy."""

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ..config import Config


class LoanPolicy(BaseModel):
    """Due-date and borrowing-limit rules."""

    loan_period_days: int = Field(14, ge=1)
    max_loan_period_days: int = Field(90, ge=1)
    member_loan_limit: int = Field(3, ge=1)

    @model_validator(mode="after")
    def default_within_maximum(self):
        """Validate the default period fits under the maximum."""
        if self.loan_period_days > self.max_loan_period_days:
            raise ValueError("loan_period_days must not exceed max_loan_period_days")
        return self

    @classmethod
    def from_config(cls, config: Config) -> "LoanPolicy":
        """Build the policy from application configuration."""
        return cls(
            loan_period_days=config.loan_period_days,
            max_loan_period_days=config.max_loan_period_days,
            member_loan_limit=config.member_loan_limit,
        )


class BorrowEligibility(BaseModel):
    """Whether a member could start another loan right now."""

    member_id: str
    can_borrow: bool
    reason: Optional[str] = None
    open_loans: int
    limit: int
