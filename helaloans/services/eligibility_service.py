"""
Loan-limit and processing-fee arithmetic.

Everything here is pure: no I/O, no clock, no database. The tier table,
employment multipliers and fee bounds come from a LoanPolicy, which is built
from settings so product changes do not require a deploy.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from fractions import Fraction
from typing import Dict, Optional, Union

from helaloans.core.config import settings
from helaloans.core.errors import ValidationError
from helaloans.schemas.loan_schema import IncomeTierEnum, EmploymentStatusEnum, FeeQuote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoanPolicy:
    tier_table: Dict[str, int]
    employment_multipliers: Dict[str, Decimal]
    min_fee: int = 399
    max_fee: int = 1399
    min_loan_amount: int = 1000
    min_savings_balance: int = 0

    def __post_init__(self):
        for tier in IncomeTierEnum:
            if tier.value not in self.tier_table:
                raise ValueError(f"Loan tier table is missing income tier '{tier.value}'")
            if int(self.tier_table[tier.value]) < 0:
                raise ValueError(f"Base amount for '{tier.value}' must not be negative")
        for status in EmploymentStatusEnum:
            if status.value not in self.employment_multipliers:
                raise ValueError(f"Employment multipliers are missing status '{status.value}'")
            if self.employment_multipliers[status.value] < 0:
                raise ValueError(f"Multiplier for '{status.value}' must not be negative")
        if self.min_fee > self.max_fee:
            raise ValueError("Processing fee minimum is greater than the maximum")

    @classmethod
    def from_settings(cls, source=settings) -> "LoanPolicy":
        # Multipliers go through str() so 1.2 stays exactly 1.2 instead of a binary float
        return cls(
            tier_table={k: int(v) for k, v in source.LOAN_TIER_TABLE.items()},
            employment_multipliers={k: Decimal(str(v)) for k, v in source.EMPLOYMENT_MULTIPLIERS.items()},
            min_fee=int(source.PROCESSING_FEE_MIN),
            max_fee=int(source.PROCESSING_FEE_MAX),
            min_loan_amount=int(source.MIN_LOAN_AMOUNT),
            min_savings_balance=int(source.MIN_SAVINGS_BALANCE),
        )


_default_policy: Optional[LoanPolicy] = None

def get_loan_policy() -> LoanPolicy:
    global _default_policy
    if _default_policy is None:
        _default_policy = LoanPolicy.from_settings()
    return _default_policy


def _enum_value(value: Union[str, IncomeTierEnum, EmploymentStatusEnum]) -> str:
    return value.value if hasattr(value, "value") else str(value)


def compute_loan_limit(
    income_tier: Union[str, IncomeTierEnum],
    employment_status: Union[str, EmploymentStatusEnum],
    policy: Optional[LoanPolicy] = None,
) -> int:
    """Base amount for the income tier scaled by the employment multiplier, floored."""
    policy = policy or get_loan_policy()
    tier = _enum_value(income_tier)
    status = _enum_value(employment_status)

    if tier not in policy.tier_table:
        raise ValidationError(f"Unknown income tier: {tier}")
    if status not in policy.employment_multipliers:
        raise ValidationError(f"Unknown employment status: {status}")

    base = Decimal(policy.tier_table[tier])
    limit = (base * policy.employment_multipliers[status]).to_integral_value(rounding=ROUND_FLOOR)
    return int(limit)


def clamp_selection(selected_amount: int, loan_limit: int, min_amount: int = 0) -> int:
    # A limit below the minimum loan amount caps the floor at the limit itself
    floor_amount = min(min_amount, loan_limit)
    return max(floor_amount, min(selected_amount, loan_limit))


def compute_processing_fee(
    selected_amount: int,
    loan_limit: int,
    min_fee: int,
    max_fee: int,
    min_amount: int = 0,
) -> int:
    """
    Interpolate the activation fee between min_fee and max_fee by the share
    of the limit being borrowed:

        floor(min_fee + (selected / limit) * (max_fee - min_fee))

    The selection is clamped into the limit first. A zero limit yields
    min_fee instead of dividing by zero.
    """
    if loan_limit <= 0:
        return min_fee
    selected = max(clamp_selection(selected_amount, loan_limit, min_amount), 0)
    # min_fee is an integer, so flooring the fractional part alone is exact
    share = Fraction(selected) * (max_fee - min_fee) / Fraction(loan_limit)
    return min_fee + math.floor(share)


def validate_selection(selected_amount: int, loan_limit: int, min_amount: int) -> None:
    if loan_limit <= 0:
        raise ValidationError("This application has no loan limit to borrow against")
    if selected_amount > loan_limit:
        raise ValidationError(
            f"Selected amount exceeds your loan limit of KES {loan_limit:,}",
            details={"loan_limit": loan_limit, "selected_amount": selected_amount},
        )
    if selected_amount < min_amount:
        raise ValidationError(
            f"Minimum loan amount is KES {min_amount:,}",
            details={"min_amount": min_amount, "selected_amount": selected_amount},
        )


def default_selection(loan_limit: int) -> int:
    return loan_limit // 2


def quote_fee(selected_amount: int, loan_limit: int, policy: Optional[LoanPolicy] = None) -> FeeQuote:
    policy = policy or get_loan_policy()
    fee = compute_processing_fee(
        selected_amount, loan_limit, policy.min_fee, policy.max_fee, policy.min_loan_amount
    )
    logger.debug("Fee quote: amount=%s limit=%s fee=%s", selected_amount, loan_limit, fee)
    return FeeQuote(
        loan_limit=loan_limit,
        selected_amount=clamp_selection(selected_amount, loan_limit, policy.min_loan_amount) if loan_limit > 0 else 0,
        processing_fee=fee,
        min_fee=policy.min_fee,
        max_fee=policy.max_fee,
    )
