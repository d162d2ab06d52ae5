"""
Quota Calculator
Pure usage arithmetic: allotment + purchased credits against submissions used
"""
from dataclasses import dataclass, asdict
from typing import Optional

UNLIMITED = -1


@dataclass(frozen=True)
class UsageSummary:
    used: int
    base_limit: int
    purchased: int
    total_limit: Optional[int]  # None when unlimited
    percentage: float
    is_unlimited: bool
    is_at_limit: bool
    is_over_limit: bool
    remaining: Optional[int]  # None when unlimited

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_usage(
    used: int,
    base_limit: int,
    purchased: int = 0,
    unlimited_override: bool = False,
) -> UsageSummary:
    """
    Compute a usage summary

    Args:
        used: Submissions used in the current period
        base_limit: Plan allotment, -1 for unlimited
        purchased: Completed purchased submissions
        unlimited_override: Admin override flag

    Returns:
        UsageSummary. The percentage is never clamped, so usage above the
        limit reports more than 100. Negative inputs are treated as zero.
    """
    used = max(int(used or 0), 0)
    purchased = max(int(purchased or 0), 0)
    base_limit = int(base_limit if base_limit is not None else 0)
    if base_limit < UNLIMITED:
        base_limit = UNLIMITED

    if unlimited_override or base_limit == UNLIMITED:
        return UsageSummary(
            used=used,
            base_limit=base_limit,
            purchased=purchased,
            total_limit=None,
            percentage=0.0,
            is_unlimited=True,
            is_at_limit=False,
            is_over_limit=False,
            remaining=None,
        )

    total_limit = base_limit + purchased
    percentage = (used / total_limit * 100) if total_limit > 0 else 0.0

    return UsageSummary(
        used=used,
        base_limit=base_limit,
        purchased=purchased,
        total_limit=total_limit,
        percentage=percentage,
        is_unlimited=False,
        is_at_limit=used >= total_limit,
        is_over_limit=used > total_limit,
        remaining=max(total_limit - used, 0),
    )
