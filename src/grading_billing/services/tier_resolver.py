"""
Tier Resolver
Maps a provider price (id + unit amount) to a plan tier using the static
table in config/tiers.yaml
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from ..config import config
from ..db.models.subscriber import PlanTier
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class LadderStep:
    min_amount: int
    tier: PlanTier


class TierResolver:
    """
    Price to tier resolution

    An exact price id match always wins. Unknown ids fall back to the amount
    ladder, which is checked highest threshold first; anything below the
    lowest step (including zero or missing amounts) is Free Trial.
    """

    def __init__(
        self,
        prices: Dict[str, PlanTier],
        ladder: List[LadderStep],
        limits: Dict[PlanTier, int],
    ):
        self._prices = dict(prices)
        self._ladder = tuple(sorted(ladder, key=lambda step: step.min_amount, reverse=True))
        self._limits = dict(limits)
        self._validate()

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> "TierResolver":
        """Load the tier table from a YAML file"""
        config_path = Path(path or config.TIERS_CONFIG_PATH)
        try:
            with open(config_path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Could not load tier config {config_path}: {e}")
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict) -> "TierResolver":
        try:
            limits = {
                PlanTier(name): int(entry.get("limit", 0))
                for name, entry in (raw.get("tiers") or {}).items()
            }
            prices = {
                str(price_id): PlanTier(tier)
                for price_id, tier in (raw.get("prices") or {}).items()
            }
            ladder = [
                LadderStep(min_amount=int(step["min_amount"]), tier=PlanTier(step["tier"]))
                for step in (raw.get("ladder") or [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed tier config: {e}")
        return cls(prices=prices, ladder=ladder, limits=limits)

    def _validate(self):
        missing = [tier.value for tier in PlanTier if tier not in self._limits]
        if missing:
            raise ConfigurationError(f"Tier config has no limit for: {', '.join(missing)}")

        # Higher thresholds must map to strictly higher plans
        previous: Optional[LadderStep] = None
        for step in self._ladder:
            if step.min_amount <= 0:
                raise ConfigurationError(f"Ladder threshold must be positive (got {step.min_amount})")
            if previous is not None:
                if step.min_amount == previous.min_amount or step.tier.rank >= previous.tier.rank:
                    raise ConfigurationError(
                        f"Ladder is not monotonic: {previous.min_amount} -> {previous.tier.value}, "
                        f"{step.min_amount} -> {step.tier.value}"
                    )
            previous = step

    @property
    def ladder(self) -> Tuple[LadderStep, ...]:
        return self._ladder

    def resolve(self, price_id: Optional[str], amount: Optional[int]) -> PlanTier:
        """
        Resolve the tier for a subscription price

        Args:
            price_id: Provider price identifier
            amount: Unit amount in minor currency units

        Returns:
            PlanTier; never raises for unknown input
        """
        if price_id and price_id in self._prices:
            return self._prices[price_id]

        resolved = PlanTier.FREE_TRIAL
        if amount and amount > 0:
            for step in self._ladder:
                if amount >= step.min_amount:
                    resolved = step.tier
                    break

        logger.warning(
            f"Price {price_id} not in tier table, resolved by amount to {resolved.value}",
            extra={"price_id": price_id, "amount": amount, "resolved_tier": resolved.value}
        )
        return resolved

    def base_limit(self, tier: PlanTier) -> int:
        """Monthly submission allotment for a tier; -1 means unlimited"""
        return self._limits[tier]

    def is_unlimited(self, tier: PlanTier) -> bool:
        return self._limits[tier] == UNLIMITED


def plan_rank(tier: PlanTier) -> int:
    """Position of a tier in the plan ordering (Free Trial lowest)"""
    return tier.rank


_resolver: Optional[TierResolver] = None


def get_tier_resolver() -> TierResolver:
    """
    Get the process-wide tier resolver

    The table is immutable after load, so sharing it across requests is safe.
    """
    global _resolver
    if _resolver is None:
        _resolver = TierResolver.from_yaml()
    return _resolver
