# Overview: Immutable engine settings resolved from the Flask config.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from flask import current_app


STACKING_ADDITIVE = "ADDITIVE"
STACKING_BEST_OF = "BEST_OF"
STACKING_CAPPED = "CAPPED"
STACKING_POLICIES = {STACKING_ADDITIVE, STACKING_BEST_OF, STACKING_CAPPED}

EXPIRY_TYPES = {"days", "months", "years"}


@dataclass(frozen=True)
class RewardPointPolicy:
    enabled: bool = False
    per_point_amount: Decimal = Decimal("100")
    minimum_amount: Decimal = Decimal("0")
    redeem_value: Decimal = Decimal("1")
    expiry_duration: Optional[int] = None
    expiry_type: Optional[str] = None


@dataclass(frozen=True)
class EngineSettings:
    """
    Settings every engine service reads.

    Services accept an optional ``settings=`` argument; when omitted they
    resolve one from the current app's config.
    """
    decimal_places: int = 2
    without_stock: bool = False
    payment_epsilon: Decimal = Decimal("0.01")
    lock_timeout_seconds: float = 10.0
    lock_attempts: int = 5
    discount_stacking: str = STACKING_ADDITIVE
    discount_cap_percent: Optional[Decimal] = None
    reward_points: RewardPointPolicy = field(default_factory=RewardPointPolicy)

    @property
    def money_quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.decimal_places)


def _decimal(mapping: Mapping[str, Any], key: str, default: Optional[str]) -> Optional[Decimal]:
    raw = mapping.get(key, default)
    if raw is None or raw == "":
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"{key} must be a decimal, got {raw!r}") from exc


def load_engine_settings(mapping: Mapping[str, Any]) -> EngineSettings:
    """Build EngineSettings from a config mapping (WARELEDGER_* keys)."""
    stacking = str(mapping.get("WARELEDGER_DISCOUNT_STACKING", STACKING_ADDITIVE)).upper()
    if stacking not in STACKING_POLICIES:
        raise ValueError(f"Unknown discount stacking policy: {stacking}")

    cap = _decimal(mapping, "WARELEDGER_DISCOUNT_CAP_PERCENT", None)
    if stacking == STACKING_CAPPED and cap is None:
        raise ValueError("WARELEDGER_DISCOUNT_CAP_PERCENT is required for CAPPED stacking")

    expiry_type = mapping.get("WARELEDGER_REWARD_EXPIRY_TYPE")
    if expiry_type and expiry_type not in EXPIRY_TYPES:
        raise ValueError(f"Unknown reward expiry type: {expiry_type}")
    expiry_duration = mapping.get("WARELEDGER_REWARD_EXPIRY_DURATION")

    rewards = RewardPointPolicy(
        enabled=bool(mapping.get("WARELEDGER_REWARD_POINTS_ENABLED", False)),
        per_point_amount=_decimal(mapping, "WARELEDGER_REWARD_PER_POINT_AMOUNT", "100"),
        minimum_amount=_decimal(mapping, "WARELEDGER_REWARD_MINIMUM_AMOUNT", "0"),
        redeem_value=_decimal(mapping, "WARELEDGER_REWARD_REDEEM_VALUE", "1"),
        expiry_duration=int(expiry_duration) if expiry_duration not in (None, "") else None,
        expiry_type=expiry_type or None,
    )
    if rewards.per_point_amount is None or rewards.per_point_amount <= 0:
        raise ValueError("WARELEDGER_REWARD_PER_POINT_AMOUNT must be positive")

    return EngineSettings(
        decimal_places=int(mapping.get("WARELEDGER_DECIMAL_PLACES", 2)),
        without_stock=bool(mapping.get("WARELEDGER_WITHOUT_STOCK", False)),
        payment_epsilon=_decimal(mapping, "WARELEDGER_PAYMENT_EPSILON", "0.01"),
        lock_timeout_seconds=float(mapping.get("WARELEDGER_LOCK_TIMEOUT_SECONDS", 10)),
        lock_attempts=int(mapping.get("WARELEDGER_LOCK_ATTEMPTS", 5)),
        discount_stacking=stacking,
        discount_cap_percent=cap,
        reward_points=rewards,
    )


def get_engine_settings() -> EngineSettings:
    return load_engine_settings(current_app.config)


def resolve_settings(settings: Optional[EngineSettings]) -> EngineSettings:
    return settings if settings is not None else get_engine_settings()
