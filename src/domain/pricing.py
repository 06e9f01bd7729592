"""
Fare Pricing Engine
===================

Formula
-------
    distance_price = distance_km x per_km_rate
    subtotal       = base_price + distance_price
    service_fee    = subtotal x service_fee_percentage / 100
    total_amount   = max(subtotal + service_fee, minimum_fare)

Settlement at completion splits the frozen total:

    platform_commission = total_amount x commission_percentage / 100
    driver_earnings     = total_amount - platform_commission

All arithmetic runs on ``Decimal``; rounding (2 dp, half away from zero)
happens once per output value so intermediate sums never compound error.

Complexity: O(1) per fare.  Pure functions: safe to call concurrently.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .entities import FareBreakdown, PricingConfig, Settlement
from .errors import ConfigurationError, ValidationError

_CENT = Decimal("0.01")
_HUNDRED = Decimal(100)


def _dec(value: float) -> Decimal:
    return Decimal(repr(float(value)))


def _money(value: Decimal) -> float:
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def compute_fare(
    distance_km: float,
    config: Optional[PricingConfig],
    currency: str = "QAR",
) -> FareBreakdown:
    if config is None or not config.is_active:
        raise ConfigurationError("No active pricing configuration for this vehicle class")
    if distance_km < 0:
        raise ValidationError(f"Distance must be non-negative, got {distance_km}")

    distance = _dec(distance_km)
    base = _dec(config.base_price)
    rate = _dec(config.per_km_rate)

    distance_price = distance * rate
    subtotal = base + distance_price
    service_fee = subtotal * _dec(config.service_fee_percentage) / _HUNDRED
    total = max(subtotal + service_fee, _dec(config.minimum_fare))

    return FareBreakdown(
        base_price=_money(base),
        per_km_rate=float(config.per_km_rate),
        total_distance=float(distance_km),
        distance_price=_money(distance_price),
        service_fee=_money(service_fee),
        total_amount=_money(total),
        currency=currency,
        platform_commission_percentage=float(config.driver_commission_percentage),
    )


def compute_settlement(
    total_amount: float, platform_commission_percentage: float
) -> Settlement:
    total = _dec(total_amount)
    commission = total * _dec(platform_commission_percentage) / _HUNDRED
    return Settlement(
        platform_commission=_money(commission),
        driver_earnings=_money(total - commission),
    )


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the booking state machine."""

    def __init__(self, currency: str = "QAR"):
        self.currency = currency

    def compute_fare(
        self, distance_km: float, config: Optional[PricingConfig]
    ) -> FareBreakdown:
        return compute_fare(distance_km, config, self.currency)

    @staticmethod
    def compute_settlement(
        total_amount: float, platform_commission_percentage: float
    ) -> Settlement:
        return compute_settlement(total_amount, platform_commission_percentage)
