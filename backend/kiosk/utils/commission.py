from __future__ import annotations

import os
from decimal import Decimal, ROUND_HALF_UP

DEFAULT_COMMISSION_RATE = 0.08


def _clamp_minor(value: int | float | Decimal | None) -> int:
    try:
        parsed = int(value or 0)
    except (TypeError, ValueError):
        parsed = 0
    return parsed if parsed > 0 else 0


def money_major_to_minor(amount: float | Decimal | int | None) -> int:
    try:
        parsed = Decimal(str(amount or 0))
    except ArithmeticError:
        parsed = Decimal("0")
    minor = (parsed * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return _clamp_minor(int(minor))


def money_minor_to_major(minor: int | float | Decimal | None) -> float:
    try:
        parsed = Decimal(int(minor or 0))
    except (TypeError, ValueError):
        parsed = Decimal("0")
    return float((parsed / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def rate_to_bps(rate: float | None) -> int:
    try:
        parsed = Decimal(str(rate if rate is not None else 0))
    except ArithmeticError:
        parsed = Decimal("0")
    bps = int((parsed * Decimal("10000")).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return min(10000, max(0, bps))


def default_commission_rate() -> float:
    raw = (os.getenv("DEFAULT_COMMISSION_RATE") or "").strip()
    if not raw:
        return DEFAULT_COMMISSION_RATE
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_COMMISSION_RATE
    return value if 0.0 <= value < 1.0 else DEFAULT_COMMISSION_RATE


def resolve_commission_rate(vendor) -> float:
    override = getattr(vendor, "commission_rate", None)
    if override is not None and 0.0 <= float(override) < 1.0:
        return float(override)
    return default_commission_rate()


def split_line_minor(line_minor: int, rate: float) -> tuple[int, int]:
    """Split a line total into (platform_fee_minor, vendor_earnings_minor)."""
    total = _clamp_minor(line_minor)
    if total <= 0:
        return 0, 0
    raw = (Decimal(total) * Decimal(rate_to_bps(rate))) / Decimal("10000")
    fee = _clamp_minor(int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))
    return fee, total - fee
