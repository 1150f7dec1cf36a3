from __future__ import annotations

import os


def env_name() -> str:
    return (os.getenv("KIOSK_ENV", "dev") or "dev").strip().lower()


def is_production() -> bool:
    return env_name() in ("prod", "production")


def env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        return float(default)
    return value if value >= minimum else float(default)


def integrations_mode() -> str:
    mode = (os.getenv("INTEGRATIONS_MODE") or "sandbox").strip().lower()
    if mode in ("disabled", "sandbox", "live"):
        return mode
    return "disabled"


def currency() -> str:
    return (os.getenv("KIOSK_CURRENCY") or "GHS").strip().upper()


def dispute_window_hours() -> int:
    return env_int("DISPUTE_WINDOW_HOURS", 48, minimum=1, maximum=24 * 30)


def auto_complete_hours() -> int:
    return env_int("AUTO_COMPLETE_HOURS", 48, minimum=1, maximum=24 * 30)


def payout_min_amount() -> float:
    return env_float("PAYOUT_MIN_AMOUNT", 50.0)


def notify_queue_enabled() -> bool:
    return env_bool("NOTIFY_QUEUE_ENABLED", False)


def public_base_url() -> str:
    return (os.getenv("PUBLIC_BASE_URL") or "").strip().rstrip("/")
