"""Request throttling.

Counters are fixed windows in Redis when ``RATE_LIMIT_REDIS_URL`` (or ``REDIS_URL``)
answers a ping; otherwise each worker process keeps its own sliding window.
"""
from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from functools import wraps

import redis
from flask import current_app, g, request
from flask_login import current_user

from kiosk.utils.errors import RateLimitedError
from kiosk.utils.settings import env_bool


@dataclass(frozen=True)
class Tier:
    name: str
    limit: int
    window_seconds: int = 60
    per_route: bool = True


AUTH_TIER = Tier("auth", 10, per_route=False)
BROWSE_TIER = Tier("browse", 120)
WRITE_TIER = Tier("write", 60)

_lock = threading.Lock()
_memory_hits: dict[str, list[float]] = {}
_redis_state: dict[str, object] = {"client": None, "probed": False}


def _redis_client():
    if not env_bool("RATE_LIMIT_ENABLED", True):
        return None
    with _lock:
        if _redis_state["probed"]:
            return _redis_state["client"]
        _redis_state["probed"] = True
    url = (os.getenv("RATE_LIMIT_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()
    if not url:
        return None
    client = redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=0.75, socket_timeout=0.75)
    try:
        client.ping()
    except redis.RedisError:
        return None
    with _lock:
        _redis_state["client"] = client
    return client


def _hit_redis(client, key: str, limit: int, window: int) -> tuple[bool, int] | None:
    now = int(time.time())
    bucket = f"kiosk:rl:{key}:{now // window}"
    try:
        pipe = client.pipeline()
        pipe.incr(bucket)
        pipe.expire(bucket, window + 1)
        count = int(pipe.execute()[0])
    except redis.RedisError:
        return None
    if count <= limit:
        return True, 0
    return False, max(1, window - now % window)


def _hit_memory(key: str, limit: int, window: int) -> tuple[bool, int]:
    now = time.time()
    with _lock:
        hits = [ts for ts in _memory_hits.get(key, ()) if ts > now - window]
        allowed = len(hits) < limit
        if allowed:
            hits.append(now)
        _memory_hits[key] = hits
    if allowed:
        return True, 0
    return False, max(1, int(window - (now - hits[0])))


def check_limit(key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """Count one hit against ``key``. Returns ``(allowed, retry_after_seconds)``."""
    limit = max(1, int(limit))
    window = max(1, int(window_seconds))
    client = _redis_client()
    if client is not None:
        outcome = _hit_redis(client, key, limit, window)
        if outcome is not None:
            return outcome
    return _hit_memory(key, limit, window)


def reset_memory_windows() -> None:
    with _lock:
        _memory_hits.clear()


def rate_limit_active() -> bool:
    if current_app.config.get("TESTING") and not env_bool("RATE_LIMIT_IN_TESTS", False):
        return False
    return env_bool("RATE_LIMIT_ENABLED", True)


def client_ip(req=None) -> str:
    req = req or request
    if env_bool("TRUST_PROXY_HEADERS", False):
        forwarded = (req.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return (req.remote_addr or "").strip() or "unknown"


def limit_subject(*, per_user: bool) -> str:
    if not per_user:
        return f"ip:{client_ip()}"
    # Runs before any view touches current_user, so resolve the session here.
    user_id = getattr(g, "auth_user_id", None)
    if user_id is None and current_user.is_authenticated:
        user_id = getattr(g, "auth_user_id", None)
    if user_id is not None:
        return f"user:{int(user_id)}"
    return f"ip:{client_ip()}"


def tier_for(method: str, path: str) -> Tier | None:
    if method == "OPTIONS" or not path.startswith("/api/"):
        return None
    if path.startswith("/api/auth"):
        return AUTH_TIER
    return BROWSE_TIER if method in ("GET", "HEAD") else WRITE_TIER


def enforce_global_tiers() -> None:
    """before_request hook: auth calls are capped per IP, other API calls per caller and route."""
    if not rate_limit_active():
        return
    method = (request.method or "GET").upper()
    tier = tier_for(method, request.path or "")
    if tier is None:
        return
    if tier.per_route:
        key = f"tier:{tier.name}:{method}:{request.path}:{limit_subject(per_user=True)}"
    else:
        key = f"tier:{tier.name}:{limit_subject(per_user=False)}"
    ok, retry_after = check_limit(key, limit=tier.limit, window_seconds=tier.window_seconds)
    if not ok:
        current_app.logger.warning("rate_limited tier=%s path=%s", tier.name, request.path)
        raise RateLimitedError(retry_after=retry_after)


def rate_limit(key: str, per_seconds: int, limit: int, *, scope: str = "ip"):
    """Throttle a single view on top of the global tiers."""

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            if rate_limit_active():
                subject = limit_subject(per_user=(scope == "user"))
                ok, retry_after = check_limit(f"{key}:{subject}", limit=limit, window_seconds=per_seconds)
                if not ok:
                    raise RateLimitedError(retry_after=retry_after)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


__all__ = [
    "Tier",
    "check_limit",
    "client_ip",
    "enforce_global_tiers",
    "limit_subject",
    "rate_limit",
    "rate_limit_active",
    "reset_memory_windows",
    "tier_for",
]
