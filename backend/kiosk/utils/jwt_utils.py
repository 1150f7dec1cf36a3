import os
import time
import logging
from typing import Optional, Dict, Any

import jwt

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret-change-me"


def create_session_token(user_id: int, *, role: str, session_key: str, ttl_seconds: int = SESSION_TTL_SECONDS) -> str:
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "sid": session_key,
        "role": role,
        "iat": now,
        "exp": now + int(ttl_seconds),
        "type": "session",
    }
    return jwt.encode(payload, _secret(), algorithm="HS256")


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, _secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        logger.info("session_token_expired")
        return None
    except jwt.InvalidTokenError:
        return None
    if payload.get("type") != "session":
        return None
    return payload
