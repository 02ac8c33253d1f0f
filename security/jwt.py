from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from core.config import settings

ACCESS = "access"
REFRESH = "refresh"


def _encode(payload: Dict[str, Any], secret: str, minutes: int) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=minutes)
    to_encode = {"iat": int(now.timestamp()), "exp": int(exp.timestamp()), **payload}
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALG)


def _decode(token: str, secret: str, expected_type: str) -> Dict[str, Any]:
    payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALG])
    # a refresh token must never pass as an access token and vice versa
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"expected {expected_type} token")
    return payload


def create_access_token(user_id: int, is_admin: bool = False) -> str:
    payload = {"sub": str(user_id), "type": ACCESS, "admin": is_admin}
    return _encode(payload, settings.JWT_SECRET, settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def create_refresh_token(user_id: int) -> str:
    payload = {"sub": str(user_id), "type": REFRESH}
    return _encode(payload, settings.REFRESH_SECRET, settings.REFRESH_TOKEN_EXPIRE_MINUTES)


def decode_access(token: str) -> Dict[str, Any]:
    return _decode(token, settings.JWT_SECRET, ACCESS)


def decode_refresh(token: str) -> Dict[str, Any]:
    return _decode(token, settings.REFRESH_SECRET, REFRESH)
