from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from .config import settings

MOBILE_LINK_TOKEN_TYPE = "gps_attendance"


class AuthError(Exception):
    pass


def create_access_token(subject: str, school_id: int, role: str, expires_minutes: int = 60) -> str:
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(subject),
        "school_id": school_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _decode(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc


def decode_access_token(token: str) -> dict[str, Any]:
    payload = _decode(token)
    if "sub" not in payload or "school_id" not in payload or "role" not in payload:
        raise AuthError("Invalid token payload")
    return payload


def create_mobile_link_token(school_id: int, teacher_id: int) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=settings.mobile_link_ttl_hours)
    payload: dict[str, Any] = {
        "school_id": school_id,
        "teacher_id": teacher_id,
        "type": MOBILE_LINK_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, expires_at.replace(tzinfo=None)


def decode_mobile_link_token(token: str) -> dict[str, Any]:
    payload = _decode(token)
    if payload.get("type") != MOBILE_LINK_TOKEN_TYPE:
        raise AuthError("Not a GPS attendance link")
    if "school_id" not in payload or "teacher_id" not in payload:
        raise AuthError("Invalid token payload")
    return payload
