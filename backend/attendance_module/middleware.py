from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from .security import AuthError, decode_access_token


PRINCIPAL_ROLES = ("principal", "super_admin")


@dataclass(frozen=True)
class CurrentUser:
    user_id: int
    school_id: int
    role: str


def _parse_token(auth_header: str | None) -> str:
    if not auth_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid auth scheme")
    return parts[1].strip()


def get_current_user(authorization: str | None = Header(default=None, alias="Authorization")) -> CurrentUser:
    token = _parse_token(authorization)
    try:
        payload = decode_access_token(token)
        return CurrentUser(user_id=int(payload["sub"]), school_id=int(payload["school_id"]), role=str(payload["role"]))
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload") from exc


def require_roles(*allowed_roles: str) -> Callable:
    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return current_user

    return dependency
