from __future__ import annotations

"""API key authentication and role checks."""

from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from cellito.app.settings import settings


@dataclass(frozen=True)
class AuthContext:
    """Resolved authentication context for the current request."""
    api_key: str | None
    role: str


def _unauthorized(detail: str = "Invalid or missing API key") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_api_key(request: Request) -> AuthContext:
    """Validate API key or allow anonymous access if configured."""
    api_key = _extract_api_key(request)
    key_map = settings.api_key_map
    allowed = settings.api_keys
    if not (key_map or allowed):
        if settings.allow_anonymous:
            return AuthContext(api_key=None, role="admin")
        raise _unauthorized("API key required")
    if api_key is None:
        raise _unauthorized()
    if key_map:
        role = key_map.get(api_key)
        if role is None:
            raise _unauthorized()
        return AuthContext(api_key=api_key, role=role)
    if api_key not in allowed:
        raise _unauthorized()
    return AuthContext(api_key=api_key, role="admin")


def require_roles(auth: AuthContext, allowed: set[str]) -> None:
    """Enforce role-based access control."""
    if auth.role not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )


def _extract_api_key(request: Request) -> str | None:
    header_key = request.headers.get("x-api-key")
    if header_key:
        return header_key.strip()
    auth = request.headers.get("authorization")
    if not auth:
        return None
    parts = auth.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None
