from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings


security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    scopes: tuple[str, ...] = ()


def _decode_token(token: str, settings: Settings) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.secrets.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except jwt.PyJWTError as exc:  # pragma: no cover - library handles message
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from exc
    return payload


def issue_token(
    settings: Settings,
    *,
    user_id: str,
    scopes: list[str] | None = None,
    ttl: timedelta = timedelta(hours=1),
) -> str:
    issued_at = datetime.now(timezone.utc)
    claims: dict[str, object] = {
        "sub": user_id,
        "scopes": scopes or [],
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
    }
    if settings.jwt_issuer:
        claims["iss"] = settings.jwt_issuer
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience
    return jwt.encode(claims, settings.secrets.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_authorization")

    payload = _decode_token(credentials.credentials, settings)
    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user_identity_required")

    scopes = tuple(payload.get("scopes") or [])
    context = AuthContext(user_id=str(user_id), scopes=scopes)
    request.state.auth = context
    return context


def require_scope(scope: str):
    """Dependency factory that rejects callers whose token lacks ``scope``."""

    async def dependency(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if scope not in context.scopes:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{scope}_scope_required")
        return context

    return dependency


__all__ = ["AuthContext", "get_auth_context", "issue_token", "require_scope"]
