from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings


security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    is_privileged: bool = False
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


def context_from_claims(payload: dict, settings: Settings) -> AuthContext:
    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user_scope_required")

    scopes = tuple(payload.get("scopes") or [])
    is_privileged = (
        bool(payload.get("root_access"))
        or payload.get("role") == "admin"
        or settings.privileged_scope in scopes
    )
    return AuthContext(user_id=str(user_id), is_privileged=is_privileged, scopes=scopes)


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_authorization")

    payload = _decode_token(credentials.credentials, settings)
    context = context_from_claims(payload, settings)
    request.state.auth = context
    return context


__all__ = ["AuthContext", "context_from_claims", "get_auth_context"]
