import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Set

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings


http_bearer = HTTPBearer(auto_error=False)


def create_service_token(sub: str, roles: Optional[Iterable[str]] = None, ttl_seconds: Optional[int] = None) -> str:
    """Bearer token for service callers (scheduler, admin tooling) of the synchronizer."""
    now = datetime.now(tz=timezone.utc)
    ttl = ttl_seconds if ttl_seconds is not None else settings.jwt_ttl_seconds
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        "jti": str(uuid.uuid4()),
        "roles": list(roles or []),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def token_roles(payload: dict) -> Set[str]:
    # Accept both a `roles` list and a single `role` claim
    roles = set()
    raw = payload.get("roles")
    if isinstance(raw, str):
        roles.add(raw)
    elif isinstance(raw, (list, tuple)):
        roles.update(str(r) for r in raw)
    if payload.get("role"):
        roles.add(str(payload["role"]))
    return {r.lower() for r in roles}


def require_sync_caller(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Optional[dict]:
    """
    Authenticate a caller of the synchronizer endpoints.

    Returns:
        The token payload, or None when authentication is disabled
    """
    if not settings.sync_auth_required:
        return None
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    allowed = {r.lower() for r in settings.sync_allowed_roles}
    if not token_roles(payload) & allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return payload
