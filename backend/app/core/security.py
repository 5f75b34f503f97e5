from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from app.core.config import settings


# Tokens are issued by the external auth service; this API only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

ADMIN_ROLE = "admin"


def create_access_token(*, user_id: int, role: str = "user", expires_minutes: int = 60) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
        "iss": str(settings.jwt_issuer),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def get_token_claims(request: Request, token: str = Depends(oauth2_scheme)) -> dict[str, Any]:
    if not token:
        token = request.cookies.get("stepgate_token")
    if not token:
        raise HTTPException(status_code=401, detail="not authenticated")

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            issuer=str(settings.jwt_issuer),
        )
    except JWTError as e:
        raise HTTPException(status_code=401, detail="invalid token") from e

    try:
        user_id = int(str(payload.get("sub") or ""))
    except ValueError as e:
        raise HTTPException(status_code=401, detail="invalid token") from e
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="invalid token")

    payload["sub"] = user_id
    request.state.user_id = user_id
    return payload


def get_current_user_id(claims: dict[str, Any] = Depends(get_token_claims)) -> int:
    return int(claims["sub"])


def require_admin(claims: dict[str, Any] = Depends(get_token_claims)) -> int:
    if str(claims.get("role") or "") != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="forbidden")
    return int(claims["sub"])
