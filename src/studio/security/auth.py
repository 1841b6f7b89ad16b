"""Authentication utilities: JWT handling and the current-user dependency.

Identity is issued elsewhere; this module only verifies bearer tokens and
turns them into a ``User`` whose ``id`` is used as the session owner.

Env vars:
- JWT_SECRET (required in prod; default for dev)
- JWT_EXPIRES_MIN (default 60)
- STUDIO_PUBLIC_MODE (allow anonymous access as a shared guest user)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import os
import logging
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr

from ..domain.errors import UnauthorizedError


logger = logging.getLogger("studio.auth")
bearer_scheme = HTTPBearer(auto_error=False)

GUEST_USER_ID = "guest"


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val


@dataclass
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 60

    @staticmethod
    def from_env() -> "JwtConfig":
        secret = _get_env("JWT_SECRET", "dev-secret-change-me")
        expires = int(os.getenv("JWT_EXPIRES_MIN", "60"))
        return JwtConfig(secret=secret, expires_min=expires)


class User(BaseModel):
    id: str
    email: Optional[EmailStr] = None
    name: str = ""


def create_access_token(user: User, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=cfg.expires_min)
    payload = {
        "sub": user.id,
        "email": user.email,
        "name": user.name,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def decode_token(token: str, cfg: Optional[JwtConfig] = None) -> User:
    cfg = cfg or JwtConfig.from_env()
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise UnauthorizedError("Invalid token")
    subject = data.get("sub")
    if not subject:
        raise UnauthorizedError("Invalid token")
    return User(id=str(subject), email=data.get("email"), name=data.get("name", ""))


def _public_mode_enabled() -> bool:
    val = os.getenv("STUDIO_PUBLIC_MODE")
    if val is None:
        return False
    return val.lower() in ("1", "true", "yes")


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> User:
    """Resolve the current user.

    Requires a valid bearer token unless STUDIO_PUBLIC_MODE is enabled, in which
    case anonymous callers share a single guest identity.
    """
    if creds is None or not creds.scheme or creds.scheme.lower() != "bearer":
        if _public_mode_enabled():
            return User(id=GUEST_USER_ID, name="Guest")
        raise UnauthorizedError()
    return decode_token(creds.credentials)
