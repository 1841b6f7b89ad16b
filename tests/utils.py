from __future__ import annotations

from typing import Dict

from src.studio.security.auth import User, create_access_token


def headers_for(user_id: str, *, email: str | None = None, name: str = "") -> Dict[str, str]:
    token = create_access_token(User(id=user_id, email=email, name=name))
    return {"Authorization": f"Bearer {token}"}
