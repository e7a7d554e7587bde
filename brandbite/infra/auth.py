from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

ALGORITHM = "HS256"


def create_access_token(subject: str, role: str, ttl_minutes: int, settings) -> str:
    """Mint a bearer token for ``subject``.

    Tokens are normally issued by the identity provider in front of the API;
    this helper exists for operators and tests.
    """
    issued_at = datetime.now(tz=timezone.utc)
    payload: Dict[str, Any] = {
        "sub": subject,
        "role": role,
        "exp": issued_at + timedelta(minutes=ttl_minutes),
        "iat": issued_at,
    }
    return jwt.encode(payload, settings.auth_secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> dict[str, Any]:
    return jwt.decode(token, secret, algorithms=[ALGORITHM])
