"""
JWT Utilities

Access tokens are issued by the identity service; this API only verifies
them. create_access_token exists for tooling and tests that need a token
signed with the shared secret.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from rtb_assets.core.config import settings


def create_access_token(
    subject: str,
    *,
    role: str,
    email: str = "",
    name: str | None = None,
    session_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token carrying the claims get_current_user expects."""
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "email": email,
        "type": "access",
        "exp": expire,
    }
    if name:
        payload["name"] = name
    if session_id:
        payload["sid"] = session_id
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode and verify a JWT. Returns None if invalid or expired."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
