"""
Authentication and Authorization Module

Provides authentication dependencies for FastAPI endpoints.
Access tokens are issued by the identity service; this module validates
them, exposes the caller as a CurrentUser and enforces role checks.

Authenticated requests carrying a session id ("sid" claim) refresh the
caller's tracked login session in Redis (best-effort).
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis

from rtb_assets.core.redis import get_redis
from rtb_assets.core.security import decode_token
from rtb_assets.core.sessions import touch_session

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI documentation
security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)


@dataclass
class CurrentUser:
    """
    The authenticated caller, populated from JWT claims.

    Attributes:
        id: User's unique identifier (UUID)
        role: "admin", "rtb-staff" or "school"
        email: User's email address
        name: Display name, if the token carries one
        session_id: Login session id ("sid" claim), if any
        ip_address: Client address of the current request
    """

    id: UUID
    role: str
    email: str = ""
    name: str | None = None
    session_id: str | None = None
    ip_address: str | None = None

    def __str__(self) -> str:
        return f"CurrentUser(id={self.id}, role={self.role})"


def get_client_ip(request: Request) -> str | None:
    """Client address, honouring X-Forwarded-For / X-Real-IP from the proxy."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _validate_jwt_token(token: str) -> CurrentUser:
    """
    Validate a JWT and extract the caller's claims.

    Raises:
        HTTPException 401: If the token is invalid, expired, not an access
            token, or missing required claims
    """
    payload = decode_token(token)
    if payload is None:
        logger.warning("Invalid or expired JWT token")
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    token_type = payload.get("type", "access")
    if token_type != "access":
        logger.warning(f"Invalid token type: {token_type}")
        raise _unauthorized("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    try:
        user_id_str = payload.get("sub")
        if not user_id_str:
            raise ValueError("Missing 'sub' claim in token")
        role = payload.get("role")
        if not role:
            raise ValueError("Missing 'role' claim in token")

        return CurrentUser(
            id=UUID(user_id_str),
            role=role,
            email=payload.get("email", ""),
            name=payload.get("name"),
            session_id=payload.get("sid"),
        )
    except ValueError as e:
        logger.warning(f"Invalid token claims: {e}")
        raise _unauthorized(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    redis: Redis | None = Depends(get_redis),
) -> CurrentUser:
    """
    FastAPI dependency that validates the bearer token and returns the caller.

    Raises:
        HTTPException 401: If token is missing, invalid, or expired
    """
    user = _validate_jwt_token(credentials.credentials)
    user.ip_address = get_client_ip(request)

    if user.session_id and redis is not None:
        # Session tracking is reporting only; never block the request on it
        try:
            await touch_session(redis, user.session_id, str(user.id), user.ip_address)
        except Exception as e:
            logger.error(f"Failed to refresh session {user.session_id}: {e}", exc_info=True)

    logger.debug(f"Authenticated user: {user.id} ({user.role})")
    return user


def require_roles(*roles: str) -> Callable[..., Awaitable[CurrentUser]]:
    """
    Dependency factory restricting an endpoint to the given roles.

    Usage:
        @router.put("/{id}/review")
        async def review(actor: CurrentUser = Depends(require_roles("admin", "rtb-staff"))):
            ...
    """
    allowed = set(roles)

    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            logger.warning(
                f"Access denied: user {user.id} has role '{user.role}', "
                f"requires one of {sorted(allowed)}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "INSUFFICIENT_ROLE",
                    "message": "You do not have permission to perform this action.",
                },
            )
        return user

    return dependency


__all__ = [
    "CurrentUser",
    "get_client_ip",
    "get_current_user",
    "require_roles",
]
