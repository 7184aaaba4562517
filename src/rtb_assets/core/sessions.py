"""
Login Session Tracking

Tracks authenticated sessions in Redis so session lifetime can be reported
in the audit trail across restarts and multiple API instances.

Layout:
- session:{id}            hash {user_id, ip_address, login_time}, EXPIRE = TTL
- sessions:active         sorted set, member = session id, score = login epoch
- sessions:user:{user_id} set of the user's session ids

The hash expiring is the eviction; the sorted set lets the sweeper find
sessions whose hash is already gone so their audit rows can be closed.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from redis.asyncio import Redis

from rtb_assets.core.config import settings

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"
ACTIVE_SESSIONS_KEY = "sessions:active"
USER_SESSIONS_KEY_PREFIX = "sessions:user:"


@dataclass
class SessionInfo:
    """A tracked login session."""

    session_id: str
    user_id: str | None
    ip_address: str | None
    login_time: datetime

    def duration_seconds(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        return max(0, int((now - self.login_time).total_seconds()))


def _session_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def _user_sessions_key(user_id: str) -> str:
    return f"{USER_SESSIONS_KEY_PREFIX}{user_id}"


async def start_session(
    redis: Redis,
    user_id: str,
    ip_address: str | None,
    session_id: str | None = None,
    ttl_seconds: int | None = None,
) -> SessionInfo:
    """
    Record a new session.

    Args:
        redis: Redis client
        user_id: Authenticated user
        ip_address: Client address, if known
        session_id: Session id from the token; generated when omitted
        ttl_seconds: Idle lifetime, defaults to settings.session_ttl_seconds

    Returns:
        The stored SessionInfo
    """
    ttl = ttl_seconds or settings.session_ttl_seconds
    info = SessionInfo(
        session_id=session_id or str(uuid4()),
        user_id=user_id,
        ip_address=ip_address,
        login_time=datetime.now(UTC),
    )
    key = _session_key(info.session_id)

    pipe = redis.pipeline()
    pipe.hset(
        key,
        mapping={
            "user_id": user_id,
            "ip_address": ip_address or "",
            "login_time": info.login_time.isoformat(),
        },
    )
    pipe.expire(key, ttl)
    pipe.zadd(ACTIVE_SESSIONS_KEY, {info.session_id: info.login_time.timestamp()})
    pipe.sadd(_user_sessions_key(user_id), info.session_id)
    await pipe.execute()

    logger.debug(f"Started session {info.session_id} for user {user_id}")
    return info


async def get_session(redis: Redis, session_id: str) -> SessionInfo | None:
    """Return the session, or None if unknown or expired."""
    data = await redis.hgetall(_session_key(session_id))
    if not data:
        return None
    return SessionInfo(
        session_id=session_id,
        user_id=data.get("user_id") or None,
        ip_address=data.get("ip_address") or None,
        login_time=datetime.fromisoformat(data["login_time"]),
    )


async def touch_session(
    redis: Redis,
    session_id: str,
    user_id: str,
    ip_address: str | None,
) -> SessionInfo:
    """Refresh the TTL of a known session, or start tracking it."""
    existing = await get_session(redis, session_id)
    if existing is None:
        return await start_session(redis, user_id, ip_address, session_id=session_id)

    await redis.expire(_session_key(session_id), settings.session_ttl_seconds)
    return existing


async def end_session(redis: Redis, session_id: str) -> SessionInfo | None:
    """
    Stop tracking a session (logout).

    Returns the ended session so the caller can record its duration,
    or None if it was not being tracked.
    """
    info = await get_session(redis, session_id)

    pipe = redis.pipeline()
    pipe.delete(_session_key(session_id))
    pipe.zrem(ACTIVE_SESSIONS_KEY, session_id)
    if info and info.user_id:
        pipe.srem(_user_sessions_key(info.user_id), session_id)
    await pipe.execute()

    return info


async def get_session_duration(redis: Redis, session_id: str) -> int:
    """Seconds since login, 0 if the session is not tracked."""
    info = await get_session(redis, session_id)
    return info.duration_seconds() if info else 0


async def get_user_active_sessions(redis: Redis, user_id: str) -> list[SessionInfo]:
    """List the user's live sessions, dropping ids whose hash has expired."""
    sessions: list[SessionInfo] = []
    for session_id in await redis.smembers(_user_sessions_key(user_id)):
        info = await get_session(redis, session_id)
        if info is None:
            await redis.srem(_user_sessions_key(user_id), session_id)
            continue
        sessions.append(info)
    return sessions


async def pop_stale_sessions(
    redis: Redis,
    started_before: datetime,
) -> list[tuple[str, datetime]]:
    """
    Remove sessions that logged in before `started_before`.

    Returns:
        (session_id, login_time) pairs for every session removed
    """
    entries = await redis.zrangebyscore(
        ACTIVE_SESSIONS_KEY,
        "-inf",
        started_before.timestamp(),
        withscores=True,
    )
    stale: list[tuple[str, datetime]] = []
    for session_id, score in entries:
        # An expired hash leaves its user index entry behind; get_user_active_sessions prunes it
        await end_session(redis, session_id)
        stale.append((session_id, datetime.fromtimestamp(score, tz=UTC)))

    if stale:
        logger.info(f"Removed {len(stale)} stale login sessions")
    return stale
