"""
Audit Log Repository
"""

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import AuditLog


async def create(db: AsyncSession, **fields) -> AuditLog:
    entry = AuditLog(**fields)
    db.add(entry)
    await db.flush()
    return entry


async def close_session_entries(
    db: AsyncSession,
    session_id: str,
    ended_at: datetime,
    duration_seconds: int,
) -> int:
    """
    Stamp session end and duration on the session's still-open entries.

    Returns:
        Number of rows updated
    """
    result = await db.execute(
        update(AuditLog)
        .where(AuditLog.session_id == session_id, AuditLog.session_end.is_(None))
        .values(session_end=ended_at, session_duration=duration_seconds)
    )
    return result.rowcount or 0
