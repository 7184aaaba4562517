"""
Unit tests for Redis-backed login session tracking.
"""

from datetime import UTC, datetime, timedelta

import pytest

from rtb_assets.core.config import settings
from rtb_assets.core.sessions import (
    ACTIVE_SESSIONS_KEY,
    SessionInfo,
    end_session,
    get_session,
    get_session_duration,
    get_user_active_sessions,
    pop_stale_sessions,
    start_session,
    touch_session,
)


def _stored(user_id="user-1", login_time=None, ip_address="10.0.0.5"):
    login_time = login_time or datetime.now(UTC)
    return {
        "user_id": user_id,
        "ip_address": ip_address,
        "login_time": login_time.isoformat(),
    }


class TestSessionInfo:
    def test_duration_never_negative(self):
        info = SessionInfo("s1", "u1", None, datetime.now(UTC) + timedelta(minutes=5))
        assert info.duration_seconds() == 0

    def test_duration_in_seconds(self):
        login = datetime(2026, 1, 1, 8, 0, tzinfo=UTC)
        info = SessionInfo("s1", "u1", None, login)
        assert info.duration_seconds(login + timedelta(minutes=90)) == 5400


class TestStartSession:
    @pytest.mark.asyncio
    async def test_writes_hash_ttl_and_indexes(self, mock_redis):
        info = await start_session(mock_redis, "user-1", "10.0.0.5", session_id="abc")
        pipe = mock_redis.pipeline.return_value

        assert info.session_id == "abc"
        key, = pipe.hset.call_args.args
        assert key == "session:abc"
        assert pipe.hset.call_args.kwargs["mapping"]["user_id"] == "user-1"
        pipe.expire.assert_called_once_with("session:abc", settings.session_ttl_seconds)
        assert pipe.zadd.call_args.args[0] == ACTIVE_SESSIONS_KEY
        pipe.sadd.assert_called_once_with("sessions:user:user-1", "abc")
        pipe.execute.assert_called_once()

    @pytest.mark.asyncio
    async def test_generates_session_id(self, mock_redis):
        info = await start_session(mock_redis, "user-1", None, ttl_seconds=60)

        assert info.session_id
        mock_redis.pipeline.return_value.expire.assert_called_once_with(
            f"session:{info.session_id}", 60
        )


class TestGetAndTouch:
    @pytest.mark.asyncio
    async def test_unknown_session(self, mock_redis):
        assert await get_session(mock_redis, "missing") is None
        assert await get_session_duration(mock_redis, "missing") == 0

    @pytest.mark.asyncio
    async def test_stored_session_is_parsed(self, mock_redis):
        login = datetime.now(UTC) - timedelta(minutes=10)
        mock_redis.hgetall.return_value = _stored(login_time=login, ip_address="")

        info = await get_session(mock_redis, "abc")

        assert info.user_id == "user-1"
        assert info.ip_address is None
        assert info.login_time == login
        assert await get_session_duration(mock_redis, "abc") >= 600

    @pytest.mark.asyncio
    async def test_touch_refreshes_known_session(self, mock_redis):
        mock_redis.hgetall.return_value = _stored()

        await touch_session(mock_redis, "abc", "user-1", "10.0.0.5")

        mock_redis.expire.assert_called_once_with("session:abc", settings.session_ttl_seconds)
        mock_redis.pipeline.assert_not_called()

    @pytest.mark.asyncio
    async def test_touch_starts_unknown_session(self, mock_redis):
        info = await touch_session(mock_redis, "abc", "user-1", "10.0.0.5")

        assert info.session_id == "abc"
        mock_redis.pipeline.return_value.execute.assert_called_once()


class TestEndSession:
    @pytest.mark.asyncio
    async def test_removes_hash_and_indexes(self, mock_redis):
        mock_redis.hgetall.return_value = _stored()

        info = await end_session(mock_redis, "abc")
        pipe = mock_redis.pipeline.return_value

        assert info.user_id == "user-1"
        pipe.delete.assert_called_once_with("session:abc")
        pipe.zrem.assert_called_once_with(ACTIVE_SESSIONS_KEY, "abc")
        pipe.srem.assert_called_once_with("sessions:user:user-1", "abc")

    @pytest.mark.asyncio
    async def test_expired_session_is_removed_from_active_index(self, mock_redis):
        info = await end_session(mock_redis, "gone")
        pipe = mock_redis.pipeline.return_value

        assert info is None
        pipe.zrem.assert_called_once_with(ACTIVE_SESSIONS_KEY, "gone")
        pipe.srem.assert_not_called()


class TestSweep:
    @pytest.mark.asyncio
    async def test_pop_stale_sessions(self, mock_redis):
        login = datetime(2026, 1, 1, 8, 0, tzinfo=UTC)
        mock_redis.zrangebyscore.return_value = [("s1", login.timestamp())]

        stale = await pop_stale_sessions(mock_redis, started_before=login + timedelta(days=1))

        assert stale == [("s1", login)]
        mock_redis.pipeline.return_value.zrem.assert_called_once_with(ACTIVE_SESSIONS_KEY, "s1")

    @pytest.mark.asyncio
    async def test_user_sessions_prune_expired_ids(self, mock_redis):
        mock_redis.smembers.return_value = {"live", "expired"}

        async def hgetall(key):
            return _stored() if key == "session:live" else {}

        mock_redis.hgetall.side_effect = hgetall

        sessions = await get_user_active_sessions(mock_redis, "user-1")

        assert [s.session_id for s in sessions] == ["live"]
        mock_redis.srem.assert_called_once_with("sessions:user:user-1", "expired")
