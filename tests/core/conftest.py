"""
Fixtures for core tests.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from rtb_assets.core.config import settings


@pytest.fixture
def mock_redis():
    """Create a mock Redis client with a recording pipeline."""
    redis = AsyncMock()
    redis.hgetall = AsyncMock(return_value={})
    redis.expire = AsyncMock()
    redis.smembers = AsyncMock(return_value=set())
    redis.srem = AsyncMock()
    redis.zrangebyscore = AsyncMock(return_value=[])
    redis.pipeline = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock()
    redis.pipeline.return_value = pipe
    return redis


@pytest.fixture
def upload_root(tmp_path, monkeypatch):
    """Point letter storage at a temporary directory."""
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path))
    return tmp_path
