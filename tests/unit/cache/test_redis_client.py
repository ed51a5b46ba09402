"""Unit tests for throughline.cache.redis_client (RedisCache)."""
import json
from unittest.mock import MagicMock, patch

import pytest
import redis


class TestRedisCache:
    @pytest.fixture
    def mock_redis(self):
        with patch("throughline.cache.redis_client.redis.Redis") as mock:
            client = MagicMock()
            client.ping.return_value = True
            mock.return_value = client
            yield client

    def test_init_connects_successfully(self, mock_redis):
        from throughline.cache.redis_client import RedisCache

        cache = RedisCache()

        mock_redis.ping.assert_called_once()
        assert cache.client is mock_redis

    def test_get_returns_parsed_json(self, mock_redis):
        from throughline.cache.redis_client import RedisCache

        mock_redis.get.return_value = '{"data": [{"paperId": "abc"}]}'

        cache = RedisCache()
        result = cache.get("key")

        assert result == {"data": [{"paperId": "abc"}]}
        mock_redis.get.assert_called_with("throughline:key")

    def test_get_returns_none_when_missing(self, mock_redis):
        from throughline.cache.redis_client import RedisCache

        mock_redis.get.return_value = None

        cache = RedisCache()
        result = cache.get("missing")

        assert result is None

    def test_get_returns_none_on_corrupt_value(self, mock_redis):
        from throughline.cache.redis_client import RedisCache

        mock_redis.get.return_value = "{not json"

        cache = RedisCache()
        assert cache.get("key") is None

    def test_set_uses_configured_ttl_and_prefix(self, mock_redis):
        from throughline.cache.redis_client import RedisCache

        cache = RedisCache(ttl=3600, prefix="test:")
        assert cache.set("key", {"data": 123}) is True

        mock_redis.setex.assert_called_once()
        call_args = mock_redis.setex.call_args
        assert call_args[0][0] == "test:key"
        assert call_args[0][1] == 3600
        assert json.loads(call_args[0][2]) == {"data": 123}

    def test_set_returns_false_on_redis_error(self, mock_redis):
        from throughline.cache.redis_client import RedisCache

        mock_redis.setex.side_effect = redis.RedisError("READONLY")

        cache = RedisCache()
        assert cache.set("key", {"data": 1}) is False

    def test_operations_return_false_or_none_when_disconnected(self):
        from throughline.cache.redis_client import RedisCache

        with patch("throughline.cache.redis_client.redis.Redis") as mock:
            mock.return_value.ping.side_effect = redis.ConnectionError("Connection refused")

            cache = RedisCache()

            assert cache.client is None
            assert cache.get("key") is None
            assert cache.set("key", "value") is False
