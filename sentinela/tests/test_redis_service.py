# SPDX-License-Identifier: Apache-2.0

"""
Tests for the Redis blocklist and caches, with the Upstash client mocked.
"""

from unittest.mock import MagicMock, patch

import pytest

from sentinela.services.redis import RedisService, DASHBOARD_TTL_SECONDS
from sentinela.tests.factories import ORG_ID


@pytest.fixture
def redis_client():
    with patch('sentinela.services.redis.Redis') as mock_redis_class:
        client = MagicMock()
        client.ping.return_value = "PONG"
        mock_redis_class.return_value = client
        yield client


@pytest.fixture
def service(redis_client):
    return RedisService("https://redis.example.upstash.io", "token")


class TestUnconfigured:
    """Without REDIS_URL every operation degrades."""

    @pytest.fixture
    def offline(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        return RedisService()

    def test_reads_miss_and_writes_fail(self, offline):
        assert offline.is_available() is False
        assert offline.get("key") is None
        assert offline.set_with_ttl("key", "value", 10) is False
        assert offline.get_cached_dashboard_stats(ORG_ID) is None

    def test_tokens_are_allowed(self, offline):
        assert offline.is_token_blocked("jti") is False
        assert offline.block_token("jti", 900) is False

    def test_health(self, offline):
        assert offline.health_check()['status'] == "unavailable"

    def test_failed_ping_disables_client(self, redis_client):
        redis_client.ping.return_value = "NOPE"

        assert RedisService("https://redis.example.upstash.io").is_available() is False


class TestBlocklist:

    def test_block_token_until_expiry(self, service, redis_client):
        redis_client.setex.return_value = "OK"

        assert service.block_token("abc", 840) is True
        redis_client.setex.assert_called_once_with("jwt:blocked:abc", 840, "1")

    def test_expired_token_still_blocked_briefly(self, service, redis_client):
        redis_client.setex.return_value = True

        service.block_token("abc", 0)

        assert redis_client.setex.call_args.args[1] == 1

    def test_is_token_blocked(self, service, redis_client):
        redis_client.exists.return_value = 1

        assert service.is_token_blocked("abc") is True
        redis_client.exists.assert_called_once_with("jwt:blocked:abc")

    def test_errors_allow_token(self, service, redis_client):
        redis_client.exists.side_effect = ConnectionError("timeout")

        assert service.is_token_blocked("abc") is False


class TestDashboardCache:

    def test_stats_stored_as_json(self, service, redis_client):
        redis_client.setex.return_value = "OK"

        assert service.cache_dashboard_stats(ORG_ID, {"active_tactics": 3}) is True
        redis_client.setex.assert_called_once_with(
            f"org:dashboard:{ORG_ID}", DASHBOARD_TTL_SECONDS, '{"active_tactics": 3}'
        )

    def test_cached_stats_read_back(self, service, redis_client):
        redis_client.get.return_value = '{"active_tactics": 3}'

        assert service.get_cached_dashboard_stats(ORG_ID) == {"active_tactics": 3}

    def test_corrupt_cache_is_a_miss(self, service, redis_client):
        redis_client.get.return_value = "{not json"

        assert service.get_cached_dashboard_stats(ORG_ID) is None

    def test_invalidate(self, service, redis_client):
        redis_client.delete.return_value = 1

        assert service.invalidate_dashboard_stats(ORG_ID) is True
        redis_client.delete.assert_called_once_with(f"org:dashboard:{ORG_ID}")


class TestHealth:

    def test_ping(self, service, redis_client):
        report = service.health_check()

        assert report['status'] == "healthy"
        assert report['response_time_ms'] >= 0

    def test_ping_failure_is_degraded(self, service, redis_client):
        redis_client.ping.side_effect = ConnectionError("timeout")

        assert service.health_check()['status'] == "degraded"
