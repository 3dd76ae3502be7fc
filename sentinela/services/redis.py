# SPDX-License-Identifier: Apache-2.0

"""
Upstash Redis access for revoked tokens and the dashboard cache.

Redis is optional. Without REDIS_URL, or after a failed call, lookups
miss and writes return False; logout then cannot revoke tokens early and
the dashboard is computed from MongoDB on every request.
"""

import os
import json
import time
from typing import Optional, Dict, Any, Callable, Union
from upstash_redis import Redis
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

DASHBOARD_TTL_SECONDS = 60


def blocked_token_key(token_id: str) -> str:
    return f"jwt:blocked:{token_id}"


def dashboard_key(org_id: str) -> str:
    return f"org:dashboard:{org_id}"


class RedisConnectionError(Exception):
    """Raised when the Upstash endpoint does not answer PING."""
    pass


class RedisService:
    """Thin wrapper over the Upstash HTTP client."""

    def __init__(self, redis_url: Optional[str] = None, redis_token: Optional[str] = None):
        self.redis_url = redis_url or os.getenv("REDIS_URL")
        self.redis_token = redis_token or os.getenv("REDIS_TOKEN")
        self.client = None

        if not self.redis_url:
            logger.warning("REDIS_URL not set; token revocation and dashboard cache disabled")
            return

        try:
            client = Redis(url=self.redis_url, token=self.redis_token or "")
            if client.ping() != "PONG":
                raise RedisConnectionError(f"No PONG from {self.redis_url}")
        except Exception as e:
            logger.error(f"Redis unavailable, continuing without it: {str(e)}")
            return

        self.client = client
        logger.info("Redis connected", extra={"redis_url": self.redis_url})

    def is_available(self) -> bool:
        return self.client is not None

    def _execute(self, operation: str, key: str, call: Callable[[], Any], fallback: Any) -> Any:
        """Run one client call inside a span; failures are logged and return ``fallback``."""
        if not self.is_available():
            return fallback

        with tracer.start_as_current_span(f"redis.{operation}") as span:
            span.set_attributes({"redis.operation": operation, "redis.key": key})
            try:
                return call()
            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis {operation} failed for {key}: {str(e)}")
                return fallback

    def set_with_ttl(self, key: str, value: Union[str, Dict, list], ttl_seconds: int) -> bool:
        """Store a value (dicts and lists as JSON) that expires after ``ttl_seconds``."""
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        result = self._execute("setex", key, lambda: self.client.setex(key, ttl_seconds, value), False)
        return result in (True, "OK")

    def get(self, key: str) -> Optional[str]:
        return self._execute("get", key, lambda: self.client.get(key), None)

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding unreadable cache entry {key}")
            return None

    def delete(self, key: str) -> bool:
        return self._execute("delete", key, lambda: self.client.delete(key), 0) > 0

    # Revoked tokens

    def is_token_blocked(self, token_id: str) -> bool:
        """
        Whether a token id was revoked by logout.

        Fails open: with Redis down a revoked token stays valid until it
        expires (15 minutes for access tokens).
        """
        key = blocked_token_key(token_id)
        return self._execute("exists", key, lambda: self.client.exists(key), 0) > 0

    def block_token(self, token_id: str, ttl_seconds: int) -> bool:
        """Revoke a token id until its natural expiry (at least one second)."""
        ttl_seconds = max(int(ttl_seconds), 1)
        blocked = self.set_with_ttl(blocked_token_key(token_id), "1", ttl_seconds)
        if blocked:
            logger.info("Token revoked", extra={"token_id": token_id, "ttl_seconds": ttl_seconds})
        else:
            logger.error("Token could not be revoked", extra={"token_id": token_id})
        return blocked

    # Dashboard cache

    def cache_dashboard_stats(self, org_id: str, stats: Dict[str, Any],
                              ttl_seconds: int = DASHBOARD_TTL_SECONDS) -> bool:
        return self.set_with_ttl(dashboard_key(org_id), stats, ttl_seconds)

    def get_cached_dashboard_stats(self, org_id: str) -> Optional[Dict[str, Any]]:
        return self.get_json(dashboard_key(org_id))

    def invalidate_dashboard_stats(self, org_id: str) -> bool:
        """Called after writes that change rounds, visits, incidents or vehicles."""
        return self.delete(dashboard_key(org_id))

    def health_check(self) -> Dict[str, Any]:
        if not self.is_available():
            return {"status": "unavailable", "message": "Redis not configured or unreachable"}

        started = time.time()
        pong = self._execute("ping", "-", self.client.ping, None)
        latency_ms = round((time.time() - started) * 1000, 2)

        if pong == "PONG":
            return {"status": "healthy", "response_time_ms": latency_ms}
        return {"status": "degraded", "message": "PING failed", "response_time_ms": latency_ms}
