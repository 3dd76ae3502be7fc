"""
Health Check Service

Aggregates dependency health (MongoDB, Redis, AMQP event broker) with
basic system metrics for the /api/healthz endpoint.
"""

import os
import time
import psutil
from datetime import datetime
from typing import Dict, Any, List
from opentelemetry import trace

from .mongodb import MongoDBService
from .redis import RedisService
from .events import EventPublisher

tracer = trace.get_tracer(__name__)

# Statuses that do not degrade the overall result
_NEUTRAL_STATUSES = ("disabled", "unavailable")


class HealthCheckService:
    """Service for comprehensive system health monitoring."""

    def __init__(self, mongodb_service: MongoDBService, redis_service: RedisService,
                 event_publisher: EventPublisher, service_version: str = "1.0.0"):
        self.mongodb_service = mongodb_service
        self.redis_service = redis_service
        self.event_publisher = event_publisher
        self.service_version = service_version

    def get_comprehensive_health(self) -> Dict[str, Any]:
        """Get comprehensive health status including all dependencies and metrics."""
        with tracer.start_as_current_span("health.comprehensive_check") as span:
            start_time = time.time()

            dependencies = {
                "mongodb": self._check("mongodb", self.mongodb_service.health_check),
                "redis": self._check("redis", self.redis_service.health_check),
                "amqp": self._check("amqp", self.event_publisher.health_check)
            }

            overall_status = self._determine_overall_status(
                [dependency["status"] for dependency in dependencies.values()]
            )
            response_time_ms = round((time.time() - start_time) * 1000, 2)

            span.set_attributes({
                "health.overall_status": overall_status,
                "health.response_time_ms": response_time_ms
            })

            return {
                "status": overall_status,
                "service": "sentinela-api",
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "response_time_ms": response_time_ms,
                "dependencies": dependencies,
                "system_metrics": self._get_system_metrics(),
                "feature_flags": self._get_feature_flags()
            }

    def _check(self, name: str, check) -> Dict[str, Any]:
        with tracer.start_as_current_span(f"health.{name}_check") as span:
            result = dict(check())
            result["last_check"] = datetime.utcnow().isoformat() + "Z"
            span.set_attribute(f"{name}.status", result.get("status", "unknown"))
            return result

    def _get_system_metrics(self) -> Dict[str, Any]:
        """Get basic system performance metrics."""
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage('/')

        return {
            "cpu_percent": psutil.cpu_percent(interval=0.1),
            "memory": {
                "used_mb": round(memory.used / 1024 / 1024, 2),
                "total_mb": round(memory.total / 1024 / 1024, 2),
                "percent": memory.percent
            },
            "disk": {
                "used_gb": round(disk.used / 1024 / 1024 / 1024, 2),
                "total_gb": round(disk.total / 1024 / 1024 / 1024, 2),
                "percent": round((disk.used / disk.total) * 100, 2)
            },
            "load_average": list(os.getloadavg()) if hasattr(os, 'getloadavg') else None
        }

    def _get_feature_flags(self) -> Dict[str, bool]:
        return {
            "docs_enabled": os.getenv('DOCS_ENABLED', 'true').lower() == 'true',
            "otel_enabled": os.getenv('OTEL_ENABLED', 'true').lower() == 'true',
            "events_enabled": self.event_publisher.config.enabled
        }

    @staticmethod
    def _determine_overall_status(dependency_statuses: List[str]) -> str:
        """
        healthy when every enabled dependency is healthy, degraded when
        only optional ones fail, unhealthy when MongoDB is down.
        """
        if dependency_statuses and dependency_statuses[0] == "unhealthy":
            return "unhealthy"
        relevant = [status for status in dependency_statuses if status not in _NEUTRAL_STATUSES]
        if all(status == "healthy" for status in relevant):
            return "healthy"
        return "degraded"
