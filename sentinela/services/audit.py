# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service recording every create/update/delete and workflow transition
with OpenTelemetry trace correlation.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any
from opentelemetry import trace
from bson import ObjectId

from .mongodb import MongoDBService, PaginationResult, AUDIT_LOGS
from ..models.entities import AuditLog, UserContext

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_IGNORED_CHANGE_FIELDS = {"updated_at", "updated_by", "updatedAt", "updatedBy", "_id", "id", "password_hash"}


class AuditFilters:
    """Filters for audit log queries."""

    def __init__(
        self,
        user_id: Optional[str] = None,
        entity: Optional[str] = None,
        action: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        trace_id: Optional[str] = None,
        entity_id: Optional[str] = None
    ):
        self.user_id = user_id
        self.entity = entity
        self.action = action
        self.start_date = start_date
        self.end_date = end_date
        self.trace_id = trace_id
        self.entity_id = entity_id

    def to_mongo_query(self) -> Dict[str, Any]:
        """Convert filters to MongoDB query."""
        query = {}

        if self.user_id:
            query["userId"] = self.user_id
        if self.entity:
            query["entity"] = self.entity
        if self.action:
            query["action"] = self.action
        if self.trace_id:
            query["traceId"] = self.trace_id
        if self.entity_id:
            query["entityId"] = self.entity_id

        if self.start_date or self.end_date:
            date_filter = {}
            if self.start_date:
                date_filter["$gte"] = self.start_date
            if self.end_date:
                date_filter["$lte"] = self.end_date
            query["timestamp"] = date_filter

        return query


def _sanitize(state: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if state is None:
        return None
    return {key: value for key, value in state.items() if key not in ("password_hash", "passwordHash")}


class AuditService:
    """Audit logging with MongoDB persistence and organization scoping."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service
        self.collection_name = AUDIT_LOGS

    def log_action(
        self,
        user_context: UserContext,
        entity: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Record an audit trail entry.

        Password hashes are stripped from the before/after snapshots.

        Args:
            user_context: Acting user with request metadata
            entity: Entity type being acted upon
            entity_id: ID of the specific entity
            action: Action performed
            before: State before the action
            after: State after the action

        Returns:
            ID of the created audit log entry
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            span_context = span.get_span_context()

            entry = AuditLog(
                user_id=user_context.user_id,
                user_name=user_context.name,
                organization_id=user_context.org_id,
                entity=entity,
                entity_id=entity_id,
                action=action,
                before=_sanitize(before),
                after=_sanitize(after),
                ip_address=user_context.ip_address,
                user_agent=user_context.user_agent,
                trace_id=format(span_context.trace_id, "032x") if span_context.is_valid else None,
                span_id=format(span_context.span_id, "016x") if span_context.is_valid else None
            )

            span.set_attributes({
                "audit.entity": entity,
                "audit.action": action,
                "audit.entity_id": entity_id,
                "audit.organization_id": user_context.org_id
            })

            document = {
                "_id": ObjectId(entry.id),
                "timestamp": entry.timestamp,
                "userId": entry.user_id,
                "userName": entry.user_name,
                "organizationId": entry.organization_id,
                "entity": entry.entity,
                "entityId": entry.entity_id,
                "action": entry.action,
                "before": entry.before,
                "after": entry.after,
                "ipAddress": entry.ip_address,
                "userAgent": entry.user_agent,
                "traceId": entry.trace_id,
                "spanId": entry.span_id,
                "schemaVersion": entry.schema_version
            }

            try:
                audit_id = self.mongo_service.create(self.collection_name, document, user_context.user_id)
            except Exception as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to create audit trail entry",
                    extra={
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": user_context.user_id,
                        "organization_id": user_context.org_id
                    },
                    exc_info=True
                )
                raise

            changes_count = len(self.calculate_changes(before, after)) if before and after else 0
            logger.info(
                "Audit trail entry created",
                extra={
                    "audit_id": audit_id,
                    "entity": entity,
                    "entity_id": entity_id,
                    "action": action,
                    "user_id": user_context.user_id,
                    "organization_id": user_context.org_id,
                    "trace_id": entry.trace_id,
                    "changes_count": changes_count
                }
            )
            return audit_id

    def query_audit_logs(
        self,
        org_id: str,
        filters: AuditFilters,
        page: int = 1,
        page_size: int = 20,
        sort_by: str = "timestamp",
        sort_order: int = -1
    ) -> PaginationResult:
        """
        Query audit logs with filtering and pagination, newest first by default.
        """
        with tracer.start_as_current_span("audit.query_logs") as span:
            mongo_filters = filters.to_mongo_query()
            span.set_attributes({
                "audit.query.organization_id": org_id,
                "audit.query.page": page,
                "audit.query.filters_count": len(mongo_filters)
            })

            return self.mongo_service.paginate_by_org(
                collection=self.collection_name,
                org_id=org_id,
                page=page,
                page_size=page_size,
                filters=mongo_filters,
                sort_by=sort_by,
                sort_order=sort_order
            )

    def get_audit_log(self, org_id: str, audit_id: str) -> Optional[Dict[str, Any]]:
        with tracer.start_as_current_span("audit.get_log"):
            return self.mongo_service.find_one_by_org(self.collection_name, org_id, audit_id)

    def get_audit_statistics(self, org_id: str, days: int = 30) -> Dict[str, Any]:
        """
        Count audit actions per entity over the last ``days`` days.
        """
        with tracer.start_as_current_span("audit.get_statistics") as span:
            end_date = datetime.utcnow()
            start_date = end_date - timedelta(days=days)
            span.set_attribute("audit.stats.days", days)

            pipeline = [
                {"$match": {"timestamp": {"$gte": start_date, "$lte": end_date}}},
                {"$group": {
                    "_id": {"entity": "$entity", "action": "$action"},
                    "count": {"$sum": 1}
                }},
                {"$group": {
                    "_id": "$_id.entity",
                    "actions": {"$push": {"action": "$_id.action", "count": "$count"}},
                    "total": {"$sum": "$count"}
                }}
            ]

            stats_result = self.mongo_service.aggregate_by_org(self.collection_name, org_id, pipeline)

            statistics = {
                "period": {
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "days": days
                },
                "total_actions": sum(item["total"] for item in stats_result),
                "entities": {}
            }
            for item in stats_result:
                statistics["entities"][item["_id"]] = {
                    "total": item["total"],
                    "actions": {action["action"]: action["count"] for action in item["actions"]}
                }
            return statistics

    @staticmethod
    def calculate_changes(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Field-level differences between two snapshots."""
        if not before or not after:
            return []

        changes = []
        for key in sorted(set(before) | set(after)):
            if key in _IGNORED_CHANGE_FIELDS:
                continue
            old_value = before.get(key)
            new_value = after.get(key)
            if old_value != new_value:
                changes.append({
                    "field": key,
                    "old_value": old_value,
                    "new_value": new_value
                })
        return changes
