# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit trail endpoints.

Entries are written by every mutating route through ``record_audit``; these
endpoints only read them back, scoped to the caller's organization.
"""

import csv
import io
from datetime import datetime
from flask import jsonify, current_app, request, Response
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging
from typing import Any, Dict, List

from ..models.requests import IdPath
from ..models.entities import UserContext
from ..models.enums import AuditAction
from ..services.audit import AuditFilters
from ..middleware.auth import require_permission
from ..middleware.error_handler import NotFoundException, ValidationException
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

audit_tag = Tag(name="Audit", description="Audit trail of changes and workflow transitions")
audit_bp = APIBlueprint(
    'audit',
    __name__,
    url_prefix='/api/audit-logs',
    abp_tags=[audit_tag]
)

MAX_EXPORT_RECORDS = 10000
_CSV_FIELDS = [
    "id", "timestamp", "user_id", "user_name", "entity", "entity_id",
    "action", "ip_address", "trace_id"
]


def _audit_response(document: Dict[str, Any]) -> Dict[str, Any]:
    timestamp = document.get("timestamp")
    return {
        "id": document.get("id"),
        "timestamp": timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp,
        "user_id": document.get("userId"),
        "user_name": document.get("userName"),
        "entity": document.get("entity"),
        "entity_id": document.get("entityId"),
        "action": document.get("action"),
        "before": document.get("before"),
        "after": document.get("after"),
        "ip_address": document.get("ipAddress"),
        "user_agent": document.get("userAgent"),
        "trace_id": document.get("traceId"),
        "span_id": document.get("spanId")
    }


def _parse_filters() -> AuditFilters:
    filters = RequestParser.get_filter_params(
        ['user_id', 'entity', 'action', 'entity_id', 'trace_id'],
        choices={'action': [action.value for action in AuditAction]}
    )
    audit_filters = AuditFilters(
        start_date=RequestParser.get_date_param('start'),
        end_date=RequestParser.get_date_param('end', end_of_day=True),
        **filters
    )
    if audit_filters.start_date and audit_filters.end_date and audit_filters.end_date < audit_filters.start_date:
        raise ValidationException(
            "Audit range end must not be before its start",
            [{"field": "end", "message": "Must be on or after start", "type": "date_range"}]
        )
    return audit_filters


@audit_bp.get('')
@require_permission('audit_log:read')
def list_audit_logs(user_context: UserContext):
    """
    List audit entries, newest first.

    Filters: ``user_id``, ``entity``, ``action``, ``entity_id``, ``trace_id``
    and a ``start``/``end`` ISO date range.
    """
    with tracer.start_as_current_span("audit.list", attributes={"organization.id": user_context.org_id}) as span:
        pagination = RequestParser.get_pagination_params()
        filters = _parse_filters()

        result = current_app.audit_service.query_audit_logs(
            user_context.org_id, filters, pagination['page'], pagination['page_size']
        )
        items = [_audit_response(document) for document in result.items]
        query_params = {key: value for key, value in request.args.items() if key not in ('page', 'page_size')}

        span.set_attribute("audit.count", len(items))
        return jsonify(current_app.hal_formatter.builder.build_collection_response(
            items, result.total, result.page, result.page_size, "/api/audit-logs", query_params
        )), 200


@audit_bp.get('/statistics')
@require_permission('audit_log:read')
def audit_statistics(user_context: UserContext):
    """Action counts per entity for the last ``days`` days (default 30)."""
    days = RequestParser.get_int_param('days', 30)
    statistics = current_app.audit_service.get_audit_statistics(user_context.org_id, days)
    statistics["_links"] = {"self": {"href": f"{current_app.config['BASE_URL']}/api/audit-logs/statistics?days={days}"}}
    return jsonify(statistics), 200


@audit_bp.get('/export')
@require_permission('audit_log:read')
def export_audit_logs(user_context: UserContext):
    """
    Download audit entries as CSV, using the same filters as the listing.
    Snapshots are left out of the export; ``limit`` caps the row count.
    """
    with tracer.start_as_current_span("audit.export", attributes={"organization.id": user_context.org_id}) as span:
        filters = _parse_filters()
        limit = RequestParser.get_int_param('limit', 1000, maximum=MAX_EXPORT_RECORDS)

        result = current_app.audit_service.query_audit_logs(user_context.org_id, filters, 1, limit)
        rows: List[Dict[str, Any]] = [_audit_response(document) for document in result.items]

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=_CSV_FIELDS, extrasaction='ignore')
        writer.writeheader()
        for row in rows:
            writer.writerow({field: "" if row.get(field) is None else row[field] for field in _CSV_FIELDS})

        span.set_attribute("audit.export.records_count", len(rows))
        logger.info("Audit logs exported", extra={
            "organization_id": user_context.org_id, "records": len(rows), "user_id": user_context.user_id
        })

        filename = f"audit_logs_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
        return Response(
            output.getvalue(),
            mimetype='text/csv',
            headers={'Content-Disposition': f'attachment; filename="{filename}"'}
        )


@audit_bp.get('/<id>')
@require_permission('audit_log:read')
def get_audit_log(user_context: UserContext, path: IdPath):
    """Single entry with the field-level changes between its snapshots."""
    with tracer.start_as_current_span("audit.get", attributes={"audit.id": path.id}):
        document = current_app.audit_service.get_audit_log(user_context.org_id, path.id)
        if not document:
            raise NotFoundException(f"Audit log {path.id} not found")

        data = _audit_response(document)
        data["changes"] = current_app.audit_service.calculate_changes(data["before"], data["after"])
        data["_links"] = {
            "self": {"href": f"{current_app.config['BASE_URL']}/api/audit-logs/{path.id}"},
            "collection": {"href": f"{current_app.config['BASE_URL']}/api/audit-logs"}
        }
        return jsonify(data), 200
