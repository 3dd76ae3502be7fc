# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Operations dashboard and round reports.

Report ranges default to the last 30 days; ``start`` and ``end`` accept ISO
dates. The dashboard is cached in Redis for a minute and invalidated by
round, visit and incident changes.
"""

from datetime import datetime, timedelta
from flask import jsonify, current_app, request
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging
from typing import List, Tuple

from ..models.entities import Round, Incident, CheckpointVisit, Vehicle, UserContext
from ..models.enums import RoundStatus, IncidentStatus, UserRole
from ..domain.reports import (
    REPORT_TYPES,
    dashboard_stats,
    general_report,
    client_reports,
    tactic_reports,
    period_report
)
from ..services.mongodb import ROUNDS, INCIDENTS, CHECKPOINT_VISITS, VEHICLES, USERS, CLIENTS
from ..middleware.auth import require_permission
from ..middleware.error_handler import ValidationException
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

reports_tag = Tag(name="Reports", description="Dashboard and operational reports")
reports_bp = APIBlueprint(
    'reports',
    __name__,
    url_prefix='/api/reports',
    abp_tags=[reports_tag]
)

DEFAULT_RANGE_DAYS = 30
_PERIOD_DAYS = {"daily": 1, "weekly": 7, "monthly": 30}


def _today() -> datetime:
    now = datetime.utcnow()
    return datetime(now.year, now.month, now.day)


def _date_range(default_days: int = DEFAULT_RANGE_DAYS) -> Tuple[datetime, datetime]:
    end = RequestParser.get_date_param('end', end_of_day=True) or datetime.utcnow()
    start = RequestParser.get_date_param('start') or end - timedelta(days=default_days)
    if end < start:
        raise ValidationException(
            "Report end must not be before its start",
            [{"field": "end", "message": "Must be on or after start", "type": "date_range"}]
        )
    return start, end


def _rounds_between(user_context: UserContext, start: datetime, end: datetime) -> List[Round]:
    documents = current_app.mongodb_service.find_by_org(
        ROUNDS, user_context.org_id, {"createdAt": {"$gte": start, "$lte": end}}
    )
    return [Round.from_document(doc) for doc in documents]


def _active_tactics(user_context: UserContext) -> int:
    return current_app.mongodb_service.count_by_org(
        USERS, user_context.org_id, {"role": UserRole.TATICO.value, "active": True}
    )


def _names(collection: str, user_context: UserContext, ids) -> dict:
    return {
        doc["id"]: doc.get("name")
        for doc in current_app.mongodb_service.find_by_ids(collection, user_context.org_id, ids)
    }


def _report(body: dict, path: str, start: datetime, end: datetime) -> dict:
    body["range"] = {"start": start.isoformat(), "end": end.isoformat()}
    body["_links"] = {"self": {"href": f"{current_app.config['BASE_URL']}{path}"}}
    return body


@reports_bp.get('/dashboard')
@require_permission('report:read')
def dashboard(user_context: UserContext):
    """Live counters for the operations dashboard."""
    with tracer.start_as_current_span("reports.dashboard", attributes={"organization.id": user_context.org_id}) as span:
        cached = current_app.redis_service.get_cached_dashboard_stats(user_context.org_id)
        span.set_attribute("cache.hit", cached is not None)
        if cached is not None:
            return jsonify(cached), 200

        mongodb = current_app.mongodb_service
        today = _today()

        active_rounds = [
            Round.from_document(doc)
            for doc in mongodb.find_by_org(ROUNDS, user_context.org_id, {"status": RoundStatus.ACTIVE.value})
        ]
        rounds_today = [
            Round.from_document(doc)
            for doc in mongodb.find_by_org(ROUNDS, user_context.org_id, {"createdAt": {"$gte": today}})
        ]
        vehicles_in_field = [
            Vehicle.from_document(doc) for doc in mongodb.find_by_ids(
                VEHICLES, user_context.org_id, [round_.vehicle_id for round_ in active_rounds if round_.vehicle_id]
            )
        ]

        stats = dashboard_stats(
            active_rounds=active_rounds,
            rounds_today=rounds_today,
            active_tactics=_active_tactics(user_context),
            open_incidents=mongodb.count_by_org(INCIDENTS, user_context.org_id, {"status": IncidentStatus.OPEN.value}),
            visits_today=mongodb.count_by_org(CHECKPOINT_VISITS, user_context.org_id, {"visitTime": {"$gte": today}}),
            vehicles=vehicles_in_field
        )
        stats["generated_at"] = datetime.utcnow().isoformat()

        current_app.redis_service.cache_dashboard_stats(user_context.org_id, stats)
        return jsonify(stats), 200


@reports_bp.get('/general')
@require_permission('report:read')
def general(user_context: UserContext):
    with tracer.start_as_current_span("reports.general", attributes={"organization.id": user_context.org_id}):
        start, end = _date_range()
        rounds = _rounds_between(user_context, start, end)
        return jsonify(_report(
            general_report(rounds, _active_tactics(user_context)), "/api/reports/general", start, end
        )), 200


@reports_bp.get('/clients')
@require_permission('report:read')
def by_client(user_context: UserContext):
    """Round counts per client."""
    with tracer.start_as_current_span("reports.clients", attributes={"organization.id": user_context.org_id}):
        start, end = _date_range()
        rounds = _rounds_between(user_context, start, end)
        names = _names(CLIENTS, user_context, {round_.client_id for round_ in rounds if round_.client_id})
        return jsonify(_report(
            {"clients": client_reports(rounds, names)}, "/api/reports/clients", start, end
        )), 200


@reports_bp.get('/tactics')
@require_permission('report:read')
def by_tactic(user_context: UserContext):
    """Round counts per tactical agent."""
    with tracer.start_as_current_span("reports.tactics", attributes={"organization.id": user_context.org_id}):
        start, end = _date_range()
        rounds = _rounds_between(user_context, start, end)
        names = _names(USERS, user_context, {round_.user_id for round_ in rounds})
        return jsonify(_report(
            {"tactics": tactic_reports(rounds, names)}, "/api/reports/tactics", start, end
        )), 200


@reports_bp.get('/period')
@require_permission('report:read')
def period(user_context: UserContext):
    """
    Daily, weekly or monthly summary (``type`` query parameter). Without an
    explicit range the period ends now.
    """
    with tracer.start_as_current_span("reports.period", attributes={"organization.id": user_context.org_id}) as span:
        report_type = request.args.get('type', 'daily')
        if report_type not in REPORT_TYPES:
            raise ValidationException(
                f"Invalid report type: {report_type}",
                [{"field": "type", "message": f"Expected one of: {', '.join(REPORT_TYPES)}", "type": "enum"}]
            )
        start, end = _date_range(_PERIOD_DAYS[report_type])
        span.set_attribute("report.type", report_type)

        mongodb = current_app.mongodb_service
        incidents = [
            Incident.from_document(doc) for doc in mongodb.find_by_org(
                INCIDENTS, user_context.org_id, {"reportedAt": {"$gte": start, "$lte": end}}
            )
        ]
        visits = [
            CheckpointVisit.from_document(doc) for doc in mongodb.find_by_org(
                CHECKPOINT_VISITS, user_context.org_id, {"visitTime": {"$gte": start, "$lte": end}}
            )
        ]

        report = period_report(_rounds_between(user_context, start, end), incidents, visits, start, end, report_type)
        report["_links"] = {"self": {"href": f"{current_app.config['BASE_URL']}/api/reports/period?type={report_type}"}}
        return jsonify(report), 200
