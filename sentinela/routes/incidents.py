# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Field incidents and the open -> investigating -> resolved workflow.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from pymongo import DESCENDING

from ..models.requests import IdPath, CreateIncidentRequest, UpdateIncidentStatusRequest
from ..models.entities import Incident, Round, UserContext
from ..models.enums import AuditAction, IncidentStatus, IncidentPriority, IncidentType, RoundStatus
from ..domain.authorization import can_access_round
from ..domain.incidents import (
    update_incident_status,
    escalates_round,
    active_alerts,
    has_active_alert,
    count_by_priority
)
from ..domain.rounds import flag_round_incident
from ..services.mongodb import INCIDENTS, ROUNDS
from ..services.events import INCIDENT_OPENED, INCIDENT_UPDATED, EMERGENCY_ALERT, ROUND_INCIDENT
from ..middleware.auth import require_permission
from ..middleware.error_handler import NotFoundException, BusinessRuleException
from ..middleware.validation import parse_json_body
from ..utils.context import load_entity, record_audit, publish_event, invalidate_dashboard
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

incidents_tag = Tag(name="Incidents", description="Incidents reported in the field")
incidents_bp = APIBlueprint(
    'incidents',
    __name__,
    url_prefix='/api/incidents',
    abp_tags=[incidents_tag]
)


def _format(incident: Incident, user_context: UserContext) -> dict:
    return current_app.hal_formatter.format_resource(
        incident.to_response(), "incident", user_context.permissions
    )


def _incident_event(incident: Incident) -> dict:
    return {
        "incident_id": incident.id,
        "round_id": incident.round_id,
        "type": incident.type,
        "priority": incident.priority,
        "status": incident.status,
        "title": incident.title,
        "lat": incident.lat,
        "lng": incident.lng
    }


def _escalate_round(user_context: UserContext, round_: Round) -> None:
    """Hold the round of an emergency in incident status."""
    if round_.status in (RoundStatus.INCIDENT.value, RoundStatus.COMPLETED.value):
        return
    before = round_.to_response()
    result = flag_round_incident(round_, user_context)
    if not result.success:
        logger.warning("Round not escalated", extra={"round_id": round_.id, "error": result.error_message})
        return

    current_app.mongodb_service.update_by_org(
        ROUNDS, user_context.org_id, round_.id, {"status": round_.status}, user_context.user_id
    )
    record_audit(user_context, "round", round_.id, AuditAction.STATUS_CHANGE.value,
                 before=before, after=round_.to_response())
    publish_event(ROUND_INCIDENT, user_context, {"round_id": round_.id, "user_id": round_.user_id,
                                                  "status": round_.status})


@incidents_bp.get('')
@require_permission('incident:read')
def list_incidents(user_context: UserContext):
    """List incidents, most recent first; filter by status, priority, type or round."""
    with tracer.start_as_current_span("incidents.list", attributes={"organization.id": user_context.org_id}) as span:
        pagination = RequestParser.get_pagination_params()
        filters = RequestParser.get_filter_params(
            ['status', 'priority', 'type', 'round_id'],
            choices={
                'status': [status.value for status in IncidentStatus],
                'priority': [priority.value for priority in IncidentPriority],
                'type': [incident_type.value for incident_type in IncidentType]
            }
        )
        query = {}
        for key, field in (('status', 'status'), ('priority', 'priority'),
                           ('type', 'type'), ('round_id', 'roundId')):
            if key in filters:
                query[field] = filters[key]

        result = current_app.mongodb_service.paginate_by_org(
            INCIDENTS, user_context.org_id, pagination['page'], pagination['page_size'],
            filters=query, sort_by="reportedAt", sort_order=DESCENDING
        )
        items = [Incident.from_document(doc).to_response() for doc in result.items]

        span.set_attribute("incidents.count", len(items))
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/incidents",
            "incident", user_context.permissions, user_context.user_id, filters
        )), 200


@incidents_bp.post('')
@require_permission('incident:create')
def create_incident(user_context: UserContext):
    """
    Report an incident.

    An emergency attached to a round moves the round to incident status and
    raises an emergency alert event.
    """
    with tracer.start_as_current_span("incidents.create", attributes={"organization.id": user_context.org_id}) as span:
        create_request = parse_json_body(CreateIncidentRequest)

        round_ = None
        if create_request.round_id:
            round_ = load_entity(ROUNDS, Round, user_context, create_request.round_id, "Round")
            if not can_access_round(user_context, round_.user_id).allowed:
                raise NotFoundException(f"Round {create_request.round_id} not found")

        incident = Incident(
            organization_id=user_context.org_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **create_request.model_dump()
        )
        current_app.mongodb_service.create(INCIDENTS, incident.to_document(), user_context.user_id)
        record_audit(user_context, "incident", incident.id, AuditAction.CREATE.value, after=incident.to_response())

        publish_event(INCIDENT_OPENED, user_context, _incident_event(incident))
        if incident.type == IncidentType.EMERGENCY.value:
            publish_event(EMERGENCY_ALERT, user_context, {
                **_incident_event(incident),
                "reported_by": user_context.user_id,
                "reporter_name": user_context.name
            })
        if round_ is not None and escalates_round(incident):
            _escalate_round(user_context, round_)
        invalidate_dashboard(user_context)

        span.set_attributes({
            "incident.id": incident.id,
            "incident.type": incident.type,
            "incident.priority": incident.priority
        })
        span.set_status(Status(StatusCode.OK))
        logger.info("Incident reported", extra={
            "incident_id": incident.id, "type": incident.type,
            "priority": incident.priority, "round_id": incident.round_id
        })
        return jsonify(_format(incident, user_context)), 201


@incidents_bp.get('/alerts')
@require_permission('incident:read')
def get_alerts(user_context: UserContext):
    """Open incidents of medium or higher priority, most severe first."""
    with tracer.start_as_current_span("incidents.alerts", attributes={"organization.id": user_context.org_id}) as span:
        open_incidents = [
            Incident.from_document(doc) for doc in current_app.mongodb_service.find_by_org(
                INCIDENTS, user_context.org_id, {"status": IncidentStatus.OPEN.value}
            )
        ]
        alerts = active_alerts(open_incidents)

        span.set_attribute("incidents.alerts", len(alerts))
        return jsonify({
            "has_active_alert": has_active_alert(open_incidents),
            "total": len(alerts),
            "by_priority": count_by_priority(open_incidents),
            "_embedded": {"alerts": [_format(incident, user_context) for incident in alerts]},
            "_links": {
                "self": {"href": f"{current_app.config['BASE_URL']}/api/incidents/alerts"},
                "incidents": {"href": f"{current_app.config['BASE_URL']}/api/incidents?status=open"}
            }
        }), 200


@incidents_bp.get('/<id>')
@require_permission('incident:read')
def get_incident(user_context: UserContext, path: IdPath):
    incident = load_entity(INCIDENTS, Incident, user_context, path.id, "Incident")
    return jsonify(_format(incident, user_context)), 200


@incidents_bp.put('/<id>/status')
@require_permission('incident:update')
def change_status(user_context: UserContext, path: IdPath):
    """Investigate or resolve an incident; resolving requires a resolution."""
    with tracer.start_as_current_span("incidents.update_status", attributes={"incident.id": path.id}) as span:
        status_request = parse_json_body(UpdateIncidentStatusRequest)
        incident = load_entity(INCIDENTS, Incident, user_context, path.id, "Incident")
        before = incident.to_response()

        result = update_incident_status(
            incident, status_request.status, user_context,
            resolution=status_request.resolution,
            investigation_notes=status_request.investigation_notes
        )
        if not result.success:
            span.set_status(Status(StatusCode.ERROR, result.error_message))
            raise BusinessRuleException(result.error_message, "INCIDENT_STATUS_REJECTED")

        document = incident.to_document()
        current_app.mongodb_service.update_by_org(
            INCIDENTS, user_context.org_id, incident.id,
            {key: document[key] for key in ("status", "resolution", "resolvedAt", "investigationNotes")},
            user_context.user_id
        )
        record_audit(user_context, "incident", incident.id, AuditAction.STATUS_CHANGE.value,
                     before=before, after=incident.to_response())
        publish_event(INCIDENT_UPDATED, user_context, _incident_event(incident))
        invalidate_dashboard(user_context)

        span.set_status(Status(StatusCode.OK))
        logger.info("Incident status changed", extra={
            "incident_id": incident.id, "from": before["status"], "to": incident.status
        })
        return jsonify(_format(incident, user_context)), 200


@incidents_bp.delete('/<id>')
@require_permission('incident:delete')
def delete_incident(user_context: UserContext, path: IdPath):
    with tracer.start_as_current_span("incidents.delete", attributes={"incident.id": path.id}) as span:
        incident = load_entity(INCIDENTS, Incident, user_context, path.id, "Incident")
        current_app.mongodb_service.soft_delete_by_org(INCIDENTS, user_context.org_id, incident.id, user_context.user_id)
        record_audit(user_context, "incident", incident.id, AuditAction.DELETE.value, before=incident.to_response())
        invalidate_dashboard(user_context)

        span.set_status(Status(StatusCode.OK))
        return '', 204
