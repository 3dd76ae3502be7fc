# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Patrol rounds: lifecycle, checkpoint visits, GPS tracks and progress.

Tactical agents only see and execute their own rounds; ``round:manage``
covers every round of the organization.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from typing import Dict, List, Optional
from pymongo import ASCENDING, DESCENDING

from ..models.requests import (
    IdPath,
    CreateRoundRequest,
    StartRoundRequest,
    CompleteRoundRequest,
    RegisterVisitRequest,
    RecordRoutePointsRequest
)
from ..models.entities import (
    Round, RoundTemplate, Checkpoint, CheckpointVisit, Client, RoutePoint, Vehicle, User, UserContext
)
from ..models.enums import AuditAction, RoundStatus, VehicleType
from ..domain.authorization import can_access_round
from ..domain.geo import Coordinate, route_distance_km
from ..domain.rounds import (
    WorkflowResult,
    start_round,
    complete_round,
    flag_round_incident,
    resume_round,
    round_client_ids,
    match_checkpoint,
    register_visit,
    build_round_checkpoints,
    checkpoint_stats,
    client_progress_stats,
    client_progress,
    is_client_completed,
    total_progress
)
from ..services.mongodb import (
    ROUNDS, ROUND_TEMPLATES, CLIENTS, CHECKPOINTS, CHECKPOINT_VISITS, ROUTE_POINTS, VEHICLES, USERS
)
from ..services.events import ROUND_STARTED, ROUND_COMPLETED, ROUND_INCIDENT, CHECKPOINT_VISITED
from ..middleware.auth import require_permission
from ..middleware.error_handler import (
    AuthorizationException,
    BusinessRuleException,
    NotFoundException
)
from ..middleware.validation import parse_json_body
from ..utils.context import (
    load_entity, record_audit, publish_event, invalidate_dashboard, load_odometer_history
)
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

rounds_tag = Tag(name="Rounds", description="Patrol rounds, visits and progress")
rounds_bp = APIBlueprint(
    'rounds',
    __name__,
    url_prefix='/api/rounds',
    abp_tags=[rounds_tag]
)


def _format(round_: Round, user_context: UserContext, **extra) -> dict:
    data = round_.to_response()
    data.update(extra)
    return current_app.hal_formatter.format_resource(
        data, "round", user_context.permissions, user_context.user_id
    )


def _load_round(user_context: UserContext, round_id: str) -> Round:
    round_ = load_entity(ROUNDS, Round, user_context, round_id, "Round")
    access = can_access_round(user_context, round_.user_id)
    if not access.allowed:
        raise NotFoundException(f"Round {round_id} not found")
    return round_


def _load_round_for_execution(user_context: UserContext, round_id: str) -> Round:
    """Round the caller may drive through its lifecycle."""
    round_ = _load_round(user_context, round_id)
    if user_context.has_permission('round:manage'):
        return round_
    if round_.user_id == user_context.user_id and user_context.has_permission('round:execute'):
        return round_
    raise AuthorizationException("Missing required permission: round:execute")


def _load_template(user_context: UserContext, round_: Round) -> Optional[RoundTemplate]:
    if not round_.template_id:
        return None
    document = current_app.mongodb_service.find_one_by_org(ROUND_TEMPLATES, user_context.org_id, round_.template_id)
    return RoundTemplate.from_document(document) if document else None


def _load_visits(user_context: UserContext, round_ids: List[str]) -> List[CheckpointVisit]:
    if not round_ids:
        return []
    documents = current_app.mongodb_service.find_by_org(
        CHECKPOINT_VISITS, user_context.org_id, {"roundId": {"$in": list(round_ids)}},
        sort_by="visitTime", sort_order=ASCENDING
    )
    return [CheckpointVisit.from_document(doc) for doc in documents]


def _load_client_checkpoints(user_context: UserContext, client_ids: List[str]) -> List[Checkpoint]:
    if not client_ids:
        return []
    documents = current_app.mongodb_service.find_by_org(
        CHECKPOINTS, user_context.org_id, {"clientId": {"$in": list(client_ids)}},
        sort_by="orderIndex", sort_order=ASCENDING
    )
    return [Checkpoint.from_document(doc) for doc in documents]


def _raise_workflow_failure(result: WorkflowResult) -> None:
    if not result.success:
        raise BusinessRuleException(result.error_message, result.error_code)


def _persist_round(user_context: UserContext, round_: Round, fields: List[str]) -> None:
    document = round_.to_document()
    updates = {key: document[key] for key in fields}
    current_app.mongodb_service.update_by_org(ROUNDS, user_context.org_id, round_.id, updates, user_context.user_id)


def _round_event(round_: Round, **extra) -> Dict:
    return {
        "round_id": round_.id,
        "user_id": round_.user_id,
        "client_id": round_.client_id,
        "template_id": round_.template_id,
        "vehicle_id": round_.vehicle_id,
        "status": round_.status,
        **extra
    }


@rounds_bp.get('')
@require_permission('round:read')
def list_rounds(user_context: UserContext):
    """
    List rounds, newest first.

    Filters: status, user_id, client_id, template_id and a creation date
    range (``from``/``to``). Agents without ``round:manage`` only get their
    own rounds.
    """
    with tracer.start_as_current_span("rounds.list", attributes={"organization.id": user_context.org_id}) as span:
        pagination = RequestParser.get_pagination_params()
        filters = RequestParser.get_filter_params(
            ['status', 'user_id', 'client_id', 'template_id'],
            choices={'status': [status.value for status in RoundStatus]}
        )

        query = {}
        for key, field in (('status', 'status'), ('user_id', 'userId'),
                           ('client_id', 'clientId'), ('template_id', 'templateId')):
            if key in filters:
                query[field] = filters[key]
        if not user_context.has_permission('round:manage'):
            query['userId'] = user_context.user_id

        created_range = {}
        date_from = RequestParser.get_date_param('from')
        date_to = RequestParser.get_date_param('to', end_of_day=True)
        if date_from:
            created_range['$gte'] = date_from
        if date_to:
            created_range['$lte'] = date_to
        if created_range:
            query['createdAt'] = created_range

        result = current_app.mongodb_service.paginate_by_org(
            ROUNDS, user_context.org_id, pagination['page'], pagination['page_size'],
            filters=query, sort_by="createdAt", sort_order=DESCENDING
        )
        items = [Round.from_document(doc).to_response() for doc in result.items]

        span.set_attribute("rounds.count", len(items))
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/rounds",
            "round", user_context.permissions, user_context.user_id, filters
        )), 200


@rounds_bp.post('')
@require_permission('round:create')
def create_round(user_context: UserContext):
    """
    Schedule a round for an agent, following a template or visiting a single
    client. Motorized rounds take their vehicle type from the fleet vehicle.
    """
    with tracer.start_as_current_span("rounds.create", attributes={"organization.id": user_context.org_id}) as span:
        create_request = parse_json_body(CreateRoundRequest)
        mongodb = current_app.mongodb_service
        agent_id = create_request.user_id or user_context.user_id

        agent = load_entity(USERS, User, user_context, agent_id, "User")
        if not agent.active:
            raise BusinessRuleException("Agent account is inactive", "USER_INACTIVE")

        if create_request.template_id:
            template = load_entity(ROUND_TEMPLATES, RoundTemplate, user_context, create_request.template_id, "Template")
            if not template.active:
                raise BusinessRuleException("Template is inactive", "TEMPLATE_INACTIVE")
        if create_request.client_id:
            client = load_entity(CLIENTS, Client, user_context, create_request.client_id, "Client")
            if not client.active:
                raise BusinessRuleException("Client is inactive", "CLIENT_INACTIVE")

        vehicle_type = create_request.vehicle
        vehicle_id = None
        if create_request.vehicle != VehicleType.ON_FOOT.value:
            vehicle = load_entity(VEHICLES, Vehicle, user_context, create_request.vehicle_id, "Vehicle")
            if not vehicle.active:
                raise BusinessRuleException("Vehicle is inactive", "VEHICLE_INACTIVE")
            vehicle_type = vehicle.type
            vehicle_id = vehicle.id

        round_ = Round(
            organization_id=user_context.org_id,
            user_id=agent.id,
            client_id=create_request.client_id,
            template_id=create_request.template_id,
            vehicle=vehicle_type,
            vehicle_id=vehicle_id,
            round_number=create_request.round_number,
            notes=create_request.notes,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        mongodb.create(ROUNDS, round_.to_document(), user_context.user_id)
        record_audit(user_context, "round", round_.id, AuditAction.CREATE.value, after=round_.to_response())
        invalidate_dashboard(user_context)

        span.set_attribute("round.id", round_.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Round created", extra={"round_id": round_.id, "agent_id": agent.id, "vehicle": round_.vehicle})
        return jsonify(_format(round_, user_context)), 201


@rounds_bp.get('/checkpoints')
@require_permission('round:read')
def active_round_checkpoints(user_context: UserContext):
    """
    Checkpoints of every active round with their visited flag, plus totals.
    Used by the live map.
    """
    with tracer.start_as_current_span("rounds.active_checkpoints", attributes={"organization.id": user_context.org_id}) as span:
        mongodb = current_app.mongodb_service
        query = {"status": RoundStatus.ACTIVE.value}
        if not user_context.has_permission('round:manage'):
            query["userId"] = user_context.user_id

        active_rounds = [Round.from_document(doc) for doc in mongodb.find_by_org(ROUNDS, user_context.org_id, query)]

        template_ids = {round_.template_id for round_ in active_rounds if round_.template_id}
        templates = {
            doc["id"]: RoundTemplate.from_document(doc)
            for doc in mongodb.find_by_ids(ROUND_TEMPLATES, user_context.org_id, template_ids)
        }

        client_ids = set()
        for round_ in active_rounds:
            client_ids.update(round_client_ids(round_, templates.get(round_.template_id)))
        clients = {
            doc["id"]: Client.from_document(doc)
            for doc in mongodb.find_by_ids(CLIENTS, user_context.org_id, client_ids)
        }

        round_checkpoints = build_round_checkpoints(
            active_rounds,
            templates,
            _load_client_checkpoints(user_context, list(client_ids)),
            clients,
            _load_visits(user_context, [round_.id for round_ in active_rounds])
        )
        stats = checkpoint_stats(round_checkpoints)

        span.set_attributes({"rounds.active": len(active_rounds), "checkpoints.total": stats["total"]})
        return jsonify({
            "active_rounds": len(active_rounds),
            "stats": stats,
            "_embedded": {"checkpoints": [checkpoint.to_dict() for checkpoint in round_checkpoints]},
            "_links": {
                "self": {"href": f"{current_app.config['BASE_URL']}/api/rounds/checkpoints"},
                "rounds": {"href": f"{current_app.config['BASE_URL']}/api/rounds?status=active"}
            }
        }), 200


@rounds_bp.get('/<id>')
@require_permission('round:read')
def get_round(user_context: UserContext, path: IdPath):
    round_ = _load_round(user_context, path.id)
    return jsonify(_format(round_, user_context)), 200


@rounds_bp.delete('/<id>')
@require_permission('round:delete')
def delete_round(user_context: UserContext, path: IdPath):
    """Soft delete a round that is not running."""
    with tracer.start_as_current_span("rounds.delete", attributes={"round.id": path.id}) as span:
        round_ = _load_round(user_context, path.id)
        if round_.status == RoundStatus.ACTIVE.value:
            raise BusinessRuleException("Active rounds cannot be deleted", "ROUND_ACTIVE")

        current_app.mongodb_service.soft_delete_by_org(ROUNDS, user_context.org_id, round_.id, user_context.user_id)
        record_audit(user_context, "round", round_.id, AuditAction.DELETE.value, before=round_.to_response())
        invalidate_dashboard(user_context)

        span.set_status(Status(StatusCode.OK))
        return '', 204


@rounds_bp.post('/<id>/start')
@require_permission('round:read')
def start(user_context: UserContext, path: IdPath):
    """
    Start a pending round. Motorized rounds validate the initial odometer
    against the vehicle's history.
    """
    with tracer.start_as_current_span("rounds.start", attributes={"round.id": path.id}) as span:
        start_request = parse_json_body(StartRoundRequest, allow_empty=True)
        round_ = _load_round_for_execution(user_context, path.id)
        before = round_.to_response()

        history = load_odometer_history(user_context, round_.vehicle_id) if round_.vehicle_id else []
        result = start_round(round_, user_context, start_request.initial_odometer, history)
        if not result.success:
            span.set_status(Status(StatusCode.ERROR, result.error_message))
        _raise_workflow_failure(result)

        _persist_round(user_context, round_, ["status", "startTime", "initialOdometer"])
        record_audit(user_context, "round", round_.id, AuditAction.START.value,
                     before=before, after=round_.to_response())
        publish_event(ROUND_STARTED, user_context, _round_event(round_, start_time=round_.start_time))
        invalidate_dashboard(user_context)

        span.set_status(Status(StatusCode.OK))
        logger.info("Round started", extra={"round_id": round_.id, "user_id": user_context.user_id})
        return jsonify(_format(round_, user_context, odometer_validation=result.data.get("odometer"))), 200


@rounds_bp.post('/<id>/complete')
@require_permission('round:read')
def complete(user_context: UserContext, path: IdPath):
    """Complete an active round; the vehicle odometer follows the final reading."""
    with tracer.start_as_current_span("rounds.complete", attributes={"round.id": path.id}) as span:
        complete_request = parse_json_body(CompleteRoundRequest, allow_empty=True)
        round_ = _load_round_for_execution(user_context, path.id)
        before = round_.to_response()

        result = complete_round(round_, user_context, complete_request.final_odometer, complete_request.notes)
        if not result.success:
            span.set_status(Status(StatusCode.ERROR, result.error_message))
        _raise_workflow_failure(result)

        _persist_round(user_context, round_, ["status", "endTime", "finalOdometer", "notes"])

        if round_.vehicle_id and round_.final_odometer is not None:
            vehicle_doc = current_app.mongodb_service.find_one_by_org(VEHICLES, user_context.org_id, round_.vehicle_id)
            if vehicle_doc and round_.final_odometer > vehicle_doc.get("currentOdometer", 0):
                current_app.mongodb_service.update_by_org(
                    VEHICLES, user_context.org_id, round_.vehicle_id,
                    {"currentOdometer": round_.final_odometer}, user_context.user_id
                )

        record_audit(user_context, "round", round_.id, AuditAction.COMPLETE.value,
                     before=before, after=round_.to_response())
        publish_event(ROUND_COMPLETED, user_context, _round_event(round_, **result.data))
        invalidate_dashboard(user_context)

        span.set_status(Status(StatusCode.OK))
        logger.info("Round completed", extra={"round_id": round_.id, **result.data})
        return jsonify(_format(round_, user_context, **result.data)), 200


@rounds_bp.post('/<id>/incident')
@require_permission('round:read')
def flag_incident(user_context: UserContext, path: IdPath):
    """Hold a round in incident status."""
    with tracer.start_as_current_span("rounds.flag_incident", attributes={"round.id": path.id}) as span:
        round_ = _load_round_for_execution(user_context, path.id)
        before = round_.to_response()

        result = flag_round_incident(round_, user_context)
        _raise_workflow_failure(result)

        _persist_round(user_context, round_, ["status"])
        record_audit(user_context, "round", round_.id, AuditAction.STATUS_CHANGE.value,
                     before=before, after=round_.to_response())
        publish_event(ROUND_INCIDENT, user_context, _round_event(round_))
        invalidate_dashboard(user_context)

        span.set_status(Status(StatusCode.OK))
        return jsonify(_format(round_, user_context)), 200


@rounds_bp.post('/<id>/resume')
@require_permission('round:read')
def resume(user_context: UserContext, path: IdPath):
    with tracer.start_as_current_span("rounds.resume", attributes={"round.id": path.id}) as span:
        round_ = _load_round_for_execution(user_context, path.id)
        before = round_.to_response()

        result = resume_round(round_, user_context)
        _raise_workflow_failure(result)

        _persist_round(user_context, round_, ["status"])
        record_audit(user_context, "round", round_.id, AuditAction.STATUS_CHANGE.value,
                     before=before, after=round_.to_response())
        invalidate_dashboard(user_context)

        span.set_status(Status(StatusCode.OK))
        return jsonify(_format(round_, user_context)), 200


@rounds_bp.post('/<id>/visits')
@require_permission('round:read')
def create_visit(user_context: UserContext, path: IdPath):
    """
    Register a checkpoint scan.

    The code is matched against the checkpoints of the round's clients.
    Forcing a scan outside the geofence requires ``round:manage``.
    """
    with tracer.start_as_current_span("rounds.register_visit", attributes={"round.id": path.id}) as span:
        visit_request = parse_json_body(RegisterVisitRequest)
        if visit_request.force and not user_context.has_permission('round:manage'):
            raise AuthorizationException("Missing required permission: round:manage")

        round_ = _load_round_for_execution(user_context, path.id)
        template = _load_template(user_context, round_)
        client_ids = round_client_ids(round_, template)

        checkpoints = _load_client_checkpoints(user_context, client_ids)
        checkpoint = match_checkpoint(checkpoints, visit_request.code)
        if checkpoint is None:
            raise NotFoundException("No checkpoint of this round matches the scanned code")

        existing_visits = _load_visits(user_context, [round_.id])
        position = None
        if visit_request.lat is not None:
            position = Coordinate(visit_request.lat, visit_request.lng)

        result = register_visit(
            round_, checkpoint, visit_request.code, user_context,
            existing_visits=existing_visits,
            allowed_client_ids=client_ids,
            position=position,
            force=visit_request.force,
            duration=visit_request.duration,
            notes=visit_request.notes
        )
        if not result.success:
            span.set_attributes({"visit.rejected": result.error_code})
            logger.info("Checkpoint visit rejected", extra={
                "round_id": round_.id, "checkpoint_id": checkpoint.id,
                "error_code": result.error_code, "distance_m": result.distance_m
            })
            raise BusinessRuleException(result.error_message, result.error_code)

        visit = result.visit
        current_app.mongodb_service.create(CHECKPOINT_VISITS, visit.to_document(), user_context.user_id)

        round_.current_checkpoint_index = len(existing_visits) + 1
        round_.update_timestamp(user_context.user_id)
        _persist_round(user_context, round_, ["currentCheckpointIndex"])

        record_audit(user_context, "checkpoint_visit", visit.id, AuditAction.VISIT.value, after=visit.to_response())
        publish_event(CHECKPOINT_VISITED, user_context, {
            "round_id": round_.id,
            "checkpoint_id": checkpoint.id,
            "client_id": checkpoint.client_id,
            "visit_id": visit.id,
            "status": visit.status,
            "distance_m": visit.distance_m
        })
        invalidate_dashboard(user_context)

        stats = client_progress_stats(round_, template, checkpoints, existing_visits + [visit])

        span.set_attributes({"visit.id": visit.id, "visit.status": visit.status})
        span.set_status(Status(StatusCode.OK))
        logger.info("Checkpoint visited", extra={
            "round_id": round_.id, "checkpoint_id": checkpoint.id, "status": visit.status
        })

        data = visit.to_response()
        data['checkpoint_name'] = checkpoint.name
        data['client_progress'] = client_progress(stats, checkpoint.client_id)
        data['client_completed'] = is_client_completed(stats, checkpoint.client_id)
        data['round_progress'] = total_progress(stats)
        data['_links'] = {
            "self": {"href": f"{current_app.config['BASE_URL']}/api/rounds/{round_.id}/visits"},
            "round": {"href": f"{current_app.config['BASE_URL']}/api/rounds/{round_.id}"},
            "checkpoint": {"href": f"{current_app.config['BASE_URL']}/api/checkpoints/{checkpoint.id}"}
        }
        return jsonify(data), 201


@rounds_bp.get('/<id>/visits')
@require_permission('round:read')
def list_visits(user_context: UserContext, path: IdPath):
    round_ = _load_round(user_context, path.id)
    visits = _load_visits(user_context, [round_.id])
    base_url = current_app.config['BASE_URL']
    return jsonify({
        "total": len(visits),
        "_embedded": {"visits": [visit.to_response() for visit in visits]},
        "_links": {
            "self": {"href": f"{base_url}/api/rounds/{round_.id}/visits"},
            "round": {"href": f"{base_url}/api/rounds/{round_.id}"}
        }
    }), 200


@rounds_bp.post('/<id>/route-points')
@require_permission('round:read')
def record_route_points(user_context: UserContext, path: IdPath):
    """Append GPS samples to an active round."""
    with tracer.start_as_current_span("rounds.record_route", attributes={"round.id": path.id}) as span:
        points_request = parse_json_body(RecordRoutePointsRequest)
        round_ = _load_round_for_execution(user_context, path.id)
        if round_.status != RoundStatus.ACTIVE.value:
            raise BusinessRuleException(
                f"Route points can only be recorded on active rounds (current: {round_.status})",
                "ROUND_NOT_ACTIVE"
            )

        points = []
        for point in points_request.points:
            fields = point.model_dump(exclude_none=True)
            points.append(RoutePoint(
                round_id=round_.id,
                organization_id=user_context.org_id,
                created_by=user_context.user_id,
                updated_by=user_context.user_id,
                **fields
            ))
        current_app.mongodb_service.create_many(
            ROUTE_POINTS, [point.to_document() for point in points], user_context.user_id
        )

        span.set_attribute("route.points", len(points))
        return jsonify({"recorded": len(points), "round_id": round_.id}), 201


@rounds_bp.get('/<id>/route-points')
@require_permission('round:read')
def get_route(user_context: UserContext, path: IdPath):
    """Recorded GPS track and its travelled distance."""
    round_ = _load_round(user_context, path.id)
    documents = current_app.mongodb_service.find_by_org(
        ROUTE_POINTS, user_context.org_id, {"roundId": round_.id}, sort_by="recordedAt", sort_order=ASCENDING
    )
    points = [RoutePoint.from_document(doc) for doc in documents]
    distance = route_distance_km([Coordinate(point.lat, point.lng) for point in points])

    return jsonify({
        "round_id": round_.id,
        "total": len(points),
        "distance_km": round(distance, 2),
        "_embedded": {"points": [
            {"lat": point.lat, "lng": point.lng, "speed": point.speed,
             "recorded_at": point.recorded_at.isoformat()}
            for point in points
        ]},
        "_links": {"round": {"href": f"{current_app.config['BASE_URL']}/api/rounds/{round_.id}"}}
    }), 200


@rounds_bp.get('/<id>/client-progress')
@require_permission('round:read')
def get_client_progress(user_context: UserContext, path: IdPath):
    """Progress of each client of the round, in visiting order."""
    round_ = _load_round(user_context, path.id)
    template = _load_template(user_context, round_)
    client_ids = round_client_ids(round_, template)

    stats = client_progress_stats(
        round_, template, _load_client_checkpoints(user_context, client_ids),
        _load_visits(user_context, [round_.id])
    )
    names = {
        doc["id"]: doc.get("name")
        for doc in current_app.mongodb_service.find_by_ids(CLIENTS, user_context.org_id, client_ids)
    }

    clients = []
    for client_id in client_ids:
        client_stat = stats.get(client_id, {"total": 0, "completed": 0})
        clients.append({
            "client_id": client_id,
            "client_name": names.get(client_id),
            "total": client_stat["total"],
            "completed": client_stat["completed"],
            "progress": client_progress(stats, client_id),
            "is_completed": is_client_completed(stats, client_id)
        })

    return jsonify({
        "round_id": round_.id,
        "clients": clients,
        "summary": total_progress(stats),
        "_links": {"round": {"href": f"{current_app.config['BASE_URL']}/api/rounds/{round_.id}"}}
    }), 200
