# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Round templates: reusable ordered lists of client stops for a shift.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from typing import List
from pydantic import ValidationError
from pymongo import ASCENDING

from ..models.requests import IdPath, CreateTemplateRequest, UpdateTemplateRequest
from ..models.entities import RoundTemplate, TemplateCheckpoint, UserContext
from ..models.enums import AuditAction, RoundStatus, ShiftType
from ..models.base import to_document_updates
from ..services.mongodb import ROUND_TEMPLATES, CLIENTS, ROUNDS
from ..middleware.auth import require_permission
from ..middleware.error_handler import ValidationException, BusinessRuleException
from ..middleware.validation import parse_json_body, format_validation_errors
from ..utils.context import load_entity, record_audit
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

templates_tag = Tag(name="Templates", description="Round templates")
templates_bp = APIBlueprint(
    'templates',
    __name__,
    url_prefix='/api/templates',
    abp_tags=[templates_tag]
)


def _validate_template_clients(user_context: UserContext, checkpoints: List[TemplateCheckpoint]) -> None:
    """Every stop must reference an existing client of the organization."""
    client_ids = {checkpoint.client_id for checkpoint in checkpoints}
    if not client_ids:
        return
    found = {doc["id"] for doc in current_app.mongodb_service.find_by_ids(CLIENTS, user_context.org_id, client_ids)}
    missing = sorted(client_ids - found)
    if missing:
        raise ValidationException(
            "Template references unknown clients",
            [{"field": "checkpoints", "message": f"Unknown client: {client_id}", "type": "reference"}
             for client_id in missing]
        )


def _build_template(**fields) -> RoundTemplate:
    try:
        return RoundTemplate(**fields)
    except ValidationError as e:
        raise ValidationException("Invalid round template", format_validation_errors(e))


def _format(template: RoundTemplate, user_context: UserContext) -> dict:
    return current_app.hal_formatter.format_resource(
        template.to_response(), "template", user_context.permissions
    )


@templates_bp.get('')
@require_permission('template:read')
def list_templates(user_context: UserContext):
    """List templates, filterable by active flag and shift type."""
    with tracer.start_as_current_span("templates.list", attributes={"organization.id": user_context.org_id}) as span:
        pagination = RequestParser.get_pagination_params()
        filters = RequestParser.get_filter_params(
            ['active', 'shift_type'],
            choices={'active': ['true', 'false'], 'shift_type': [shift.value for shift in ShiftType]}
        )
        query = {}
        if 'active' in filters:
            query['active'] = filters['active'] == 'true'
        if 'shift_type' in filters:
            query['shiftType'] = filters['shift_type']

        result = current_app.mongodb_service.paginate_by_org(
            ROUND_TEMPLATES, user_context.org_id, pagination['page'], pagination['page_size'],
            filters=query, sort_by="name", sort_order=ASCENDING
        )
        items = [RoundTemplate.from_document(doc).to_response() for doc in result.items]

        span.set_attribute("templates.count", len(items))
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/templates",
            "template", user_context.permissions, user_context.user_id, filters
        )), 200


@templates_bp.post('')
@require_permission('template:create')
def create_template(user_context: UserContext):
    """Create a template; stops are stored sorted by order_index."""
    with tracer.start_as_current_span("templates.create", attributes={"organization.id": user_context.org_id}) as span:
        create_request = parse_json_body(CreateTemplateRequest)
        _validate_template_clients(user_context, create_request.checkpoints)

        template = _build_template(
            organization_id=user_context.org_id,
            name=create_request.name,
            description=create_request.description,
            shift_type=create_request.shift_type,
            rounds_per_shift=create_request.rounds_per_shift,
            interval_hours=create_request.interval_hours,
            checkpoints=create_request.checkpoints,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        current_app.mongodb_service.create(ROUND_TEMPLATES, template.to_document(), user_context.user_id)
        record_audit(user_context, "round_template", template.id, AuditAction.CREATE.value,
                     after=template.to_response())

        span.set_attributes({"template.id": template.id, "template.stops": len(template.checkpoints)})
        span.set_status(Status(StatusCode.OK))
        logger.info("Round template created", extra={"template_id": template.id, "stops": len(template.checkpoints)})
        return jsonify(_format(template, user_context)), 201


@templates_bp.get('/<id>')
@require_permission('template:read')
def get_template(user_context: UserContext, path: IdPath):
    """Template with the client names of its stops embedded."""
    template = load_entity(ROUND_TEMPLATES, RoundTemplate, user_context, path.id, "Template")

    client_docs = current_app.mongodb_service.find_by_ids(
        CLIENTS, user_context.org_id, [checkpoint.client_id for checkpoint in template.checkpoints]
    )
    client_names = {doc["id"]: doc.get("name") for doc in client_docs}

    data = _format(template, user_context)
    for stop in data['checkpoints']:
        stop['client_name'] = client_names.get(stop['client_id'])
    return jsonify(data), 200


@templates_bp.put('/<id>')
@require_permission('template:update')
def update_template(user_context: UserContext, path: IdPath):
    with tracer.start_as_current_span("templates.update", attributes={"template.id": path.id}) as span:
        update_request = parse_json_body(UpdateTemplateRequest)
        template = load_entity(ROUND_TEMPLATES, RoundTemplate, user_context, path.id, "Template")
        before = template.to_response()

        updates = update_request.model_dump(exclude_unset=True)
        if 'checkpoints' in updates:
            _validate_template_clients(user_context, update_request.checkpoints)

        merged = {**template.model_dump(), **updates}
        if 'checkpoints' in updates:
            merged['checkpoints'] = update_request.checkpoints
        template = _build_template(**merged)
        template.update_timestamp(user_context.user_id)

        if updates:
            document_updates = to_document_updates(updates)
            if 'checkpoints' in updates:
                document_updates['checkpoints'] = [
                    checkpoint.model_dump(by_alias=True) for checkpoint in template.checkpoints
                ]
            current_app.mongodb_service.update_by_org(
                ROUND_TEMPLATES, user_context.org_id, template.id, document_updates, user_context.user_id
            )
            record_audit(user_context, "round_template", template.id, AuditAction.UPDATE.value,
                         before=before, after=template.to_response())

        span.set_status(Status(StatusCode.OK))
        return jsonify(_format(template, user_context)), 200


@templates_bp.delete('/<id>')
@require_permission('template:delete')
def delete_template(user_context: UserContext, path: IdPath):
    """Soft delete a template that has no round in progress."""
    with tracer.start_as_current_span("templates.delete", attributes={"template.id": path.id}) as span:
        template = load_entity(ROUND_TEMPLATES, RoundTemplate, user_context, path.id, "Template")

        in_progress = current_app.mongodb_service.count_by_org(
            ROUNDS, user_context.org_id,
            {"templateId": template.id, "status": {"$in": [RoundStatus.ACTIVE.value, RoundStatus.INCIDENT.value]}}
        )
        if in_progress:
            raise BusinessRuleException("Template has rounds in progress", "TEMPLATE_IN_USE")

        current_app.mongodb_service.soft_delete_by_org(
            ROUND_TEMPLATES, user_context.org_id, template.id, user_context.user_id
        )
        record_audit(user_context, "round_template", template.id, AuditAction.DELETE.value,
                     before=template.to_response())

        span.set_status(Status(StatusCode.OK))
        return '', 204
