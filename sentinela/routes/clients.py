# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Client sites and their physical checkpoints.

Checkpoints are created under a client and addressed directly afterwards
(``/api/checkpoints/<id>``). Field agents look checkpoints up by the code
they scanned or typed.
"""

import re
from flask import jsonify, current_app, request
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from pymongo import ASCENDING

from ..models.requests import (
    IdPath,
    ClientPath,
    CreateClientRequest,
    UpdateClientRequest,
    CreateCheckpointRequest,
    UpdateCheckpointRequest,
    ParseMapsUrlRequest
)
from ..models.entities import Client, Checkpoint, UserContext
from ..models.enums import AuditAction, RoundStatus
from ..models.base import to_document_updates
from ..domain.geo import parse_google_maps_url, location_to_dict
from ..domain.rounds import code_matches
from ..services.mongodb import CLIENTS, CHECKPOINTS, ROUNDS, DuplicateDocumentError
from ..middleware.auth import require_permission
from ..middleware.error_handler import (
    ValidationException,
    ConflictException,
    NotFoundException,
    BusinessRuleException
)
from ..middleware.validation import parse_json_body
from ..utils.context import load_entity, record_audit
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

clients_tag = Tag(name="Clients", description="Client sites and checkpoints")
clients_bp = APIBlueprint(
    'clients',
    __name__,
    url_prefix='/api/clients',
    abp_tags=[clients_tag]
)
checkpoints_bp = APIBlueprint(
    'checkpoints',
    __name__,
    url_prefix='/api/checkpoints',
    abp_tags=[clients_tag]
)


def _invalid_maps_url(field: str) -> ValidationException:
    return ValidationException(
        "Could not extract a location from the Google Maps link",
        [{"field": field, "message": "Expected a link with @lat,lng or /place/<name>", "type": "maps_url"}]
    )


def _check_qr_code_free(user_context: UserContext, qr_code: str, checkpoint_id: str = None) -> None:
    existing = current_app.mongodb_service.find_one_by_filters(
        CHECKPOINTS, user_context.org_id, {"qrCode": qr_code}
    )
    if existing and existing["id"] != checkpoint_id:
        raise ConflictException(f"QR code {qr_code} is already assigned to checkpoint {existing['id']}")


# Clients

@clients_bp.get('')
@require_permission('client:read')
def list_clients(user_context: UserContext):
    """List clients sorted by name; ``q`` searches the name."""
    with tracer.start_as_current_span("clients.list", attributes={"organization.id": user_context.org_id}) as span:
        pagination = RequestParser.get_pagination_params()
        filters = RequestParser.get_filter_params(['active', 'q'], choices={'active': ['true', 'false']})

        query = {}
        if 'active' in filters:
            query['active'] = filters['active'] == 'true'
        if 'q' in filters:
            query['name'] = {"$regex": re.escape(filters['q']), "$options": "i"}

        result = current_app.mongodb_service.paginate_by_org(
            CLIENTS, user_context.org_id, pagination['page'], pagination['page_size'],
            filters=query, sort_by="name", sort_order=ASCENDING
        )
        items = [Client.from_document(doc).to_response() for doc in result.items]

        span.set_attribute("clients.count", len(items))
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/clients",
            "client", user_context.permissions, user_context.user_id, filters
        )), 200


@clients_bp.post('')
@require_permission('client:create')
def create_client(user_context: UserContext):
    """
    Create a client. When ``maps_url`` is sent without coordinates, they are
    read from the link.
    """
    with tracer.start_as_current_span("clients.create", attributes={"organization.id": user_context.org_id}) as span:
        create_request = parse_json_body(CreateClientRequest)
        lat, lng = create_request.lat, create_request.lng

        if create_request.maps_url and (lat is None or lng is None):
            location = parse_google_maps_url(create_request.maps_url)
            if location is None:
                raise _invalid_maps_url("maps_url")
            lat, lng = location.lat, location.lng

        client = Client(
            organization_id=user_context.org_id,
            name=create_request.name,
            address=create_request.address,
            lat=lat,
            lng=lng,
            contact_name=create_request.contact_name,
            contact_phone=create_request.contact_phone,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        current_app.mongodb_service.create(CLIENTS, client.to_document(), user_context.user_id)
        record_audit(user_context, "client", client.id, AuditAction.CREATE.value, after=client.to_response())

        span.set_attribute("client.id", client.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Client created", extra={"client_id": client.id, "created_by": user_context.user_id})
        return jsonify(current_app.hal_formatter.format_resource(
            client.to_response(), "client", user_context.permissions
        )), 201


@clients_bp.post('/parse-maps-url')
@require_permission('client:read')
def parse_maps_url(user_context: UserContext):
    """Preview the location carried by a Google Maps link."""
    parse_request = parse_json_body(ParseMapsUrlRequest)
    location = parse_google_maps_url(parse_request.url)
    if location is None:
        raise _invalid_maps_url("url")
    return jsonify(location_to_dict(location)), 200


@clients_bp.get('/<id>')
@require_permission('client:read')
def get_client(user_context: UserContext, path: IdPath):
    client = load_entity(CLIENTS, Client, user_context, path.id, "Client")
    return jsonify(current_app.hal_formatter.format_resource(
        client.to_response(), "client", user_context.permissions
    )), 200


@clients_bp.put('/<id>')
@require_permission('client:update')
def update_client(user_context: UserContext, path: IdPath):
    with tracer.start_as_current_span("clients.update", attributes={"client.id": path.id}) as span:
        update_request = parse_json_body(UpdateClientRequest)
        client = load_entity(CLIENTS, Client, user_context, path.id, "Client")
        before = client.to_response()

        updates = update_request.model_dump(exclude_unset=True)
        for field, value in updates.items():
            setattr(client, field, value)
        client.update_timestamp(user_context.user_id)

        if updates:
            current_app.mongodb_service.update_by_org(
                CLIENTS, user_context.org_id, client.id, to_document_updates(updates), user_context.user_id
            )
            action = AuditAction.UPDATE.value
            if updates.get('active') is False:
                action = AuditAction.DEACTIVATE.value
            elif updates.get('active') is True and not before['active']:
                action = AuditAction.ACTIVATE.value
            record_audit(user_context, "client", client.id, action, before=before, after=client.to_response())

        span.set_status(Status(StatusCode.OK))
        return jsonify(current_app.hal_formatter.format_resource(
            client.to_response(), "client", user_context.permissions
        )), 200


@clients_bp.delete('/<id>')
@require_permission('client:delete')
def delete_client(user_context: UserContext, path: IdPath):
    """Soft delete a client that no round is currently visiting."""
    with tracer.start_as_current_span("clients.delete", attributes={"client.id": path.id}) as span:
        client = load_entity(CLIENTS, Client, user_context, path.id, "Client")

        active_rounds = current_app.mongodb_service.count_by_org(
            ROUNDS, user_context.org_id, {"clientId": client.id, "status": RoundStatus.ACTIVE.value}
        )
        if active_rounds:
            raise BusinessRuleException(
                "Client has active rounds and cannot be deleted", "CLIENT_HAS_ACTIVE_ROUNDS"
            )

        current_app.mongodb_service.soft_delete_by_org(CLIENTS, user_context.org_id, client.id, user_context.user_id)
        record_audit(user_context, "client", client.id, AuditAction.DELETE.value, before=client.to_response())

        span.set_status(Status(StatusCode.OK))
        logger.info("Client deleted", extra={"client_id": client.id, "deleted_by": user_context.user_id})
        return '', 204


# Checkpoints of a client

@clients_bp.get('/<client_id>/checkpoints')
@require_permission('checkpoint:read')
def list_client_checkpoints(user_context: UserContext, path: ClientPath):
    """Checkpoints of a client in visiting order."""
    client = load_entity(CLIENTS, Client, user_context, path.client_id, "Client")

    query = {"clientId": client.id}
    if not RequestParser.get_bool_param('include_inactive'):
        query["active"] = True

    documents = current_app.mongodb_service.find_by_org(
        CHECKPOINTS, user_context.org_id, query, sort_by="orderIndex", sort_order=ASCENDING
    )
    items = [Checkpoint.from_document(doc).to_response() for doc in documents]

    return jsonify(current_app.hal_formatter.format_collection(
        items, len(items), 1, max(len(items), 1), f"/api/clients/{client.id}/checkpoints",
        "checkpoint", user_context.permissions, user_context.user_id
    )), 200


@clients_bp.post('/<client_id>/checkpoints')
@require_permission('checkpoint:create')
def create_checkpoint(user_context: UserContext, path: ClientPath):
    """Add a checkpoint; QR codes are unique within the organization."""
    with tracer.start_as_current_span("checkpoints.create", attributes={"client.id": path.client_id}) as span:
        create_request = parse_json_body(CreateCheckpointRequest)
        client = load_entity(CLIENTS, Client, user_context, path.client_id, "Client")

        if create_request.qr_code:
            _check_qr_code_free(user_context, create_request.qr_code)

        checkpoint = Checkpoint(
            organization_id=user_context.org_id,
            client_id=client.id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **create_request.model_dump()
        )

        try:
            current_app.mongodb_service.create(CHECKPOINTS, checkpoint.to_document(), user_context.user_id)
        except DuplicateDocumentError:
            raise ConflictException(f"QR code {checkpoint.qr_code} is already assigned")

        record_audit(user_context, "checkpoint", checkpoint.id, AuditAction.CREATE.value,
                     after=checkpoint.to_response())

        span.set_attribute("checkpoint.id", checkpoint.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Checkpoint created", extra={"checkpoint_id": checkpoint.id, "client_id": client.id})
        return jsonify(current_app.hal_formatter.format_resource(
            checkpoint.to_response(), "checkpoint", user_context.permissions
        )), 201


# Checkpoints

@checkpoints_bp.get('/lookup')
@require_permission('checkpoint:read')
def lookup_checkpoint(user_context: UserContext):
    """
    Find the active checkpoint matching a scanned QR payload or a typed
    manual code (``?code=``). Manual codes are case-insensitive.
    """
    with tracer.start_as_current_span("checkpoints.lookup", attributes={"organization.id": user_context.org_id}) as span:
        code = (request.args.get('code') or '').strip()
        if not code:
            raise ValidationException(
                "Missing checkpoint code",
                [{"field": "code", "message": "Query parameter is required", "type": "missing"}]
            )

        candidates = current_app.mongodb_service.find_by_org(
            CHECKPOINTS, user_context.org_id,
            {
                "active": True,
                "$or": [
                    {"qrCode": code},
                    {"manualCode": {"$regex": f"^{re.escape(code)}$", "$options": "i"}}
                ]
            }
        )
        matches = [checkpoint for checkpoint in map(Checkpoint.from_document, candidates)
                   if code_matches(checkpoint, code)]
        span.set_attribute("checkpoints.matched", len(matches))
        if not matches:
            raise NotFoundException("No active checkpoint matches this code")

        checkpoint = matches[0]
        client_doc = current_app.mongodb_service.find_one_by_org(CLIENTS, user_context.org_id, checkpoint.client_id)

        data = checkpoint.to_response()
        data['client_name'] = client_doc.get('name') if client_doc else None
        return jsonify(current_app.hal_formatter.format_resource(
            data, "checkpoint", user_context.permissions
        )), 200


@checkpoints_bp.get('/<id>')
@require_permission('checkpoint:read')
def get_checkpoint(user_context: UserContext, path: IdPath):
    checkpoint = load_entity(CHECKPOINTS, Checkpoint, user_context, path.id, "Checkpoint")
    return jsonify(current_app.hal_formatter.format_resource(
        checkpoint.to_response(), "checkpoint", user_context.permissions
    )), 200


@checkpoints_bp.put('/<id>')
@require_permission('checkpoint:update')
def update_checkpoint(user_context: UserContext, path: IdPath):
    with tracer.start_as_current_span("checkpoints.update", attributes={"checkpoint.id": path.id}) as span:
        update_request = parse_json_body(UpdateCheckpointRequest)
        checkpoint = load_entity(CHECKPOINTS, Checkpoint, user_context, path.id, "Checkpoint")
        before = checkpoint.to_response()

        updates = update_request.model_dump(exclude_unset=True)
        if updates.get('qr_code') and updates['qr_code'] != checkpoint.qr_code:
            _check_qr_code_free(user_context, updates['qr_code'], checkpoint.id)

        for field, value in updates.items():
            setattr(checkpoint, field, value)
        checkpoint.update_timestamp(user_context.user_id)

        if updates:
            current_app.mongodb_service.update_by_org(
                CHECKPOINTS, user_context.org_id, checkpoint.id, to_document_updates(updates), user_context.user_id
            )
            record_audit(user_context, "checkpoint", checkpoint.id, AuditAction.UPDATE.value,
                         before=before, after=checkpoint.to_response())

        span.set_status(Status(StatusCode.OK))
        return jsonify(current_app.hal_formatter.format_resource(
            checkpoint.to_response(), "checkpoint", user_context.permissions
        )), 200


@checkpoints_bp.delete('/<id>')
@require_permission('checkpoint:delete')
def delete_checkpoint(user_context: UserContext, path: IdPath):
    with tracer.start_as_current_span("checkpoints.delete", attributes={"checkpoint.id": path.id}) as span:
        checkpoint = load_entity(CHECKPOINTS, Checkpoint, user_context, path.id, "Checkpoint")

        current_app.mongodb_service.soft_delete_by_org(
            CHECKPOINTS, user_context.org_id, checkpoint.id, user_context.user_id
        )
        record_audit(user_context, "checkpoint", checkpoint.id, AuditAction.DELETE.value,
                     before=checkpoint.to_response())

        span.set_status(Status(StatusCode.OK))
        logger.info("Checkpoint deleted", extra={"checkpoint_id": checkpoint.id, "deleted_by": user_context.user_id})
        return '', 204
