# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
User management endpoints: listing, creation, updates, deactivation and
admin password resets.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from pymongo import ASCENDING

from ..models.requests import IdPath, CreateUserRequest, UpdateUserRequest, ResetPasswordRequest
from ..models.entities import User, UserContext
from ..models.enums import UserRole, AuditAction
from ..models.base import to_document_updates
from ..domain.authorization import can_manage_user, permissions_for_role
from ..services.mongodb import USERS, DuplicateDocumentError
from ..middleware.auth import require_permission, require_auth
from ..middleware.error_handler import ConflictException, AuthorizationException, BusinessRuleException
from ..middleware.validation import parse_json_body
from ..utils.context import load_entity, record_audit
from ..utils.request import RequestParser
from .auth import user_response

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

users_tag = Tag(name="Users", description="Operator and tactical agent accounts")
users_bp = APIBlueprint(
    'users',
    __name__,
    url_prefix='/api/users',
    abp_tags=[users_tag]
)


def _format(user: User, user_context: UserContext) -> dict:
    return current_app.hal_formatter.format_resource(
        user_response(user), "user", user_context.permissions, user_context.user_id
    )


@users_bp.get('')
@require_permission('user:read')
def list_users(user_context: UserContext):
    """List users of the organization, filterable by role and active flag."""
    with tracer.start_as_current_span("users.list", attributes={"organization.id": user_context.org_id}) as span:
        pagination = RequestParser.get_pagination_params()
        filters = RequestParser.get_filter_params(
            ['role', 'active'],
            choices={'role': [role.value for role in UserRole], 'active': ['true', 'false']}
        )
        query = {}
        if 'role' in filters:
            query['role'] = filters['role']
        if 'active' in filters:
            query['active'] = filters['active'] == 'true'

        result = current_app.mongodb_service.paginate_by_org(
            USERS, user_context.org_id, pagination['page'], pagination['page_size'],
            filters=query, sort_by="name", sort_order=ASCENDING
        )
        items = [user_response(User.from_document(doc)) for doc in result.items]

        span.set_attribute("users.count", len(items))
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/users",
            "user", user_context.permissions, user_context.user_id, filters
        )), 200


@users_bp.get('/<id>')
@require_auth()
def get_user(user_context: UserContext, path: IdPath):
    """Get a user; agents may read their own account."""
    if path.id != user_context.user_id and not user_context.has_permission('user:read'):
        raise AuthorizationException("Missing required permission: user:read")
    user = load_entity(USERS, User, user_context, path.id, "User")
    return jsonify(_format(user, user_context)), 200


@users_bp.post('')
@require_permission('user:create')
def create_user(user_context: UserContext):
    """Create an account; the password is stored as a bcrypt hash."""
    with tracer.start_as_current_span("users.create", attributes={"organization.id": user_context.org_id}) as span:
        create_request = parse_json_body(CreateUserRequest)

        if create_request.role == UserRole.ADMIN.value and not user_context.is_admin():
            raise AuthorizationException("Only admins can create admin accounts")

        if current_app.mongodb_service.find_user_by_email(create_request.email):
            raise ConflictException(f"A user with email {create_request.email} already exists")

        user = User(
            organization_id=user_context.org_id,
            email=create_request.email,
            name=create_request.name,
            password_hash=current_app.auth_service.hash_password(create_request.password),
            role=create_request.role,
            phone=create_request.phone,
            permissions=permissions_for_role(create_request.role),
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )

        try:
            current_app.mongodb_service.create(USERS, user.to_document(), user_context.user_id)
        except DuplicateDocumentError:
            raise ConflictException(f"A user with email {create_request.email} already exists")

        record_audit(user_context, "user", user.id, AuditAction.CREATE.value, after=user_response(user))

        span.set_attribute("user.id", user.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("User created", extra={"user_id": user.id, "role": user.role, "created_by": user_context.user_id})
        return jsonify(_format(user, user_context)), 201


@users_bp.put('/<id>')
@require_permission('user:update')
def update_user(user_context: UserContext, path: IdPath):
    """Update name, phone, role or active flag."""
    with tracer.start_as_current_span("users.update", attributes={"user.id": path.id}) as span:
        update_request = parse_json_body(UpdateUserRequest)
        user = load_entity(USERS, User, user_context, path.id, "User")
        before = user_response(user)

        updates = update_request.model_dump(exclude_unset=True)
        if 'role' in updates or updates.get('active') is False:
            authorization = can_manage_user(user_context, user, deactivating=updates.get('active') is False)
            if not authorization.allowed:
                raise AuthorizationException(authorization.reason)
        if 'role' in updates:
            updates['permissions'] = permissions_for_role(updates['role'])

        for field, value in updates.items():
            setattr(user, field, value)
        user.update_timestamp(user_context.user_id)

        if updates:
            current_app.mongodb_service.update_by_org(
                USERS, user_context.org_id, user.id, to_document_updates(updates), user_context.user_id
            )
            record_audit(user_context, "user", user.id, AuditAction.UPDATE.value,
                         before=before, after=user_response(user))

        span.set_status(Status(StatusCode.OK))
        return jsonify(_format(user, user_context)), 200


@users_bp.delete('/<id>')
@require_permission('user:delete')
def deactivate_user(user_context: UserContext, path: IdPath):
    """
    Deactivate an account. Users keep their history and can no longer log in.
    """
    with tracer.start_as_current_span("users.deactivate", attributes={"user.id": path.id}) as span:
        user = load_entity(USERS, User, user_context, path.id, "User")

        authorization = can_manage_user(user_context, user, deactivating=True)
        if not authorization.allowed:
            raise AuthorizationException(authorization.reason)
        if not user.active:
            raise BusinessRuleException("User is already inactive", "USER_INACTIVE")

        current_app.mongodb_service.update_by_org(
            USERS, user_context.org_id, user.id, {"active": False}, user_context.user_id
        )
        record_audit(user_context, "user", user.id, AuditAction.DEACTIVATE.value,
                     before={"active": True}, after={"active": False})

        span.set_status(Status(StatusCode.OK))
        logger.info("User deactivated", extra={"user_id": user.id, "deactivated_by": user_context.user_id})
        return '', 204


@users_bp.post('/<id>/reset-password')
@require_permission('user:manage')
def reset_password(user_context: UserContext, path: IdPath):
    """Admin password reset for another account."""
    with tracer.start_as_current_span("users.reset_password", attributes={"user.id": path.id}) as span:
        reset_request = parse_json_body(ResetPasswordRequest)
        user = load_entity(USERS, User, user_context, path.id, "User")

        authorization = can_manage_user(user_context, user)
        if not authorization.allowed:
            raise AuthorizationException(authorization.reason)

        current_app.mongodb_service.update_by_org(
            USERS, user_context.org_id, user.id,
            {"passwordHash": current_app.auth_service.hash_password(reset_request.new_password)},
            user_context.user_id
        )
        record_audit(user_context, "user", user.id, AuditAction.PASSWORD_RESET.value)

        span.set_status(Status(StatusCode.OK))
        logger.info("Password reset", extra={"user_id": user.id, "reset_by": user_context.user_id})
        return jsonify({
            "message": "Password reset successfully",
            "_links": {"user": {"href": f"{current_app.config['BASE_URL']}/api/users/{user.id}"}}
        }), 200
