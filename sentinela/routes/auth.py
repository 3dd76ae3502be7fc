# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Authentication endpoints for login, logout, and token refresh.
"""

from flask import jsonify, current_app, request
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from datetime import datetime

from ..models.requests import LoginRequest, RefreshTokenRequest
from ..models.entities import User, UserContext
from ..models.enums import AuditAction
from ..services.mongodb import USERS
from ..services.auth import AuthenticationError, TokenValidationError
from ..middleware.auth import require_auth
from ..middleware.error_handler import AuthenticationException
from ..middleware.validation import parse_json_body
from ..utils.context import record_audit

# Set up logging and tracing
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

auth_tag = Tag(name="Authentication", description="User authentication and token management")
auth_bp = APIBlueprint(
    'auth',
    __name__,
    url_prefix='/api/auth',
    abp_tags=[auth_tag]
)


def user_response(user: User) -> dict:
    """User representation without credentials."""
    data = user.to_response()
    data.pop('password_hash', None)
    return data


def _context_for(user: User) -> UserContext:
    return UserContext(
        user_id=user.id,
        org_id=user.organization_id,
        email=user.email,
        name=user.name,
        role=user.role,
        ip_address=request.remote_addr,
        user_agent=request.headers.get('User-Agent', '')
    )


@auth_bp.post('/login')
def login():
    """
    Authenticate user and return JWT tokens.

    Unknown emails, wrong passwords and inactive accounts all answer 401.
    """
    with tracer.start_as_current_span(
        "auth.login",
        attributes={"operation": "login", "ip_address": request.remote_addr or ""}
    ) as span:
        login_request = parse_json_body(LoginRequest)
        auth_service = current_app.auth_service

        user_doc = current_app.mongodb_service.find_user_by_email(login_request.email)
        if not user_doc:
            span.set_status(Status(StatusCode.ERROR, "User not found"))
            logger.warning("Login attempt with unknown email", extra={"ip_address": request.remote_addr})
            raise AuthenticationException("Invalid email or password")

        user = User.from_document(user_doc)
        if not auth_service.verify_password(login_request.password, user.password_hash):
            span.set_status(Status(StatusCode.ERROR, "Invalid password"))
            logger.warning("Login attempt with invalid password", extra={"user_id": user.id})
            raise AuthenticationException("Invalid email or password")

        if not user.is_active():
            span.set_status(Status(StatusCode.ERROR, "Inactive user"))
            logger.warning("Login attempt on inactive account", extra={"user_id": user.id})
            raise AuthenticationException("User account is inactive")

        tokens = auth_service.generate_tokens(user)

        current_app.mongodb_service.update_by_org(
            USERS, user.organization_id, user.id, {"lastLogin": datetime.utcnow()}, user.id
        )
        record_audit(_context_for(user), "user", user.id, AuditAction.LOGIN.value)

        span.set_attributes({"user.id": user.id, "organization.id": user.organization_id})
        span.set_status(Status(StatusCode.OK))
        logger.info("User logged in", extra={"user_id": user.id, "organization_id": user.organization_id})

        base_url = current_app.config['BASE_URL']
        return jsonify({
            **tokens,
            "user": user_response(user),
            "_links": {
                "self": {"href": f"{base_url}/api/auth/login"},
                "refresh": {"href": f"{base_url}/api/auth/refresh", "method": "POST"},
                "logout": {"href": f"{base_url}/api/auth/logout", "method": "POST"},
                "me": {"href": f"{base_url}/api/auth/me"}
            }
        }), 200


@auth_bp.post('/refresh')
def refresh_token():
    """
    Exchange a refresh token for a new access token.

    The user is reloaded so role changes and deactivation apply immediately.
    """
    with tracer.start_as_current_span("auth.refresh") as span:
        refresh_request = parse_json_body(RefreshTokenRequest)
        auth_service = current_app.auth_service

        try:
            payload = auth_service.validate_token(refresh_request.refresh_token, "refresh")
        except TokenValidationError as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise AuthenticationException(str(e))

        if current_app.redis_service.is_token_blocked(payload.get("jti", "")):
            raise AuthenticationException("Token has been revoked")

        user_doc = current_app.mongodb_service.find_one_by_org(USERS, payload["org_id"], payload["sub"])
        if not user_doc:
            raise AuthenticationException("User no longer exists")

        try:
            result = auth_service.refresh_access_token(refresh_request.refresh_token, User.from_document(user_doc))
        except (TokenValidationError, AuthenticationError) as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise AuthenticationException(str(e))

        span.set_attribute("user.id", payload["sub"])
        span.set_status(Status(StatusCode.OK))
        return jsonify(result), 200


@auth_bp.post('/logout')
@require_auth()
def logout(user_context: UserContext):
    """
    Revoke the current access token and, when sent, the refresh token.
    """
    with tracer.start_as_current_span(
        "auth.logout",
        attributes={"user.id": user_context.user_id, "organization.id": user_context.org_id}
    ) as span:
        auth_service = current_app.auth_service
        redis_service = current_app.redis_service
        payload = user_context.token_payload or {}

        blocked = redis_service.block_token(payload.get("jti", ""), auth_service.remaining_ttl_seconds(payload))

        body = request.get_json(silent=True) or {}
        if body.get("refresh_token"):
            try:
                refresh_payload = auth_service.validate_token(body["refresh_token"], "refresh")
            except TokenValidationError as e:
                logger.info(f"Refresh token not revoked: {str(e)}")
            else:
                redis_service.block_token(
                    refresh_payload.get("jti", ""), auth_service.remaining_ttl_seconds(refresh_payload)
                )

        record_audit(user_context, "user", user_context.user_id, AuditAction.LOGOUT.value)

        span.set_attribute("auth.token_blocked", blocked)
        span.set_status(Status(StatusCode.OK))
        logger.info("User logged out", extra={"user_id": user_context.user_id, "token_blocked": blocked})

        return jsonify({
            "message": "Logged out successfully",
            "token_revoked": blocked,
            "_links": {
                "login": {"href": f"{current_app.config['BASE_URL']}/api/auth/login", "method": "POST"}
            }
        }), 200


@auth_bp.get('/me')
@require_auth()
def current_user(user_context: UserContext):
    """Identity and effective permissions of the caller."""
    return jsonify({
        "user_id": user_context.user_id,
        "organization_id": user_context.org_id,
        "email": user_context.email,
        "name": user_context.name,
        "role": user_context.role,
        "permissions": user_context.permissions,
        "_links": {
            "self": {"href": f"{current_app.config['BASE_URL']}/api/auth/me"},
            "user": {"href": f"{current_app.config['BASE_URL']}/api/users/{user_context.user_id}"}
        }
    }), 200
