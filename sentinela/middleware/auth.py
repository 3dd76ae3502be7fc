# SPDX-License-Identifier: Apache-2.0

"""
Authentication middleware for JWT token validation and user context extraction.

This module provides Flask middleware for validating JWT tokens, checking
the logout blocklist, and building the user context passed to protected
route handlers.
"""

from functools import wraps
from flask import request, jsonify, g, current_app
from typing import Optional, Dict, Any, Callable
from opentelemetry import trace
import logging

from ..models.entities import UserContext
from ..services.auth import TokenValidationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthMiddleware:
    """
    JWT authentication middleware for Flask applications.

    Handles token extraction, validation, blocklist checking, and user context
    building for protected endpoints.
    """

    def __init__(self, auth_service, redis_service):
        """
        Initialize the authentication middleware.

        Args:
            auth_service: JWT authentication service
            redis_service: Redis service for token blocklist
        """
        self.auth_service = auth_service
        self.redis_service = redis_service

    def extract_token_from_request(self) -> Optional[str]:
        """Bearer token from the Authorization header, or None."""
        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            return None
        return auth_header[7:].strip() or None

    def is_token_blocked(self, token: str) -> bool:
        """
        Check if token is in the Redis blocklist.

        Undecodable tokens are reported as not blocked; signature
        validation rejects them afterwards.
        """
        try:
            token_id = self.auth_service.extract_token_id(token)
        except TokenValidationError:
            return False
        return self.redis_service.is_token_blocked(token_id)

    def build_user_context(self, token_payload: Dict[str, Any], request_info: Dict[str, Any]) -> UserContext:
        """
        Build user context from validated token payload and request information.

        Args:
            token_payload: Decoded JWT payload
            request_info: Request metadata (IP, user agent)

        Returns:
            UserContext object for request processing
        """
        return UserContext(
            user_id=token_payload["sub"],
            org_id=token_payload["org_id"],
            email=token_payload.get("email"),
            name=token_payload.get("name"),
            role=token_payload.get("role"),
            permissions=token_payload.get("permissions", []),
            token_payload=token_payload,
            ip_address=request_info.get("ip_address"),
            user_agent=request_info.get("user_agent")
        )

    def get_request_info(self) -> Dict[str, Any]:
        forwarded_for = request.headers.get('X-Forwarded-For', '')
        return {
            "ip_address": forwarded_for.split(',')[0].strip() if forwarded_for else request.remote_addr,
            "user_agent": request.headers.get('User-Agent', ''),
            "request_id": request.headers.get('X-Request-ID')
        }


def _problem(error_type: str, status: int, detail: str):
    formatter = current_app.hal_formatter
    if status == 403:
        body = formatter.format_authorization_error(detail, request.path)
    else:
        body = formatter.builder.build_error_response(
            error_type,
            "Authentication Required" if error_type == "authentication-required" else error_type.replace('-', ' ').title(),
            status,
            detail,
            request.path
        )
    return jsonify(body), status


def require_auth(auth_middleware: Optional[AuthMiddleware] = None) -> Callable:
    """
    Decorator to require JWT authentication for Flask routes.

    The wrapped view receives the UserContext as its first argument.

    Args:
        auth_middleware: AuthMiddleware instance; defaults to ``current_app.auth_middleware``

    Returns:
        Decorator function
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            middleware = auth_middleware or current_app.auth_middleware

            with tracer.start_as_current_span("auth.middleware.validate_request") as span:
                span.set_attribute("auth.operation", "validate_request")

                token = middleware.extract_token_from_request()
                if not token:
                    span.set_attribute("auth.result", "missing_token")
                    logger.warning("Authentication failed: missing token", extra={"path": request.path})
                    return _problem("authentication-required", 401, "Missing authorization token")

                if middleware.is_token_blocked(token):
                    span.set_attribute("auth.result", "token_blocked")
                    logger.warning("Authentication failed: token is blocked")
                    return _problem("token-revoked", 401, "Token has been revoked")

                try:
                    token_payload = middleware.auth_service.validate_token(token, "access")
                except TokenValidationError as e:
                    span.set_attribute("auth.result", "invalid_token")
                    logger.warning(f"Authentication failed: {str(e)}")
                    return _problem("invalid-token", 401, str(e))

                user_context = middleware.build_user_context(token_payload, middleware.get_request_info())
                g.user_context = user_context

                span.set_attributes({
                    "auth.result": "success",
                    "user.id": user_context.user_id,
                    "organization.id": user_context.org_id
                })
                logger.debug(
                    "Authentication successful",
                    extra={
                        "user_id": user_context.user_id,
                        "organization_id": user_context.org_id,
                        "ip_address": user_context.ip_address
                    }
                )

            return f(user_context, *args, **kwargs)

        return decorated_function
    return decorator


def require_permission(permission: str, auth_middleware: Optional[AuthMiddleware] = None) -> Callable:
    """
    Decorator to require specific permission for Flask routes.

    Args:
        permission: Required permission string
        auth_middleware: Optional AuthMiddleware instance

    Returns:
        Decorator function
    """
    return require_any_permission(permission, auth_middleware=auth_middleware)


def require_any_permission(*permissions: str, auth_middleware: Optional[AuthMiddleware] = None) -> Callable:
    """
    Decorator granting access when the user holds at least one of the permissions.

    Used where an agent's execute permission and an operator's manage
    permission both open the same endpoint.
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        @require_auth(auth_middleware)
        def decorated_function(user_context: UserContext, *args, **kwargs):
            with tracer.start_as_current_span("auth.middleware.check_permission") as span:
                span.set_attributes({
                    "auth.operation": "check_permission",
                    "auth.required_permission": ",".join(permissions),
                    "user.id": user_context.user_id,
                    "organization.id": user_context.org_id
                })

                if not user_context.has_any_permission(list(permissions)):
                    span.set_attribute("auth.permission_result", "denied")
                    logger.warning(
                        f"Authorization failed: missing permission '{' or '.join(permissions)}'",
                        extra={
                            "user_id": user_context.user_id,
                            "organization_id": user_context.org_id,
                            "required_permissions": list(permissions)
                        }
                    )
                    return _problem(
                        "insufficient-permissions", 403,
                        f"Missing required permission: {' or '.join(permissions)}"
                    )

                span.set_attribute("auth.permission_result", "granted")

            return f(user_context, *args, **kwargs)

        return decorated_function
    return decorator
