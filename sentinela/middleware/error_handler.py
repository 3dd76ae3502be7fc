# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with structured HAL responses.
Provides centralized error handling and formatting for Flask applications.
"""

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from typing import Dict, Any, Tuple, Optional, List
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging

from ..services.hal import HalFormatter

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

_CLIENT_ERRORS = {
    400: ("bad-request", "Bad Request"),
    401: ("authentication-required", "Authentication Required"),
    403: ("insufficient-permissions", "Insufficient Permissions"),
    404: ("resource-not-found", "Resource Not Found"),
    405: ("method-not-allowed", "Method Not Allowed"),
    409: ("resource-conflict", "Resource Conflict"),
    415: ("unsupported-media-type", "Unsupported Media Type"),
    422: ("validation-error", "Validation Error"),
    429: ("rate-limit-exceeded", "Rate Limit Exceeded"),
}

_SERVER_ERRORS = {
    500: ("internal-server-error", "Internal Server Error"),
    502: ("bad-gateway", "Bad Gateway"),
    503: ("service-unavailable", "Service Unavailable"),
    504: ("gateway-timeout", "Gateway Timeout"),
}


class ErrorHandlerMiddleware:
    """Centralized error handling middleware with HAL response formatting."""

    def __init__(self, app: Flask, hal_formatter: HalFormatter):
        self.app = app
        self.hal_formatter = hal_formatter
        self.register_error_handlers()

    @property
    def is_production(self) -> bool:
        return self.app.config.get('ENVIRONMENT') == 'production'

    def register_error_handlers(self):
        """Register error handlers with Flask application."""

        for code, (error_type, title) in _CLIENT_ERRORS.items():
            self.app.register_error_handler(code, self._client_handler(error_type, title))

        for code, (error_type, title) in _SERVER_ERRORS.items():
            self.app.register_error_handler(code, self._server_handler(error_type, title))

        @self.app.errorhandler(CustomException)
        def handle_custom_exception(error):
            return self.handle_custom_exception(error)

        @self.app.errorhandler(Exception)
        def handle_generic_exception(error):
            if isinstance(error, HTTPException):
                return self.handle_client_error(error, "http-error", error.name)
            return self.handle_unexpected_error(error)

    def _client_handler(self, error_type: str, title: str):
        def handler(error):
            return self.handle_client_error(error, error_type, title)
        return handler

    def _server_handler(self, error_type: str, title: str):
        def handler(error):
            return self.handle_server_error(error, error_type, title)
        return handler

    def handle_client_error(
        self,
        error: HTTPException,
        error_type: str,
        title: str
    ) -> Tuple[Dict[str, Any], int]:
        """
        Handle client errors (4xx status codes).

        Args:
            error: HTTP exception
            error_type: Error type identifier
            title: Error title

        Returns:
            Tuple of (error response dict, status code)
        """
        status = getattr(error, 'code', None) or 400
        with tracer.start_as_current_span("error_handler.client_error") as span:
            span.set_attributes({
                "error.type": error_type,
                "error.status": status,
                "http.method": request.method,
                "http.path": request.path
            })

            detail = str(error.description) if getattr(error, 'description', None) else title

            logger.warning(
                f"Client error: {title}",
                extra={
                    "error_type": error_type,
                    "status_code": status,
                    "detail": detail,
                    "path": request.path,
                    "method": request.method,
                    "ip_address": request.remote_addr
                }
            )

            return self.hal_formatter.builder.build_error_response(
                error_type, title, status, detail, request.path
            ), status

    def handle_server_error(
        self,
        error: HTTPException,
        error_type: str,
        title: str
    ) -> Tuple[Dict[str, Any], int]:
        """Handle server errors (5xx status codes)."""
        status = getattr(error, 'code', None) or 500
        with tracer.start_as_current_span("error_handler.server_error") as span:
            span.set_attributes({
                "error.type": error_type,
                "error.status": status,
                "http.method": request.method,
                "http.path": request.path
            })

            detail = str(error.description) if getattr(error, 'description', None) else title

            logger.error(
                f"Server error: {title}",
                extra={
                    "error_type": error_type,
                    "status_code": status,
                    "detail": detail,
                    "path": request.path,
                    "method": request.method
                },
                exc_info=True
            )

            # Don't expose internal error details in production
            if self.is_production:
                detail = "An internal server error occurred"

            return self.hal_formatter.builder.build_error_response(
                error_type, title, status, detail, request.path
            ), status

    def handle_custom_exception(self, error: "CustomException"):
        """Translate an application exception to its problem document."""
        with tracer.start_as_current_span("error_handler.custom_exception") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "http.method": request.method,
                "http.path": request.path
            })

            logger.warning(
                f"Application error: {error.error_type}",
                extra={
                    "error_type": error.error_type,
                    "status_code": error.status_code,
                    "detail": error.message,
                    "path": request.path,
                    "method": request.method
                }
            )

            formatter = self.hal_formatter
            if isinstance(error, ValidationException):
                body = formatter.format_validation_error(error.message, request.path, error.validation_errors)
            elif isinstance(error, AuthenticationException):
                body = formatter.format_authentication_error(error.message, request.path)
            elif isinstance(error, AuthorizationException):
                body = formatter.format_authorization_error(error.message, request.path)
            elif isinstance(error, NotFoundException):
                body = formatter.format_not_found_error(error.message, request.path)
            elif isinstance(error, ConflictException):
                body = formatter.format_conflict_error(error.message, request.path)
            elif isinstance(error, BusinessRuleException):
                body = formatter.format_business_rule_error(error.message, request.path, error.error_code)
            elif isinstance(error, ServiceUnavailableException):
                body = formatter.format_service_unavailable_error(error.message, request.path)
            else:
                body = formatter.format_server_error(error.message, request.path)

            return jsonify(body), error.status_code

    def handle_unexpected_error(self, error: Exception) -> Tuple[Dict[str, Any], int]:
        """
        Handle unexpected exceptions not caught by specific handlers.

        Args:
            error: Unexpected exception

        Returns:
            Tuple of (error response dict, status code)
        """
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "error_type": "unexpected-error",
                    "error_class": error.__class__.__name__,
                    "path": request.path,
                    "method": request.method
                },
                exc_info=error
            )

            detail = "An unexpected error occurred"
            if not self.is_production:
                detail = f"{error.__class__.__name__}: {str(error)}"

            return self.hal_formatter.format_server_error(detail, request.path), 500


class CustomException(Exception):
    """Base class for custom application exceptions."""

    def __init__(self, message: str, status_code: int = 500, error_type: str = "application-error"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type


class ValidationException(CustomException):
    """Exception for validation errors."""

    def __init__(self, message: str, validation_errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, 400, "validation-error")
        self.validation_errors = validation_errors or []


class AuthenticationException(CustomException):
    """Exception for authentication errors."""

    def __init__(self, message: str):
        super().__init__(message, 401, "authentication-required")


class AuthorizationException(CustomException):
    """Exception for authorization errors."""

    def __init__(self, message: str):
        super().__init__(message, 403, "insufficient-permissions")


class NotFoundException(CustomException):
    """Exception for resource not found errors."""

    def __init__(self, message: str):
        super().__init__(message, 404, "resource-not-found")


class ConflictException(CustomException):
    """Exception for resource conflict errors."""

    def __init__(self, message: str):
        super().__init__(message, 409, "resource-conflict")


class BusinessRuleException(CustomException):
    """A domain rule rejected the operation (invalid transition, odometer regression...)."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message, 422, "business-rule-violation")
        self.error_code = error_code


class ServiceUnavailableException(CustomException):
    """Exception for service unavailable errors."""

    def __init__(self, message: str):
        super().__init__(message, 503, "service-unavailable")
