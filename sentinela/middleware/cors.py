# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
CORS headers for the dashboard and mobile web clients.

Allowed origins come from ``CORS_ORIGINS`` (comma separated). An entry ending
in ``*`` matches by prefix and a bare ``*`` allows every origin.
"""

from flask import Flask, request, make_response
from typing import List, Optional, Union
import logging

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = [
    'http://localhost:3000',
    'http://localhost:5173',
    'http://127.0.0.1:3000',
    'http://127.0.0.1:5173'
]


def parse_origins(value: Union[str, List[str], None]) -> List[str]:
    """Origins from a comma separated string or list; empty input gives the dev defaults."""
    if not value:
        return list(DEFAULT_ORIGINS)
    if isinstance(value, str):
        value = value.split(',')
    return [origin.strip() for origin in value if origin.strip()]


class CORSMiddleware:
    """CORS middleware for Flask applications."""

    def __init__(
        self,
        app: Flask,
        allowed_origins: Optional[List[str]] = None,
        allow_credentials: bool = True,
        max_age: int = 86400
    ):
        self.app = app
        self.allowed_origins = allowed_origins if allowed_origins is not None else list(DEFAULT_ORIGINS)
        self.allowed_methods = ['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS', 'HEAD']
        self.allowed_headers = [
            'Accept',
            'Accept-Language',
            'Authorization',
            'Content-Type',
            'X-Requested-With',
            'X-Request-ID',
            'X-Trace-ID'
        ]
        self.expose_headers = ['Content-Length', 'Content-Type', 'Content-Disposition', 'X-Request-ID', 'X-Trace-ID']
        self.allow_credentials = allow_credentials
        self.max_age = max_age

        self.register_cors_handlers()

    def is_origin_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False

        for allowed_origin in self.allowed_origins:
            if allowed_origin == '*' or allowed_origin == origin:
                return True
            if allowed_origin.endswith('*') and origin.startswith(allowed_origin[:-1]):
                return True

        return False

    def add_cors_headers(self, response, origin: str):
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Vary'] = 'Origin'
        if self.allow_credentials:
            response.headers['Access-Control-Allow-Credentials'] = 'true'

        response.headers['Access-Control-Allow-Methods'] = ', '.join(self.allowed_methods)
        response.headers['Access-Control-Allow-Headers'] = ', '.join(self.allowed_headers)
        response.headers['Access-Control-Expose-Headers'] = ', '.join(self.expose_headers)
        response.headers['Access-Control-Max-Age'] = str(self.max_age)
        return response

    def register_cors_handlers(self):

        @self.app.before_request
        def handle_preflight():
            if request.method != 'OPTIONS':
                return None

            origin = request.headers.get('Origin')
            if not self.is_origin_allowed(origin):
                logger.warning("CORS preflight rejected", extra={"origin": origin})
                return make_response('', 403)

            return self.add_cors_headers(make_response('', 200), origin)

        @self.app.after_request
        def add_cors_headers_to_response(response):
            origin = request.headers.get('Origin')
            if self.is_origin_allowed(origin):
                self.add_cors_headers(response, origin)
            elif origin and request.method != 'OPTIONS':
                logger.warning("CORS rejected", extra={"origin": origin})
            return response


def configure_cors(app: Flask, origins: Union[str, List[str], None] = None, **kwargs) -> CORSMiddleware:
    """Attach CORS handling to ``app`` for the given origins."""
    return CORSMiddleware(app, allowed_origins=parse_origins(origins), **kwargs)
