"""
Request instrumentation.

Each request gets a span with the caller's organization and role once
authentication has run, a completion log line, and an X-Trace-Id header
agents can quote when reporting a failed scan.
"""

import time
import logging
from flask import Flask, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

logger = logging.getLogger(__name__)


def _caller_attributes():
    user_context = g.get('user_context')
    if user_context is None:
        return {}
    return {
        "organization.id": user_context.org_id,
        "user.id": user_context.user_id,
        "user.role": user_context.role
    }


def add_observability_middleware(app: Flask, instrument: bool = True):
    """Add OpenTelemetry instrumentation and request logging to Flask app."""

    if instrument:
        FlaskInstrumentor().instrument_app(app)

    @app.before_request
    def start_request_timer():
        g.start_time = time.time()
        g.trace_id = None

        span = trace.get_current_span()
        if span.is_recording():
            g.trace_id = format(span.get_span_context().trace_id, "032x")
            span.set_attribute("http.remote_addr", request.remote_addr or "")

    @app.after_request
    def finish_request(response):
        duration_ms = round((time.time() - g.get('start_time', time.time())) * 1000, 2)
        caller = _caller_attributes()

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attributes({"http.duration_ms": duration_ms, **caller})

        level = logging.WARNING if duration_ms > 2000 else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.path} {response.status_code}",
            extra={
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "trace_id": g.get('trace_id'),
                **caller
            }
        )

        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        return response
