# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request validation using Pydantic models.
Parses JSON request bodies and formats validation errors for problem responses.
"""

from flask import request
from typing import Type, TypeVar, Dict, Any, List
from pydantic import BaseModel, ValidationError
from opentelemetry import trace
import logging

from .error_handler import ValidationException

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

M = TypeVar('M', bound=BaseModel)


def format_validation_errors(validation_error: ValidationError) -> List[Dict[str, Any]]:
    """
    Format Pydantic validation errors for API response.

    Args:
        validation_error: Pydantic ValidationError

    Returns:
        List of formatted error dictionaries
    """
    errors = []

    for error in validation_error.errors(include_url=False):
        field_path = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field_path or "body",
            "message": error["msg"],
            "type": error["type"]
        })

    return errors


def parse_json_body(model_class: Type[M], allow_empty: bool = False) -> M:
    """
    Validate the JSON request body against a Pydantic model.

    Args:
        model_class: Pydantic model class for validation
        allow_empty: Treat a missing body as ``{}`` (models with all-optional fields)

    Returns:
        Validated model instance

    Raises:
        ValidationException: Body missing, not JSON, or invalid for the model
    """
    with tracer.start_as_current_span("validation.parse_json_body") as span:
        span.set_attributes({
            "validation.model": model_class.__name__,
            "http.method": request.method,
            "http.path": request.path
        })

        json_data = request.get_json(silent=True)
        if json_data is None:
            if not allow_empty:
                span.set_attribute("validation.result", "missing_body")
                raise ValidationException(
                    "Request body must be a JSON object",
                    [{"field": "body", "message": "Expected application/json body", "type": "json_error"}]
                )
            json_data = {}

        if not isinstance(json_data, dict):
            span.set_attribute("validation.result", "invalid_json")
            raise ValidationException(
                "Request body must be a JSON object",
                [{"field": "body", "message": "Expected a JSON object", "type": "json_error"}]
            )

        try:
            validated = model_class.model_validate(json_data)
        except ValidationError as e:
            span.set_attribute("validation.result", "validation_error")
            validation_errors = format_validation_errors(e)
            logger.warning(
                "Request validation failed",
                extra={
                    "model": model_class.__name__,
                    "path": request.path,
                    "method": request.method,
                    "errors": validation_errors
                }
            )
            raise ValidationException(
                f"Request validation failed for {model_class.__name__}",
                validation_errors
            )

        span.set_attribute("validation.result", "success")
        return validated
