# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request utilities for extracting and processing query string data.
"""

from flask import request
from datetime import datetime, date, timedelta
from typing import Dict, Any, Optional, List
import logging

from ..middleware.error_handler import ValidationException
from ..models.base import to_naive_utc

logger = logging.getLogger(__name__)


class RequestParser:
    """Utility for parsing and extracting request data."""

    @staticmethod
    def get_pagination_params(
        default_page: int = 1,
        default_page_size: int = 20,
        max_page_size: int = 100
    ) -> Dict[str, int]:
        """
        Extract pagination parameters from request.

        Invalid values fall back to the defaults; page_size is clamped to
        ``[1, max_page_size]``.
        """
        try:
            page = max(1, int(request.args.get('page', default_page)))
        except (ValueError, TypeError):
            page = default_page

        try:
            page_size = int(request.args.get('page_size', default_page_size))
            page_size = max(1, min(page_size, max_page_size))
        except (ValueError, TypeError):
            page_size = default_page_size

        return {
            'page': page,
            'page_size': page_size
        }

    @staticmethod
    def get_filter_params(
        allowed_filters: List[str],
        choices: Optional[Dict[str, List[str]]] = None
    ) -> Dict[str, str]:
        """
        Extract allowed filter parameters from the query string.

        Args:
            allowed_filters: Query keys accepted as filters
            choices: Optional accepted values per key

        Raises:
            ValidationException: A value is not one of the accepted choices
        """
        filters = {}
        choices = choices or {}

        for key in allowed_filters:
            value = request.args.get(key)
            if value is None or value == '':
                continue
            if key in choices and value not in choices[key]:
                raise ValidationException(
                    f"Invalid value for {key}",
                    [{"field": key, "message": f"Expected one of: {', '.join(choices[key])}", "type": "enum"}]
                )
            filters[key] = value

        return filters

    @staticmethod
    def get_date_param(name: str, default: Optional[datetime] = None, end_of_day: bool = False) -> Optional[datetime]:
        """
        Parse an ISO date or datetime query parameter as naive UTC.

        A date-only value is midnight of that day, or its last microsecond
        when ``end_of_day`` is set so inclusive ranges cover the whole day.

        Raises:
            ValidationException: The value is not an ISO date
        """
        value = request.args.get(name)
        if not value:
            return default

        try:
            if len(value) == 10:
                parsed = date.fromisoformat(value)
                midnight = datetime(parsed.year, parsed.month, parsed.day)
                if end_of_day:
                    return midnight + timedelta(days=1) - timedelta(microseconds=1)
                return midnight
            return to_naive_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
        except ValueError:
            raise ValidationException(
                f"Invalid date for {name}",
                [{"field": name, "message": "Expected ISO 8601 date", "type": "date_parsing"}]
            )

    @staticmethod
    def get_bool_param(name: str, default: bool = False) -> bool:
        value = request.args.get(name)
        if value is None:
            return default
        return value.lower() in ('true', '1', 'yes', 'on')

    @staticmethod
    def get_int_param(name: str, default: int, minimum: int = 1, maximum: int = 365) -> int:
        try:
            value = int(request.args.get(name, default))
        except (ValueError, TypeError):
            return default
        return max(minimum, min(value, maximum))
