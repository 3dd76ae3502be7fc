# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - External integrations and side effects.
"""

from .mongodb import MongoDBService, PaginationResult, get_mongodb_service, close_mongodb_connection
from .events import EventPublisher, AMQPConfig, PublishResult, create_event_publisher

__all__ = [
    "MongoDBService",
    "PaginationResult",
    "get_mongodb_service",
    "close_mongodb_connection",
    "EventPublisher",
    "AMQPConfig",
    "PublishResult",
    "create_event_publisher"
]
