# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Organization-scoped request helpers shared by the route modules.

Every lookup is filtered by the caller's organization, so a document of
another organization is reported as not found.
"""

from flask import current_app
from typing import Optional, Dict, Any, List, Type, TypeVar
from opentelemetry import trace
import logging

from ..models.base import BaseEntity
from ..models.entities import UserContext, OdometerRecord, FuelLog, MaintenanceLog, Round
from ..domain.vehicles import OdometerEntry, build_odometer_history
from ..services.mongodb import ODOMETER_RECORDS, FUEL_LOGS, MAINTENANCE_LOGS, ROUNDS
from ..middleware.error_handler import NotFoundException

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

E = TypeVar('E', bound=BaseEntity)


def load_entity(collection: str, model: Type[E], user_context: UserContext,
                entity_id: str, label: Optional[str] = None) -> E:
    """
    Load an entity of the caller's organization.

    Raises:
        NotFoundException: Missing, soft-deleted or owned by another organization
    """
    with tracer.start_as_current_span(f"db.{collection}.find_one") as span:
        span.set_attributes({
            "db.collection": collection,
            "db.organization_id": user_context.org_id,
            "entity.id": entity_id
        })
        document = current_app.mongodb_service.find_one_by_org(collection, user_context.org_id, entity_id)
        span.set_attribute("db.found", document is not None)

    if document is None:
        raise NotFoundException(f"{label or model.__name__} {entity_id} not found")
    return model.from_document(document)


def record_audit(user_context: UserContext, entity: str, entity_id: str, action: str,
                 before: Optional[Dict[str, Any]] = None,
                 after: Optional[Dict[str, Any]] = None) -> str:
    """Write an audit trail entry for a change made by the caller."""
    return current_app.audit_service.log_action(
        user_context=user_context,
        entity=entity,
        entity_id=entity_id,
        action=action,
        before=before,
        after=after
    )


def publish_event(event_type: str, user_context: UserContext, data: Dict[str, Any]) -> bool:
    """
    Publish a domain event for the caller's organization.

    Returns:
        True when the event was delivered or publishing is disabled
    """
    result = current_app.event_publisher.publish(event_type, user_context.org_id, data)
    if not result.success:
        logger.warning(
            "Domain event not delivered",
            extra={
                "event_type": event_type,
                "organization_id": user_context.org_id,
                "error": result.error
            }
        )
    return result.success


def invalidate_dashboard(user_context: UserContext) -> None:
    """Drop cached dashboard counters after a round, visit or incident change."""
    current_app.redis_service.invalidate_dashboard_stats(user_context.org_id)


def load_odometer_history(user_context: UserContext, vehicle_id: str) -> List[OdometerEntry]:
    """Every odometer reading known for a vehicle, newest first."""
    mongodb = current_app.mongodb_service
    vehicle_filter = {"vehicleId": vehicle_id}

    with tracer.start_as_current_span("vehicles.odometer_history", attributes={"vehicle.id": vehicle_id}) as span:
        history = build_odometer_history(
            records=[OdometerRecord.from_document(doc) for doc in
                     mongodb.find_by_org(ODOMETER_RECORDS, user_context.org_id, vehicle_filter)],
            fuel_logs=[FuelLog.from_document(doc) for doc in
                       mongodb.find_by_org(FUEL_LOGS, user_context.org_id, vehicle_filter)],
            maintenance_logs=[MaintenanceLog.from_document(doc) for doc in
                              mongodb.find_by_org(MAINTENANCE_LOGS, user_context.org_id, vehicle_filter)],
            rounds=[Round.from_document(doc) for doc in
                    mongodb.find_by_org(ROUNDS, user_context.org_id, vehicle_filter)]
        )
        span.set_attribute("odometer.entries", len(history))
    return history
