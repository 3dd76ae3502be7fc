# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Fleet vehicles: refuelling, maintenance, odometer readings and
maintenance schedules.

Every reading registered here is validated against the vehicle's merged
odometer history, so the odometer never goes backwards.
"""

from datetime import datetime
from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from typing import Type
from pymongo import ASCENDING, DESCENDING

from ..models.base import BaseEntity, to_document_updates
from ..models.requests import (
    IdPath,
    VehicleIdPath,
    VehicleSchedulePath,
    CreateVehicleRequest,
    UpdateVehicleRequest,
    CreateFuelLogRequest,
    CreateMaintenanceLogRequest,
    CreateOdometerRecordRequest,
    ValidateOdometerRequest,
    CreateMaintenanceScheduleRequest,
    CompleteMaintenanceScheduleRequest
)
from ..models.entities import (
    Vehicle, FuelLog, MaintenanceLog, OdometerRecord, MaintenanceSchedule, UserContext
)
from ..models.enums import AuditAction, RoundStatus, VehicleType
from ..domain.vehicles import (
    last_odometer,
    validate_odometer_reading,
    fuel_efficiency,
    compute_next_service,
    is_overdue
)
from ..services.mongodb import (
    VEHICLES, FUEL_LOGS, MAINTENANCE_LOGS, ODOMETER_RECORDS, MAINTENANCE_SCHEDULES, ROUNDS,
    DuplicateDocumentError
)
from ..middleware.auth import require_permission
from ..middleware.error_handler import ConflictException, BusinessRuleException, NotFoundException
from ..middleware.validation import parse_json_body
from ..utils.context import load_entity, record_audit, load_odometer_history
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

vehicles_tag = Tag(name="Vehicles", description="Fleet, odometer and maintenance")
vehicles_bp = APIBlueprint(
    'vehicles',
    __name__,
    url_prefix='/api/vehicles',
    abp_tags=[vehicles_tag]
)


def _format(vehicle: Vehicle, user_context: UserContext, **extra) -> dict:
    data = vehicle.to_response()
    data.update(extra)
    return current_app.hal_formatter.format_resource(data, "vehicle", user_context.permissions)


def _log_collection(user_context: UserContext, vehicle: Vehicle, collection: str,
                    model: Type[BaseEntity], sort_by: str, rel: str) -> dict:
    pagination = RequestParser.get_pagination_params()
    result = current_app.mongodb_service.paginate_by_org(
        collection, user_context.org_id, pagination['page'], pagination['page_size'],
        filters={"vehicleId": vehicle.id}, sort_by=sort_by, sort_order=DESCENDING
    )
    items = [model.from_document(doc).to_response() for doc in result.items]
    return current_app.hal_formatter.builder.build_collection_response(
        items, result.total, result.page, result.page_size, f"/api/vehicles/{vehicle.id}/{rel}"
    )


def _accept_reading(user_context: UserContext, vehicle: Vehicle, km: float) -> dict:
    """
    Validate a new reading and move the vehicle's current odometer forward.

    Raises:
        BusinessRuleException: The reading is lower than the last known one
    """
    validation = validate_odometer_reading(load_odometer_history(user_context, vehicle.id), km)
    if not validation.valid:
        raise BusinessRuleException(validation.message, validation.error_code)

    if km > vehicle.current_odometer:
        vehicle.current_odometer = km
        current_app.mongodb_service.update_by_org(
            VEHICLES, user_context.org_id, vehicle.id, {"currentOdometer": km}, user_context.user_id
        )
    return validation.to_dict()


def _schedule_response(schedule: MaintenanceSchedule, vehicle: Vehicle, now: datetime) -> dict:
    data = schedule.to_response()
    data['overdue'] = is_overdue(schedule, vehicle.current_odometer, now)
    if schedule.next_service_km is not None:
        data['km_remaining'] = round(schedule.next_service_km - vehicle.current_odometer, 1)
    return data


# Vehicles

@vehicles_bp.get('')
@require_permission('vehicle:read')
def list_vehicles(user_context: UserContext):
    with tracer.start_as_current_span("vehicles.list", attributes={"organization.id": user_context.org_id}) as span:
        pagination = RequestParser.get_pagination_params()
        filters = RequestParser.get_filter_params(
            ['active', 'type'],
            choices={'active': ['true', 'false'],
                     'type': [VehicleType.CAR.value, VehicleType.MOTORCYCLE.value]}
        )
        query = {}
        if 'active' in filters:
            query['active'] = filters['active'] == 'true'
        if 'type' in filters:
            query['type'] = filters['type']

        result = current_app.mongodb_service.paginate_by_org(
            VEHICLES, user_context.org_id, pagination['page'], pagination['page_size'],
            filters=query, sort_by="licensePlate", sort_order=ASCENDING
        )
        items = [Vehicle.from_document(doc).to_response() for doc in result.items]

        span.set_attribute("vehicles.count", len(items))
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/vehicles",
            "vehicle", user_context.permissions, user_context.user_id, filters
        )), 200


@vehicles_bp.post('')
@require_permission('vehicle:create')
def create_vehicle(user_context: UserContext):
    """Register a vehicle; license plates are unique within the organization."""
    with tracer.start_as_current_span("vehicles.create", attributes={"organization.id": user_context.org_id}) as span:
        create_request = parse_json_body(CreateVehicleRequest)

        vehicle = Vehicle(
            organization_id=user_context.org_id,
            current_odometer=create_request.initial_odometer,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **create_request.model_dump()
        )
        if current_app.mongodb_service.find_one_by_filters(
                VEHICLES, user_context.org_id, {"licensePlate": vehicle.license_plate}):
            raise ConflictException(f"A vehicle with plate {vehicle.license_plate} already exists")

        try:
            current_app.mongodb_service.create(VEHICLES, vehicle.to_document(), user_context.user_id)
        except DuplicateDocumentError:
            raise ConflictException(f"A vehicle with plate {vehicle.license_plate} already exists")

        record_audit(user_context, "vehicle", vehicle.id, AuditAction.CREATE.value, after=vehicle.to_response())

        span.set_attribute("vehicle.id", vehicle.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Vehicle registered", extra={"vehicle_id": vehicle.id, "license_plate": vehicle.license_plate})
        return jsonify(_format(vehicle, user_context)), 201


@vehicles_bp.get('/<id>')
@require_permission('vehicle:read')
def get_vehicle(user_context: UserContext, path: IdPath):
    """Vehicle with its average fuel efficiency (km/l)."""
    vehicle = load_entity(VEHICLES, Vehicle, user_context, path.id, "Vehicle")
    fuel_logs = [
        FuelLog.from_document(doc) for doc in current_app.mongodb_service.find_by_org(
            FUEL_LOGS, user_context.org_id, {"vehicleId": vehicle.id}
        )
    ]
    return jsonify(_format(vehicle, user_context, fuel_efficiency=fuel_efficiency(fuel_logs))), 200


@vehicles_bp.put('/<id>')
@require_permission('vehicle:update')
def update_vehicle(user_context: UserContext, path: IdPath):
    with tracer.start_as_current_span("vehicles.update", attributes={"vehicle.id": path.id}) as span:
        update_request = parse_json_body(UpdateVehicleRequest)
        vehicle = load_entity(VEHICLES, Vehicle, user_context, path.id, "Vehicle")
        before = vehicle.to_response()

        updates = update_request.model_dump(exclude_unset=True)
        for field, value in updates.items():
            setattr(vehicle, field, value)
        vehicle.update_timestamp(user_context.user_id)

        if updates:
            current_app.mongodb_service.update_by_org(
                VEHICLES, user_context.org_id, vehicle.id, to_document_updates(updates), user_context.user_id
            )
            record_audit(user_context, "vehicle", vehicle.id, AuditAction.UPDATE.value,
                         before=before, after=vehicle.to_response())

        span.set_status(Status(StatusCode.OK))
        return jsonify(_format(vehicle, user_context)), 200


@vehicles_bp.delete('/<id>')
@require_permission('vehicle:delete')
def delete_vehicle(user_context: UserContext, path: IdPath):
    """Soft delete a vehicle that is not out on a round."""
    with tracer.start_as_current_span("vehicles.delete", attributes={"vehicle.id": path.id}) as span:
        vehicle = load_entity(VEHICLES, Vehicle, user_context, path.id, "Vehicle")

        in_field = current_app.mongodb_service.count_by_org(
            ROUNDS, user_context.org_id, {"vehicleId": vehicle.id, "status": RoundStatus.ACTIVE.value}
        )
        if in_field:
            raise BusinessRuleException("Vehicle is in use by an active round", "VEHICLE_IN_USE")

        current_app.mongodb_service.soft_delete_by_org(VEHICLES, user_context.org_id, vehicle.id, user_context.user_id)
        record_audit(user_context, "vehicle", vehicle.id, AuditAction.DELETE.value, before=vehicle.to_response())

        span.set_status(Status(StatusCode.OK))
        return '', 204


# Fuel logs

@vehicles_bp.get('/<vehicle_id>/fuel-logs')
@require_permission('vehicle:read')
def list_fuel_logs(user_context: UserContext, path: VehicleIdPath):
    vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")
    return jsonify(_log_collection(user_context, vehicle, FUEL_LOGS, FuelLog, "recordedAt", "fuel-logs")), 200


@vehicles_bp.post('/<vehicle_id>/fuel-logs')
@require_permission('vehicle:execute')
def create_fuel_log(user_context: UserContext, path: VehicleIdPath):
    """Register a refuelling; its odometer reading joins the vehicle history."""
    with tracer.start_as_current_span("vehicles.fuel_log", attributes={"vehicle.id": path.vehicle_id}) as span:
        log_request = parse_json_body(CreateFuelLogRequest)
        vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")

        validation = _accept_reading(user_context, vehicle, log_request.odometer_reading)

        fuel_log = FuelLog(
            organization_id=user_context.org_id,
            vehicle_id=vehicle.id,
            user_id=user_context.user_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **log_request.model_dump()
        )
        current_app.mongodb_service.create(FUEL_LOGS, fuel_log.to_document(), user_context.user_id)
        record_audit(user_context, "fuel_log", fuel_log.id, AuditAction.CREATE.value, after=fuel_log.to_response())

        span.set_status(Status(StatusCode.OK))
        logger.info("Fuel log registered", extra={
            "vehicle_id": vehicle.id, "fuel_log_id": fuel_log.id, "litres": fuel_log.fuel_amount
        })
        data = fuel_log.to_response()
        data['odometer_validation'] = validation
        return jsonify(data), 201


# Maintenance logs

@vehicles_bp.get('/<vehicle_id>/maintenance-logs')
@require_permission('vehicle:read')
def list_maintenance_logs(user_context: UserContext, path: VehicleIdPath):
    vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")
    return jsonify(_log_collection(
        user_context, vehicle, MAINTENANCE_LOGS, MaintenanceLog, "startTime", "maintenance-logs"
    )), 200


@vehicles_bp.post('/<vehicle_id>/maintenance-logs')
@require_permission('vehicle:update')
def create_maintenance_log(user_context: UserContext, path: VehicleIdPath):
    """
    Register maintenance. Active schedules for the same service type roll
    forward to their next due point.
    """
    with tracer.start_as_current_span("vehicles.maintenance_log", attributes={"vehicle.id": path.vehicle_id}) as span:
        log_request = parse_json_body(CreateMaintenanceLogRequest)
        vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")

        validation = _accept_reading(user_context, vehicle, log_request.odometer_reading)

        fields = log_request.model_dump(exclude_none=True)
        maintenance_log = MaintenanceLog(
            organization_id=user_context.org_id,
            vehicle_id=vehicle.id,
            user_id=user_context.user_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **fields
        )
        current_app.mongodb_service.create(MAINTENANCE_LOGS, maintenance_log.to_document(), user_context.user_id)
        record_audit(user_context, "maintenance_log", maintenance_log.id, AuditAction.CREATE.value,
                     after=maintenance_log.to_response())

        schedules = current_app.mongodb_service.find_by_org(
            MAINTENANCE_SCHEDULES, user_context.org_id,
            {"vehicleId": vehicle.id, "serviceType": maintenance_log.service_type, "active": True}
        )
        for document in schedules:
            schedule = compute_next_service(
                MaintenanceSchedule.from_document(document), user_context.user_id,
                service_km=maintenance_log.odometer_reading, service_date=maintenance_log.start_time
            )
            current_app.mongodb_service.update_by_org(
                MAINTENANCE_SCHEDULES, user_context.org_id, schedule.id,
                to_document_updates({
                    "last_service_km": schedule.last_service_km,
                    "last_service_date": schedule.last_service_date,
                    "next_service_km": schedule.next_service_km,
                    "next_service_date": schedule.next_service_date
                }),
                user_context.user_id
            )

        span.set_attribute("schedules.updated", len(schedules))
        span.set_status(Status(StatusCode.OK))
        data = maintenance_log.to_response()
        data['odometer_validation'] = validation
        data['schedules_updated'] = len(schedules)
        return jsonify(data), 201


# Odometer

@vehicles_bp.get('/<vehicle_id>/odometer-records')
@require_permission('vehicle:read')
def list_odometer_records(user_context: UserContext, path: VehicleIdPath):
    vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")
    return jsonify(_log_collection(
        user_context, vehicle, ODOMETER_RECORDS, OdometerRecord, "recordedAt", "odometer-records"
    )), 200


@vehicles_bp.post('/<vehicle_id>/odometer-records')
@require_permission('vehicle:execute')
def create_odometer_record(user_context: UserContext, path: VehicleIdPath):
    with tracer.start_as_current_span("vehicles.odometer_record", attributes={"vehicle.id": path.vehicle_id}) as span:
        record_request = parse_json_body(CreateOdometerRecordRequest)
        vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")

        validation = _accept_reading(user_context, vehicle, record_request.odometer_reading)

        record = OdometerRecord(
            organization_id=user_context.org_id,
            vehicle_id=vehicle.id,
            user_id=user_context.user_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **record_request.model_dump()
        )
        current_app.mongodb_service.create(ODOMETER_RECORDS, record.to_document(), user_context.user_id)
        record_audit(user_context, "odometer_record", record.id, AuditAction.CREATE.value,
                     after=record.to_response())

        span.set_status(Status(StatusCode.OK))
        data = record.to_response()
        data['odometer_validation'] = validation
        return jsonify(data), 201


@vehicles_bp.get('/<vehicle_id>/odometer/history')
@require_permission('vehicle:read')
def odometer_history(user_context: UserContext, path: VehicleIdPath):
    """Every reading known for the vehicle, newest first, with its source."""
    vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")
    history = load_odometer_history(user_context, vehicle.id)
    return jsonify({
        "vehicle_id": vehicle.id,
        "total": len(history),
        "_embedded": {"entries": [entry.to_dict() for entry in history]},
        "_links": {
            "self": {"href": f"{current_app.config['BASE_URL']}/api/vehicles/{vehicle.id}/odometer/history"},
            "vehicle": {"href": f"{current_app.config['BASE_URL']}/api/vehicles/{vehicle.id}"}
        }
    }), 200


@vehicles_bp.get('/<vehicle_id>/odometer/last')
@require_permission('vehicle:read')
def odometer_last(user_context: UserContext, path: VehicleIdPath):
    vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")
    last = last_odometer(load_odometer_history(user_context, vehicle.id))
    if last is None:
        raise NotFoundException(f"No odometer readings for vehicle {vehicle.id}")
    return jsonify(last.to_dict()), 200


@vehicles_bp.post('/<vehicle_id>/odometer/validate')
@require_permission('vehicle:read')
def odometer_validate(user_context: UserContext, path: VehicleIdPath):
    """Check a reading before submitting it; nothing is stored."""
    validate_request = parse_json_body(ValidateOdometerRequest)
    vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")
    validation = validate_odometer_reading(
        load_odometer_history(user_context, vehicle.id), validate_request.odometer_reading
    )
    return jsonify(validation.to_dict()), 200


# Maintenance schedules

@vehicles_bp.get('/<vehicle_id>/maintenance-schedules')
@require_permission('vehicle:read')
def list_schedules(user_context: UserContext, path: VehicleIdPath):
    """Schedules of the vehicle with their overdue flag."""
    vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")
    documents = current_app.mongodb_service.find_by_org(
        MAINTENANCE_SCHEDULES, user_context.org_id, {"vehicleId": vehicle.id},
        sort_by="serviceType", sort_order=ASCENDING
    )
    now = datetime.utcnow()
    schedules = [_schedule_response(MaintenanceSchedule.from_document(doc), vehicle, now) for doc in documents]

    return jsonify({
        "vehicle_id": vehicle.id,
        "current_odometer": vehicle.current_odometer,
        "total": len(schedules),
        "overdue": sum(1 for schedule in schedules if schedule['overdue']),
        "_embedded": {"schedules": schedules},
        "_links": {
            "self": {"href": f"{current_app.config['BASE_URL']}/api/vehicles/{vehicle.id}/maintenance-schedules"},
            "vehicle": {"href": f"{current_app.config['BASE_URL']}/api/vehicles/{vehicle.id}"}
        }
    }), 200


@vehicles_bp.post('/<vehicle_id>/maintenance-schedules')
@require_permission('vehicle:update')
def create_schedule(user_context: UserContext, path: VehicleIdPath):
    """Create a schedule; the first due point is computed from the last service."""
    with tracer.start_as_current_span("vehicles.create_schedule", attributes={"vehicle.id": path.vehicle_id}) as span:
        schedule_request = parse_json_body(CreateMaintenanceScheduleRequest)
        vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")

        schedule = MaintenanceSchedule(
            organization_id=user_context.org_id,
            vehicle_id=vehicle.id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **schedule_request.model_dump()
        )
        compute_next_service(
            schedule, user_context.user_id,
            service_km=schedule.last_service_km if schedule.last_service_km is not None else vehicle.current_odometer,
            service_date=schedule.last_service_date
        )
        current_app.mongodb_service.create(MAINTENANCE_SCHEDULES, schedule.to_document(), user_context.user_id)
        record_audit(user_context, "maintenance_schedule", schedule.id, AuditAction.CREATE.value,
                     after=schedule.to_response())

        span.set_status(Status(StatusCode.OK))
        return jsonify(_schedule_response(schedule, vehicle, datetime.utcnow())), 201


@vehicles_bp.post('/<vehicle_id>/maintenance-schedules/<schedule_id>/complete')
@require_permission('vehicle:update')
def complete_schedule(user_context: UserContext, path: VehicleSchedulePath):
    """Record a service on a schedule without a maintenance log."""
    with tracer.start_as_current_span("vehicles.complete_schedule", attributes={"schedule.id": path.schedule_id}) as span:
        complete_request = parse_json_body(CompleteMaintenanceScheduleRequest, allow_empty=True)
        vehicle = load_entity(VEHICLES, Vehicle, user_context, path.vehicle_id, "Vehicle")
        schedule = load_entity(MAINTENANCE_SCHEDULES, MaintenanceSchedule, user_context,
                               path.schedule_id, "Maintenance schedule")
        if schedule.vehicle_id != vehicle.id:
            raise NotFoundException(f"Maintenance schedule {path.schedule_id} not found")
        before = schedule.to_response()

        service_km = complete_request.service_km
        if service_km is None:
            service_km = vehicle.current_odometer
        compute_next_service(schedule, user_context.user_id, service_km, complete_request.service_date)

        current_app.mongodb_service.update_by_org(
            MAINTENANCE_SCHEDULES, user_context.org_id, schedule.id,
            to_document_updates({
                "last_service_km": schedule.last_service_km,
                "last_service_date": schedule.last_service_date,
                "next_service_km": schedule.next_service_km,
                "next_service_date": schedule.next_service_date
            }),
            user_context.user_id
        )
        record_audit(user_context, "maintenance_schedule", schedule.id, AuditAction.COMPLETE.value,
                     before=before, after=schedule.to_response())

        span.set_status(Status(StatusCode.OK))
        return jsonify(_schedule_response(schedule, vehicle, datetime.utcnow())), 200
