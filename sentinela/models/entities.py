# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the Sentinela Tático platform.
"""

import re
from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from pydantic.alias_generators import to_camel
from bson import ObjectId

from .base import BaseEntity
from .enums import (
    UserRole,
    VehicleType,
    RoundStatus,
    CheckpointVisitStatus,
    IncidentType,
    IncidentPriority,
    IncidentStatus,
    ShiftType,
    MaintenanceType,
    OdometerRecordType,
    FuelType,
    CalculationStatus,
    AuditAction
)


class User(BaseEntity):
    """Operator account (admin, base operator or tactical agent)."""

    email: str = Field(..., description="User email address")
    name: str = Field(..., min_length=1, max_length=200, description="User full name")
    password_hash: str = Field(..., description="Hashed password")
    role: UserRole = Field(default=UserRole.TATICO, description="User role")
    phone: Optional[str] = Field(None, max_length=30, description="Contact phone")
    active: bool = Field(default=True, description="Whether the account may log in")
    last_login: Optional[datetime] = Field(None, description="Last login timestamp")
    permissions: List[str] = Field(default_factory=list, description="Permissions granted by role")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """Validate email format."""
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, v.lower()):
            raise ValueError('Invalid email format')
        return v.lower()

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('User name cannot be empty')
        return v.strip()

    def is_active(self) -> bool:
        """Check if user account may authenticate."""
        return self.active and not self.is_deleted()


class Client(BaseEntity):
    """Client site visited during rounds."""

    name: str = Field(..., min_length=1, max_length=200, description="Client name")
    address: str = Field(..., min_length=1, max_length=500, description="Street address")
    lat: Optional[float] = Field(None, ge=-90, le=90, description="Latitude")
    lng: Optional[float] = Field(None, ge=-180, le=180, description="Longitude")
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_phone: Optional[str] = Field(None, max_length=30)
    active: bool = Field(default=True)

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


class Checkpoint(BaseEntity):
    """Physical checkpoint at a client site, identified by QR or manual code."""

    client_id: str = Field(..., description="Owning client")
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    qr_code: Optional[str] = Field(None, max_length=200, description="Unique QR payload")
    manual_code: Optional[str] = Field(None, max_length=50, description="Code typed when QR is unreadable")
    geofence_radius: float = Field(default=50, gt=0, description="Accepted radius in metres")
    order_index: int = Field(default=0, ge=0)
    active: bool = Field(default=True)

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


class TemplateCheckpoint(BaseModel):
    """A client stop inside a round template."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True
    )

    client_id: str = Field(..., description="Client visited at this stop")
    order_index: int = Field(..., ge=0, description="Position within the template")
    estimated_duration_minutes: int = Field(default=15, gt=0)
    required_signature: bool = Field(default=False)


class RoundTemplate(BaseEntity):
    """Reusable ordered list of client stops for a shift."""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    shift_type: ShiftType = Field(default=ShiftType.DIURNO)
    rounds_per_shift: int = Field(default=3, gt=0)
    interval_hours: int = Field(default=4, gt=0)
    active: bool = Field(default=True)
    checkpoints: List[TemplateCheckpoint] = Field(default_factory=list)

    @field_validator('checkpoints')
    @classmethod
    def validate_checkpoint_order(cls, v):
        """Order indexes must be unique; list is kept sorted."""
        indexes = [checkpoint.order_index for checkpoint in v]
        if len(indexes) != len(set(indexes)):
            raise ValueError('Template checkpoint order_index values must be unique')
        return sorted(v, key=lambda checkpoint: checkpoint.order_index)


class Round(BaseEntity):
    """A patrol round executed by a tactical agent."""

    user_id: str = Field(..., description="Tactical agent executing the round")
    client_id: Optional[str] = Field(None, description="Client for direct (template-less) rounds")
    template_id: Optional[str] = Field(None, description="Template the round follows")
    vehicle: VehicleType = Field(default=VehicleType.CAR)
    vehicle_id: Optional[str] = Field(None)
    status: RoundStatus = Field(default=RoundStatus.PENDING)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    initial_odometer: Optional[float] = Field(None, ge=0)
    final_odometer: Optional[float] = Field(None, ge=0)
    current_checkpoint_index: int = Field(default=0, ge=0)
    round_number: int = Field(default=1, gt=0)
    notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode='after')
    def validate_target(self):
        """A round follows a template or visits a single client."""
        if not self.template_id and not self.client_id:
            raise ValueError('Round requires template_id or client_id')
        if self.final_odometer is not None and self.initial_odometer is not None \
                and self.final_odometer < self.initial_odometer:
            raise ValueError('final_odometer cannot be lower than initial_odometer')
        return self


class RoutePoint(BaseEntity):
    """GPS sample recorded while a round is active."""

    round_id: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    speed: Optional[float] = Field(None, ge=0)
    recorded_at: datetime = Field(default_factory=datetime.utcnow)


class CheckpointVisit(BaseEntity):
    """Registered passage of an agent through a checkpoint."""

    round_id: str
    checkpoint_id: str
    visit_time: datetime = Field(default_factory=datetime.utcnow)
    duration: int = Field(default=0, ge=0, description="Seconds spent at the checkpoint")
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    distance_m: Optional[float] = Field(None, ge=0, description="Distance to checkpoint at scan time")
    status: CheckpointVisitStatus = Field(default=CheckpointVisitStatus.COMPLETED)
    notes: Optional[str] = Field(None, max_length=2000)


class Incident(BaseEntity):
    """Incident reported in the field."""

    round_id: Optional[str] = None
    type: IncidentType = Field(default=IncidentType.OTHER)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    priority: IncidentPriority = Field(default=IncidentPriority.MEDIUM)
    status: IncidentStatus = Field(default=IncidentStatus.OPEN)
    reported_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = Field(None, max_length=5000)
    investigation_notes: Optional[str] = Field(None, max_length=5000)


class Vehicle(BaseEntity):
    """Fleet vehicle."""

    license_plate: str = Field(..., min_length=1, max_length=10)
    brand: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    year: int = Field(..., ge=1950, le=2100)
    type: VehicleType = Field(default=VehicleType.CAR)
    initial_odometer: float = Field(default=0, ge=0)
    current_odometer: float = Field(default=0, ge=0)
    fuel_capacity: Optional[float] = Field(None, gt=0)
    active: bool = Field(default=True)

    @field_validator('license_plate')
    @classmethod
    def normalize_plate(cls, v):
        return v.strip().upper()

    @field_validator('type')
    @classmethod
    def validate_motor_vehicle(cls, v):
        if v == VehicleType.ON_FOOT or v == VehicleType.ON_FOOT.value:
            raise ValueError('Fleet vehicles must be car or motorcycle')
        return v


class FuelLog(BaseEntity):
    """Refuelling record."""

    vehicle_id: str
    user_id: str
    round_id: Optional[str] = None
    fuel_type: FuelType = Field(default=FuelType.GASOLINE)
    fuel_amount: float = Field(..., gt=0, description="Litres")
    fuel_cost: Optional[float] = Field(None, ge=0)
    odometer_reading: float = Field(..., ge=0)
    fuel_station: Optional[str] = Field(None, max_length=200)
    recorded_at: datetime = Field(default_factory=datetime.utcnow)


class MaintenanceLog(BaseEntity):
    """Maintenance performed on a vehicle."""

    vehicle_id: str
    user_id: str
    maintenance_type: MaintenanceType = Field(default=MaintenanceType.PREVENTIVE)
    service_type: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    cost: Optional[float] = Field(None, ge=0)
    odometer_reading: float = Field(..., ge=0)
    location: Optional[str] = Field(None, max_length=200)
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None


class MaintenanceSchedule(BaseEntity):
    """Recurring service plan for a vehicle, by distance and/or time."""

    vehicle_id: str
    service_type: str = Field(..., min_length=1, max_length=200)
    interval_km: Optional[float] = Field(None, gt=0)
    interval_days: Optional[int] = Field(None, gt=0)
    last_service_km: Optional[float] = Field(None, ge=0)
    last_service_date: Optional[datetime] = None
    next_service_km: Optional[float] = Field(None, ge=0)
    next_service_date: Optional[datetime] = None
    active: bool = Field(default=True)

    @model_validator(mode='after')
    def validate_interval(self):
        if self.interval_km is None and self.interval_days is None:
            raise ValueError('Schedule requires interval_km or interval_days')
        return self


class OdometerRecord(BaseEntity):
    """Explicit odometer reading."""

    vehicle_id: str
    user_id: str
    round_id: Optional[str] = None
    odometer_reading: float = Field(..., ge=0)
    record_type: OdometerRecordType = Field(default=OdometerRecordType.START)
    recorded_at: datetime = Field(default_factory=datetime.utcnow)


class FuelPrice(BaseEntity):
    """Price per litre (or kWh for electric) used by cost calculations."""

    fuel_type: FuelType
    price_per_liter: float = Field(..., gt=0)
    active: bool = Field(default=True)


class CostCalculation(BaseEntity):
    """Saved cost proposal for serving a client."""

    calculation_name: str = Field(..., min_length=1, max_length=200)
    client_id: Optional[str] = None
    vehicle_type: VehicleType = Field(default=VehicleType.CAR)
    fuel_type: FuelType = Field(default=FuelType.GASOLINE)
    fuel_efficiency: float = Field(..., gt=0, description="km per litre")
    fuel_price: float = Field(..., gt=0)
    distance_base_to_client: float = Field(..., ge=0, description="One-way km")
    rounds_per_day: int = Field(..., gt=0)
    days_per_month: int = Field(..., ge=1, le=31)
    time_per_round: float = Field(..., gt=0, description="Hours")
    tactical_salary: float = Field(..., ge=0)
    hourly_rate: Optional[float] = Field(None, gt=0)
    other_monthly_costs: float = Field(default=0, ge=0)
    profit_margin: float = Field(default=30, ge=0)
    status: CalculationStatus = Field(default=CalculationStatus.DRAFT)
    notes: Optional[str] = Field(None, max_length=2000)
    results: Dict[str, float] = Field(default_factory=dict)

    @field_validator('vehicle_type')
    @classmethod
    def validate_vehicle_type(cls, v):
        if v == VehicleType.ON_FOOT or v == VehicleType.ON_FOOT.value:
            raise ValueError('Cost calculations support car or motorcycle')
        return v


class AuditLog(BaseModel):
    """Audit log entry for compliance and accountability."""

    id: str = Field(default_factory=lambda: str(ObjectId()), description="Unique identifier")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Action timestamp")
    user_id: str = Field(..., description="User who performed the action")
    user_name: Optional[str] = Field(None, description="Display name of the user")
    organization_id: str = Field(..., description="Organization scope")
    entity: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity identifier")
    action: AuditAction = Field(..., description="Action performed")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")
    schema_version: int = Field(default=1, description="Schema version")

    model_config = ConfigDict(
        use_enum_values=True
    )

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = [
            'user', 'client', 'checkpoint', 'round_template', 'round',
            'checkpoint_visit', 'incident', 'vehicle', 'fuel_log',
            'maintenance_log', 'maintenance_schedule', 'odometer_record',
            'fuel_price', 'cost_calculation'
        ]
        if v not in valid_entities:
            raise ValueError(f'Invalid entity type: {v}')
        return v


class UserContext(BaseModel):
    """User context for request processing with authentication and authorization data."""

    user_id: str = Field(..., description="Authenticated user ID")
    org_id: str = Field(..., description="User's organization ID")
    email: Optional[str] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="User display name")
    role: Optional[UserRole] = Field(None, description="User role")
    permissions: List[str] = Field(default_factory=list, description="User's effective permissions")
    token_payload: Optional[Dict[str, Any]] = Field(None, description="Original JWT payload")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")

    model_config = ConfigDict(
        use_enum_values=True
    )

    def has_permission(self, permission: str) -> bool:
        """Check if user has a specific permission."""
        return permission in self.permissions

    def has_any_permission(self, permissions: List[str]) -> bool:
        return any(perm in self.permissions for perm in permissions)

    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
