# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.
"""

import re
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from .base import to_naive_utc
from .entities import TemplateCheckpoint
from .enums import (
    UserRole,
    VehicleType,
    ShiftType,
    IncidentType,
    IncidentPriority,
    IncidentStatus,
    MaintenanceType,
    OdometerRecordType,
    FuelType,
    CalculationStatus
)


class RequestModel(BaseModel):
    """Base for request bodies."""

    model_config = ConfigDict(
        use_enum_values=True,
        extra='forbid'
    )

    @field_validator('*')
    @classmethod
    def normalize_datetimes(cls, v):
        """Timestamps with an offset (e.g. JS toISOString) become naive UTC."""
        return to_naive_utc(v) if isinstance(v, datetime) else v


def _validate_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if not any(c.isupper() for c in v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not any(c.islower() for c in v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not any(c.isdigit() for c in v):
        raise ValueError('Password must contain at least one digit')
    return v


# Path parameters

class IdPath(BaseModel):
    """Single resource identifier in the URL."""
    id: str = Field(..., description="Resource identifier")


class ClientPath(BaseModel):
    client_id: str = Field(..., description="Client identifier")


class VehicleIdPath(BaseModel):
    vehicle_id: str = Field(..., description="Vehicle identifier")


class VehicleSchedulePath(BaseModel):
    vehicle_id: str = Field(..., description="Vehicle identifier")
    schedule_id: str = Field(..., description="Maintenance schedule identifier")


class FuelTypePath(BaseModel):
    fuel_type: FuelType = Field(..., description="Fuel type")


# Authentication

class LoginRequest(RequestModel):
    """Request model for user login."""

    email: str = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class RefreshTokenRequest(RequestModel):
    """Request model for token refresh."""

    refresh_token: str = Field(..., description="Refresh token")


class ResetPasswordRequest(RequestModel):
    """Admin-issued password reset for another user."""

    new_password: str = Field(..., description="New password")

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, v):
        return _validate_password_strength(v)


# Users

class CreateUserRequest(RequestModel):
    """Request model for creating a user."""

    email: str = Field(..., description="User email address")
    name: str = Field(..., min_length=1, max_length=200, description="User full name")
    password: str = Field(..., description="User password")
    role: UserRole = Field(default=UserRole.TATICO)
    phone: Optional[str] = Field(None, max_length=30)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """Validate email format."""
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, v.lower()):
            raise ValueError('Invalid email format')
        return v.lower()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        return _validate_password_strength(v)


class UpdateUserRequest(RequestModel):
    """Request model for updating a user."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    role: Optional[UserRole] = None
    phone: Optional[str] = Field(None, max_length=30)
    active: Optional[bool] = None


# Clients and checkpoints

class CreateClientRequest(RequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(..., min_length=1, max_length=500)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_phone: Optional[str] = Field(None, max_length=30)
    maps_url: Optional[str] = Field(None, description="Google Maps link used to fill coordinates")


class UpdateClientRequest(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    address: Optional[str] = Field(None, min_length=1, max_length=500)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_phone: Optional[str] = Field(None, max_length=30)
    active: Optional[bool] = None


class CreateCheckpointRequest(RequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    qr_code: Optional[str] = Field(None, max_length=200)
    manual_code: Optional[str] = Field(None, max_length=50)
    geofence_radius: float = Field(default=50, gt=0)
    order_index: int = Field(default=0, ge=0)


class UpdateCheckpointRequest(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    qr_code: Optional[str] = Field(None, max_length=200)
    manual_code: Optional[str] = Field(None, max_length=50)
    geofence_radius: Optional[float] = Field(None, gt=0)
    order_index: Optional[int] = Field(None, ge=0)
    active: Optional[bool] = None


class ParseMapsUrlRequest(RequestModel):
    url: str = Field(..., min_length=1)


# Round templates

class CreateTemplateRequest(RequestModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    shift_type: ShiftType = Field(default=ShiftType.DIURNO)
    rounds_per_shift: int = Field(default=3, gt=0)
    interval_hours: int = Field(default=4, gt=0)
    checkpoints: List[TemplateCheckpoint] = Field(default_factory=list)


class UpdateTemplateRequest(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    shift_type: Optional[ShiftType] = None
    rounds_per_shift: Optional[int] = Field(None, gt=0)
    interval_hours: Optional[int] = Field(None, gt=0)
    active: Optional[bool] = None
    checkpoints: Optional[List[TemplateCheckpoint]] = None


# Rounds

class CreateRoundRequest(RequestModel):
    user_id: Optional[str] = Field(None, description="Agent; defaults to the caller")
    client_id: Optional[str] = None
    template_id: Optional[str] = None
    vehicle: VehicleType = Field(default=VehicleType.CAR)
    vehicle_id: Optional[str] = None
    round_number: int = Field(default=1, gt=0)
    notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode='after')
    def validate_target(self):
        if not self.template_id and not self.client_id:
            raise ValueError('Round requires template_id or client_id')
        if self.vehicle != VehicleType.ON_FOOT.value and not self.vehicle_id:
            raise ValueError('vehicle_id is required for motorized rounds')
        return self


class StartRoundRequest(RequestModel):
    initial_odometer: Optional[float] = Field(None, ge=0)


class CompleteRoundRequest(RequestModel):
    final_odometer: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class RegisterVisitRequest(RequestModel):
    """Checkpoint scan: QR payload or typed manual code."""

    code: str = Field(..., min_length=1, max_length=200)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    duration: int = Field(default=0, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)
    force: bool = Field(default=False, description="Accept a scan outside the geofence as delayed")

    @model_validator(mode='after')
    def validate_position(self):
        if (self.lat is None) != (self.lng is None):
            raise ValueError('lat and lng must be provided together')
        return self


class RoutePointInput(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    speed: Optional[float] = Field(None, ge=0)
    recorded_at: Optional[datetime] = None

    @field_validator('recorded_at')
    @classmethod
    def normalize_recorded_at(cls, v):
        return to_naive_utc(v) if v is not None else v


class RecordRoutePointsRequest(RequestModel):
    points: List[RoutePointInput] = Field(..., min_length=1, max_length=500)


# Incidents

class CreateIncidentRequest(RequestModel):
    round_id: Optional[str] = None
    type: IncidentType = Field(default=IncidentType.OTHER)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    priority: IncidentPriority = Field(default=IncidentPriority.MEDIUM)


class UpdateIncidentStatusRequest(RequestModel):
    status: IncidentStatus
    resolution: Optional[str] = Field(None, max_length=5000)
    investigation_notes: Optional[str] = Field(None, max_length=5000)


# Vehicles

class CreateVehicleRequest(RequestModel):
    license_plate: str = Field(..., min_length=1, max_length=10)
    brand: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    year: int = Field(..., ge=1950, le=2100)
    type: VehicleType = Field(default=VehicleType.CAR)
    initial_odometer: float = Field(default=0, ge=0)
    fuel_capacity: Optional[float] = Field(None, gt=0)

    @field_validator('type')
    @classmethod
    def validate_motor_vehicle(cls, v):
        if v == VehicleType.ON_FOOT or v == VehicleType.ON_FOOT.value:
            raise ValueError('Fleet vehicles must be car or motorcycle')
        return v


class UpdateVehicleRequest(RequestModel):
    brand: Optional[str] = Field(None, min_length=1, max_length=100)
    model: Optional[str] = Field(None, min_length=1, max_length=100)
    year: Optional[int] = Field(None, ge=1950, le=2100)
    fuel_capacity: Optional[float] = Field(None, gt=0)
    active: Optional[bool] = None


class CreateFuelLogRequest(RequestModel):
    round_id: Optional[str] = None
    fuel_type: FuelType = Field(default=FuelType.GASOLINE)
    fuel_amount: float = Field(..., gt=0)
    fuel_cost: Optional[float] = Field(None, ge=0)
    odometer_reading: float = Field(..., ge=0)
    fuel_station: Optional[str] = Field(None, max_length=200)


class CreateMaintenanceLogRequest(RequestModel):
    maintenance_type: MaintenanceType = Field(default=MaintenanceType.PREVENTIVE)
    service_type: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    cost: Optional[float] = Field(None, ge=0)
    odometer_reading: float = Field(..., ge=0)
    location: Optional[str] = Field(None, max_length=200)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class CreateOdometerRecordRequest(RequestModel):
    round_id: Optional[str] = None
    odometer_reading: float = Field(..., ge=0)
    record_type: OdometerRecordType = Field(default=OdometerRecordType.START)


class ValidateOdometerRequest(RequestModel):
    odometer_reading: float = Field(..., ge=0)


class CreateMaintenanceScheduleRequest(RequestModel):
    service_type: str = Field(..., min_length=1, max_length=200)
    interval_km: Optional[float] = Field(None, gt=0)
    interval_days: Optional[int] = Field(None, gt=0)
    last_service_km: Optional[float] = Field(None, ge=0)
    last_service_date: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_interval(self):
        if self.interval_km is None and self.interval_days is None:
            raise ValueError('Schedule requires interval_km or interval_days')
        return self


class CompleteMaintenanceScheduleRequest(RequestModel):
    service_km: Optional[float] = Field(None, ge=0, description="Defaults to the vehicle's current odometer")
    service_date: Optional[datetime] = None


# Costs

class CostCalculationInput(RequestModel):
    """Inputs of the round-trip cost formula."""

    vehicle_type: VehicleType = Field(default=VehicleType.CAR)
    fuel_type: FuelType = Field(default=FuelType.GASOLINE)
    fuel_efficiency: float = Field(..., gt=0, description="km per litre")
    fuel_price: Optional[float] = Field(None, gt=0, description="Defaults to the configured price")
    distance_base_to_client: float = Field(..., ge=0, description="One-way km")
    rounds_per_day: int = Field(..., gt=0)
    days_per_month: int = Field(..., ge=1, le=31)
    time_per_round: float = Field(..., gt=0, description="Hours")
    tactical_salary: float = Field(..., ge=0)
    hourly_rate: Optional[float] = Field(None, gt=0)
    other_monthly_costs: float = Field(default=0, ge=0)
    profit_margin: float = Field(default=30, ge=0)

    @field_validator('vehicle_type')
    @classmethod
    def validate_vehicle_type(cls, v):
        if v == VehicleType.ON_FOOT:
            raise ValueError('Cost calculations support car or motorcycle')
        return v

    @model_validator(mode='after')
    def validate_labor_inputs(self):
        if self.hourly_rate is None and self.tactical_salary <= 0:
            raise ValueError('Provide hourly_rate or a positive tactical_salary')
        return self


class SaveCostCalculationRequest(CostCalculationInput):
    calculation_name: str = Field(..., min_length=1, max_length=200)
    client_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)


class UpdateCalculationStatusRequest(RequestModel):
    status: CalculationStatus


class OperationalCostRequest(RequestModel):
    distance_km: float = Field(..., ge=0)
    duration_hours: float = Field(..., ge=0)
    fuel_cost: float = Field(..., ge=0)
    hourly_wage: float = Field(default=15, ge=0)
    maintenance_per_km: float = Field(default=0.30, ge=0)
    depreciation_per_km: float = Field(default=0.50, ge=0)


class UpdateFuelPriceRequest(RequestModel):
    price_per_liter: float = Field(..., gt=0)
