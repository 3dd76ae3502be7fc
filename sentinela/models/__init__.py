# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the Sentinela Tático platform.
"""

# Base models
from .base import BaseEntity, to_document_updates

# Enumerations
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
    OdometerSource,
    FuelType,
    CalculationStatus,
    AuditAction
)

# Core entities
from .entities import (
    User,
    Client,
    Checkpoint,
    TemplateCheckpoint,
    RoundTemplate,
    Round,
    RoutePoint,
    CheckpointVisit,
    Incident,
    Vehicle,
    FuelLog,
    MaintenanceLog,
    MaintenanceSchedule,
    OdometerRecord,
    FuelPrice,
    CostCalculation,
    AuditLog,
    UserContext
)

# Response models
from .responses import HalLink

__all__ = [
    "BaseEntity",
    "to_document_updates",
    "UserRole",
    "VehicleType",
    "RoundStatus",
    "CheckpointVisitStatus",
    "IncidentType",
    "IncidentPriority",
    "IncidentStatus",
    "ShiftType",
    "MaintenanceType",
    "OdometerRecordType",
    "OdometerSource",
    "FuelType",
    "CalculationStatus",
    "AuditAction",
    "User",
    "Client",
    "Checkpoint",
    "TemplateCheckpoint",
    "RoundTemplate",
    "Round",
    "RoutePoint",
    "CheckpointVisit",
    "Incident",
    "Vehicle",
    "FuelLog",
    "MaintenanceLog",
    "MaintenanceSchedule",
    "OdometerRecord",
    "FuelPrice",
    "CostCalculation",
    "AuditLog",
    "UserContext",
    "HalLink"
]
