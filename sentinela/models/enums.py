# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the Sentinela Tático platform.
"""

from enum import Enum


class UserRole(str, Enum):
    """Operator roles."""
    ADMIN = "admin"
    OPERADOR = "operador"
    TATICO = "tatico"


class VehicleType(str, Enum):
    """How a tactical agent moves during a round."""
    CAR = "car"
    MOTORCYCLE = "motorcycle"
    ON_FOOT = "on_foot"


class RoundStatus(str, Enum):
    """Round lifecycle status."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    INCIDENT = "incident"


class CheckpointVisitStatus(str, Enum):
    """Outcome of a checkpoint visit."""
    COMPLETED = "completed"
    SKIPPED = "skipped"
    DELAYED = "delayed"


class IncidentType(str, Enum):
    """Incident categories."""
    SECURITY = "security"
    MAINTENANCE = "maintenance"
    EMERGENCY = "emergency"
    OTHER = "other"


class IncidentPriority(str, Enum):
    """Incident priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IncidentStatus(str, Enum):
    """Incident workflow status."""
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class ShiftType(str, Enum):
    """Template shift."""
    DIURNO = "diurno"
    NOTURNO = "noturno"


class MaintenanceType(str, Enum):
    """Maintenance categories."""
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"
    EMERGENCY = "emergency"


class OdometerRecordType(str, Enum):
    """Explicit odometer record kinds."""
    START = "start"
    END = "end"
    MAINTENANCE = "maintenance"
    FUEL = "fuel"


class OdometerSource(str, Enum):
    """Where an odometer reading in the merged history came from."""
    START = "start"
    END = "end"
    MAINTENANCE = "maintenance"
    FUEL = "fuel"
    ABASTECIMENTO = "abastecimento"
    MANUTENCAO = "manutencao"
    RONDA_INICIAL = "ronda_inicial"
    RONDA_FINAL = "ronda_final"


class FuelType(str, Enum):
    """Fuel types with configurable prices."""
    GASOLINE = "gasoline"
    DIESEL = "diesel"
    ETHANOL = "ethanol"
    ELECTRIC = "electric"


class CalculationStatus(str, Enum):
    """Cost calculation proposal status."""
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    START = "start"
    COMPLETE = "complete"
    VISIT = "visit"
    STATUS_CHANGE = "status_change"
    PASSWORD_RESET = "password_reset"
    LOGIN = "login"
    LOGOUT = "logout"
