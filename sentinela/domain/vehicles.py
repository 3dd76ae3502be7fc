# SPDX-License-Identifier: Apache-2.0

"""
Vehicle domain logic: odometer history, reading validation and
maintenance scheduling.

The odometer history is the union of every reading the system knows
about for a vehicle. New readings are validated against the highest
known reading so the odometer never goes backwards.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional, Iterable

from ..models.entities import (
    OdometerRecord, FuelLog, MaintenanceLog, Round, MaintenanceSchedule
)
from ..models.enums import OdometerSource

KM_LESS_THAN_LAST = "KM_LESS_THAN_LAST"


@dataclass
class OdometerEntry:
    """A single odometer reading in a vehicle's history."""
    km: float
    recorded_at: datetime
    source: str
    reference_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "km": self.km,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "source": self.source,
            "reference_id": self.reference_id
        }


@dataclass
class OdometerValidation:
    """Outcome of checking a new odometer reading."""
    valid: bool
    message: str
    error_code: Optional[str] = None
    last_km: Optional[float] = None
    last_source: Optional[str] = None
    last_date: Optional[datetime] = None
    km_diff: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"valid": self.valid, "message": self.message}
        if self.error_code:
            result["error_code"] = self.error_code
        if self.last_km is not None:
            result["last_km"] = self.last_km
        if self.last_source:
            result["last_source"] = self.last_source
        if self.last_date:
            result["last_date"] = self.last_date.isoformat()
        if self.km_diff is not None:
            result["km_diff"] = self.km_diff
        return result


def build_odometer_history(
    records: Iterable[OdometerRecord] = (),
    fuel_logs: Iterable[FuelLog] = (),
    maintenance_logs: Iterable[MaintenanceLog] = (),
    rounds: Iterable[Round] = ()
) -> List[OdometerEntry]:
    """
    Merge every odometer reading known for a vehicle.

    Explicit records keep their record type as source; fuel logs become
    ``abastecimento``, maintenance logs ``manutencao`` and rounds contribute
    ``ronda_inicial`` / ``ronda_final`` readings.

    Returns:
        Entries sorted newest first
    """
    history: List[OdometerEntry] = []

    for record in records:
        history.append(OdometerEntry(
            km=record.odometer_reading,
            recorded_at=record.recorded_at,
            source=str(record.record_type),
            reference_id=record.id
        ))

    for log in fuel_logs:
        history.append(OdometerEntry(
            km=log.odometer_reading,
            recorded_at=log.recorded_at,
            source=OdometerSource.ABASTECIMENTO.value,
            reference_id=log.id
        ))

    for log in maintenance_logs:
        history.append(OdometerEntry(
            km=log.odometer_reading,
            recorded_at=log.start_time,
            source=OdometerSource.MANUTENCAO.value,
            reference_id=log.id
        ))

    for round_ in rounds:
        if round_.initial_odometer is not None:
            history.append(OdometerEntry(
                km=round_.initial_odometer,
                recorded_at=round_.start_time or round_.created_at,
                source=OdometerSource.RONDA_INICIAL.value,
                reference_id=round_.id
            ))
        if round_.final_odometer is not None:
            history.append(OdometerEntry(
                km=round_.final_odometer,
                recorded_at=round_.end_time or round_.updated_at,
                source=OdometerSource.RONDA_FINAL.value,
                reference_id=round_.id
            ))

    history.sort(key=lambda entry: entry.recorded_at, reverse=True)
    return history


def last_odometer(history: List[OdometerEntry]) -> Optional[OdometerEntry]:
    """Highest reading in the history; the latest one wins on equal km."""
    if not history:
        return None
    return max(history, key=lambda entry: (entry.km, entry.recorded_at))


def validate_odometer_reading(history: List[OdometerEntry], new_km: float) -> OdometerValidation:
    """
    Validate a new reading against the vehicle's history.

    Args:
        history: Merged odometer history
        new_km: Reading being registered

    Returns:
        OdometerValidation; readings lower than the last known one are invalid
    """
    last = last_odometer(history)
    if last is None:
        return OdometerValidation(
            valid=True,
            message="First odometer record for this vehicle"
        )

    if new_km < last.km:
        return OdometerValidation(
            valid=False,
            error_code=KM_LESS_THAN_LAST,
            message=(
                f"Reading ({new_km:g} km) is lower than the last record "
                f"({last.km:g} km) on {last.recorded_at.strftime('%d/%m/%Y %H:%M')}, "
                f"source: {last.source}"
            ),
            last_km=last.km,
            last_source=last.source,
            last_date=last.recorded_at
        )

    km_diff = new_km - last.km
    return OdometerValidation(
        valid=True,
        message=f"Valid odometer reading. Difference: {km_diff:g} km",
        km_diff=km_diff,
        last_km=last.km
    )


def odometer_diff(start_km: Optional[float], end_km: Optional[float]) -> Optional[float]:
    """Distance driven between two readings; None when either is missing."""
    if start_km is None or end_km is None:
        return None
    if end_km < start_km:
        raise ValueError("End reading cannot be lower than start reading")
    return end_km - start_km


def fuel_efficiency(fuel_logs: List[FuelLog]) -> Optional[float]:
    """
    Average km per litre between consecutive fuel logs.

    The litres of the first fill are not counted since the distance driven
    on them is unknown.
    """
    if len(fuel_logs) < 2:
        return None

    ordered = sorted(fuel_logs, key=lambda log: log.odometer_reading)
    distance = ordered[-1].odometer_reading - ordered[0].odometer_reading
    litres = sum(log.fuel_amount for log in ordered[1:])

    if distance <= 0 or litres <= 0:
        return None
    return round(distance / litres, 2)


def compute_next_service(
    schedule: MaintenanceSchedule,
    updated_by: str,
    service_km: Optional[float] = None,
    service_date: Optional[datetime] = None
) -> MaintenanceSchedule:
    """
    Record a service on the schedule and roll the next due point forward.

    Args:
        schedule: Schedule to update
        updated_by: User registering the service
        service_km: Odometer at the service (defaults to the last one)
        service_date: Service date (defaults to now)

    Returns:
        The updated schedule
    """
    service_date = service_date or datetime.utcnow()
    if service_km is not None:
        schedule.last_service_km = service_km
    schedule.last_service_date = service_date

    if schedule.interval_km and schedule.last_service_km is not None:
        schedule.next_service_km = schedule.last_service_km + schedule.interval_km
    if schedule.interval_days:
        schedule.next_service_date = service_date + timedelta(days=schedule.interval_days)

    schedule.update_timestamp(updated_by)
    return schedule


def is_overdue(
    schedule: MaintenanceSchedule,
    current_odometer: Optional[float],
    now: Optional[datetime] = None
) -> bool:
    """A schedule is due once either its km or its date has been reached."""
    if not schedule.active:
        return False

    now = now or datetime.utcnow()
    if schedule.next_service_km is not None and current_odometer is not None \
            and current_odometer >= schedule.next_service_km:
        return True
    if schedule.next_service_date is not None and schedule.next_service_date <= now:
        return True
    return False
