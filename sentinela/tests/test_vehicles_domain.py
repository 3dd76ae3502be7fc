# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for odometer history, reading validation and maintenance scheduling.
"""

import pytest
from datetime import datetime, timedelta

from sentinela.models.entities import (
    OdometerRecord, FuelLog, MaintenanceLog, MaintenanceSchedule, Round
)
from sentinela.domain.vehicles import (
    OdometerEntry,
    build_odometer_history,
    last_odometer,
    validate_odometer_reading,
    odometer_diff,
    fuel_efficiency,
    compute_next_service,
    is_overdue,
    KM_LESS_THAN_LAST
)

ORG = "org123"
VEHICLE = "veh1"
COMMON = dict(organization_id=ORG, created_by="u1", updated_by="u1")


def fuel_log(km: float, litres: float, when: datetime) -> FuelLog:
    return FuelLog(vehicle_id=VEHICLE, user_id="u1", fuel_amount=litres, odometer_reading=km, recorded_at=when, **COMMON)


class TestOdometerHistory:
    """Merged odometer history of a vehicle."""

    def test_sources_are_merged_newest_first(self):
        base = datetime(2024, 5, 1, 8, 0)
        record = OdometerRecord(
            vehicle_id=VEHICLE, user_id="u1", odometer_reading=1000, record_type="start", recorded_at=base, **COMMON
        )
        fuel = fuel_log(1100, 40, base + timedelta(days=1))
        maintenance = MaintenanceLog(
            vehicle_id=VEHICLE, user_id="u1", service_type="Oil change", odometer_reading=1200,
            start_time=base + timedelta(days=2), **COMMON
        )
        round_ = Round(
            user_id="u1", client_id="c1", vehicle="car", status="completed",
            initial_odometer=1250, final_odometer=1300,
            start_time=base + timedelta(days=3), end_time=base + timedelta(days=3, hours=2), **COMMON
        )

        history = build_odometer_history([record], [fuel], [maintenance], [round_])

        assert [entry.source for entry in history] == [
            "ronda_final", "ronda_inicial", "manutencao", "abastecimento", "start"
        ]
        assert history[0].km == 1300
        assert history[-1].reference_id == record.id

    def test_empty_history(self):
        assert build_odometer_history() == []
        assert last_odometer([]) is None

    def test_last_is_highest_reading(self):
        history = [
            OdometerEntry(km=500, recorded_at=datetime(2024, 5, 3), source="fuel"),
            OdometerEntry(km=800, recorded_at=datetime(2024, 5, 1), source="start"),
        ]
        assert last_odometer(history).km == 800


class TestOdometerValidation:

    def test_first_reading_is_valid(self):
        result = validate_odometer_reading([], 120)
        assert result.valid is True
        assert result.to_dict() == {"valid": True, "message": "First odometer record for this vehicle"}

    def test_lower_reading_rejected(self):
        history = [OdometerEntry(km=15000, recorded_at=datetime(2024, 5, 1, 14, 30), source="abastecimento")]

        result = validate_odometer_reading(history, 14999.5)

        assert result.valid is False
        assert result.error_code == KM_LESS_THAN_LAST
        assert result.last_km == 15000
        assert "01/05/2024 14:30" in result.message
        assert "abastecimento" in result.message

    def test_equal_reading_is_valid(self):
        history = [OdometerEntry(km=15000, recorded_at=datetime(2024, 5, 1), source="start")]
        result = validate_odometer_reading(history, 15000)
        assert result.valid is True
        assert result.km_diff == 0

    def test_odometer_diff(self):
        assert odometer_diff(100, 150.5) == 50.5
        assert odometer_diff(None, 150) is None
        with pytest.raises(ValueError):
            odometer_diff(150, 100)


class TestFuelEfficiency:

    def test_average_between_fills(self):
        now = datetime(2024, 5, 1)
        logs = [fuel_log(1000, 30, now), fuel_log(1400, 40, now + timedelta(days=3))]
        assert fuel_efficiency(logs) == 10.0

    def test_needs_two_fills(self):
        assert fuel_efficiency([fuel_log(1000, 30, datetime(2024, 5, 1))]) is None


class TestMaintenanceSchedule:
    """Rolling maintenance plans forward."""

    def make_schedule(self, **overrides) -> MaintenanceSchedule:
        values = dict(vehicle_id=VEHICLE, service_type="Oil change", interval_km=10000, interval_days=180)
        values.update(overrides)
        return MaintenanceSchedule(**values, **COMMON)

    def test_next_service_computed(self):
        service_date = datetime(2024, 1, 10)
        schedule = compute_next_service(self.make_schedule(), "u2", service_km=20000, service_date=service_date)

        assert schedule.last_service_km == 20000
        assert schedule.next_service_km == 30000
        assert schedule.next_service_date == service_date + timedelta(days=180)
        assert schedule.updated_by == "u2"

    def test_schedule_requires_interval(self):
        with pytest.raises(ValueError):
            self.make_schedule(interval_km=None, interval_days=None)

    def test_overdue_by_km(self):
        schedule = self.make_schedule(next_service_km=30000, next_service_date=datetime(2030, 1, 1))
        assert is_overdue(schedule, 30001, now=datetime(2024, 6, 1)) is True
        assert is_overdue(schedule, 29000, now=datetime(2024, 6, 1)) is False

    def test_overdue_by_date(self):
        schedule = self.make_schedule(next_service_date=datetime(2024, 5, 1))
        assert is_overdue(schedule, None, now=datetime(2024, 6, 1)) is True

    def test_inactive_schedule_never_overdue(self):
        schedule = self.make_schedule(active=False, next_service_km=10)
        assert is_overdue(schedule, 99999) is False
