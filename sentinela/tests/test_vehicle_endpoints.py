# SPDX-License-Identifier: Apache-2.0

"""
Endpoint tests for the fleet, odometer readings and maintenance.
"""

import json
from datetime import datetime

from sentinela.services.mongodb import (
    VEHICLES, FUEL_LOGS, MAINTENANCE_LOGS, MAINTENANCE_SCHEDULES, ROUNDS
)
from sentinela.tests.factories import AGENT_ID, document, new_id, by_collection


def vehicle_doc(**fields):
    values = dict(
        licensePlate="ABC1D23", brand="Fiat", model="Strada", year=2021, type="car",
        initialOdometer=10000, currentOdometer=15000, fuelCapacity=55, active=True
    )
    values.update(fields)
    return document(**values)


def fuel_doc(km, litres, when):
    return document(vehicleId="v", userId=AGENT_ID, roundId=None, fuelType="gasoline", fuelAmount=litres,
                    fuelCost=None, odometerReading=km, fuelStation=None, recordedAt=when)


def schedule_doc(vehicle_id, **fields):
    values = dict(
        vehicleId=vehicle_id, serviceType="Oil change", intervalKm=10000, intervalDays=None,
        lastServiceKm=10000, lastServiceDate=None, nextServiceKm=20000, nextServiceDate=None, active=True
    )
    values.update(fields)
    return document(**values)


class TestVehicleEndpoints:

    def test_register_vehicle(self, client, mongo, operator_headers):
        payload = {"license_plate": " abc1d23 ", "brand": "Fiat", "model": "Strada", "year": 2021,
                   "initial_odometer": 1200}

        response = client.post('/api/vehicles', data=json.dumps(payload), headers=operator_headers)

        assert response.status_code == 201
        data = response.get_json()
        assert data['license_plate'] == "ABC1D23"
        assert data['current_odometer'] == 1200
        assert 'add_fuel_log' in data['_links']
        assert mongo.find_one_by_filters.call_args.args[2] == {"licensePlate": "ABC1D23"}

    def test_on_foot_is_not_a_vehicle(self, client, operator_headers):
        payload = {"license_plate": "X", "brand": "-", "model": "-", "year": 2020, "type": "on_foot"}

        response = client.post('/api/vehicles', data=json.dumps(payload), headers=operator_headers)

        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'type'

    def test_duplicate_plate(self, client, mongo, operator_headers):
        mongo.find_one_by_filters.return_value = vehicle_doc()
        payload = {"license_plate": "ABC1D23", "brand": "Fiat", "model": "Uno", "year": 2018}

        response = client.post('/api/vehicles', data=json.dumps(payload), headers=operator_headers)

        assert response.status_code == 409

    def test_agent_cannot_register_vehicle(self, client, agent_headers):
        payload = {"license_plate": "ABC1D23", "brand": "Fiat", "model": "Uno", "year": 2018}
        response = client.post('/api/vehicles', data=json.dumps(payload), headers=agent_headers)
        assert response.status_code == 403

    def test_vehicle_with_fuel_efficiency(self, client, mongo, agent_headers):
        existing = vehicle_doc()
        mongo.find_one_by_org.return_value = existing
        mongo.find_by_org.return_value = [
            fuel_doc(1000, 30, datetime(2024, 5, 1)), fuel_doc(1400, 40, datetime(2024, 5, 4))
        ]

        response = client.get(f"/api/vehicles/{existing['id']}", headers=agent_headers)

        assert response.status_code == 200
        assert response.get_json()['fuel_efficiency'] == 10.0

    def test_delete_vehicle_in_use(self, client, mongo, admin_headers):
        mongo.find_one_by_org.return_value = vehicle_doc()
        mongo.count_by_org.return_value = 1

        response = client.delete(f"/api/vehicles/{new_id()}", headers=admin_headers)

        assert response.status_code == 422
        assert response.get_json()['code'] == "VEHICLE_IN_USE"
        assert mongo.count_by_org.call_args.args[0] == ROUNDS


class TestOdometerReadings:
    """Readings registered through fuel logs, maintenance and explicit records."""

    def test_fuel_log_moves_odometer_forward(self, client, mongo, agent_headers):
        existing = vehicle_doc()
        mongo.find_one_by_org.return_value = existing
        mongo.find_by_org.side_effect = by_collection(
            {FUEL_LOGS: [fuel_doc(15000, 40, datetime(2024, 5, 1, 14, 30))]}, []
        )

        response = client.post(
            f"/api/vehicles/{existing['id']}/fuel-logs",
            data=json.dumps({"fuel_amount": 38.5, "fuel_cost": 223.3, "odometer_reading": 15200}),
            headers=agent_headers
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data['user_id'] == AGENT_ID
        assert data['odometer_validation']['valid'] is True
        assert data['odometer_validation']['km_diff'] == 200
        assert mongo.update_by_org.call_args.args[:4] == (
            VEHICLES, existing['organizationId'], existing['id'], {"currentOdometer": 15200}
        )
        assert mongo.create.call_args.args[0] == FUEL_LOGS

    def test_lower_reading_rejected(self, client, mongo, agent_headers):
        existing = vehicle_doc()
        mongo.find_one_by_org.return_value = existing
        mongo.find_by_org.side_effect = by_collection(
            {FUEL_LOGS: [fuel_doc(15000, 40, datetime(2024, 5, 1, 14, 30))]}, []
        )

        response = client.post(
            f"/api/vehicles/{existing['id']}/odometer-records",
            data=json.dumps({"odometer_reading": 14000}),
            headers=agent_headers
        )

        assert response.status_code == 422
        assert response.get_json()['code'] == "KM_LESS_THAN_LAST"
        mongo.create.assert_not_called()

    def test_validate_without_history(self, client, mongo, agent_headers):
        mongo.find_one_by_org.return_value = vehicle_doc()

        response = client.post(
            f"/api/vehicles/{new_id()}/odometer/validate",
            data=json.dumps({"odometer_reading": 50}),
            headers=agent_headers
        )

        assert response.status_code == 200
        assert response.get_json() == {"valid": True, "message": "First odometer record for this vehicle"}
        mongo.create.assert_not_called()

    def test_last_reading_without_history(self, client, mongo, agent_headers):
        mongo.find_one_by_org.return_value = vehicle_doc()
        response = client.get(f"/api/vehicles/{new_id()}/odometer/last", headers=agent_headers)
        assert response.status_code == 404

    def test_history_sources(self, client, mongo, agent_headers):
        existing = vehicle_doc()
        mongo.find_one_by_org.return_value = existing
        mongo.find_by_org.side_effect = by_collection(
            {FUEL_LOGS: [fuel_doc(15000, 40, datetime(2024, 5, 1, 14, 30))]}, []
        )

        response = client.get(f"/api/vehicles/{existing['id']}/odometer/history", headers=agent_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['total'] == 1
        assert data['_embedded']['entries'][0]['source'] == "abastecimento"
        assert data['_embedded']['entries'][0]['km'] == 15000


class TestMaintenance:

    def test_maintenance_log_rolls_schedule(self, client, mongo, operator_headers):
        existing = vehicle_doc()
        mongo.find_one_by_org.return_value = existing
        mongo.find_by_org.side_effect = by_collection(
            {MAINTENANCE_SCHEDULES: [schedule_doc(existing['id'])]}, []
        )
        payload = {"service_type": "Oil change", "odometer_reading": 20500, "cost": 350,
                   "start_time": "2024-05-10T10:00:00"}

        response = client.post(
            f"/api/vehicles/{existing['id']}/maintenance-logs", data=json.dumps(payload), headers=operator_headers
        )

        assert response.status_code == 201
        assert response.get_json()['schedules_updated'] == 1
        assert mongo.create.call_args.args[0] == MAINTENANCE_LOGS

        schedule_updates = [call.args[3] for call in mongo.update_by_org.call_args_list
                            if call.args[0] == MAINTENANCE_SCHEDULES]
        assert schedule_updates[0]['lastServiceKm'] == 20500
        assert schedule_updates[0]['nextServiceKm'] == 30500
        assert schedule_updates[0]['lastServiceDate'] == datetime(2024, 5, 10, 10, 0)

    def test_agent_cannot_log_maintenance(self, client, agent_headers):
        response = client.post(
            f"/api/vehicles/{new_id()}/maintenance-logs",
            data=json.dumps({"service_type": "Oil change", "odometer_reading": 1}),
            headers=agent_headers
        )
        assert response.status_code == 403

    def test_schedule_from_current_odometer(self, client, mongo, operator_headers):
        existing = vehicle_doc()
        mongo.find_one_by_org.return_value = existing

        response = client.post(
            f"/api/vehicles/{existing['id']}/maintenance-schedules",
            data=json.dumps({"service_type": "Tyres", "interval_km": 40000}),
            headers=operator_headers
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data['next_service_km'] == 55000
        assert data['overdue'] is False
        assert data['km_remaining'] == 40000

    def test_schedule_with_utc_timestamp(self, client, mongo, operator_headers):
        existing = vehicle_doc()
        mongo.find_one_by_org.return_value = existing
        payload = {"service_type": "Revisao", "interval_days": 180, "last_service_date": "2025-01-10T12:00:00Z"}

        response = client.post(
            f"/api/vehicles/{existing['id']}/maintenance-schedules", data=json.dumps(payload), headers=operator_headers
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data['last_service_date'] == "2025-01-10T12:00:00"
        assert data['next_service_date'] == "2025-07-09T12:00:00"
        stored = mongo.create.call_args.args[1]
        assert stored['lastServiceDate'] == datetime(2025, 1, 10, 12, 0)
        assert stored['lastServiceDate'].tzinfo is None

    def test_complete_schedule_with_local_offset(self, client, mongo, operator_headers):
        existing = vehicle_doc()
        schedule = schedule_doc(existing['id'], intervalDays=90)
        mongo.find_one_by_org.side_effect = by_collection({VEHICLES: existing, MAINTENANCE_SCHEDULES: schedule})

        response = client.post(
            f"/api/vehicles/{existing['id']}/maintenance-schedules/{schedule['id']}/complete",
            data=json.dumps({"service_km": 15000, "service_date": "2025-03-01T09:00:00-03:00"}),
            headers=operator_headers
        )

        assert response.status_code == 200
        updates = mongo.update_by_org.call_args.args[3]
        assert updates['lastServiceDate'] == datetime(2025, 3, 1, 12, 0)
        assert updates['nextServiceDate'] == datetime(2025, 5, 30, 12, 0)
        assert updates['nextServiceKm'] == 25000

    def test_schedule_requires_interval(self, client, mongo, operator_headers):
        mongo.find_one_by_org.return_value = vehicle_doc()

        response = client.post(
            f"/api/vehicles/{new_id()}/maintenance-schedules",
            data=json.dumps({"service_type": "Tyres"}),
            headers=operator_headers
        )

        assert response.status_code == 400

    def test_overdue_schedules(self, client, mongo, agent_headers):
        existing = vehicle_doc(currentOdometer=21000)
        mongo.find_one_by_org.return_value = existing
        mongo.find_by_org.return_value = [
            schedule_doc(existing['id']),
            schedule_doc(existing['id'], serviceType="Tyres", intervalKm=40000, nextServiceKm=50000)
        ]

        response = client.get(f"/api/vehicles/{existing['id']}/maintenance-schedules", headers=agent_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data['overdue'] == 1
        assert [schedule['km_remaining'] for schedule in data['_embedded']['schedules']] == [-1000, 29000]
