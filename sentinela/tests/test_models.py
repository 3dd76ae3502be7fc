# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for Pydantic models.
"""

import pytest
from datetime import datetime
from pydantic import ValidationError
from bson import ObjectId

from sentinela.models.entities import (
    User, Round, RoundTemplate, TemplateCheckpoint, Vehicle, AuditLog, UserContext
)
from sentinela.models.requests import (
    CreateUserRequest, CreateRoundRequest, RegisterVisitRequest, CostCalculationInput,
    CreateMaintenanceScheduleRequest, CreateClientRequest, RoutePointInput
)
from sentinela.models.base import to_document_updates
from sentinela.tests.factories import ORG_ID, ADMIN_ID, AGENT_ID

STAMPS = {"organization_id": ORG_ID, "created_by": ADMIN_ID, "updated_by": ADMIN_ID}


class TestDocumentMapping:
    """Entities are camelCase in MongoDB and snake_case in responses."""

    def test_round_trip_through_document(self):
        round_ = Round(user_id=AGENT_ID, client_id="c1", vehicle="on_foot", **STAMPS)

        document = round_.to_document()

        assert isinstance(document['_id'], ObjectId)
        assert document['userId'] == AGENT_ID
        assert document['organizationId'] == ORG_ID
        assert 'user_id' not in document

        restored = Round.from_document(document)
        assert restored.id == round_.id
        assert restored.vehicle == "on_foot"

    def test_from_document_with_string_id(self):
        vehicle = Vehicle.from_document({
            "id": "64f0000000000000000000e1", "licensePlate": "abc1d23", "brand": "Honda", "model": "CG",
            "year": 2022, "type": "motorcycle", **{"organizationId": ORG_ID, "createdBy": ADMIN_ID,
                                                     "updatedBy": ADMIN_ID}
        })

        assert vehicle.id == "64f0000000000000000000e1"
        assert vehicle.license_plate == "ABC1D23"

    def test_response_is_json_ready(self):
        user = User(email="Agent@Sentinela.test", name=" Agent ", password_hash="x", **STAMPS)

        response = user.to_response()

        assert response['email'] == "agent@sentinela.test"
        assert response['name'] == "Agent"
        assert isinstance(response['created_at'], str)

    def test_to_document_updates(self):
        assert to_document_updates({"current_odometer": 10, "last_service_date": None}) == {
            "currentOdometer": 10, "lastServiceDate": None
        }


class TestEntityRules:

    def test_round_needs_target(self):
        with pytest.raises(ValidationError) as exc_info:
            Round(user_id=AGENT_ID, **STAMPS)

        assert "template_id or client_id" in str(exc_info.value)

    def test_round_odometer_cannot_go_back(self):
        with pytest.raises(ValidationError):
            Round(user_id=AGENT_ID, client_id="c1", initial_odometer=100, final_odometer=90, **STAMPS)

    def test_template_stops_are_sorted(self):
        template = RoundTemplate(
            name="Night", checkpoints=[
                TemplateCheckpoint(client_id="b", order_index=3),
                TemplateCheckpoint(client_id="a", order_index=1)
            ], **STAMPS
        )

        assert [stop.client_id for stop in template.checkpoints] == ["a", "b"]

    def test_template_order_must_be_unique(self):
        with pytest.raises(ValidationError):
            RoundTemplate(
                name="Night", checkpoints=[
                    TemplateCheckpoint(client_id="a", order_index=1),
                    TemplateCheckpoint(client_id="b", order_index=1)
                ], **STAMPS
            )

    def test_vehicle_cannot_be_on_foot(self):
        with pytest.raises(ValidationError):
            Vehicle(license_plate="X1", brand="-", model="-", year=2020, type="on_foot", **STAMPS)

    def test_inactive_user(self):
        user = User(email="a@sentinela.test", name="A", password_hash="x", active=False, **STAMPS)
        assert user.is_active() is False

        user.active = True
        user.soft_delete(ADMIN_ID)
        assert user.is_active() is False
        assert isinstance(user.deleted_at, datetime)

    def test_audit_entity_must_be_known(self):
        with pytest.raises(ValidationError):
            AuditLog(user_id=ADMIN_ID, organization_id=ORG_ID, entity="spaceship", entity_id="1", action="create")

    def test_user_context_permissions(self):
        context = UserContext(user_id=ADMIN_ID, org_id=ORG_ID, role="admin", permissions=["round:manage"])

        assert context.is_admin()
        assert context.has_any_permission(["round:execute", "round:manage"])
        assert not context.has_permission("round:execute")


class TestRequestModels:

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            CreateClientRequest(name="Azul", address="Rua 1", owner="someone")

    @pytest.mark.parametrize("password,message", [
        ("Short1", "at least 8"),
        ("alllowercase1", "uppercase"),
        ("ALLUPPERCASE1", "lowercase"),
        ("NoDigitsHere", "digit"),
    ])
    def test_password_strength(self, password, message):
        with pytest.raises(ValidationError) as exc_info:
            CreateUserRequest(email="a@sentinela.test", name="A", password=password)

        assert message in str(exc_info.value)

    def test_motorized_round_needs_vehicle(self):
        with pytest.raises(ValidationError):
            CreateRoundRequest(client_id="c1", vehicle="car")

        assert CreateRoundRequest(client_id="c1", vehicle="on_foot").vehicle_id is None

    def test_visit_position_pairs(self):
        with pytest.raises(ValidationError):
            RegisterVisitRequest(code="QR-1", lat=-23.5)

        assert RegisterVisitRequest(code="QR-1").force is False

    def test_cost_input_needs_labor(self):
        with pytest.raises(ValidationError):
            CostCalculationInput(
                fuel_efficiency=10, distance_base_to_client=15, rounds_per_day=3,
                days_per_month=22, time_per_round=1.5, tactical_salary=0
            )

    def test_timestamps_become_naive_utc(self):
        schedule = CreateMaintenanceScheduleRequest(
            service_type="Oil change", interval_days=180, last_service_date="2025-01-10T09:00:00-03:00"
        )
        point = RoutePointInput(lat=-23.5, lng=-46.6, recorded_at="2025-01-10T12:00:00Z")

        assert schedule.last_service_date == datetime(2025, 1, 10, 12, 0)
        assert point.recorded_at == datetime(2025, 1, 10, 12, 0)

    def test_schedule_needs_interval(self):
        with pytest.raises(ValidationError):
            CreateMaintenanceScheduleRequest(service_type="Oil change")

        schedule = CreateMaintenanceScheduleRequest(service_type="Oil change", interval_days=180)
        assert schedule.interval_km is None
