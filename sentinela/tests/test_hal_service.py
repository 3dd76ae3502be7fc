# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for HAL response formatting utilities.
"""

import pytest

from sentinela.domain.authorization import permissions_for_role
from sentinela.models.responses import HalLink
from sentinela.services.hal import (
    HalLinkBuilder, PaginationLinkBuilder, AffordanceLinkBuilder,
    HalFormatter, create_hal_formatter
)

BASE_URL = "https://api.example.com"
ADMIN = permissions_for_role("admin")
OPERATOR = permissions_for_role("operador")
AGENT = permissions_for_role("tatico")


class TestHalLinkBuilder:
    """Test HAL link builder functionality."""

    def test_build_basic_link(self):
        builder = HalLinkBuilder(BASE_URL)

        link = builder.build_link("/api/rounds/123")

        assert isinstance(link, HalLink)
        assert link.href == "https://api.example.com/api/rounds/123"
        assert link.method == "GET"
        assert link.type is None

    def test_build_action_link(self):
        """Action links post JSON to a sub-path and derive a title."""
        builder = HalLinkBuilder(BASE_URL)

        link = builder.build_action_link("/api/rounds/123", "route-points")

        assert link.href == "https://api.example.com/api/rounds/123/route-points"
        assert link.method == "POST"
        assert link.type == "application/json"
        assert link.title == "Route Points"

    def test_base_url_normalization(self):
        builder = HalLinkBuilder("https://api.example.com/")

        link = builder.build_link("/api/clients")

        assert link.href == "https://api.example.com/api/clients"


class TestPaginationLinkBuilder:
    """Test pagination link builder functionality."""

    def test_first_page(self):
        builder = PaginationLinkBuilder(BASE_URL)

        links = builder.build_pagination_links("/api/rounds", 1, 3, 20)

        assert set(links) == {'self', 'next', 'last'}
        assert links['next'].href == "https://api.example.com/api/rounds?page=2&page_size=20"
        assert links['last'].href == "https://api.example.com/api/rounds?page=3&page_size=20"

    def test_middle_page_keeps_filters(self):
        """Filters survive in every page link; None values are dropped."""
        builder = PaginationLinkBuilder(BASE_URL)

        links = builder.build_pagination_links(
            "/api/rounds", 2, 3, 10, {"status": "active", "client_id": None}
        )

        assert set(links) == {'self', 'first', 'prev', 'next', 'last'}
        assert links['prev'].href == "https://api.example.com/api/rounds?status=active&page=1&page_size=10"
        assert "client_id" not in links['next'].href

    def test_single_page(self):
        builder = PaginationLinkBuilder(BASE_URL)

        links = builder.build_pagination_links("/api/clients", 1, 1, 20)

        assert set(links) == {'self'}


class TestRoundAffordances:
    """Round links follow the lifecycle and the caller's role."""

    @pytest.fixture
    def builder(self):
        return AffordanceLinkBuilder(BASE_URL)

    def test_pending_round_for_owner(self, builder):
        links = builder.build_round_affordances("r1", "pending", AGENT, is_owner=True)

        assert 'start' in links
        assert 'flag_incident' in links
        assert 'complete' not in links
        assert 'delete' not in links

    def test_active_round_for_owner(self, builder):
        links = builder.build_round_affordances("r1", "active", AGENT, is_owner=True)

        assert links['register_visit'].href == "https://api.example.com/api/rounds/r1/visits"
        assert links['complete'].method == "POST"
        assert 'start' not in links

    def test_agent_on_foreign_round_only_reads(self, builder):
        links = builder.build_round_affordances("r1", "active", AGENT, is_owner=False)

        assert set(links) == {'self', 'collection', 'client_progress', 'visits', 'route'}

    def test_operator_manages_any_round(self, builder):
        links = builder.build_round_affordances("r1", "incident", OPERATOR, is_owner=False)

        assert 'resume' in links
        assert 'delete' not in links

    def test_admin_cannot_delete_active_round(self, builder):
        assert 'delete' not in builder.build_round_affordances("r1", "active", ADMIN)
        assert 'delete' in builder.build_round_affordances("r1", "completed", ADMIN)


class TestOtherAffordances:

    @pytest.fixture
    def builder(self):
        return AffordanceLinkBuilder(BASE_URL)

    def test_resolved_incident_has_no_status_links(self, builder):
        links = builder.build_incident_affordances("i1", "resolved", OPERATOR)

        assert 'resolve' not in links
        assert 'investigate' not in links

    def test_open_incident_for_operator(self, builder):
        links = builder.build_incident_affordances("i1", "open", OPERATOR)

        assert links['investigate'].method == "PUT"
        assert links['resolve'].href == "https://api.example.com/api/incidents/i1/status"

    def test_client_links_by_role(self, builder):
        agent_links = builder.build_client_affordances("c1", AGENT)
        admin_links = builder.build_client_affordances("c1", ADMIN)

        assert 'checkpoints' in agent_links
        assert 'edit' not in agent_links
        assert admin_links['delete'].method == "DELETE"
        assert admin_links['add_checkpoint'].href == "https://api.example.com/api/clients/c1/checkpoints"

    def test_checkpoint_points_at_client(self, builder):
        links = builder.build_checkpoint_affordances("k1", "c1", AGENT)

        assert links['client'].href == "https://api.example.com/api/clients/c1"
        assert links['collection'].href == "https://api.example.com/api/clients/c1/checkpoints"

    def test_approved_calculation_is_final(self, builder):
        assert 'update_status' in builder.build_calculation_affordances("k1", "sent", OPERATOR)
        assert 'update_status' not in builder.build_calculation_affordances("k1", "approved", OPERATOR)

    def test_vehicle_links(self, builder):
        agent_links = builder.build_vehicle_affordances("v1", AGENT)

        assert 'add_fuel_log' in agent_links
        assert 'add_maintenance_log' not in agent_links
        assert 'add_maintenance_log' in builder.build_vehicle_affordances("v1", OPERATOR)

    def test_user_cannot_deactivate_self(self, builder):
        assert 'deactivate' not in builder.build_user_affordances("u1", ADMIN, "u1")
        assert 'deactivate' in builder.build_user_affordances("u2", ADMIN, "u1")


class TestHalFormatter:
    """Test the high level formatter used by the routes."""

    def test_format_resource(self):
        formatter = create_hal_formatter(BASE_URL)

        response = formatter.format_resource({"id": "t1", "name": "Night shift"}, "template", OPERATOR)

        assert response['name'] == "Night shift"
        assert response['_links']['self'] == {
            "href": "https://api.example.com/api/templates/t1", "method": "GET", "title": "Self"
        }
        assert response['_links']['create_round']['method'] == "POST"

    def test_format_collection(self):
        formatter = HalFormatter(BASE_URL)

        response = formatter.format_collection(
            [{"id": "c1"}, {"id": "c2"}], 45, 1, 20, "/api/clients", "client", AGENT
        )

        assert response['total'] == 45
        assert response['total_pages'] == 3
        assert [item['id'] for item in response['_embedded']['items']] == ["c1", "c2"]
        assert '_links' in response['_embedded']['items'][0]
        assert 'next' in response['_links']

    def test_empty_collection_has_one_page(self):
        response = HalFormatter(BASE_URL).format_collection([], 0, 1, 20, "/api/clients", "client", AGENT)

        assert response['total_pages'] == 1
        assert response['_embedded']['items'] == []

    def test_business_rule_error(self):
        formatter = HalFormatter(BASE_URL)

        response = formatter.format_business_rule_error(
            "Round is not active", "/api/rounds/r1/complete", "INVALID_TRANSITION"
        )

        assert response['status'] == 422
        assert response['code'] == "INVALID_TRANSITION"
        assert response['type'].endswith("/business-rule-violation")
        assert 'help' in response['_links']

    def test_validation_error_links_schema(self):
        response = HalFormatter(BASE_URL).format_validation_error(
            "Invalid payload", "/api/clients", [{"field": "name", "message": "required", "type": "missing"}]
        )

        assert response['errors'][0]['field'] == "name"
        assert response['_links']['schema']['href'] == "https://api.example.com/openapi/openapi.json"

    def test_authentication_error_links_login(self):
        response = HalFormatter(BASE_URL).format_authentication_error("Token expired", "/api/rounds")

        assert response['_links']['login']['method'] == "POST"
