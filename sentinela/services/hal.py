# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Implements HATEOAS Level-3 API responses with conditional affordance links.
"""

from typing import Dict, List, Any, Optional
from urllib.parse import urljoin, urlencode
import math

from ..models.enums import RoundStatus, IncidentStatus, CalculationStatus
from ..models.responses import HalLink

PROBLEM_BASE_URL = "https://api.sentinela-tatico.com.br/problems"


class HalLinkBuilder:
    """Builder for HAL links with proper URL construction."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/') + '/'

    def build_link(
        self,
        path: str,
        method: str = "GET",
        content_type: Optional[str] = None,
        title: Optional[str] = None,
        templated: bool = False
    ) -> HalLink:
        """Build a HAL link with proper URL construction."""
        return HalLink(
            href=urljoin(self.base_url, path.lstrip('/')),
            method=method,
            type=content_type,
            title=title,
            templated=templated or None
        )

    def build_self_link(self, resource_path: str) -> HalLink:
        return self.build_link(resource_path, title="Self")

    def build_collection_link(self, collection_path: str) -> HalLink:
        return self.build_link(collection_path, title="Collection")

    def build_action_link(
        self,
        resource_path: str,
        action: str,
        method: str = "POST",
        title: Optional[str] = None
    ) -> HalLink:
        """Build action link for a resource."""
        return self.build_link(
            f"{resource_path}/{action}",
            method=method,
            content_type="application/json",
            title=title or action.replace('-', ' ').title()
        )

    def build_edit_link(self, resource_path: str, title: str) -> HalLink:
        return self.build_link(resource_path, method="PUT", content_type="application/json", title=title)

    def build_delete_link(self, resource_path: str, title: str) -> HalLink:
        return self.build_link(resource_path, method="DELETE", title=title)


class PaginationLinkBuilder:
    """Builder for pagination links in HAL collections."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def _page_link(self, base_path: str, params: Dict[str, Any], page: int, page_size: int, title: str) -> HalLink:
        query = urlencode({**params, 'page': page, 'page_size': page_size})
        return self.link_builder.build_link(f"{base_path}?{query}", title=title)

    def build_pagination_links(
        self,
        base_path: str,
        current_page: int,
        total_pages: int,
        page_size: int,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build self/first/prev/next/last links for a collection page."""
        params = {key: value for key, value in (query_params or {}).items() if value is not None}
        links = {'self': self._page_link(base_path, params, current_page, page_size, "Current page")}

        if current_page > 1:
            links['first'] = self._page_link(base_path, params, 1, page_size, "First page")
            links['prev'] = self._page_link(base_path, params, current_page - 1, page_size, "Previous page")

        if current_page < total_pages:
            links['next'] = self._page_link(base_path, params, current_page + 1, page_size, "Next page")
            links['last'] = self._page_link(base_path, params, total_pages, page_size, "Last page")

        return links


class AffordanceLinkBuilder:
    """Builder for conditional affordance links based on permissions and state."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def _base_links(self, base_path: str, collection_path: str) -> Dict[str, HalLink]:
        return {
            'self': self.link_builder.build_self_link(base_path),
            'collection': self.link_builder.build_collection_link(collection_path)
        }

    def build_round_affordances(
        self,
        round_id: str,
        round_status: str,
        user_permissions: List[str],
        is_owner: bool = False
    ) -> Dict[str, HalLink]:
        """
        Round links follow the lifecycle: start while pending, visits and
        completion while active, resume while flagged as incident.
        """
        base_path = f"/api/rounds/{round_id}"
        links = self._base_links(base_path, "/api/rounds")
        can_execute = "round:manage" in user_permissions or (
            is_owner and "round:execute" in user_permissions
        )

        links['client_progress'] = self.link_builder.build_link(
            f"{base_path}/client-progress", title="Progress per client"
        )

        if can_execute:
            if round_status == RoundStatus.PENDING.value:
                links['start'] = self.link_builder.build_action_link(base_path, "start", title="Start round")
            if round_status == RoundStatus.ACTIVE.value:
                links['register_visit'] = self.link_builder.build_action_link(
                    base_path, "visits", title="Register checkpoint visit"
                )
                links['record_route'] = self.link_builder.build_action_link(
                    base_path, "route-points", title="Record route points"
                )
                links['complete'] = self.link_builder.build_action_link(
                    base_path, "complete", title="Complete round"
                )
            if round_status in (RoundStatus.PENDING.value, RoundStatus.ACTIVE.value):
                links['flag_incident'] = self.link_builder.build_action_link(
                    base_path, "incident", title="Flag round incident"
                )
            if round_status == RoundStatus.INCIDENT.value:
                links['resume'] = self.link_builder.build_action_link(base_path, "resume", title="Resume round")

        links['visits'] = self.link_builder.build_link(f"{base_path}/visits", title="Checkpoint visits")
        links['route'] = self.link_builder.build_link(f"{base_path}/route-points", title="Recorded route")

        if "round:delete" in user_permissions and round_status != RoundStatus.ACTIVE.value:
            links['delete'] = self.link_builder.build_delete_link(base_path, "Delete round")

        return links

    def build_incident_affordances(
        self,
        incident_id: str,
        incident_status: str,
        user_permissions: List[str]
    ) -> Dict[str, HalLink]:
        base_path = f"/api/incidents/{incident_id}"
        links = self._base_links(base_path, "/api/incidents")

        if "incident:update" in user_permissions:
            if incident_status == IncidentStatus.OPEN.value:
                links['investigate'] = self.link_builder.build_action_link(
                    base_path, "status", method="PUT", title="Start investigation"
                )
            if incident_status != IncidentStatus.RESOLVED.value:
                links['resolve'] = self.link_builder.build_action_link(
                    base_path, "status", method="PUT", title="Resolve incident"
                )

        if "incident:delete" in user_permissions:
            links['delete'] = self.link_builder.build_delete_link(base_path, "Delete incident")

        return links

    def build_client_affordances(self, client_id: str, user_permissions: List[str]) -> Dict[str, HalLink]:
        base_path = f"/api/clients/{client_id}"
        links = self._base_links(base_path, "/api/clients")

        if "checkpoint:read" in user_permissions:
            links['checkpoints'] = self.link_builder.build_link(
                f"{base_path}/checkpoints", title="Client checkpoints"
            )
        if "checkpoint:create" in user_permissions:
            links['add_checkpoint'] = self.link_builder.build_action_link(
                base_path, "checkpoints", title="Add checkpoint"
            )
        if "client:update" in user_permissions:
            links['edit'] = self.link_builder.build_edit_link(base_path, "Edit client")
        if "client:delete" in user_permissions:
            links['delete'] = self.link_builder.build_delete_link(base_path, "Delete client")

        return links

    def build_checkpoint_affordances(
        self,
        checkpoint_id: str,
        client_id: str,
        user_permissions: List[str]
    ) -> Dict[str, HalLink]:
        base_path = f"/api/checkpoints/{checkpoint_id}"
        links = self._base_links(base_path, f"/api/clients/{client_id}/checkpoints")
        links['client'] = self.link_builder.build_link(f"/api/clients/{client_id}", title="Client")

        if "checkpoint:update" in user_permissions:
            links['edit'] = self.link_builder.build_edit_link(base_path, "Edit checkpoint")
        if "checkpoint:delete" in user_permissions:
            links['delete'] = self.link_builder.build_delete_link(base_path, "Delete checkpoint")

        return links

    def build_template_affordances(self, template_id: str, user_permissions: List[str]) -> Dict[str, HalLink]:
        base_path = f"/api/templates/{template_id}"
        links = self._base_links(base_path, "/api/templates")

        if "round:create" in user_permissions:
            links['create_round'] = self.link_builder.build_link(
                "/api/rounds", method="POST", content_type="application/json",
                title="Create round from template"
            )
        if "template:update" in user_permissions:
            links['edit'] = self.link_builder.build_edit_link(base_path, "Edit template")
        if "template:delete" in user_permissions:
            links['delete'] = self.link_builder.build_delete_link(base_path, "Delete template")

        return links

    def build_vehicle_affordances(self, vehicle_id: str, user_permissions: List[str]) -> Dict[str, HalLink]:
        base_path = f"/api/vehicles/{vehicle_id}"
        links = self._base_links(base_path, "/api/vehicles")

        links['odometer_history'] = self.link_builder.build_link(
            f"{base_path}/odometer/history", title="Odometer history"
        )
        links['maintenance_schedules'] = self.link_builder.build_link(
            f"{base_path}/maintenance-schedules", title="Maintenance schedules"
        )
        if "vehicle:execute" in user_permissions:
            links['add_fuel_log'] = self.link_builder.build_action_link(
                base_path, "fuel-logs", title="Register refuelling"
            )
            links['add_odometer_record'] = self.link_builder.build_action_link(
                base_path, "odometer-records", title="Register odometer reading"
            )
        if "vehicle:update" in user_permissions:
            links['add_maintenance_log'] = self.link_builder.build_action_link(
                base_path, "maintenance-logs", title="Register maintenance"
            )
            links['edit'] = self.link_builder.build_edit_link(base_path, "Edit vehicle")
        if "vehicle:delete" in user_permissions:
            links['delete'] = self.link_builder.build_delete_link(base_path, "Delete vehicle")

        return links

    def build_calculation_affordances(
        self,
        calculation_id: str,
        calculation_status: str,
        user_permissions: List[str]
    ) -> Dict[str, HalLink]:
        base_path = f"/api/costs/calculations/{calculation_id}"
        links = self._base_links(base_path, "/api/costs/calculations")

        if "cost:update" in user_permissions and calculation_status != CalculationStatus.APPROVED.value:
            links['update_status'] = self.link_builder.build_action_link(
                base_path, "status", method="PUT", title="Update proposal status"
            )
        if "cost:delete" in user_permissions:
            links['delete'] = self.link_builder.build_delete_link(base_path, "Delete calculation")

        return links

    def build_user_affordances(
        self,
        user_id: str,
        user_permissions: List[str],
        current_user_id: str
    ) -> Dict[str, HalLink]:
        base_path = f"/api/users/{user_id}"
        links = self._base_links(base_path, "/api/users")
        is_self = user_id == current_user_id

        if "user:update" in user_permissions:
            links['edit'] = self.link_builder.build_edit_link(base_path, "Edit user")
        if "user:delete" in user_permissions and not is_self:
            links['deactivate'] = self.link_builder.build_delete_link(base_path, "Deactivate user")
        if "user:manage" in user_permissions and not is_self:
            links['reset_password'] = self.link_builder.build_action_link(
                base_path, "reset-password", title="Reset password"
            )

        return links


class HalResponseBuilder:
    """Main HAL response builder with comprehensive formatting capabilities."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.pagination_builder = PaginationLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)

    def build_resource_response(
        self,
        data: Dict[str, Any],
        resource_type: str,
        user_permissions: List[str],
        current_user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build a HAL resource response with appropriate affordance links."""
        response = dict(data)
        resource_id = data['id']
        affordances = self.affordance_builder

        if resource_type == "round":
            links = affordances.build_round_affordances(
                resource_id, data.get('status', ''), user_permissions,
                is_owner=data.get('user_id') == current_user_id
            )
        elif resource_type == "incident":
            links = affordances.build_incident_affordances(resource_id, data.get('status', ''), user_permissions)
        elif resource_type == "client":
            links = affordances.build_client_affordances(resource_id, user_permissions)
        elif resource_type == "checkpoint":
            links = affordances.build_checkpoint_affordances(resource_id, data.get('client_id', ''), user_permissions)
        elif resource_type == "template":
            links = affordances.build_template_affordances(resource_id, user_permissions)
        elif resource_type == "vehicle":
            links = affordances.build_vehicle_affordances(resource_id, user_permissions)
        elif resource_type == "calculation":
            links = affordances.build_calculation_affordances(resource_id, data.get('status', ''), user_permissions)
        elif resource_type == "user":
            links = affordances.build_user_affordances(resource_id, user_permissions, current_user_id or "")
        else:
            links = {'self': self.link_builder.build_self_link(f"/api/{resource_type}/{resource_id}")}

        response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response with pagination links."""
        total_pages = max(math.ceil(total / page_size), 1) if page_size > 0 else 1

        pagination_links = self.pagination_builder.build_pagination_links(
            collection_path,
            page,
            total_pages,
            page_size,
            query_params
        )

        return {
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': total_pages,
            '_links': {rel: link.model_dump(exclude_none=True) for rel, link in pagination_links.items()},
            '_embedded': {
                'items': items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 compliant error response with HAL links."""
        error_response = {
            'type': f"{PROBLEM_BASE_URL}/{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if validation_errors:
            error_response['errors'] = validation_errors
        if error_code:
            error_response['code'] = error_code

        links = {
            'help': self.link_builder.build_link(
                f"/docs/errors#{error_type}",
                title="Error documentation"
            )
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link("/openapi/openapi.json", title="API schema")
        elif error_type == "authentication-required":
            links['login'] = self.link_builder.build_link(
                "/api/auth/login",
                method="POST",
                content_type="application/json",
                title="Login"
            )

        error_response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""

    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)

    def format_resource(
        self,
        data: Dict[str, Any],
        resource_type: str,
        user_permissions: List[str],
        current_user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Format a single resource with HAL links."""
        return self.builder.build_resource_response(data, resource_type, user_permissions, current_user_id)

    def format_collection(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        resource_type: str,
        user_permissions: List[str],
        current_user_id: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format a page of resources; every item carries its own links."""
        formatted = [
            self.format_resource(item, resource_type, user_permissions, current_user_id)
            for item in items
        ]
        return self.builder.build_collection_response(
            formatted, total, page, page_size, collection_path, filters
        )

    def format_validation_error(
        self,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "validation-error", "Validation Error", 400, detail, instance, validation_errors
        )

    def format_authentication_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "authentication-required", "Authentication Required", 401, detail, instance
        )

    def format_authorization_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "insufficient-permissions", "Insufficient Permissions", 403, detail, instance
        )

    def format_not_found_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "resource-not-found", "Resource Not Found", 404, detail, instance
        )

    def format_conflict_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "resource-conflict", "Resource Conflict", 409, detail, instance
        )

    def format_business_rule_error(
        self,
        detail: str,
        instance: str,
        error_code: Optional[str] = None
    ) -> Dict[str, Any]:
        """Domain rule violation such as an invalid round transition."""
        return self.builder.build_error_response(
            "business-rule-violation", "Business Rule Violation", 422, detail, instance,
            error_code=error_code
        )

    def format_service_unavailable_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "service-unavailable", "Service Unavailable", 503, detail, instance
        )

    def format_server_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "internal-server-error", "Internal Server Error", 500, detail, instance
        )


def create_hal_formatter(base_url: str) -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url)
