# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Service cost estimates, saved proposals and configured fuel prices.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from typing import List, Dict, Any

from ..models.requests import (
    IdPath,
    FuelTypePath,
    CostCalculationInput,
    SaveCostCalculationRequest,
    UpdateCalculationStatusRequest,
    OperationalCostRequest,
    UpdateFuelPriceRequest
)
from ..models.entities import CostCalculation, FuelPrice, Client, UserContext
from ..models.enums import AuditAction, CalculationStatus, FuelType
from ..domain.costs import (
    CostInput,
    calculate_costs,
    calculate_operational_cost,
    resolve_fuel_price,
    default_fuel_price_documents,
    can_transition_calculation
)
from ..services.mongodb import COST_CALCULATIONS, FUEL_PRICES, CLIENTS
from ..middleware.auth import require_permission
from ..middleware.error_handler import ValidationException, BusinessRuleException
from ..middleware.validation import parse_json_body
from ..utils.context import load_entity, record_audit
from ..utils.request import RequestParser

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

costs_tag = Tag(name="Costs", description="Service cost calculations and fuel prices")
costs_bp = APIBlueprint(
    'costs',
    __name__,
    url_prefix='/api/costs',
    abp_tags=[costs_tag]
)

_INPUT_FIELDS = (
    "fuel_efficiency", "distance_base_to_client", "rounds_per_day", "days_per_month",
    "time_per_round", "tactical_salary", "hourly_rate", "other_monthly_costs", "profit_margin"
)


def _fuel_price_documents(user_context: UserContext) -> List[Dict[str, Any]]:
    return current_app.mongodb_service.find_by_org(FUEL_PRICES, user_context.org_id)


def _price_for(user_context: UserContext, fuel_type: str) -> float:
    """Configured price, else the built-in default for the fuel type."""
    fallback = default_fuel_price_documents().get(fuel_type, current_app.config['DEFAULT_FUEL_PRICE'])
    return resolve_fuel_price(_fuel_price_documents(user_context), fuel_type, fallback)


def _calculate(user_context: UserContext, calculation_input: CostCalculationInput):
    fuel_price = calculation_input.fuel_price or _price_for(user_context, calculation_input.fuel_type)
    cost_input = CostInput(
        fuel_price=fuel_price,
        **{field: getattr(calculation_input, field) for field in _INPUT_FIELDS}
    )
    try:
        return fuel_price, calculate_costs(cost_input)
    except ValueError as e:
        raise ValidationException(
            "Invalid cost calculation input",
            [{"field": "body", "message": str(e), "type": "value_error"}]
        )


def _format(calculation: CostCalculation, user_context: UserContext) -> dict:
    return current_app.hal_formatter.format_resource(
        calculation.to_response(), "calculation", user_context.permissions
    )


@costs_bp.post('/preview')
@require_permission('cost:read')
def preview_calculation(user_context: UserContext):
    """Run the round-trip cost formula without saving it."""
    with tracer.start_as_current_span("costs.preview", attributes={"organization.id": user_context.org_id}) as span:
        calculation_input = parse_json_body(CostCalculationInput)
        fuel_price, breakdown = _calculate(user_context, calculation_input)

        span.set_attribute("costs.total_monthly", breakdown.total_monthly_cost)
        return jsonify({
            "fuel_price": fuel_price,
            "results": breakdown.to_dict(),
            "_links": {
                "save": {"href": f"{current_app.config['BASE_URL']}/api/costs/calculations", "method": "POST"}
            }
        }), 200


@costs_bp.post('/operational')
@require_permission('cost:read')
def operational_cost(user_context: UserContext):
    """Cost of a single round from its distance, duration and fuel."""
    cost_request = parse_json_body(OperationalCostRequest)
    return jsonify(calculate_operational_cost(**cost_request.model_dump())), 200


@costs_bp.get('/calculations')
@require_permission('cost:read')
def list_calculations(user_context: UserContext):
    with tracer.start_as_current_span("costs.list", attributes={"organization.id": user_context.org_id}) as span:
        pagination = RequestParser.get_pagination_params()
        filters = RequestParser.get_filter_params(
            ['client_id', 'status'],
            choices={'status': [status.value for status in CalculationStatus]}
        )
        query = {}
        if 'client_id' in filters:
            query['clientId'] = filters['client_id']
        if 'status' in filters:
            query['status'] = filters['status']

        result = current_app.mongodb_service.paginate_by_org(
            COST_CALCULATIONS, user_context.org_id, pagination['page'], pagination['page_size'],
            filters=query
        )
        items = [CostCalculation.from_document(doc).to_response() for doc in result.items]

        span.set_attribute("calculations.count", len(items))
        return jsonify(current_app.hal_formatter.format_collection(
            items, result.total, result.page, result.page_size, "/api/costs/calculations",
            "calculation", user_context.permissions, user_context.user_id, filters
        )), 200


@costs_bp.post('/calculations')
@require_permission('cost:create')
def save_calculation(user_context: UserContext):
    """Calculate and store a proposal as a draft."""
    with tracer.start_as_current_span("costs.save", attributes={"organization.id": user_context.org_id}) as span:
        save_request = parse_json_body(SaveCostCalculationRequest)
        if save_request.client_id:
            load_entity(CLIENTS, Client, user_context, save_request.client_id, "Client")
        fuel_price, breakdown = _calculate(user_context, save_request)

        calculation = CostCalculation(
            organization_id=user_context.org_id,
            calculation_name=save_request.calculation_name,
            client_id=save_request.client_id,
            vehicle_type=save_request.vehicle_type,
            fuel_type=save_request.fuel_type,
            fuel_price=fuel_price,
            notes=save_request.notes,
            results=breakdown.to_dict(),
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **{field: getattr(save_request, field) for field in _INPUT_FIELDS}
        )
        current_app.mongodb_service.create(COST_CALCULATIONS, calculation.to_document(), user_context.user_id)
        record_audit(user_context, "cost_calculation", calculation.id, AuditAction.CREATE.value,
                     after=calculation.to_response())

        span.set_attribute("calculation.id", calculation.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Cost calculation saved", extra={
            "calculation_id": calculation.id, "suggested_price": breakdown.suggested_price
        })
        return jsonify(_format(calculation, user_context)), 201


@costs_bp.get('/calculations/<id>')
@require_permission('cost:read')
def get_calculation(user_context: UserContext, path: IdPath):
    calculation = load_entity(COST_CALCULATIONS, CostCalculation, user_context, path.id, "Cost calculation")
    return jsonify(_format(calculation, user_context)), 200


@costs_bp.put('/calculations/<id>/status')
@require_permission('cost:update')
def update_calculation_status(user_context: UserContext, path: IdPath):
    """Move a proposal between draft, sent, approved and rejected."""
    with tracer.start_as_current_span("costs.update_status", attributes={"calculation.id": path.id}) as span:
        status_request = parse_json_body(UpdateCalculationStatusRequest)
        calculation = load_entity(COST_CALCULATIONS, CostCalculation, user_context, path.id, "Cost calculation")
        before = calculation.to_response()

        if not can_transition_calculation(calculation.status, status_request.status):
            raise BusinessRuleException(
                f"Cannot change calculation from {calculation.status} to {status_request.status}",
                "INVALID_TRANSITION"
            )

        calculation.status = status_request.status
        calculation.update_timestamp(user_context.user_id)
        current_app.mongodb_service.update_by_org(
            COST_CALCULATIONS, user_context.org_id, calculation.id,
            {"status": calculation.status}, user_context.user_id
        )
        record_audit(user_context, "cost_calculation", calculation.id, AuditAction.STATUS_CHANGE.value,
                     before=before, after=calculation.to_response())

        span.set_status(Status(StatusCode.OK))
        return jsonify(_format(calculation, user_context)), 200


@costs_bp.delete('/calculations/<id>')
@require_permission('cost:delete')
def delete_calculation(user_context: UserContext, path: IdPath):
    with tracer.start_as_current_span("costs.delete", attributes={"calculation.id": path.id}) as span:
        calculation = load_entity(COST_CALCULATIONS, CostCalculation, user_context, path.id, "Cost calculation")
        current_app.mongodb_service.soft_delete_by_org(
            COST_CALCULATIONS, user_context.org_id, calculation.id, user_context.user_id
        )
        record_audit(user_context, "cost_calculation", calculation.id, AuditAction.DELETE.value,
                     before=calculation.to_response())

        span.set_status(Status(StatusCode.OK))
        return '', 204


@costs_bp.get('/fuel-prices')
@require_permission('cost:read')
def list_fuel_prices(user_context: UserContext):
    """Price per fuel type; types without a configured price show the default."""
    configured = {doc.get("fuelType"): doc for doc in _fuel_price_documents(user_context)}
    defaults = default_fuel_price_documents()

    prices = []
    for fuel_type in FuelType:
        document = configured.get(fuel_type.value)
        prices.append({
            "fuel_type": fuel_type.value,
            "price_per_liter": float(document["pricePerLiter"]) if document else defaults[fuel_type.value],
            "configured": document is not None,
            "updated_at": document["updatedAt"].isoformat() if document and document.get("updatedAt") else None
        })

    return jsonify({
        "prices": prices,
        "_links": {"self": {"href": f"{current_app.config['BASE_URL']}/api/costs/fuel-prices"}}
    }), 200


@costs_bp.put('/fuel-prices/<fuel_type>')
@require_permission('cost:update')
def update_fuel_price(user_context: UserContext, path: FuelTypePath):
    """Set the price of a fuel type for the organization."""
    with tracer.start_as_current_span("costs.update_fuel_price", attributes={"fuel.type": str(path.fuel_type)}) as span:
        price_request = parse_json_body(UpdateFuelPriceRequest)
        fuel_type = FuelType(path.fuel_type).value
        mongodb = current_app.mongodb_service

        existing = mongodb.find_one_by_filters(FUEL_PRICES, user_context.org_id, {"fuelType": fuel_type})
        if existing:
            price = FuelPrice.from_document(existing)
            before = price.to_response()
            price.price_per_liter = price_request.price_per_liter
            price.active = True
            price.update_timestamp(user_context.user_id)
            mongodb.update_by_org(
                FUEL_PRICES, user_context.org_id, price.id,
                {"pricePerLiter": price.price_per_liter, "active": True}, user_context.user_id
            )
            record_audit(user_context, "fuel_price", price.id, AuditAction.UPDATE.value,
                         before=before, after=price.to_response())
            status_code = 200
        else:
            price = FuelPrice(
                organization_id=user_context.org_id,
                fuel_type=fuel_type,
                price_per_liter=price_request.price_per_liter,
                created_by=user_context.user_id,
                updated_by=user_context.user_id
            )
            mongodb.create(FUEL_PRICES, price.to_document(), user_context.user_id)
            record_audit(user_context, "fuel_price", price.id, AuditAction.CREATE.value, after=price.to_response())
            status_code = 201

        span.set_status(Status(StatusCode.OK))
        logger.info("Fuel price updated", extra={"fuel_type": fuel_type, "price": price.price_per_liter})
        data = price.to_response()
        data['_links'] = {"prices": {"href": f"{current_app.config['BASE_URL']}/api/costs/fuel-prices"}}
        return jsonify(data), status_code
