from typing import List
import uuid

from fastapi import APIRouter, status, Query

from app.api.deps import DB, Caller
from app.schemas.tier_pricing import (
    TierPricingCreate,
    TierPricingUpdate,
    TierPricingStatusUpdate,
    TierPricingResponse,
    TierProductResponse,
    TierStepResponse,
)
from app.services.tier_pricing_service import TierPricingService


router = APIRouter(tags=["Tier Pricing"])


def _build_rule_response(rule) -> TierPricingResponse:
    """Build TierPricingResponse from TierPricing model."""
    return TierPricingResponse(
        id=rule.id,
        organization_id=rule.organization_id,
        name=rule.name,
        countries=rule.countries or [],
        pricing_type=rule.pricing_type,
        is_active=rule.is_active,
        products=[TierProductResponse.model_validate(p) for p in rule.products],
        steps=[
            TierStepResponse.model_validate(s)
            for s in sorted(rule.steps, key=lambda s: s.from_units)
        ],
        clients=list(rule.targeted_client_ids),
        created_at=rule.created_at,
    )


@router.get("", response_model=List[TierPricingResponse])
async def list_rules(
    db: DB,
    caller: Caller,
    active_only: bool = Query(False),
):
    """Tier rules of the organization, newest first."""
    rules = await TierPricingService(db).list_rules(caller.organization_id, active_only=active_only)
    return [_build_rule_response(r) for r in rules]


@router.post(
    "",
    response_model=TierPricingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_rule(
    data: TierPricingCreate,
    db: DB,
    caller: Caller,
):
    """Create a tier rule. ``customers`` is accepted as an alias of ``clients``."""
    rule = await TierPricingService(db).create_rule(caller.organization_id, data)
    return _build_rule_response(rule)


@router.get("/{rule_id}", response_model=TierPricingResponse)
async def get_rule(
    rule_id: uuid.UUID,
    db: DB,
    caller: Caller,
):
    rule = await TierPricingService(db).get_rule(caller.organization_id, rule_id)
    return _build_rule_response(rule)


@router.put("/{rule_id}", response_model=TierPricingResponse)
async def update_rule(
    rule_id: uuid.UUID,
    data: TierPricingUpdate,
    db: DB,
    caller: Caller,
):
    rule = await TierPricingService(db).update_rule(caller.organization_id, rule_id, data)
    return _build_rule_response(rule)


@router.patch("/{rule_id}/status", response_model=TierPricingResponse)
async def set_rule_status(
    rule_id: uuid.UUID,
    data: TierPricingStatusUpdate,
    db: DB,
    caller: Caller,
):
    """Activate or deactivate a rule."""
    rule = await TierPricingService(db).set_active(caller.organization_id, rule_id, data.is_active)
    return _build_rule_response(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: uuid.UUID,
    db: DB,
    caller: Caller,
):
    await TierPricingService(db).delete_rule(caller.organization_id, rule_id)
