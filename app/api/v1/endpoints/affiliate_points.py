from typing import Optional
from datetime import datetime
import uuid

from fastapi import APIRouter, status, Query

from app.api.deps import DB, Caller
from app.schemas.affiliate_points import (
    PointsLogCreate,
    PointsLogUpdate,
    PointsLogResponse,
    PointsLogListResponse,
    PointsBalanceResponse,
)
from app.services.affiliate_points_service import AffiliatePointsService


router = APIRouter(tags=["Affiliate Points"])


@router.get("/balance/{client_id}", response_model=PointsBalanceResponse)
async def get_balance(
    client_id: uuid.UUID,
    db: DB,
    caller: Caller,
):
    """Current and lifetime-spent points of a client."""
    balance = await AffiliatePointsService(db).get_balance(client_id, caller.organization_id)
    if balance is None:
        return PointsBalanceResponse(client_id=client_id, organization_id=caller.organization_id)
    return PointsBalanceResponse.model_validate(balance)


@router.get("/logs", response_model=PointsLogListResponse)
async def list_logs(
    db: DB,
    caller: Caller,
    client_id: Optional[uuid.UUID] = Query(None),
    action: Optional[str] = Query(None),
    direction: Optional[str] = Query(None, pattern="^(gains|losses)$"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
):
    """Points history, newest first."""
    items, total = await AffiliatePointsService(db).list_logs(
        caller.organization_id,
        client_id=client_id,
        action=action,
        direction=direction,
        date_from=date_from,
        date_to=date_to,
        page=page,
        size=size,
    )
    return PointsLogListResponse(
        items=[PointsLogResponse.model_validate(i) for i in items],
        total=total,
        page=page,
        size=size,
    )


@router.post(
    "/logs",
    response_model=PointsLogResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_log(
    data: PointsLogCreate,
    db: DB,
    caller: Caller,
):
    """Manually grant or deduct points."""
    log = await AffiliatePointsService(db).record(
        data.client_id,
        caller.organization_id,
        data.points,
        data.action,
        description=data.description,
        source_client_id=data.source_client_id,
    )
    return PointsLogResponse.model_validate(log)


@router.patch("/logs/{log_id}", response_model=PointsLogResponse)
async def update_log(
    log_id: uuid.UUID,
    data: PointsLogUpdate,
    db: DB,
    caller: Caller,
):
    """Edit a log entry; the balance moves by the difference."""
    log = await AffiliatePointsService(db).update_log(
        caller.organization_id,
        log_id,
        points=data.points,
        action=data.action,
        description=data.description,
    )
    return PointsLogResponse.model_validate(log)


@router.delete("/logs/{log_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_log(
    log_id: uuid.UUID,
    db: DB,
    caller: Caller,
):
    """Delete a log entry and reverse its effect."""
    await AffiliatePointsService(db).delete_log(caller.organization_id, log_id)
