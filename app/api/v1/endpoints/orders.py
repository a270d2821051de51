from typing import Optional
import uuid

from fastapi import APIRouter, status, Query

from app.api.deps import DB, Caller, PriceCache
from app.models.order import OrderStatus
from app.schemas.order import (
    OrderCommit,
    OrderStatusUpdate,
    OrderUpdate,
    PaymentMethodUpdate,
    OrderResponse,
    OrderDetailResponse,
    OrderCommitResponse,
    OrderListResponse,
)
from app.services.order_service import OrderService


router = APIRouter(tags=["Orders"])


def _build_order_detail_response(order, service: OrderService) -> OrderDetailResponse:
    """Build OrderDetailResponse with the address decrypted."""
    return OrderDetailResponse(
        **OrderResponse.model_validate(order).model_dump(),
        address=service.decrypt_address(order),
        order_meta=order.order_meta or [],
    )


@router.post(
    "",
    response_model=OrderCommitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def commit_order(
    data: OrderCommit,
    db: DB,
    caller: Caller,
    cache: PriceCache,
):
    """
    Commit a cart into an order.

    Upstream supplier orders created by fan-out are listed in
    ``upstream_order_ids``; a fan-out failure is reported through
    ``fanout_status``/``fanout_error`` and does not fail the request.
    """
    service = OrderService(db, cache=cache)
    result = await service.commit_order(caller.organization_id, data, client_id=caller.client_id)
    detail = _build_order_detail_response(result.order, service)
    return OrderCommitResponse(**detail.model_dump(), upstream_order_ids=result.upstream_order_ids)


@router.get("", response_model=OrderListResponse)
async def list_orders(
    db: DB,
    caller: Caller,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = Query(None),
    client_id: Optional[uuid.UUID] = Query(None),
):
    """Get paginated list of orders."""
    service = OrderService(db)
    orders, total = await service.list_orders(
        caller.organization_id,
        status=status.value if status else None,
        client_id=caller.client_id or client_id,
        page=page,
        size=size,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
    )


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: uuid.UUID,
    db: DB,
    caller: Caller,
):
    """Get order details by ID."""
    service = OrderService(db)
    order = await service.get_order(caller.organization_id, order_id)
    return _build_order_detail_response(order, service)


@router.put("/{order_id}/status", response_model=OrderDetailResponse)
async def update_order_status(
    order_id: uuid.UUID,
    data: OrderStatusUpdate,
    db: DB,
    caller: Caller,
):
    """Change order status; cancelling returns stock and refunds points."""
    service = OrderService(db)
    order = await service.change_status(caller.organization_id, order_id, data.status)
    return _build_order_detail_response(order, service)


@router.patch("/{order_id}", response_model=OrderDetailResponse)
async def update_order(
    order_id: uuid.UUID,
    data: OrderUpdate,
    db: DB,
    caller: Caller,
):
    """Update tracking number or address, or log a meta event."""
    service = OrderService(db)
    order = await service.update_order(caller.organization_id, order_id, data)
    return _build_order_detail_response(order, service)


@router.put("/{order_id}/payment-method", response_model=OrderDetailResponse)
async def change_payment_method(
    order_id: uuid.UUID,
    data: PaymentMethodUpdate,
    db: DB,
    caller: Caller,
):
    """Switch payment method, cancelling the pending gateway invoice first."""
    service = OrderService(db)
    order = await service.change_payment_method(
        caller.organization_id, order_id, data.payment_method, data.pending_invoice_id
    )
    return _build_order_detail_response(order, service)
