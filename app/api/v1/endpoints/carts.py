from typing import Optional
import uuid

from fastapi import APIRouter, status, Query

from app.api.deps import DB, Caller, PriceCache
from app.core.exceptions import InvalidInputError, PermissionDeniedError
from app.schemas.cart import CartCreate, CartProductAdd, CartProductUpdate, CartResponse
from app.services.cart_service import CartService


router = APIRouter(tags=["Carts"])


def _check_owner(cart, caller) -> None:
    """Storefront callers may only touch their own carts."""
    if caller.client_id is not None and cart.client_id != caller.client_id:
        raise PermissionDeniedError(f"Cart {cart.id} belongs to another client")


@router.post(
    "",
    response_model=CartResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_cart(
    data: CartCreate,
    db: DB,
    caller: Caller,
    cache: PriceCache,
):
    """Open a new cart for a client."""
    client_id = data.client_id or caller.client_id
    if client_id is None:
        raise InvalidInputError("client_id or X-Client-ID is required")

    service = CartService(db, cache=cache)
    cart = await service.create_cart(caller.organization_id, client_id, data.country, data.channel)
    return CartResponse.model_validate(cart)


@router.get("/{cart_id}", response_model=CartResponse)
async def get_cart(
    cart_id: uuid.UUID,
    db: DB,
    caller: Caller,
):
    """Get a cart with its lines."""
    cart = await CartService(db).get_cart(caller.organization_id, cart_id)
    _check_owner(cart, caller)
    return CartResponse.model_validate(cart)


@router.post("/{cart_id}/products", response_model=CartResponse)
async def add_product(
    cart_id: uuid.UUID,
    data: CartProductAdd,
    db: DB,
    caller: Caller,
    cache: PriceCache,
):
    """
    Add a product to the cart.

    Affiliate products debit the client's points immediately.
    """
    service = CartService(db, cache=cache)
    _check_owner(await service.get_cart(caller.organization_id, cart_id), caller)
    cart = await service.add_product(
        caller.organization_id, cart_id, data.product_id, data.variation_id, data.quantity
    )
    return CartResponse.model_validate(cart)


@router.put("/{cart_id}/products", response_model=CartResponse)
async def update_product(
    cart_id: uuid.UUID,
    data: CartProductUpdate,
    db: DB,
    caller: Caller,
    cache: PriceCache,
):
    """Set a line's quantity; zero removes the line."""
    service = CartService(db, cache=cache)
    _check_owner(await service.get_cart(caller.organization_id, cart_id), caller)
    cart = await service.update_product(
        caller.organization_id, cart_id, data.product_id, data.variation_id, data.quantity
    )
    return CartResponse.model_validate(cart)


@router.delete("/{cart_id}/products/{product_id}", response_model=CartResponse)
async def remove_product(
    cart_id: uuid.UUID,
    product_id: uuid.UUID,
    db: DB,
    caller: Caller,
    cache: PriceCache,
    variation_id: Optional[uuid.UUID] = Query(None),
):
    """Remove a line from the cart."""
    service = CartService(db, cache=cache)
    _check_owner(await service.get_cart(caller.organization_id, cart_id), caller)
    cart = await service.remove_product(caller.organization_id, cart_id, product_id, variation_id)
    return CartResponse.model_validate(cart)
