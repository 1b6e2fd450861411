"""
Cart and Wishlist Routers

Per-account persistent cart and wishlist endpoints. Responses follow the
``{success, cart}`` / ``{success, wishlist}`` envelope the client expects.
"""
from fastapi import APIRouter, Depends, HTTPException

from thriftcart.cart.models import CartLine
from thriftcart.cart.schemas import (
    AddToCartRequest,
    RemoveCartItemRequest,
    UpdateCartItemRequest,
    WishlistItemRequest,
)
from thriftcart.errors import ERROR_ITEM_NOT_IN_CART
from thriftcart.logging import describe_line, get_logger, sanitize_id_for_logging

from .deps import get_account_id, get_store
from .store import InMemoryCartStore

logger = get_logger(__name__)

cart_router = APIRouter(prefix="/cart", tags=["cart"])
wishlist_router = APIRouter(prefix="/users/wishlist", tags=["wishlist"])


def _cart_response(cart, message: str | None = None) -> dict:
    body = {"success": True, "cart": cart.to_dict()}
    if message:
        body["message"] = message
    return body


# ==================== CART ====================

@cart_router.get("")
async def get_cart(
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    """Get the account's cart."""
    return _cart_response(store.cart(account_id))


@cart_router.post("/add")
async def add_to_cart(
    request: AddToCartRequest,
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    """Add a line; an existing (productId, size) line accumulates quantity."""
    line = CartLine(
        product_id=request.product_id,
        name=request.name,
        unit_price=request.price,
        size=request.size,
        quantity=request.quantity,
        image=request.image,
    )
    cart = store.add_line(account_id, line)
    logger.debug(f"Cart add {describe_line(request.product_id, request.size)} for {sanitize_id_for_logging(account_id)}")
    return _cart_response(cart, "Item added to cart")


@cart_router.put("/update")
async def update_cart_item(
    request: UpdateCartItemRequest,
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    """Set quantity (0 or less removes the line)."""
    cart = store.cart(account_id)
    if cart.find(request.product_id, request.size) is None:
        raise HTTPException(status_code=404, detail=ERROR_ITEM_NOT_IN_CART)
    cart.set_quantity(request.product_id, request.size, request.quantity)
    return _cart_response(cart, "Cart updated")


@cart_router.delete("/remove")
async def remove_from_cart(
    request: RemoveCartItemRequest,
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    """Remove a line; removing an absent line is not an error."""
    cart = store.cart(account_id)
    cart.remove_line(request.product_id, request.size)
    return _cart_response(cart, "Item removed from cart")


@cart_router.delete("/clear")
async def clear_cart(
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    cart = store.cart(account_id)
    cart.items = []
    return _cart_response(cart, "Cart cleared")


@cart_router.get("/count")
async def get_cart_count(
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    return {"success": True, "count": store.cart(account_id).item_count}


# ==================== WISHLIST ====================

@wishlist_router.get("")
async def get_wishlist(
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    return {"success": True, "wishlist": list(store.wishlist(account_id))}


@wishlist_router.post("/add")
async def add_to_wishlist(
    request: WishlistItemRequest,
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    """Add a product id; adding one that is already saved succeeds without change."""
    wishlist = store.add_to_wishlist(account_id, request.product_id)
    return {"success": True, "message": "Item added to wishlist", "wishlist": list(wishlist)}


@wishlist_router.delete("/remove")
async def remove_from_wishlist(
    request: WishlistItemRequest,
    account_id: str = Depends(get_account_id),
    store: InMemoryCartStore = Depends(get_store),
):
    wishlist = store.remove_from_wishlist(account_id, request.product_id)
    return {"success": True, "message": "Item removed from wishlist", "wishlist": list(wishlist)}
