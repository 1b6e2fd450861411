"""
Remote Cart Service Client

Thin typed client over the storefront backend's cart and wishlist
endpoints. Every failure (transport error, timeout, HTTP error status,
``success: false`` or a malformed envelope) surfaces as RemoteCartError;
only the HTTP status, when there is one, is carried along.
"""
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from thriftcart.cart.models import CartLine, CartState, WishlistState
from thriftcart.cart.schemas import (
    AddToCartRequest,
    CartCountResponse,
    CartResponse,
    RemoveCartItemRequest,
    UpdateCartItemRequest,
    WishlistItemRequest,
    WishlistResponse,
    to_wire,
)
from thriftcart.errors import (
    ERROR_NOT_AUTHENTICATED,
    ERROR_REMOTE_BAD_RESPONSE,
    ERROR_REMOTE_REJECTED,
    ERROR_REMOTE_TIMEOUT,
    ERROR_REMOTE_UNREACHABLE,
    RemoteCartError,
)
from thriftcart.logging import get_logger, sanitize_string_for_logging

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 5.0

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class RemoteCartService:
    """
    Client for the per-account cart and wishlist endpoints.

    Instances are bound to one bearer token; use ``with_token`` to get a
    client for another session that shares the same connection pool.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.token = token
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    def with_token(self, token: Optional[str]) -> "RemoteCartService":
        return RemoteCartService(self.base_url, token=token, timeout=self.timeout, client=self._client)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RemoteCartService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        response_model: type[ResponseT],
        body: Optional[dict[str, Any]] = None,
    ) -> ResponseT:
        if not self.token:
            raise RemoteCartError(ERROR_NOT_AUTHENTICATED, status_code=401)

        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            response = await self._client.request(
                method, path, json=body, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise RemoteCartError(f"{ERROR_REMOTE_TIMEOUT}: {method} {path}") from e
        except httpx.HTTPError as e:
            raise RemoteCartError(f"{ERROR_REMOTE_UNREACHABLE}: {type(e).__name__}") from e

        if response.is_error:
            message = _error_message(response)
            raise RemoteCartError(
                f"{ERROR_REMOTE_REJECTED}: {method} {path} -> {response.status_code} {message}",
                status_code=response.status_code,
            )

        try:
            parsed = response_model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RemoteCartError(
                f"{ERROR_REMOTE_BAD_RESPONSE}: {method} {path}", status_code=response.status_code
            ) from e

        if not parsed.success:
            raise RemoteCartError(
                f"{ERROR_REMOTE_REJECTED}: {method} {path} "
                f"{sanitize_string_for_logging(getattr(parsed, 'message', None))}",
                status_code=response.status_code,
            )
        return parsed

    async def _cart_call(self, method: str, path: str, body: Optional[dict] = None) -> CartState:
        parsed = await self._request(method, path, CartResponse, body)
        if parsed.cart is None:
            raise RemoteCartError(f"{ERROR_REMOTE_BAD_RESPONSE}: {method} {path} has no cart")
        return parsed.cart.to_state()

    async def _wishlist_call(self, method: str, path: str, body: Optional[dict] = None) -> WishlistState:
        parsed = await self._request(method, path, WishlistResponse, body)
        try:
            return parsed.to_state()
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteCartError(f"{ERROR_REMOTE_BAD_RESPONSE}: {method} {path}") from e

    # ==================== CART ====================

    async def get_cart(self) -> CartState:
        return await self._cart_call("GET", "/cart")

    async def add_item(self, line: CartLine) -> CartState:
        body = to_wire(AddToCartRequest.from_line(line))
        return await self._cart_call("POST", "/cart/add", body)

    async def update_quantity(self, product_id: str, size: str, quantity: int) -> CartState:
        body = to_wire(UpdateCartItemRequest(product_id=product_id, size=size, quantity=quantity))
        return await self._cart_call("PUT", "/cart/update", body)

    async def remove_item(self, product_id: str, size: str) -> CartState:
        body = to_wire(RemoveCartItemRequest(product_id=product_id, size=size))
        return await self._cart_call("DELETE", "/cart/remove", body)

    async def clear(self) -> CartState:
        return await self._cart_call("DELETE", "/cart/clear")

    async def count(self) -> int:
        parsed = await self._request("GET", "/cart/count", CartCountResponse)
        return parsed.count

    # ==================== WISHLIST ====================

    async def get_wishlist(self) -> WishlistState:
        return await self._wishlist_call("GET", "/users/wishlist")

    async def add_wishlist_entry(self, product_id: str) -> WishlistState:
        body = to_wire(WishlistItemRequest(product_id=product_id))
        return await self._wishlist_call("POST", "/users/wishlist/add", body)

    async def remove_wishlist_entry(self, product_id: str) -> WishlistState:
        body = to_wire(WishlistItemRequest(product_id=product_id))
        return await self._wishlist_call("DELETE", "/users/wishlist/remove", body)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return sanitize_string_for_logging(response.text)
    if isinstance(data, dict):
        return sanitize_string_for_logging(data.get("message") or data.get("detail"))
    return ""
