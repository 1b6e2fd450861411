"""Pytest configuration and fixtures"""
import asyncio
import os
from typing import Optional

import httpx
import pytest
import pytest_asyncio

from thriftcart.backend import InMemoryCartStore, create_app
from thriftcart.cart.models import CartLine, CartState, SessionIdentity, WishlistState
from thriftcart.errors import ERROR_ITEM_NOT_IN_CART, RemoteCartError
from thriftcart.remote import RemoteCartService
from thriftcart.storage import MemoryLocalStore

# Set test environment variables
os.environ.setdefault("THRIFTCART_ENV", "test")

TEST_TOKENS = {"token-alice": "acct-alice", "token-bob": "acct-bob"}


class FakeRemoteCartService:
    """
    In-memory stand-in for RemoteCartService.

    Follows the reference backend's semantics (adds accumulate, duplicate
    wishlist adds are no-ops) and can be told to fail or hang.
    """

    def __init__(self, backend: Optional[InMemoryCartStore] = None):
        self.backend = backend or InMemoryCartStore()
        self.token: Optional[str] = None
        self.failing = False
        self.fail_on: set[str] = set()
        self.reject_status: Optional[int] = None
        self.delay = 0.0
        self.calls: list[str] = []
        self.closed = False

    def with_token(self, token):
        self.token = token
        return self

    async def close(self):
        self.closed = True

    @property
    def account(self) -> str:
        return self.token

    async def _gate(self, name: str) -> None:
        self.calls.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.reject_status is not None:
            raise RemoteCartError(f"{name} rejected", status_code=self.reject_status)
        if self.failing or name in self.fail_on:
            raise RemoteCartError(f"{name} failed: backend unreachable")

    def _cart(self) -> CartState:
        return self.backend.cart(self.account).copy()

    def _wishlist(self) -> WishlistState:
        return WishlistState.from_list(list(self.backend.wishlist(self.account)))

    async def get_cart(self):
        await self._gate("get_cart")
        return self._cart()

    async def add_item(self, line: CartLine):
        await self._gate("add_item")
        self.backend.add_line(self.account, CartLine(**vars(line)))
        return self._cart()

    async def update_quantity(self, product_id, size, quantity):
        await self._gate("update_quantity")
        cart = self.backend.cart(self.account)
        if cart.find(product_id, size) is None:
            raise RemoteCartError(ERROR_ITEM_NOT_IN_CART, status_code=404)
        cart.set_quantity(product_id, size, quantity)
        return self._cart()

    async def remove_item(self, product_id, size):
        await self._gate("remove_item")
        self.backend.cart(self.account).remove_line(product_id, size)
        return self._cart()

    async def clear(self):
        await self._gate("clear")
        self.backend.cart(self.account).items = []
        return self._cart()

    async def count(self):
        await self._gate("count")
        return self.backend.cart(self.account).item_count

    async def get_wishlist(self):
        await self._gate("get_wishlist")
        return self._wishlist()

    async def add_wishlist_entry(self, product_id):
        await self._gate("add_wishlist_entry")
        self.backend.add_to_wishlist(self.account, product_id)
        return self._wishlist()

    async def remove_wishlist_entry(self, product_id):
        await self._gate("remove_wishlist_entry")
        self.backend.remove_from_wishlist(self.account, product_id)
        return self._wishlist()


@pytest.fixture
def local_store():
    """Empty in-memory local store"""
    return MemoryLocalStore()


@pytest.fixture
def fake_remote():
    """Fake remote cart service backed by an in-memory store"""
    return FakeRemoteCartService()


@pytest.fixture
def session():
    """Session for the test account"""
    return SessionIdentity(account_id="acct-alice", bearer_token="token-alice", display_name="Alice")


@pytest.fixture
def jacket():
    """Sample cart line input"""
    return {
        "productId": "p1",
        "name": "Denim jacket",
        "price": 500,
        "size": "M",
        "image": "https://img.example/p1.jpg",
    }


@pytest.fixture
def boots():
    """Second sample cart line input"""
    return {
        "productId": "p2",
        "name": "Leather boots",
        "price": 750.5,
        "size": "42",
        "quantity": 1,
    }


@pytest.fixture
def backend_store():
    """Storage behind the reference backend app"""
    return InMemoryCartStore()


@pytest.fixture
def backend_app(backend_store):
    """Reference backend app with two known accounts"""
    return create_app(tokens=TEST_TOKENS, store=backend_store)


@pytest_asyncio.fixture
async def http_client(backend_app):
    """httpx client wired to the backend app in-process"""
    transport = httpx.ASGITransport(app=backend_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver/api") as client:
        yield client


@pytest_asyncio.fixture
async def remote_service(http_client):
    """RemoteCartService talking to the reference backend"""
    service = RemoteCartService("http://testserver/api", token="token-alice", client=http_client)
    yield service
    await service.close()
