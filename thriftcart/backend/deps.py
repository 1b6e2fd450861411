"""FastAPI dependencies: bearer token -> account id, and the shared store."""
from typing import Optional

from fastapi import Header, HTTPException, Request

from thriftcart.errors import ERROR_UNAUTHORIZED

from .store import InMemoryCartStore


def get_account_id(request: Request, authorization: Optional[str] = Header(default=None)) -> str:
    """
    Resolve the calling account from the Authorization header.

    Tokens are opaque here; the app's token resolver decides what they map to.

    Usage:
        @router.get("/cart")
        async def get_cart(account_id: str = Depends(get_account_id)):
            ...
    """
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail=ERROR_UNAUTHORIZED)

    account_id = request.app.state.resolve_token(token)
    if not account_id:
        raise HTTPException(status_code=401, detail=ERROR_UNAUTHORIZED)
    return account_id


def get_store(request: Request) -> InMemoryCartStore:
    return request.app.state.cart_store
