"""
Reference Cart Backend

FastAPI app serving the persistent cart and wishlist endpoints from
memory. Used for local development against the client and as the
integration double in tests.

Run locally:
    uvicorn thriftcart.backend.app:app --port 5001
"""
import os
from typing import Callable, Mapping, Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from thriftcart.errors import ERROR_MISSING_FIELDS
from thriftcart.logging import get_logger

from .routes import cart_router, wishlist_router
from .store import InMemoryCartStore

logger = get_logger(__name__)

TokenResolver = Callable[[str], Optional[str]]


def _parse_dev_tokens(raw: str) -> dict[str, str]:
    """THRIFTCART_DEV_TOKENS="token1:account1,token2:account2"."""
    tokens = {}
    for pair in raw.split(","):
        token, sep, account = pair.strip().partition(":")
        if sep and token and account:
            tokens[token] = account
    return tokens


def create_app(
    tokens: Union[Mapping[str, str], TokenResolver, None] = None,
    store: Optional[InMemoryCartStore] = None,
    prefix: str = "/api",
) -> FastAPI:
    """
    Build the backend app.

    Args:
        tokens: mapping of bearer token -> account id, or a resolver function
        store: storage to serve from (fresh in-memory store by default)
        prefix: URL prefix for all routes
    """
    app = FastAPI(title="Thrift storefront cart backend")

    if tokens is None:
        tokens = _parse_dev_tokens(os.environ.get("THRIFTCART_DEV_TOKENS", ""))
    app.state.resolve_token = tokens if callable(tokens) else tokens.get
    app.state.cart_store = store or InMemoryCartStore()

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        logger.debug(f"Rejected {request.method} {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": ERROR_MISSING_FIELDS},
        )

    @app.get(f"{prefix}/health")
    async def health():
        return {"status": "ok"}

    app.include_router(cart_router, prefix=prefix)
    app.include_router(wishlist_router, prefix=prefix)
    return app


app = create_app()
