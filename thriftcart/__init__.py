"""
thriftcart - local-first cart and wishlist for the thrift storefront

This package contains:
- cart: cart/wishlist models and boundary schemas
- storage: per-profile local store
- remote: HTTP client for the backend cart service
- sync: the coordinator that keeps both in step
- backend: reference FastAPI cart backend for development and tests

Note: Imports are lazy so that importing the models does not pull in httpx
or FastAPI.
"""

__all__ = [
    "SyncCoordinator",
    "SyncSettings",
    "build_coordinator",
    "RemoteCartService",
    "MemoryLocalStore",
    "FileLocalStore",
]


def __getattr__(name):
    """Lazy attribute access."""
    if name == "SyncCoordinator":
        from thriftcart.sync.coordinator import SyncCoordinator
        return SyncCoordinator
    if name in ("SyncSettings", "build_coordinator"):
        from thriftcart import config
        return getattr(config, name)
    if name == "RemoteCartService":
        from thriftcart.remote import RemoteCartService
        return RemoteCartService
    if name in ("MemoryLocalStore", "FileLocalStore"):
        from thriftcart import storage
        return getattr(storage, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
