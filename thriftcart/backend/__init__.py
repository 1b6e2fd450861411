"""Reference cart backend (FastAPI, in-memory)."""
from .app import create_app
from .store import InMemoryCartStore

__all__ = ["create_app", "InMemoryCartStore"]
