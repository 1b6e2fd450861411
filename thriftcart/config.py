"""Client configuration from environment variables, and coordinator wiring."""
import os
from dataclasses import dataclass
from typing import Optional

from thriftcart.logging import get_logger, mask_token, sanitize_id_for_logging
from thriftcart.remote import DEFAULT_TIMEOUT, RemoteCartService
from thriftcart.session import load_session
from thriftcart.storage import FileLocalStore, LocalStore
from thriftcart.sync.coordinator import SyncCoordinator

logger = get_logger(__name__)

DEFAULT_API_URL = "http://localhost:5001/api"
DEFAULT_STORE_DIR = "~/.thriftcart"


def _get_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number, using {default}")
        return default


@dataclass(frozen=True)
class SyncSettings:
    """Settings for a storefront client profile."""

    api_url: str = DEFAULT_API_URL
    remote_timeout: float = DEFAULT_TIMEOUT
    store_dir: str = DEFAULT_STORE_DIR

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """
        Read settings from the environment.

        - THRIFTCART_API_URL: backend base URL (default http://localhost:5001/api)
        - THRIFTCART_REMOTE_TIMEOUT: seconds before a remote call counts as failed (default 5)
        - THRIFTCART_STORE_DIR: profile directory for the local store (default ~/.thriftcart)
        """
        return cls(
            api_url=os.environ.get("THRIFTCART_API_URL", DEFAULT_API_URL).rstrip("/"),
            remote_timeout=_get_float("THRIFTCART_REMOTE_TIMEOUT", DEFAULT_TIMEOUT),
            store_dir=os.environ.get("THRIFTCART_STORE_DIR", DEFAULT_STORE_DIR),
        )


def build_coordinator(
    settings: Optional[SyncSettings] = None,
    store: Optional[LocalStore] = None,
) -> SyncCoordinator:
    """
    Wire a coordinator from settings: file-backed local store, HTTP remote,
    and whatever session the last login left in the store.

    Call ``await coordinator.refresh()`` once the event loop runs to pull the
    account's cart when a session was restored.
    """
    settings = settings or SyncSettings.from_env()
    store = store or FileLocalStore(settings.store_dir)
    remote = RemoteCartService(settings.api_url, timeout=settings.remote_timeout)
    session = load_session(store)
    if session is not None:
        logger.info(
            f"Restored session for account {sanitize_id_for_logging(session.account_id)} "
            f"(token {mask_token(session.bearer_token)})"
        )

    return SyncCoordinator(
        store,
        remote=remote,
        session=session,
        remote_timeout=settings.remote_timeout,
        owns_remote=True,
    )
