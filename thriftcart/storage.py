"""
Local Store - per-profile persisted key/value mapping.

Values are kept as JSON strings, the same way a browser keeps them in
localStorage. A value that no longer parses is treated as absent so a
corrupted file never takes the cart down with it.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from thriftcart.cart.models import CartState, WishlistState
from thriftcart.logging import get_logger

logger = get_logger(__name__)


class LocalKeys:
    """Keys used in the local store."""

    CART = "cart"
    WISHLIST = "wishlist"
    AUTH_TOKEN = "authToken"
    LEGACY_TOKEN = "token"  # older pages stored the session token here
    USER = "user"


class LocalStore:
    """
    Base class for local stores.

    Subclasses only move raw strings around; JSON handling and corruption
    recovery live here.
    """

    def _read_raw(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write_raw(self, key: str, raw: str) -> None:
        raise NotImplementedError

    def _delete_raw(self, key: str) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Any:
        """Return the stored value, or None if absent or unparseable."""
        raw = self._read_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Corrupted local value for '{key}', treating as absent: {e}")
            return None

    def set(self, key: str, value: Any) -> None:
        self._write_raw(key, json.dumps(value))

    def remove(self, key: str) -> None:
        self._delete_raw(key)


class MemoryLocalStore(LocalStore):
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def _read_raw(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def _write_raw(self, key: str, raw: str) -> None:
        self._data[key] = raw

    def _delete_raw(self, key: str) -> None:
        self._data.pop(key, None)


class FileLocalStore(LocalStore):
    """
    One ``<key>.json`` file per key under a profile directory.

    Writes go to a temp file first and are moved into place, so a crash
    mid-write leaves the previous value intact.
    """

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "._-" else "_" for ch in key)
        return self.directory / f"{safe}.json"

    def _read_raw(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read local value '{key}' from {path}: {e}")
            return None

    def _write_raw(self, key: str, raw: str) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(raw)
            os.replace(tmp_path, path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _delete_raw(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def load_cart(store: LocalStore) -> CartState:
    """Read the cart, falling back to an empty one for absent or malformed data."""
    data = store.get(LocalKeys.CART)
    if data is None:
        return CartState()
    try:
        return CartState.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Malformed local cart, starting empty: {e}")
        return CartState()


def save_cart(store: LocalStore, cart: CartState) -> None:
    store.set(LocalKeys.CART, cart.to_dict())


def load_wishlist(store: LocalStore) -> WishlistState:
    """Read the wishlist, falling back to an empty one for absent or malformed data."""
    data = store.get(LocalKeys.WISHLIST)
    if data is None:
        return WishlistState()
    try:
        return WishlistState.from_list(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Malformed local wishlist, starting empty: {e}")
        return WishlistState()


def save_wishlist(store: LocalStore, wishlist: WishlistState) -> None:
    store.set(LocalKeys.WISHLIST, wishlist.to_list())
