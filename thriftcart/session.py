"""Session snapshot persistence (authToken + user keys)."""
from typing import Optional

from thriftcart.cart.models import SessionIdentity
from thriftcart.storage import LocalKeys, LocalStore


def load_session(store: LocalStore) -> Optional[SessionIdentity]:
    """Rebuild the session left behind by the last login, if any."""
    token = store.get(LocalKeys.AUTH_TOKEN) or store.get(LocalKeys.LEGACY_TOKEN)
    if not token or not isinstance(token, str):
        return None

    user = store.get(LocalKeys.USER)
    if not isinstance(user, dict):
        user = {}

    return SessionIdentity(
        account_id=str(user.get("id") or user.get("_id") or ""),
        bearer_token=token,
        display_name=str(user.get("name") or ""),
    )


def save_session(store: LocalStore, session: SessionIdentity) -> None:
    store.set(LocalKeys.AUTH_TOKEN, session.bearer_token)
    store.set(LocalKeys.USER, session.to_user_dict())


def clear_session(store: LocalStore) -> None:
    store.remove(LocalKeys.AUTH_TOKEN)
    store.remove(LocalKeys.LEGACY_TOKEN)
    store.remove(LocalKeys.USER)
