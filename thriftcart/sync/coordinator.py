"""
Sync Coordinator - local-first cart and wishlist with best-effort backend sync.

Every mutation is applied to the local store synchronously and returned
straight away. When a session is present the same change is pushed to the
backend in the background; once the backend answers, its cart/wishlist
replaces the local copy. If the backend cannot be reached the local copy
stays authoritative and the change is kept as pending: the next push
replays it first, so nothing added while offline is lost.

Typical wiring:

    coordinator = SyncCoordinator(FileLocalStore(profile_dir), remote)
    coordinator.on_state_change(render)
    coordinator.add_item({"productId": "p1", "name": "Denim jacket",
                          "price": 500, "size": "M"})
    await coordinator.reconcile_on_login(session)
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, Tuple, Union

from thriftcart.cart.models import CartState, SessionIdentity, WishlistState
from thriftcart.cart.schemas import parse_line_input, parse_wishlist_input
from thriftcart.errors import (
    ERROR_INVALID_QUANTITY,
    ERROR_MISSING_PRODUCT_ID,
    ERROR_MISSING_SIZE,
    ERROR_RECONCILE_IN_PROGRESS,
    ERROR_REMOTE_TIMEOUT,
    CartValidationError,
    ReconciliationInProgressError,
    RemoteCartError,
)
from thriftcart.logging import describe_line, get_logger, sanitize_id_for_logging
from thriftcart.remote import DEFAULT_TIMEOUT, RemoteCartService
from thriftcart.storage import LocalStore, load_cart, load_wishlist, save_cart, save_wishlist

from .events import EventBus, SyncEvent, SyncMode, SyncOutcome

logger = get_logger(__name__)

DEFAULT_SIZE = "One Size"

CART = "cart"
WISHLIST = "wishlist"

# Statuses meaning the backend understood the request and will never accept it
REJECTED_STATUSES = frozenset({400, 404, 409, 422})

RemoteResult = Union[CartState, WishlistState]


@dataclass
class PendingOperation:
    """A remote push issued locally but not yet confirmed by the backend."""
    name: str
    kind: str  # CART or WISHLIST
    call: Callable[[RemoteCartService], Awaitable[RemoteResult]]
    session: SessionIdentity
    attempts: int = 0
    last_error: Optional[RemoteCartError] = None


@dataclass
class StateChange:
    """What state listeners receive after every local or remote update."""
    cart: CartState
    wishlist: WishlistState
    mode: SyncMode
    pending: int = 0


class SyncCoordinator:
    """
    Mediates between the local store and the remote cart service.

    Owns neither store, only the reconciliation policy between them:
    - mutations: local write first, remote push fire-and-forget
    - remote answers overwrite local state (backend is authoritative once reachable)
    - failures keep local state and queue the change for replay
    - login: push guest state, then mirror the merged backend state
    """

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteCartService] = None,
        session: Optional[SessionIdentity] = None,
        remote_timeout: float = DEFAULT_TIMEOUT,
        owns_remote: bool = False,
    ):
        self._store = store
        self._remote = remote
        self._owns_remote = owns_remote
        self.remote_timeout = remote_timeout

        self._cart = load_cart(store)
        self._wishlist = load_wishlist(store)

        self._session: Optional[SessionIdentity] = None
        self._client: Optional[RemoteCartService] = None
        self._mode = SyncMode.GUEST

        self._pending: Deque[PendingOperation] = deque()
        self._queued: Dict[str, int] = {CART: 0, WISHLIST: 0}
        self._tasks: Set[asyncio.Task] = set()
        self._remote_lock: Optional[asyncio.Lock] = None

        self._reconcile_task: Optional[asyncio.Task] = None
        self._reconcile_account: Optional[str] = None

        self._state_events: EventBus[StateChange] = EventBus("state")
        self._sync_events: EventBus[SyncEvent] = EventBus("sync")

        if session is not None:
            self._bind_session(session)
            if self._client is not None:
                self._mode = SyncMode.SYNCED

    # ==================== PROPERTIES ====================

    @property
    def mode(self) -> SyncMode:
        return self._mode

    @property
    def session(self) -> Optional[SessionIdentity]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None and self._client is not None

    @property
    def cart(self) -> CartState:
        return self._cart.copy()

    @property
    def wishlist(self) -> WishlistState:
        return self._wishlist.copy()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ==================== SUBSCRIPTIONS ====================

    def on_state_change(self, listener: Callable[[StateChange], None]) -> Callable[[], None]:
        """Subscribe to cart/wishlist changes. Returns an unsubscribe function."""
        return self._state_events.subscribe(listener)

    def on_sync_event(self, listener: Callable[[SyncEvent], None]) -> Callable[[], None]:
        """Subscribe to per-attempt sync results. Returns an unsubscribe function."""
        return self._sync_events.subscribe(listener)

    # ==================== CART OPERATIONS ====================

    def add_item(self, line: Any) -> CartState:
        """
        Add a line, accumulating quantity onto an existing (product, size) line.

        Args:
            line: CartLineInput, CartLine or a mapping with productId, name,
                price, size and optional image/quantity (quantity defaults to 1)

        Returns:
            The cart as it stands locally after the change

        Raises:
            CartValidationError: input is missing fields or out of range
        """
        line_input = parse_line_input(line)
        self._cart.merge_line(line_input.to_line())
        self._commit_cart()

        pushed = line_input.to_line()
        self._schedule("add_item", CART, lambda client: client.add_item(pushed))
        return self.cart

    def remove_item(self, product_id: str, size: str) -> CartState:
        """Remove the (product, size) line."""
        _require_line_key(product_id, size)
        self._cart.remove_line(product_id, size)
        self._commit_cart()

        self._schedule("remove_item", CART, lambda client: client.remove_item(product_id, size))
        return self.cart

    def update_quantity(self, product_id: str, size: str, quantity: int) -> CartState:
        """Set the quantity of a line directly; quantity <= 0 removes it."""
        _require_line_key(product_id, size)
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise CartValidationError(ERROR_INVALID_QUANTITY)
        if quantity <= 0:
            return self.remove_item(product_id, size)

        if not self._cart.set_quantity(product_id, size, quantity):
            logger.debug(f"update_quantity: no line {describe_line(product_id, size)}, nothing to do")
            return self.cart
        self._commit_cart()

        self._schedule(
            "update_quantity",
            CART,
            lambda client: client.update_quantity(product_id, size, quantity),
        )
        return self.cart

    def clear(self) -> CartState:
        """Empty the cart (explicit clear or after checkout)."""
        self._cart = CartState()
        self._commit_cart()

        self._schedule("clear", CART, lambda client: client.clear())
        return self.cart

    # ==================== WISHLIST OPERATIONS ====================

    def add_wishlist_entry(self, entry: Any) -> WishlistState:
        """Save a product for later. Adding a product that is already saved is a no-op."""
        new_entry = parse_wishlist_input(entry).to_entry()
        if not self._wishlist.add(new_entry):
            return self.wishlist
        self._commit_wishlist()

        product_id = new_entry.product_id
        self._schedule(
            "add_wishlist_entry",
            WISHLIST,
            lambda client: client.add_wishlist_entry(product_id),
        )
        return self.wishlist

    def remove_wishlist_entry(self, product_id: str) -> WishlistState:
        if not product_id or not isinstance(product_id, str):
            raise CartValidationError(ERROR_MISSING_PRODUCT_ID)
        self._wishlist.remove(product_id)
        self._commit_wishlist()

        self._schedule(
            "remove_wishlist_entry",
            WISHLIST,
            lambda client: client.remove_wishlist_entry(product_id),
        )
        return self.wishlist

    def move_to_cart(self, product_id: str, size: str = DEFAULT_SIZE) -> CartState:
        """Move a saved product into the cart (quantity 1) and drop it from the wishlist."""
        entry = self._wishlist.get(product_id)
        if entry is None:
            logger.info(f"move_to_cart: {sanitize_id_for_logging(product_id)} is not in the wishlist")
            return self.cart

        cart = self.add_item(
            {
                "productId": entry.product_id,
                "name": entry.name,
                "price": entry.unit_price,
                "size": size,
                "image": entry.image,
                "quantity": 1,
            }
        )
        self.remove_wishlist_entry(product_id)
        return cart

    # ==================== SESSION ====================

    async def reconcile_on_login(self, session: SessionIdentity) -> Tuple[CartState, WishlistState]:
        """
        Merge the guest cart and wishlist into the account, then mirror the result.

        Guest lines are pushed as adds (the backend accumulates quantities),
        guest wishlist entries as adds (the backend ignores duplicates), and
        the merged state is fetched back. A guest push that fails is kept as
        pending and replayed on the next sync; until then the local copy is
        kept and the coordinator ends up DEGRADED, as it does when the final
        fetch fails. A change made while the merge runs is never overwritten
        by the fetched state.

        A second call for the same account while one is running waits for
        the running one instead of pushing the guest lines twice.

        Raises:
            ReconciliationInProgressError: called for a different account mid-merge
        """
        running = self._reconcile_task
        if running is not None and not running.done():
            if self._reconcile_account == session.account_id:
                logger.info("Reconciliation already running for this account, joining it")
                return await asyncio.shield(running)
            raise ReconciliationInProgressError(ERROR_RECONCILE_IN_PROGRESS)

        self._reconcile_account = session.account_id
        self._reconcile_task = asyncio.get_running_loop().create_task(self._reconcile(session))
        return await self._reconcile_task

    async def _reconcile(self, session: SessionIdentity) -> Tuple[CartState, WishlistState]:
        self._bind_session(session)
        self._pending.clear()
        client = self._client
        account = sanitize_id_for_logging(session.account_id)

        if client is None:
            logger.warning(f"No remote cart service configured, account {account} stays local-only")
            self._set_mode(SyncMode.DEGRADED)
            self._notify()
            return self.cart, self.wishlist

        self._set_mode(SyncMode.RECONCILING)
        fetched = synced = False
        try:
            async with self._lock():
                guest_cart = self._cart.copy()
                guest_wishlist = self._wishlist.copy()
                logger.info(
                    f"Reconciling account {account}: {len(guest_cart)} guest lines, "
                    f"{len(guest_wishlist)} guest wishlist entries"
                )

                for line in guest_cart:
                    await self._push_guest_change(
                        PendingOperation(
                            name="reconcile.add_item",
                            kind=CART,
                            call=lambda c, line=line: c.add_item(line),
                            session=session,
                        )
                    )
                for entry in guest_wishlist:
                    await self._push_guest_change(
                        PendingOperation(
                            name="reconcile.add_wishlist_entry",
                            kind=WISHLIST,
                            call=lambda c, pid=entry.product_id: c.add_wishlist_entry(pid),
                            session=session,
                        )
                    )
                if self._pending:
                    logger.warning(
                        f"Reconciliation for {account}: {len(self._pending)} guest changes kept for replay"
                    )

                ok_cart, remote_cart = await self._call_remote(client.get_cart(), "reconcile.get_cart")
                ok_wishlist, remote_wishlist = await self._call_remote(
                    client.get_wishlist(), "reconcile.get_wishlist"
                )
                if session is not self._session:
                    logger.info(f"Session for {account} ended during reconciliation, keeping local state")
                    return self.cart, self.wishlist

                # Local copies already hold the unsynced changes; the fetched
                # state does not, so it only replaces a kind with none left.
                if ok_cart and not self._has_unsynced(CART):
                    self._cart = remote_cart
                    save_cart(self._store, self._cart)
                if ok_wishlist and not self._has_unsynced(WISHLIST):
                    self._wishlist = remote_wishlist.enrich_from(guest_wishlist)
                    save_wishlist(self._store, self._wishlist)

                fetched = ok_cart and ok_wishlist
        finally:
            if session is self._session:
                synced = fetched and not self._pending
                self._set_mode(SyncMode.SYNCED if synced else SyncMode.DEGRADED)

        if synced:
            error = None
        elif not fetched:
            error = "final fetch failed, keeping guest state"
        else:
            error = f"{len(self._pending)} guest changes waiting to sync"
        self._sync_events.emit(
            SyncEvent(
                operation="reconcile",
                outcome=SyncOutcome.SUCCEEDED if synced else SyncOutcome.DEGRADED,
                mode=self._mode,
                error=error,
            )
        )
        self._notify()
        return self.cart, self.wishlist

    def end_session(self) -> None:
        """Logout: local state stays as-is and becomes authoritative again."""
        self._session = None
        self._client = None
        self._pending.clear()
        self._set_mode(SyncMode.GUEST)
        self._notify()

    async def refresh(self) -> Tuple[CartState, WishlistState]:
        """
        Load the authoritative cart and wishlist from the backend.

        Used on start-up when a session survived from a previous run. Any
        pending changes are replayed first; if they cannot be, the local copy
        is kept so unsynced lines are not dropped.
        """
        if not self.is_authenticated:
            return self.cart, self.wishlist

        session = self._session
        async with self._lock():
            if session is not self._session:
                return self.cart, self.wishlist
            if not await self._replay_pending({}) or session is not self._session:
                self._notify()
                return self.cart, self.wishlist

            client = self._client
            remote_cart = await self._attempt_call(client.get_cart(), "refresh.get_cart")
            remote_wishlist = await self._attempt_call(client.get_wishlist(), "refresh.get_wishlist")
            if session is not self._session:
                logger.debug("Session ended during refresh, keeping local state")
                return self.cart, self.wishlist
            if remote_cart is not None and not self._has_unsynced(CART):
                self._apply(CART, remote_cart)
            if remote_wishlist is not None and not self._has_unsynced(WISHLIST):
                self._apply(WISHLIST, remote_wishlist)

        self._notify()
        return self.cart, self.wishlist

    async def cart_count(self) -> int:
        """Units in the cart: from the backend when signed in and in step, otherwise local."""
        if self.is_authenticated and not self._pending:
            count = await self._attempt_call(self._client.count(), "cart_count")
            if count is not None:
                return count
        return self._cart.item_count

    # ==================== LIFECYCLE ====================

    async def drain(self) -> None:
        """Wait until every scheduled remote push has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._owns_remote and self._remote is not None:
            await self._remote.close()

    # ==================== INTERNALS ====================

    def _lock(self) -> asyncio.Lock:
        # Created lazily so the coordinator can be built outside a running loop
        if self._remote_lock is None:
            self._remote_lock = asyncio.Lock()
        return self._remote_lock

    def _bind_session(self, session: SessionIdentity) -> None:
        self._session = session
        self._client = self._remote.with_token(session.bearer_token) if self._remote else None

    def _set_mode(self, mode: SyncMode) -> None:
        if mode != self._mode:
            logger.info(f"Sync mode {self._mode.value} -> {mode.value}")
            self._mode = mode

    def _commit_cart(self) -> None:
        save_cart(self._store, self._cart)
        self._notify()

    def _commit_wishlist(self) -> None:
        save_wishlist(self._store, self._wishlist)
        self._notify()

    def _notify(self) -> None:
        self._state_events.emit(
            StateChange(cart=self.cart, wishlist=self.wishlist, mode=self._mode, pending=len(self._pending))
        )

    def _schedule(
        self,
        name: str,
        kind: str,
        call: Callable[[RemoteCartService], Awaitable[RemoteResult]],
    ) -> None:
        if not self.is_authenticated:
            return

        op = PendingOperation(name=name, kind=kind, call=call, session=self._session)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, {name} queued for the next sync")
            self._pending.append(op)
            return

        self._queued[kind] += 1
        task = loop.create_task(self._push(op))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _push(self, op: PendingOperation) -> None:
        try:
            async with self._lock():
                if op.session is not self._session:
                    logger.debug(f"Dropping {op.name}: session changed before it was sent")
                    return

                results: Dict[str, RemoteResult] = {}
                sent = await self._replay_pending(results)
                if sent and op.session is self._session:
                    sent = await self._run(op, results)

                if op.session is not self._session:
                    # The answer belongs to an account that is no longer signed in
                    logger.debug(f"Discarding {op.name} answer: session ended while it was in flight")
                    return

                if not sent and (op.attempts == 0 or not self._drop_if_rejected(op)):
                    self._pending.append(op)

                # An answer that predates a queued or unsynced write of the
                # same kind would briefly hide that write locally.
                for kind, result in results.items():
                    if not self._has_unsynced(kind, own=1 if kind == op.kind else 0):
                        self._apply(kind, result)
        except Exception:
            logger.exception(f"Unexpected error while syncing {op.name}")
        finally:
            self._queued[op.kind] -= 1
            self._notify()

    async def _replay_pending(self, results: Dict[str, RemoteResult]) -> bool:
        """Replay pending operations in order. Returns False while one is still failing."""
        while self._pending:
            op = self._pending[0]
            if op.session is not self._session:
                self._pending.popleft()
                continue
            if await self._run(op, results) or self._drop_if_rejected(op):
                self._pending.popleft()
                continue
            return False
        return True

    async def _run(self, op: PendingOperation, results: Dict[str, RemoteResult]) -> bool:
        op.attempts += 1
        ok, outcome = await self._call_remote(op.call(self._client), op.name)
        if ok:
            results[op.kind] = outcome
            return True
        op.last_error = outcome
        return False

    async def _push_guest_change(self, op: PendingOperation) -> None:
        """Push one guest line or entry during reconciliation; keep it for replay if it fails."""
        if op.session is not self._session:
            return
        if not await self._run(op, {}) and not self._drop_if_rejected(op):
            self._pending.append(op)

    def _has_unsynced(self, kind: str, own: int = 0) -> bool:
        """True while a write of this kind is queued (beyond ``own``) or waiting for replay."""
        return self._queued[kind] - own > 0 or any(p.kind == kind for p in self._pending)

    def _drop_if_rejected(self, op: PendingOperation) -> bool:
        error = op.last_error
        if isinstance(error, RemoteCartError) and error.status_code in REJECTED_STATUSES:
            logger.warning(f"Backend rejected {op.name} ({error.status_code}), not retrying it")
            return True
        return False

    def _apply(self, kind: str, result: RemoteResult) -> None:
        if kind == CART:
            self._cart = result
            save_cart(self._store, self._cart)
        else:
            self._wishlist = result.enrich_from(self._wishlist)
            save_wishlist(self._store, self._wishlist)

    async def _attempt_call(self, coro: Awaitable[Any], name: str) -> Any:
        ok, outcome = await self._call_remote(coro, name)
        return outcome if ok else None

    async def _call_remote(self, coro: Awaitable[Any], name: str) -> Tuple[bool, Any]:
        """
        Call the backend with the timeout applied, moving between SYNCED and DEGRADED.
        While RECONCILING or GUEST the mode is left alone.

        Returns (True, result) or (False, error).
        """
        try:
            result = await asyncio.wait_for(coro, timeout=self.remote_timeout)
        except (asyncio.TimeoutError, RemoteCartError) as e:
            error = e if isinstance(e, RemoteCartError) else RemoteCartError(ERROR_REMOTE_TIMEOUT)
            logger.warning(f"Remote sync failed for {name}, keeping local state: {error}")
            # A rejection means the backend is up, so it does not degrade the session
            if self._mode == SyncMode.SYNCED and error.status_code not in REJECTED_STATUSES:
                self._set_mode(SyncMode.DEGRADED)
                outcome = SyncOutcome.DEGRADED
            else:
                outcome = SyncOutcome.FAILED
            self._sync_events.emit(SyncEvent(name, outcome, self._mode, error=str(error)))
            return False, error

        if self._mode == SyncMode.DEGRADED:
            self._set_mode(SyncMode.SYNCED)
            outcome = SyncOutcome.RESTORED
        else:
            outcome = SyncOutcome.SUCCEEDED
        self._sync_events.emit(SyncEvent(name, outcome, self._mode))
        return True, result


def _require_line_key(product_id: str, size: str) -> None:
    if not product_id or not isinstance(product_id, str):
        raise CartValidationError(ERROR_MISSING_PRODUCT_ID)
    if not size or not isinstance(size, str):
        raise CartValidationError(ERROR_MISSING_SIZE)
