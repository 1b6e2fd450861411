"""
Tests for SyncCoordinator
"""

import asyncio
from decimal import Decimal

import pytest

from thriftcart.cart.models import CartLine, CartState, SessionIdentity
from thriftcart.errors import CartValidationError, ReconciliationInProgressError
from thriftcart.storage import LocalKeys, MemoryLocalStore, load_cart, load_wishlist, save_cart
from thriftcart.sync import DEFAULT_SIZE, SyncCoordinator, SyncMode, SyncOutcome


def _signed_in(local_store, fake_remote, session, **kwargs) -> SyncCoordinator:
    return SyncCoordinator(local_store, remote=fake_remote, session=session, **kwargs)


def _ids(cart: CartState) -> set:
    return {line.product_id for line in cart}


class TestGuestMode:
    """Local-only behaviour without a session."""

    def test_starts_in_guest_mode(self, local_store, fake_remote):
        coordinator = SyncCoordinator(local_store, remote=fake_remote)

        assert coordinator.mode == SyncMode.GUEST
        assert not coordinator.is_authenticated

    def test_add_item_persists_and_skips_remote(self, local_store, fake_remote, jacket):
        coordinator = SyncCoordinator(local_store, remote=fake_remote)

        cart = coordinator.add_item(jacket)

        assert cart.find("p1", "M").quantity == 1
        assert load_cart(local_store).find("p1", "M").quantity == 1
        assert fake_remote.calls == []

    def test_same_line_accumulates(self, local_store, jacket):
        """2 then 1 of the same (product, size) gives one line of 3 totalling 1500"""
        coordinator = SyncCoordinator(local_store)

        coordinator.add_item({**jacket, "quantity": 2})
        cart = coordinator.add_item({**jacket, "quantity": 1})

        assert len(cart) == 1
        assert cart.find("p1", "M").quantity == 3
        assert cart.total == Decimal("1500")
        assert local_store.get(LocalKeys.CART)["totalAmount"] == 1500.0

    def test_invalid_line_leaves_store_untouched(self, local_store, jacket):
        coordinator = SyncCoordinator(local_store)
        coordinator.add_item(jacket)

        with pytest.raises(CartValidationError):
            coordinator.add_item({**jacket, "productId": "p2", "price": -5})

        assert _ids(load_cart(local_store)) == {"p1"}

    def test_update_to_zero_equals_remove(self, local_store, jacket, boots):
        coordinator = SyncCoordinator(local_store)
        coordinator.add_item(jacket)
        coordinator.add_item(boots)

        via_update = coordinator.update_quantity("p1", "M", 0)

        other = SyncCoordinator(MemoryLocalStore())
        other.add_item(jacket)
        other.add_item(boots)
        via_remove = other.remove_item("p1", "M")

        assert via_update.to_dict() == via_remove.to_dict()

    def test_update_quantity_sets_value(self, local_store, jacket):
        coordinator = SyncCoordinator(local_store)
        coordinator.add_item(jacket)

        cart = coordinator.update_quantity("p1", "M", 4)

        assert cart.find("p1", "M").quantity == 4
        assert cart.total == Decimal("2000")

    def test_update_missing_line_is_noop(self, local_store):
        coordinator = SyncCoordinator(local_store)

        assert coordinator.update_quantity("p1", "M", 2).is_empty

    @pytest.mark.parametrize("quantity", [True, 1.5, "2"])
    def test_update_rejects_non_integer(self, local_store, jacket, quantity):
        coordinator = SyncCoordinator(local_store)
        coordinator.add_item(jacket)

        with pytest.raises(CartValidationError):
            coordinator.update_quantity("p1", "M", quantity)

    def test_remove_requires_key(self, local_store):
        coordinator = SyncCoordinator(local_store)

        with pytest.raises(CartValidationError):
            coordinator.remove_item("", "M")

    def test_clear(self, local_store, jacket, boots):
        coordinator = SyncCoordinator(local_store)
        coordinator.add_item(jacket)
        coordinator.add_item(boots)

        assert coordinator.clear().is_empty
        assert load_cart(local_store).is_empty

    def test_returned_cart_is_a_copy(self, local_store, jacket):
        coordinator = SyncCoordinator(local_store)
        cart = coordinator.add_item(jacket)

        cart.items.clear()

        assert not coordinator.cart.is_empty

    def test_loads_existing_local_state(self, jacket):
        store = MemoryLocalStore()
        SyncCoordinator(store).add_item(jacket)

        assert SyncCoordinator(store).cart.find("p1", "M") is not None

    def test_corrupted_local_cart_starts_empty(self, jacket):
        store = MemoryLocalStore({LocalKeys.CART: "{oops"})
        coordinator = SyncCoordinator(store)

        assert coordinator.cart.is_empty
        coordinator.add_item(jacket)
        assert load_cart(store).find("p1", "M") is not None


class TestWishlist:
    """Wishlist operations."""

    def test_add_is_idempotent(self, local_store):
        coordinator = SyncCoordinator(local_store)

        coordinator.add_wishlist_entry({"productId": "p1", "name": "Jacket", "price": 500})
        wishlist = coordinator.add_wishlist_entry({"productId": "p1", "name": "Jacket", "price": 500})

        assert len(wishlist) == 1
        assert len(load_wishlist(local_store)) == 1

    def test_remove(self, local_store):
        coordinator = SyncCoordinator(local_store)
        coordinator.add_wishlist_entry({"productId": "p1"})

        assert coordinator.remove_wishlist_entry("p1").is_empty

    def test_move_to_cart(self, local_store):
        coordinator = SyncCoordinator(local_store)
        coordinator.add_wishlist_entry({"productId": "p1", "name": "Jacket", "price": 500})

        cart = coordinator.move_to_cart("p1")

        assert cart.find("p1", DEFAULT_SIZE).quantity == 1
        assert not coordinator.wishlist.contains("p1")

    def test_move_unknown_product_is_noop(self, local_store):
        coordinator = SyncCoordinator(local_store)

        assert coordinator.move_to_cart("nope").is_empty


class TestObservers:
    """State and sync listeners."""

    def test_state_listener_gets_every_change(self, local_store, jacket):
        coordinator = SyncCoordinator(local_store)
        seen = []
        unsubscribe = coordinator.on_state_change(seen.append)

        coordinator.add_item(jacket)
        coordinator.add_wishlist_entry({"productId": "p9"})
        unsubscribe()
        coordinator.clear()

        assert len(seen) == 2
        assert seen[0].cart.item_count == 1
        assert seen[0].mode == SyncMode.GUEST
        assert seen[1].wishlist.contains("p9")

    def test_failing_listener_does_not_break_writes(self, local_store, jacket):
        coordinator = SyncCoordinator(local_store)

        def broken(change):
            raise RuntimeError("render failed")

        coordinator.on_state_change(broken)
        cart = coordinator.add_item(jacket)

        assert cart.item_count == 1
        assert load_cart(local_store).item_count == 1


class TestSignedIn:
    """Remote pushes while a session is present."""

    def test_restored_session_starts_synced(self, local_store, fake_remote, session):
        coordinator = _signed_in(local_store, fake_remote, session)

        assert coordinator.mode == SyncMode.SYNCED
        assert coordinator.is_authenticated
        assert fake_remote.token == "token-alice"

    def test_without_event_loop_push_is_queued(self, local_store, fake_remote, session, jacket):
        coordinator = _signed_in(local_store, fake_remote, session)

        coordinator.add_item(jacket)

        assert coordinator.pending_count == 1
        assert fake_remote.calls == []

    @pytest.mark.asyncio
    async def test_add_is_pushed_and_mirrored(self, local_store, fake_remote, session, jacket):
        coordinator = _signed_in(local_store, fake_remote, session)

        coordinator.add_item(jacket)
        await coordinator.drain()

        assert fake_remote.calls == ["add_item"]
        assert fake_remote.backend.cart("token-alice").find("p1", "M").quantity == 1
        assert coordinator.cart.to_dict() == fake_remote.backend.cart("token-alice").to_dict()

    @pytest.mark.asyncio
    async def test_server_answer_overwrites_local(self, local_store, fake_remote, session, jacket):
        """Backend is authoritative: lines it already had show up locally"""
        fake_remote.backend.add_line("token-alice", CartLine(product_id="p7", name="Hat", unit_price=90, size="S"))
        coordinator = _signed_in(local_store, fake_remote, session)

        coordinator.add_item(jacket)
        await coordinator.drain()

        assert _ids(coordinator.cart) == {"p1", "p7"}
        assert _ids(load_cart(local_store)) == {"p1", "p7"}

    @pytest.mark.asyncio
    async def test_intermediate_answers_do_not_hide_newer_writes(
        self, local_store, fake_remote, session, jacket, boots
    ):
        fake_remote.delay = 0.01
        coordinator = _signed_in(local_store, fake_remote, session)
        seen = []

        coordinator.add_item(jacket)
        coordinator.add_item(boots)
        coordinator.on_state_change(lambda change: seen.append(_ids(change.cart)))
        await coordinator.drain()

        assert seen
        assert all("p2" in ids for ids in seen)
        assert _ids(coordinator.cart) == {"p1", "p2"}

    @pytest.mark.asyncio
    async def test_failure_degrades_and_keeps_local(self, local_store, fake_remote, session, jacket):
        fake_remote.failing = True
        coordinator = _signed_in(local_store, fake_remote, session)
        events = []
        coordinator.on_sync_event(events.append)

        cart = coordinator.add_item(jacket)
        await coordinator.drain()

        assert cart.find("p1", "M") is not None
        assert coordinator.cart.find("p1", "M") is not None
        assert coordinator.mode == SyncMode.DEGRADED
        assert coordinator.pending_count == 1
        assert events[-1].outcome == SyncOutcome.DEGRADED
        assert not events[-1].ok

    @pytest.mark.asyncio
    async def test_timed_out_line_survives_next_success(self, local_store, fake_remote, session, jacket, boots):
        """A line whose push timed out is replayed before the next push, so it is not lost"""
        fake_remote.delay = 1.0
        coordinator = _signed_in(local_store, fake_remote, session, remote_timeout=0.05)
        events = []
        coordinator.on_sync_event(events.append)

        coordinator.add_item(jacket)
        await coordinator.drain()

        assert coordinator.mode == SyncMode.DEGRADED
        assert fake_remote.backend.cart("token-alice").is_empty
        assert coordinator.cart.find("p1", "M") is not None

        fake_remote.delay = 0.0
        coordinator.add_item(boots)
        await coordinator.drain()

        assert coordinator.mode == SyncMode.SYNCED
        assert coordinator.pending_count == 0
        assert _ids(fake_remote.backend.cart("token-alice")) == {"p1", "p2"}
        assert _ids(coordinator.cart) == {"p1", "p2"}
        assert SyncOutcome.RESTORED in [e.outcome for e in events]

    @pytest.mark.asyncio
    async def test_rejected_push_is_dropped(self, local_store, fake_remote, session, jacket):
        """An update for a line the backend does not know is not retried forever"""
        local = CartState()
        local.merge_line(CartLine(product_id="p1", name="Jacket", unit_price=500, size="M"))
        save_cart(local_store, local)
        coordinator = _signed_in(local_store, fake_remote, session)
        events = []
        coordinator.on_sync_event(events.append)

        coordinator.update_quantity("p1", "M", 3)
        await coordinator.drain()

        assert coordinator.pending_count == 0
        assert coordinator.mode == SyncMode.SYNCED
        assert events[-1].outcome == SyncOutcome.FAILED

    @pytest.mark.asyncio
    async def test_refresh_pulls_remote_state(self, local_store, fake_remote, session):
        fake_remote.backend.add_line("token-alice", CartLine(product_id="p7", name="Hat", unit_price=90, size="S"))
        fake_remote.backend.add_to_wishlist("token-alice", "p8")
        coordinator = _signed_in(local_store, fake_remote, session)

        cart, wishlist = await coordinator.refresh()

        assert _ids(cart) == {"p7"}
        assert wishlist.contains("p8")
        assert _ids(load_cart(local_store)) == {"p7"}

    @pytest.mark.asyncio
    async def test_refresh_keeps_local_while_pending_fails(self, local_store, fake_remote, session, jacket):
        coordinator = _signed_in(local_store, fake_remote, session)
        coordinator.add_item(jacket)
        fake_remote.failing = True
        await coordinator.drain()

        cart, _ = await coordinator.refresh()

        assert cart.find("p1", "M") is not None
        assert coordinator.pending_count == 1
        assert "get_cart" not in fake_remote.calls

    @pytest.mark.asyncio
    async def test_cart_count(self, local_store, fake_remote, session, jacket):
        fake_remote.backend.add_line(
            "token-alice", CartLine(product_id="p7", name="Hat", unit_price=90, size="S", quantity=4)
        )
        coordinator = _signed_in(local_store, fake_remote, session)

        assert await coordinator.cart_count() == 4

        fake_remote.failing = True
        coordinator.add_item(jacket)
        await coordinator.drain()
        assert await coordinator.cart_count() == 1

    @pytest.mark.asyncio
    async def test_close_closes_owned_remote(self, local_store, fake_remote, session):
        coordinator = _signed_in(local_store, fake_remote, session, owns_remote=True)

        await coordinator.close()

        assert fake_remote.closed

    @pytest.mark.asyncio
    async def test_answer_arriving_after_logout_is_discarded(
        self, local_store, fake_remote, session, jacket, boots
    ):
        """A push still in flight at logout must not overwrite the guest cart"""
        fake_remote.delay = 0.05
        coordinator = _signed_in(local_store, fake_remote, session)
        coordinator.add_item(jacket)
        await asyncio.sleep(0.01)

        coordinator.end_session()
        coordinator.add_item(boots)
        await coordinator.drain()

        assert coordinator.mode == SyncMode.GUEST
        assert _ids(coordinator.cart) == {"p1", "p2"}
        assert _ids(load_cart(local_store)) == {"p1", "p2"}
        assert coordinator.pending_count == 0


class TestReconcile:
    """Login reconciliation."""

    @pytest.mark.asyncio
    async def test_guest_lines_merge_additively(self, local_store, fake_remote, session, jacket):
        """Remote has p1/M x1, guest has p1/M x2: the account ends with x3"""
        fake_remote.backend.add_line(
            "token-alice", CartLine(product_id="p1", name="Denim jacket", unit_price=500, size="M")
        )
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_item({**jacket, "quantity": 2})

        cart, _ = await coordinator.reconcile_on_login(session)

        assert cart.find("p1", "M").quantity == 3
        assert cart.total == Decimal("1500")
        assert load_cart(local_store).find("p1", "M").quantity == 3
        assert coordinator.mode == SyncMode.SYNCED

    @pytest.mark.asyncio
    async def test_guest_wishlist_is_pushed_and_enriched(self, local_store, fake_remote, session):
        fake_remote.backend.add_to_wishlist("token-alice", "p3")
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_wishlist_entry({"productId": "p5", "name": "Silk scarf", "price": 120})
        coordinator.add_wishlist_entry({"productId": "p3", "name": "Wool coat", "price": 900})

        _, wishlist = await coordinator.reconcile_on_login(session)

        assert [e.product_id for e in wishlist] == ["p3", "p5"]
        assert wishlist.get("p5").name == "Silk scarf"
        assert fake_remote.backend.wishlist("token-alice") == ["p3", "p5"]

    @pytest.mark.asyncio
    async def test_final_fetch_failure_keeps_guest_state(self, local_store, fake_remote, session, jacket):
        fake_remote.fail_on = {"get_cart"}
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_item({**jacket, "quantity": 2})
        events = []
        coordinator.on_sync_event(events.append)

        cart, _ = await coordinator.reconcile_on_login(session)

        assert cart.find("p1", "M").quantity == 2
        assert coordinator.mode == SyncMode.DEGRADED
        assert events[-1].operation == "reconcile"
        assert events[-1].outcome == SyncOutcome.DEGRADED

    @pytest.mark.asyncio
    async def test_unreachable_backend_degrades(self, local_store, fake_remote, session, jacket):
        fake_remote.failing = True
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_item(jacket)

        cart, _ = await coordinator.reconcile_on_login(session)

        assert cart.find("p1", "M").quantity == 1
        assert coordinator.mode == SyncMode.DEGRADED
        assert coordinator.is_authenticated

    @pytest.mark.asyncio
    async def test_without_remote_degrades(self, local_store, session, jacket):
        coordinator = SyncCoordinator(local_store)
        coordinator.add_item(jacket)

        cart, _ = await coordinator.reconcile_on_login(session)

        assert cart.item_count == 1
        assert coordinator.mode == SyncMode.DEGRADED

    @pytest.mark.asyncio
    async def test_concurrent_reconcile(self, local_store, fake_remote, session, jacket):
        """Same account joins the running merge; another account is refused"""
        fake_remote.delay = 0.02
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_item({**jacket, "quantity": 2})

        first = asyncio.ensure_future(coordinator.reconcile_on_login(session))
        await asyncio.sleep(0.005)

        other = SessionIdentity(account_id="acct-bob", bearer_token="token-bob")
        with pytest.raises(ReconciliationInProgressError):
            await coordinator.reconcile_on_login(other)

        joined = await coordinator.reconcile_on_login(session)
        result = await first

        assert joined[0].to_dict() == result[0].to_dict()
        assert fake_remote.calls.count("add_item") == 1
        assert result[0].find("p1", "M").quantity == 2

    @pytest.mark.asyncio
    async def test_end_session_returns_to_guest(self, local_store, fake_remote, session, jacket, boots):
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_item(jacket)
        await coordinator.reconcile_on_login(session)
        calls_before = len(fake_remote.calls)

        coordinator.end_session()
        cart = coordinator.add_item(boots)
        await coordinator.drain()

        assert coordinator.mode == SyncMode.GUEST
        assert coordinator.session is None
        assert _ids(cart) == {"p1", "p2"}
        assert len(fake_remote.calls) == calls_before

    @pytest.mark.asyncio
    async def test_change_during_merge_is_not_overwritten(
        self, local_store, fake_remote, session, jacket, boots
    ):
        fake_remote.delay = 0.02
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_item(jacket)

        merging = asyncio.ensure_future(coordinator.reconcile_on_login(session))
        await asyncio.sleep(0.005)
        coordinator.add_item(boots)

        cart, _ = await merging
        assert _ids(cart) == {"p1", "p2"}
        assert _ids(load_cart(local_store)) == {"p1", "p2"}

        await coordinator.drain()
        assert _ids(fake_remote.backend.cart("token-alice")) == {"p1", "p2"}
        assert _ids(coordinator.cart) == {"p1", "p2"}
        assert coordinator.mode == SyncMode.SYNCED

    @pytest.mark.asyncio
    async def test_failed_guest_push_is_kept_for_replay(self, local_store, fake_remote, session, jacket):
        """The merged fetch lacks the unpushed line, so the local copy stays"""
        fake_remote.fail_on = {"add_item"}
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_item(jacket)
        events = []
        coordinator.on_sync_event(events.append)

        cart, _ = await coordinator.reconcile_on_login(session)

        assert cart.find("p1", "M").quantity == 1
        assert load_cart(local_store).find("p1", "M").quantity == 1
        assert coordinator.mode == SyncMode.DEGRADED
        assert coordinator.pending_count == 1
        assert events[-1].outcome == SyncOutcome.DEGRADED
        assert "waiting to sync" in events[-1].error

        fake_remote.fail_on = set()
        cart, _ = await coordinator.refresh()

        assert fake_remote.backend.cart("token-alice").find("p1", "M").quantity == 1
        assert cart.find("p1", "M").quantity == 1
        assert coordinator.pending_count == 0
        assert coordinator.mode == SyncMode.SYNCED

    @pytest.mark.asyncio
    async def test_rejected_guest_push_is_not_retried(self, local_store, fake_remote, session, jacket):
        fake_remote.reject_status = 422
        coordinator = SyncCoordinator(local_store, remote=fake_remote)
        coordinator.add_item(jacket)

        await coordinator.reconcile_on_login(session)

        assert coordinator.pending_count == 0
