"""
Tests for OrderSnapshotStore and SnapshotMailbox.

Tests: load/merge semantics, absorbing statuses, idempotency, optimistic
cancel with rollback, serialized writes through the mailbox.
"""
import os, sys
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from domain.constants import PENDING_CANCEL
from domain.enums import OrderStatus, PaymentStatus
from domain.errors import ValidationError, WorkflowStateError
from services.snapshot_store import OrderSnapshotStore, SnapshotMailbox
from conftest import ORDER_ID, make_order


class TickingClock:
    """Deterministic clock: every call is one second later."""

    def __init__(self):
        self.now = datetime(2026, 10, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clocked_store() -> OrderSnapshotStore:
    store = OrderSnapshotStore(clock=TickingClock())
    store.load(make_order())
    return store


class TestLoad:

    @pytest.mark.unit
    def test_load_replaces_snapshot_and_stamps_last_updated(self):
        store = OrderSnapshotStore()
        loaded = store.load(make_order())
        assert store.snapshot is loaded
        assert loaded.last_updated is not None

    @pytest.mark.unit
    def test_load_of_other_order_refused(self, clocked_store):
        with pytest.raises(WorkflowStateError):
            clocked_store.load(make_order(order_id="B2"))
        assert clocked_store.snapshot.id == ORDER_ID


class TestMerge:

    @pytest.mark.unit
    def test_push_scenario_updates_status_and_tracking(self, clocked_store):
        before = clocked_store.snapshot
        after = clocked_store.merge({"orderId": "A1", "status": "shipped", "trackingNumber": "TRK1"})

        assert after.status == OrderStatus.SHIPPED
        assert after.tracking_number == "TRK1"
        # Everything else untouched
        assert after.items == before.items
        assert after.shipping_address == before.shipping_address
        assert after.notes == before.notes
        assert after.payment_status == before.payment_status
        assert after.created_at == before.created_at

    @pytest.mark.unit
    def test_null_fields_do_not_erase(self, clocked_store):
        after = clocked_store.merge({"orderId": "A1", "status": "processing", "trackingNumber": None, "notes": None})
        assert after.status == OrderStatus.PROCESSING
        assert after.notes == "Leave at the door"

    @pytest.mark.unit
    def test_sequence_of_merges_never_nulls_unspecified_fields(self, clocked_store):
        original = clocked_store.snapshot
        for partial in (
            {"status": "processing"},
            {"trackingNumber": "TRK9"},
            {"notes": "Handle with care"},
            {"status": "shipped", "shippedAt": "2026-10-03T09:00:00Z"},
        ):
            clocked_store.merge(partial)
        final = clocked_store.snapshot
        assert final.items == original.items
        assert final.total == original.total
        assert final.shipping_address == original.shipping_address
        assert final.created_at == original.created_at
        assert final.tracking_number == "TRK9"
        assert final.notes == "Handle with care"

    @pytest.mark.unit
    def test_merge_is_idempotent(self, clocked_store):
        partial = {"orderId": "A1", "status": "shipped", "trackingNumber": "TRK1"}
        first = clocked_store.merge(partial)
        second = clocked_store.merge(partial)
        assert second == first
        assert second.last_updated == first.last_updated

    @pytest.mark.unit
    @pytest.mark.parametrize("absorbing", ["delivered", "cancelled"])
    @pytest.mark.parametrize("incoming", ["confirmed", "shipped", "out_for_delivery"])
    def test_absorbing_status_never_regresses(self, absorbing, incoming):
        store = OrderSnapshotStore()
        store.load(make_order(status=absorbing))
        after = store.merge({"orderId": "A1", "status": incoming})
        assert after.status.value == absorbing

    @pytest.mark.unit
    def test_non_absorbing_regression_applied(self, clocked_store):
        clocked_store.merge({"status": "shipped"})
        after = clocked_store.merge({"status": "processing"})
        assert after.status == OrderStatus.PROCESSING

    @pytest.mark.unit
    def test_timestamps_set_once(self, clocked_store):
        clocked_store.merge({"shippedAt": "2026-10-03T09:00:00Z"})
        after = clocked_store.merge({"shippedAt": "2026-10-05T09:00:00Z"})
        assert after.shipped_at == datetime(2026, 10, 3, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.unit
    def test_foreign_order_update_ignored(self, clocked_store):
        before = clocked_store.snapshot
        after = clocked_store.merge({"orderId": "B2", "status": "delivered"})
        assert after is before

    @pytest.mark.unit
    def test_merge_before_load_dropped(self):
        store = OrderSnapshotStore()
        assert store.merge({"orderId": "A1", "status": "shipped"}) is None
        assert store.snapshot is None

    @pytest.mark.unit
    def test_malformed_update_rejected_whole(self, clocked_store):
        before = clocked_store.snapshot
        with pytest.raises(ValidationError):
            clocked_store.merge({"status": "teleported", "trackingNumber": "TRK1"})
        assert clocked_store.snapshot is before

    @pytest.mark.unit
    def test_cancelled_status_gets_cancellation_record(self, clocked_store):
        after = clocked_store.merge({"status": "cancelled"})
        assert after.cancellation is not None

    @pytest.mark.unit
    def test_status_aliases_normalized(self, clocked_store):
        after = clocked_store.merge({"status": "in_production"})
        assert after.status == OrderStatus.PROCESSING


class TestOptimisticCancel:

    @pytest.mark.unit
    def test_begin_marks_pending(self, clocked_store):
        order = clocked_store.begin_optimistic_cancel("changed_mind", "no longer needed")
        assert order.status == OrderStatus.CANCELLED
        assert order.pending_confirmation == PENDING_CANCEL
        assert order.cancellation.reason == "changed_mind"
        assert order.cancellation.comment == "no longer needed"

    @pytest.mark.unit
    def test_rollback_restores_previous_status(self, clocked_store):
        clocked_store.merge({"status": "processing"})
        clocked_store.begin_optimistic_cancel("changed_mind", "no longer needed")
        assert clocked_store.rollback_optimistic() is True
        order = clocked_store.snapshot
        assert order.status == OrderStatus.PROCESSING
        assert order.cancellation is None
        assert order.pending_confirmation is None

    @pytest.mark.unit
    def test_confirm_clears_pending(self, clocked_store):
        clocked_store.begin_optimistic_cancel("changed_mind", "no longer needed")
        order = clocked_store.confirm_optimistic()
        assert order.status == OrderStatus.CANCELLED
        assert order.pending_confirmation is None
        assert clocked_store.rollback_optimistic() is False

    @pytest.mark.unit
    def test_confirm_adopts_server_record(self, clocked_store):
        clocked_store.begin_optimistic_cancel("changed_mind", "no longer needed")
        order = clocked_store.confirm_optimistic(make_order(status="cancelled", cancellationReason="changed_mind: no longer needed"))
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation.reason == "changed_mind: no longer needed"
        assert order.pending_confirmation is None

    @pytest.mark.unit
    def test_push_overwrites_unconfirmed_cancel(self, clocked_store):
        clocked_store.begin_optimistic_cancel("changed_mind", "no longer needed")
        order = clocked_store.merge({"orderId": "A1", "status": "shipped"})
        assert order.status == OrderStatus.SHIPPED
        assert order.pending_confirmation is None
        assert order.cancellation is None
        # Server rejection arriving later has nothing left to undo
        assert clocked_store.rollback_optimistic() is False
        assert clocked_store.snapshot.status == OrderStatus.SHIPPED

    @pytest.mark.unit
    def test_optimistic_cancel_without_snapshot_refused(self):
        with pytest.raises(WorkflowStateError):
            OrderSnapshotStore().begin_optimistic_cancel("changed_mind", "no longer needed")


class TestMailbox:

    @pytest.mark.asyncio
    async def test_writes_applied_in_arrival_order(self, mailbox, store):
        await mailbox.load(make_order())
        results = await asyncio.gather(
            mailbox.merge({"status": "processing"}),
            mailbox.merge({"status": "shipped", "trackingNumber": "TRK1"}),
            mailbox.merge({"paymentStatus": "paid"}),
        )
        assert [r.status for r in results] == [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.SHIPPED]
        assert store.snapshot.payment_status == PaymentStatus.PAID
        assert store.snapshot.tracking_number == "TRK1"

    @pytest.mark.asyncio
    async def test_errors_propagate_to_caller(self, mailbox):
        await mailbox.load(make_order())
        with pytest.raises(ValidationError):
            await mailbox.merge({"status": "teleported"})
        # The mailbox keeps draining after a failed write
        order = await mailbox.merge({"status": "shipped"})
        assert order.status == OrderStatus.SHIPPED

    @pytest.mark.asyncio
    async def test_stopped_mailbox_refuses_writes(self, store):
        box = SnapshotMailbox(store)
        with pytest.raises(WorkflowStateError):
            await box.load(make_order())
        box.start()
        await box.stop()
        assert box.running is False
        with pytest.raises(WorkflowStateError):
            await box.merge({"status": "shipped"})
