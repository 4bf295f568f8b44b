"""
Unit tests for the purchase order workflow.
"""
from datetime import datetime, timezone

import pytest

from inventory.errors import InvalidState, NotFound, ValidationError
from inventory.purchase_orders import PurchaseOrderWorkflow
from models.purchase_order import POStatus


def _single_line_po(workflow, product="p1", grams=100, price=1.5):
    return workflow.create("shop", {
        "supplier_id": "sup_1",
        "lines": [{"product_id": product, "ordered_grams": grams, "price_per_gram": price}],
    })


@pytest.mark.unit
class TestCreate:

    def test_draft_with_computed_totals(self, workflow, sample_po_data):
        po = workflow.create("shop", {**sample_po_data, "shipping_cost": 12.5, "other_costs": 2.5})

        assert po.status == POStatus.DRAFT
        assert po.number == "PO-2025-0001"
        assert po.id.startswith("po_")
        assert [l.id for l in po.lines] == ["line_1", "line_2"]
        assert po.lines[1].ordered_grams == 50       # "grams" is accepted for ordered_grams
        assert po.subtotal == pytest.approx(150.0)
        assert po.total == pytest.approx(165.0)
        assert po.currency == "EUR"
        assert all(l.received_grams == 0 for l in po.lines)

    def test_numbers_follow_the_year(self, workflow, clock):
        first = _single_line_po(workflow)
        second = _single_line_po(workflow)
        clock.now = datetime(2026, 1, 2, tzinfo=timezone.utc)
        third = _single_line_po(workflow)

        assert (first.number, second.number, third.number) == (
            "PO-2025-0001", "PO-2025-0002", "PO-2026-0001",
        )
        assert workflow.next_number("shop") == "PO-2026-0002"

    def test_supplier_is_required(self, workflow):
        with pytest.raises(ValidationError):
            workflow.create("shop", {"lines": [{"product_id": "p1", "ordered_grams": 10}]})

    @pytest.mark.parametrize("line", [
        {"product_id": "p1", "ordered_grams": 0},
        {"product_id": "p1", "ordered_grams": -3},
        {"product_id": "", "ordered_grams": 10},
        {"product_id": "p1", "ordered_grams": 10, "price_per_gram": -1},
        {"product_id": "p1", "ordered_grams": float("nan")},
        {"product_id": "p1", "ordered_grams": 10, "price_per_gram": float("inf")},
    ])
    def test_invalid_lines_are_rejected(self, workflow, line):
        with pytest.raises(ValidationError):
            workflow.create("shop", {"supplier_id": "sup_1", "lines": [line]})

    def test_persisted_order_round_trips(self, workflow, store, clock, sample_po_data):
        po = workflow.create("shop", sample_po_data)

        reloaded = PurchaseOrderWorkflow(store, clock=clock).get("shop", po.number)

        assert reloaded.id == po.id
        assert reloaded.subtotal == po.subtotal
        assert reloaded.total == po.total
        assert reloaded.lines == po.lines
        assert (store.data_dir / "shop" / "purchase-orders" / "2025.json").exists()


@pytest.mark.unit
class TestUpdateAndDelete:

    def test_draft_lines_can_be_replaced(self, workflow):
        po = _single_line_po(workflow)

        updated = workflow.update("shop", po.id, {
            "lines": [{"product_id": "p9", "ordered_grams": 20, "price_per_gram": 2.0}],
            "shipping_cost": 5,
        })

        assert [l.product_id for l in updated.lines] == ["p9"]
        assert updated.subtotal == pytest.approx(40.0)
        assert updated.total == pytest.approx(45.0)

    def test_structural_edit_after_send_is_rejected(self, workflow):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)

        with pytest.raises(InvalidState):
            workflow.update("shop", po.id, {"lines": [{"product_id": "p1", "ordered_grams": 5}]})

        assert workflow.get("shop", po.id).lines[0].ordered_grams == 100

    def test_notes_editable_in_any_status(self, workflow):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)

        updated = workflow.update("shop", po.id, {"notes": "Deliver to back door"})

        assert updated.notes == "Deliver to back door"
        assert updated.status == POStatus.SENT

    def test_only_drafts_can_be_deleted(self, workflow):
        draft = _single_line_po(workflow)
        sent = _single_line_po(workflow)
        workflow.send("shop", sent.id)

        assert workflow.delete("shop", draft.id) is True
        with pytest.raises(NotFound):
            workflow.get("shop", draft.id)
        with pytest.raises(InvalidState):
            workflow.delete("shop", sent.id)

    def test_caller_line_ids_are_replaced_by_sequential_ids(self, workflow):
        po = workflow.create("shop", {
            "supplier_id": "sup_1",
            "lines": [
                {"id": "dup", "product_id": "p1", "ordered_grams": 10},
                {"id": "dup", "product_id": "p2", "ordered_grams": 20},
            ],
        })
        assert [l.id for l in po.lines] == ["line_1", "line_2"]

        updated = workflow.update("shop", po.id, {"lines": [
            {"id": "line_2", "product_id": "p3", "ordered_grams": 5},
            {"id": "line_2", "product_id": "p4", "ordered_grams": 5},
        ]})
        assert [l.id for l in updated.lines] == ["line_1", "line_2"]

        workflow.send("shop", po.id)
        result = workflow.receive("shop", po.id, [{"line_id": "line_2", "received_grams": 5}])
        assert [l.received_grams for l in result.purchase_order.lines] == [0, 5]

    @pytest.mark.parametrize("field", [
        "supplier_name", "currency", "notes", "internal_notes", "shipping_cost", "lines",
    ])
    def test_null_for_non_nullable_field_is_rejected(self, workflow, store, clock, field):
        po = _single_line_po(workflow)
        other = _single_line_po(workflow, product="p2")

        with pytest.raises(ValidationError):
            workflow.update("shop", po.id, {field: None})

        reloaded = PurchaseOrderWorkflow(store, clock=clock)
        fetched = reloaded.get("shop", po.id)
        assert (fetched.supplier_name, fetched.currency, fetched.notes) == ("", "EUR", "")
        assert fetched.total == pytest.approx(150.0)
        assert {o.id for o in reloaded.list_orders("shop")} == {po.id, other.id}

    def test_unknown_order_raises_not_found(self, workflow):
        with pytest.raises(NotFound):
            workflow.update("shop", "po_missing", {"notes": "x"})


@pytest.mark.unit
class TestTransitions:

    def test_send_stamps_sent_at(self, workflow, clock):
        po = _single_line_po(workflow)
        clock.advance(hours=2)

        sent = workflow.send("shop", po.id)

        assert sent.status == POStatus.SENT
        assert sent.sent_at == clock.now

    def test_send_twice_is_rejected(self, workflow):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)
        with pytest.raises(InvalidState):
            workflow.send("shop", po.id)

    def test_confirm_requires_sent(self, workflow):
        po = _single_line_po(workflow)
        with pytest.raises(InvalidState):
            workflow.confirm("shop", po.id)

    def test_confirm_sets_expected_delivery(self, workflow):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)
        eta = datetime(2025, 3, 20, tzinfo=timezone.utc)

        confirmed = workflow.confirm("shop", po.id, eta)

        assert confirmed.status == POStatus.CONFIRMED
        assert confirmed.expected_delivery_at == eta

    def test_cancel_appends_reason(self, workflow):
        po = workflow.create("shop", {
            "supplier_id": "sup_1", "internal_notes": "first order",
            "lines": [{"product_id": "p1", "ordered_grams": 10}],
        })

        cancelled = workflow.cancel("shop", po.id, "supplier out of stock")

        assert cancelled.status == POStatus.CANCELLED
        assert cancelled.internal_notes == "first order\n[CANCELLED] supplier out of stock"

    def test_cancel_without_prior_notes_has_no_leading_newline(self, workflow):
        po = _single_line_po(workflow)

        assert workflow.cancel("shop", po.id, "duplicate").internal_notes == "[CANCELLED] duplicate"

        other = _single_line_po(workflow)
        assert workflow.cancel("shop", other.id).internal_notes == "[CANCELLED]"

    def test_terminal_orders_cannot_be_cancelled(self, workflow):
        po = _single_line_po(workflow)
        workflow.cancel("shop", po.id)
        with pytest.raises(InvalidState):
            workflow.cancel("shop", po.id)

        done = _single_line_po(workflow)
        workflow.send("shop", done.id)
        workflow.receive("shop", done.id, [{"line_id": "line_1", "received_grams": 100}])
        with pytest.raises(InvalidState):
            workflow.cancel("shop", done.id)


@pytest.mark.unit
class TestReceive:

    def test_partial_then_complete(self, workflow, clock):
        """100 g at 1.50 (subtotal 150): 60 g makes it partial, 40 g more completes it."""
        po = _single_line_po(workflow)
        assert po.subtotal == pytest.approx(150.0)
        workflow.send("shop", po.id)

        first = workflow.receive("shop", po.id, [{"line_id": "line_1", "received_grams": 60}])

        assert first.purchase_order.status == POStatus.PARTIAL
        assert first.is_complete is False
        assert first.purchase_order.received_at is None
        assert len(first.batches_to_create) == 1
        request = first.batches_to_create[0]
        assert (request.product_id, request.grams, request.price_per_gram) == ("p1", 60, 1.5)
        assert request.purchase_order_id == po.id
        assert request.supplier_id == "sup_1"

        clock.advance(days=2)
        second = workflow.receive(
            "shop", po.id,
            [{"line_id": "line_1", "received_grams": 40, "expiry_date": "2025-09-30", "expiry_type": "dluo"}],
        )

        assert second.purchase_order.status == POStatus.COMPLETE
        assert second.is_complete is True
        assert second.purchase_order.received_at == clock.now
        assert second.purchase_order.lines[0].received_grams == 100
        assert len(second.purchase_order.receptions) == 2
        assert second.batches_to_create[0].expiry_type.value == "dluo"

    def test_receiving_requires_sent_status(self, workflow):
        po = _single_line_po(workflow)
        with pytest.raises(InvalidState):
            workflow.receive("shop", po.id, [{"line_id": "line_1", "received_grams": 10}])

        workflow.cancel("shop", po.id)
        with pytest.raises(InvalidState):
            workflow.receive("shop", po.id, [{"line_id": "line_1", "received_grams": 10}])

    def test_bad_entries_are_skipped(self, workflow, sample_po_data):
        po = workflow.create("shop", sample_po_data)
        workflow.send("shop", po.id)

        result = workflow.receive("shop", po.id, [
            {"line_id": "line_1", "received_grams": 30},
            {"line_id": "line_404", "received_grams": 10},
            {"line_id": "line_2", "received_grams": 0},
            {"line_id": "line_2", "received_grams": -5},
            {"line_id": "line_2"},
            {"line_id": "line_2", "received_grams": 5, "expiry_type": "forever"},
        ])

        assert [l.line_id for l in result.reception.lines] == ["line_1"]
        assert [l.received_grams for l in result.purchase_order.lines] == [30, 0]
        assert result.purchase_order.status == POStatus.PARTIAL

    @pytest.mark.parametrize("grams", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_grams_are_skipped(self, workflow, store, clock, grams):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)

        result = workflow.receive("shop", po.id, [
            {"line_id": "line_1", "received_grams": grams},
            {"line_id": "line_1", "received_grams": 10},
        ])

        assert [l.received_grams for l in result.reception.lines] == [10]
        assert [b.grams for b in result.batches_to_create] == [10]
        reloaded = PurchaseOrderWorkflow(store, clock=clock).get("shop", po.id)
        assert reloaded.lines[0].received_grams == 10
        assert reloaded.status == POStatus.PARTIAL

    def test_empty_reception_keeps_status(self, workflow):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)

        result = workflow.receive("shop", po.id, [])

        assert result.purchase_order.status == POStatus.SENT
        assert result.batches_to_create == []
        assert len(result.purchase_order.receptions) == 1

    def test_over_delivery_is_recorded(self, workflow):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)

        result = workflow.receive("shop", po.id, [{"line_id": "line_1", "received_grams": 120}])

        assert result.purchase_order.lines[0].received_grams == 120
        assert result.purchase_order.status == POStatus.COMPLETE

    def test_no_batches_when_disabled(self, workflow):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)

        result = workflow.receive(
            "shop", po.id, [{"line_id": "line_1", "received_grams": 10}],
            {"create_batches": False, "notes": "dock 2"},
        )

        assert result.batches_to_create == []
        assert result.reception.notes == "dock 2"
        assert result.purchase_order.lines[0].received_grams == 10

    def test_reception_is_persisted(self, workflow, store, clock):
        po = _single_line_po(workflow)
        workflow.send("shop", po.id)
        workflow.receive("shop", po.id, [{"line_id": "line_1", "received_grams": 25}])

        reloaded = PurchaseOrderWorkflow(store, clock=clock).get("shop", po.id)

        assert reloaded.status == POStatus.PARTIAL
        assert reloaded.lines[0].received_grams == 25
        assert reloaded.receptions[0].lines[0].received_grams == 25


@pytest.mark.unit
class TestQueries:

    def test_list_newest_first_with_filters(self, workflow, clock):
        a = _single_line_po(workflow)
        clock.advance(minutes=5)
        b = workflow.create("shop", {
            "supplier_id": "sup_2", "lines": [{"product_id": "p1", "ordered_grams": 1}],
        })
        workflow.send("shop", b.id)

        assert [o.id for o in workflow.list_orders("shop")] == [b.id, a.id]
        assert [o.id for o in workflow.list_orders("shop", status="sent")] == [b.id]
        assert [o.id for o in workflow.list_orders("shop", supplier_id="sup_1")] == [a.id]
        assert [o.id for o in workflow.list_orders("shop", limit=1)] == [b.id]
        assert workflow.list_orders("shop", year=2024) == []
        with pytest.raises(ValidationError):
            workflow.list_orders("shop", status="shipped")

    def test_pending_and_stats(self, workflow):
        draft = _single_line_po(workflow, grams=10, price=1.0)
        sent = _single_line_po(workflow, grams=20, price=1.0)
        cancelled = _single_line_po(workflow, grams=30, price=1.0)
        workflow.send("shop", sent.id)
        workflow.cancel("shop", cancelled.id)

        assert [o.id for o in workflow.pending("shop")] == [sent.id]

        stats = workflow.stats("shop")
        assert stats.total == 3
        assert stats.by_status["draft"] == 1
        assert stats.by_status["sent"] == 1
        assert stats.by_status["cancelled"] == 1
        assert stats.total_value == pytest.approx(30.0)
        assert stats.pending_value == pytest.approx(20.0)
        assert draft.id not in [o.id for o in workflow.pending("shop")]
