"""
Purchase order workflow.

Lifecycle
---------
  draft → sent → confirmed → partial → complete
  any status except complete/cancelled → cancelled

  draft       Freely editable (supplier, lines, costs).  Only drafts can be
              sent or deleted.
  sent        Ordered from the supplier.  Goods can be received from here on.
  confirmed   Supplier confirmed, optionally with a revised delivery date.
  partial     Some, but not all, ordered grams have arrived.
  complete    Every ordered gram has arrived.  Terminal.
  cancelled   Terminal.

Once a PO leaves draft only notes and internal_notes can change.

Receiving is the first half of a two-phase contract: receive() records the
delivery on the PO and returns the lots that should be created; applying
those (lot creation, average cost, stock totals) is the caller's job, see
InventoryEngine.apply_receipt().

Orders are stored one document per shop per calendar year:
  <data_dir>/<shop>/purchase-orders/<year>.json
"""
import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from models.purchase_order import (
    NOTE_FIELDS, RECEIVABLE_STATUSES, TERMINAL_STATUSES,
    BatchRequest, ExpiryType, POLine, POLineInput, POStats, POStatus, PurchaseOrder,
    PurchaseOrderCreate, PurchaseOrderPatch, ReceivedLine, Reception,
    ReceptionLine, ReceiveOptions, ReceiveResult,
)
from .document_store import DocumentStore, sanitize_shop
from .errors import InvalidState, NotFound, ValidationError

logger = logging.getLogger(__name__)

PO_DIR = "purchase-orders"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_lines(inputs: Iterable[POLineInput]) -> list[POLine]:
    """Turn caller lines into PO lines numbered line_1, line_2, ... in order."""
    lines = []
    for idx, item in enumerate(inputs):
        if not item.product_id:
            raise ValidationError(f"Line {idx + 1}: product_id is required")
        if item.ordered_grams <= 0:
            raise ValidationError(
                f"Line {idx + 1}: ordered grams must be positive, got {item.ordered_grams}"
            )
        if item.price_per_gram < 0:
            raise ValidationError(
                f"Line {idx + 1}: price_per_gram cannot be negative, got {item.price_per_gram}"
            )
        lines.append(POLine(
            id=f"line_{idx + 1}",
            product_id=str(item.product_id),
            product_name=item.product_name,
            ordered_grams=item.ordered_grams,
            received_grams=0.0,
            price_per_gram=item.price_per_gram,
            line_total=item.ordered_grams * item.price_per_gram,
        ))
    return lines


class PurchaseOrderWorkflow:
    """Owns the PO state machine for every shop."""

    def __init__(
        self,
        store: DocumentStore,
        default_currency: str = "EUR",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.default_currency = default_currency
        self.clock = clock

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _year_path(self, shop: str, year: int):
        return self.store.path(shop, PO_DIR, f"{year}.json")

    def _years(self, shop: str) -> list[int]:
        years = []
        for path in self.store.list_documents(shop, PO_DIR):
            try:
                years.append(int(path.stem))
            except ValueError:
                logger.warning("Ignoring unexpected PO document: %s", path)
        return years

    def _load_year(self, shop: str, year: int) -> list[PurchaseOrder]:
        data = self.store.read(self._year_path(shop, year))
        return [PurchaseOrder.model_validate(o) for o in data.get("orders", [])]

    def _save_year(self, shop: str, year: int, orders: list[PurchaseOrder]) -> None:
        self.store.write(
            self._year_path(shop, year),
            {
                "year": year,
                "updated_at": self.clock().isoformat(),
                "orders": [o.model_dump(mode="json") for o in orders],
            },
        )

    def _locate(self, shop: str, id_or_number: str) -> tuple[int, list[PurchaseOrder], int]:
        """Return (year, orders of that year, index) for an id or PO number."""
        for year in self._years(shop):
            orders = self._load_year(shop, year)
            for idx, po in enumerate(orders):
                if po.id == id_or_number or po.number == id_or_number:
                    return year, orders, idx
        raise NotFound(f"Purchase order not found: {id_or_number}")

    def _mutate(
        self, shop: str, po_id: str, change: Callable[[PurchaseOrder], None]
    ) -> PurchaseOrder:
        """Load, apply *change*, stamp updated_at and persist in one pass."""
        year, orders, idx = self._locate(shop, po_id)
        po = orders[idx]
        change(po)
        po.updated_at = self.clock()
        self._save_year(shop, year, orders)
        return po

    # ------------------------------------------------------------------
    # Authoring
    # ------------------------------------------------------------------

    def next_number(self, shop: str) -> str:
        """
        Next PO number for the current year: count of this year's orders + 1.
        Not gapless: deleting a draft can make a later number repeat.
        """
        year = self.clock().year
        count = len(self._load_year(shop, year)) + 1
        return f"PO-{year}-{count:04d}"

    def create(self, shop: str, data: PurchaseOrderCreate | dict) -> PurchaseOrder:
        """Create a draft PO with its totals computed from the lines."""
        try:
            data = PurchaseOrderCreate.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid purchase order: {exc}") from exc
        if not data.supplier_id and not data.supplier_name:
            raise ValidationError("A purchase order requires a supplier")

        now = self.clock()
        year = now.year
        orders = self._load_year(shop, year)
        po = PurchaseOrder(
            id=f"po_{uuid.uuid4().hex[:12]}",
            number=f"PO-{year}-{len(orders) + 1:04d}",
            supplier_id=data.supplier_id,
            supplier_name=data.supplier_name,
            lines=_build_lines(data.lines),
            currency=data.currency or self.default_currency,
            shipping_cost=data.shipping_cost,
            other_costs=data.other_costs,
            expected_delivery_at=data.expected_delivery_at,
            notes=data.notes,
            internal_notes=data.internal_notes,
            created_by=data.created_by,
            created_at=now,
            updated_at=now,
        )
        po.recompute_totals()

        orders.append(po)
        self._save_year(shop, year, orders)
        logger.info(
            "PO created: %s (%s)  shop=%s supplier=%s total=%.2f",
            po.number, po.id, sanitize_shop(shop), po.supplier_name or po.supplier_id, po.total,
        )
        return po

    def get(self, shop: str, id_or_number: str) -> PurchaseOrder:
        year, orders, idx = self._locate(shop, id_or_number)
        return orders[idx]

    def update(self, shop: str, po_id: str, patch: PurchaseOrderPatch | dict) -> PurchaseOrder:
        """
        Apply the fields present in *patch*.  Structural fields require a
        draft; notes and internal_notes can change in any status.
        """
        try:
            patch = PurchaseOrderPatch.model_validate(patch)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid purchase order update: {exc}") from exc
        fields = patch.model_fields_set
        structural = fields - NOTE_FIELDS

        def change(po: PurchaseOrder) -> None:
            if structural and po.status != POStatus.DRAFT:
                raise InvalidState(
                    f"Cannot edit {', '.join(sorted(structural))} on a {po.status.value} "
                    f"purchase order; only notes can change once it has been sent"
                )
            if "lines" in fields:
                po.lines = _build_lines(patch.lines or [])
            for name in ("supplier_id", "supplier_name", "expected_delivery_at", "currency"):
                if name in fields:
                    setattr(po, name, getattr(patch, name))
            if "shipping_cost" in fields:
                po.shipping_cost = patch.shipping_cost or 0.0
            if "other_costs" in fields:
                po.other_costs = patch.other_costs or 0.0
            if fields & {"lines", "shipping_cost", "other_costs"}:
                po.recompute_totals()
            for name in NOTE_FIELDS & fields:
                setattr(po, name, getattr(patch, name) or "")

        po = self._mutate(shop, po_id, change)
        logger.info("PO updated: %s  fields=%s", po.number, ",".join(sorted(fields)) or "-")
        return po

    def delete(self, shop: str, po_id: str) -> bool:
        """Delete a draft PO.  Anything past draft is kept for traceability."""
        year, orders, idx = self._locate(shop, po_id)
        po = orders[idx]
        if po.status != POStatus.DRAFT:
            raise InvalidState(f"Only drafts can be deleted ({po.number} is {po.status.value})")
        del orders[idx]
        self._save_year(shop, year, orders)
        logger.info("PO deleted: %s  shop=%s", po.number, sanitize_shop(shop))
        return True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def send(self, shop: str, po_id: str) -> PurchaseOrder:
        def change(po: PurchaseOrder) -> None:
            if po.status != POStatus.DRAFT:
                raise InvalidState(f"Only drafts can be sent ({po.number} is {po.status.value})")
            po.status = POStatus.SENT
            po.sent_at = self.clock()

        po = self._mutate(shop, po_id, change)
        logger.info("PO sent: %s", po.number)
        return po

    def confirm(
        self, shop: str, po_id: str, expected_delivery_at: Optional[datetime] = None
    ) -> PurchaseOrder:
        def change(po: PurchaseOrder) -> None:
            if po.status != POStatus.SENT:
                raise InvalidState(
                    f"A purchase order must be sent before confirmation "
                    f"({po.number} is {po.status.value})"
                )
            po.status = POStatus.CONFIRMED
            if expected_delivery_at is not None:
                po.expected_delivery_at = expected_delivery_at

        po = self._mutate(shop, po_id, change)
        logger.info("PO confirmed: %s  expected=%s", po.number, po.expected_delivery_at)
        return po

    def cancel(self, shop: str, po_id: str, reason: str = "") -> PurchaseOrder:
        def change(po: PurchaseOrder) -> None:
            if po.status in TERMINAL_STATUSES:
                raise InvalidState(f"{po.number} is {po.status.value} and cannot be cancelled")
            po.status = POStatus.CANCELLED
            marker = f"[CANCELLED] {reason}".rstrip()
            po.internal_notes = (
                f"{po.internal_notes}\n{marker}" if po.internal_notes else marker
            )

        po = self._mutate(shop, po_id, change)
        logger.info("PO cancelled: %s  reason=%s", po.number, reason or "-")
        return po

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    def receive(
        self,
        shop: str,
        po_id: str,
        received_lines: Iterable[ReceivedLine | dict],
        options: Optional[ReceiveOptions | dict] = None,
    ) -> ReceiveResult:
        """
        Record a goods-in event.

        Entries that are malformed, not positive, or point at an unknown
        line are skipped so the rest of the delivery still goes through.
        Over-delivery is recorded as-is.
        """
        try:
            options = ReceiveOptions.model_validate(options or {})
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid receive options: {exc}") from exc

        year, orders, idx = self._locate(shop, po_id)
        po = orders[idx]
        if po.status not in RECEIVABLE_STATUSES:
            raise InvalidState(
                f"{po.number} must be sent or confirmed to receive goods "
                f"(status is {po.status.value})"
            )

        now = self.clock()
        reception = Reception(id=f"rec_{uuid.uuid4().hex[:12]}", date=now, notes=options.notes)
        batches: list[BatchRequest] = []

        for raw in received_lines:
            try:
                entry = ReceivedLine.model_validate(raw)
            except PydanticValidationError as exc:
                logger.warning("PO %s: skipping malformed reception line: %s", po.number, exc)
                continue
            line = po.find_line(entry.line_id)
            if line is None:
                logger.debug("PO %s: skipping unknown line %s", po.number, entry.line_id)
                continue
            if not math.isfinite(entry.received_grams) or entry.received_grams <= 0:
                logger.debug("PO %s: skipping non-positive grams on %s", po.number, line.id)
                continue

            line.received_grams += entry.received_grams
            reception.lines.append(
                ReceptionLine(line_id=line.id, received_grams=entry.received_grams)
            )
            if options.create_batches:
                batches.append(BatchRequest(
                    product_id=line.product_id,
                    grams=entry.received_grams,
                    price_per_gram=line.price_per_gram,
                    supplier_id=po.supplier_id,
                    purchase_order_id=po.id,
                    expiry_date=entry.expiry_date,
                    expiry_type=entry.expiry_type or ExpiryType.NONE,
                ))

        po.receptions.append(reception)

        received = po.total_received_grams
        if received > 0 and received >= po.total_ordered_grams:
            po.status = POStatus.COMPLETE
            po.received_at = now
        elif received > 0:
            po.status = POStatus.PARTIAL
        po.updated_at = now

        self._save_year(shop, year, orders)
        logger.info(
            "PO %s received %d line(s)  status=%s received=%g/%g g",
            po.number, len(reception.lines), po.status.value,
            received, po.total_ordered_grams,
        )
        return ReceiveResult(
            purchase_order=po,
            reception=reception,
            batches_to_create=batches,
            is_complete=po.status == POStatus.COMPLETE,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_orders(
        self,
        shop: str,
        year: Optional[int] = None,
        status: Optional[POStatus | str] = None,
        supplier_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[PurchaseOrder]:
        """Orders newest first, optionally filtered."""
        years = [year] if year is not None else self._years(shop)
        orders: list[PurchaseOrder] = []
        for y in years:
            orders.extend(self._load_year(shop, y))
        if status is not None:
            try:
                wanted = POStatus(status)
            except ValueError as exc:
                raise ValidationError(f"Unknown purchase order status: {status}") from exc
            orders = [o for o in orders if o.status == wanted]
        if supplier_id is not None:
            orders = [o for o in orders if o.supplier_id == supplier_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[:limit]

    def pending(self, shop: str) -> list[PurchaseOrder]:
        """Orders still awaiting goods (sent, confirmed or partial)."""
        return [
            o for o in self.list_orders(shop, limit=10**9)
            if o.status in RECEIVABLE_STATUSES
        ]

    def stats(self, shop: str, year: Optional[int] = None) -> POStats:
        orders = self.list_orders(shop, year=year, limit=10**9)
        stats = POStats(total=len(orders), by_status={s.value: 0 for s in POStatus})
        for o in orders:
            stats.by_status[o.status.value] += 1
            if o.status != POStatus.CANCELLED:
                stats.total_value += o.total
                if o.status in RECEIVABLE_STATUSES:
                    stats.pending_value += o.total
        return stats
