"""
Lot (batch) ledger with FIFO consumption and expiry tracking.

Each receipt (PO reception or manual intake) creates its own traceable lot;
lots are never merged and never deleted.  Consumption draws from the oldest
active lot first (FIFO by created_at, ties in insertion order) and either
succeeds in full or leaves every lot untouched.

A lot's status moves to 'depleted' when its grams reach zero.  Expiry is a
separate classification: queries report past-expiry lots without touching
them, and only the explicit mark_expired() sweep flips their status.
Remaining grams are kept either way so the caller can decide on write-offs.
"""
import logging
import math
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from models.batch import (
    Batch, BatchSpec, BatchStats, BatchStatus, BatchUpdate, ConsumedFrom,
    ConsumptionResult, FifoCostPreview, ShopBatchSummary,
)
from .document_store import DocumentStore, sanitize_shop
from .errors import InsufficientStock, InvalidState, NotFound, ValidationError

logger = logging.getLogger(__name__)

BATCHES_DOCUMENT = "batches.json"

# Float slack when comparing gram quantities
_EPSILON = 1e-9

# Statuses a caller may set by hand; active/depleted follow the grams
_MANUAL_STATUSES = {BatchStatus.EXPIRED, BatchStatus.RECALLED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_batch_id(now: datetime) -> str:
    return f"LOT-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class LotLedger:
    """Batch collection of every shop, persisted one document per shop."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.clock = clock

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self, shop: str) -> list[Batch]:
        data = self.store.read(self.store.path(shop, BATCHES_DOCUMENT))
        return [Batch.model_validate(b) for b in data.get("batches", [])]

    def _save(self, shop: str, batches: list[Batch]) -> None:
        self.store.write(
            self.store.path(shop, BATCHES_DOCUMENT),
            {
                "shop": sanitize_shop(shop),
                "updated_at": self.clock().isoformat(),
                "batches": [b.model_dump(mode="json") for b in batches],
            },
        )

    def _today(self) -> date:
        return self.clock().date()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_batch(self, shop: str, spec: BatchSpec | dict) -> Batch:
        """Append a new active lot holding spec.grams."""
        try:
            spec = BatchSpec.model_validate(spec)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid batch: {exc}") from exc
        if not spec.product_id:
            raise ValidationError("Batch requires a product_id")
        if not math.isfinite(spec.grams) or spec.grams <= 0:
            raise ValidationError(f"Batch grams must be positive, got {spec.grams}")
        if not math.isfinite(spec.price_per_gram) or spec.price_per_gram < 0:
            raise ValidationError(
                f"Batch price_per_gram cannot be negative, got {spec.price_per_gram}"
            )

        now = self.clock()
        batch = Batch(
            id=generate_batch_id(now),
            shop=sanitize_shop(shop),
            grams=spec.grams,
            original_grams=spec.grams,
            created_at=now,
            updated_at=now,
            **spec.model_dump(exclude={"grams"}),
        )
        batches = self._load(shop)
        batches.append(batch)
        self._save(shop, batches)
        logger.info(
            "Batch created: %s  shop=%s product=%s grams=%g price=%g",
            batch.id, batch.shop, batch.product_id, batch.grams, batch.price_per_gram,
        )
        return batch

    # ------------------------------------------------------------------
    # FIFO consumption
    # ------------------------------------------------------------------

    @staticmethod
    def _fifo(batches: list[Batch], product_id: str) -> list[Batch]:
        """Active, non-exhausted lots of a product, oldest first."""
        candidates = [
            b for b in batches
            if b.product_id == product_id
            and b.status == BatchStatus.ACTIVE
            and b.grams > 0
        ]
        # sorted() is stable: equal timestamps keep insertion order
        return sorted(candidates, key=lambda b: b.created_at)

    def consume(
        self,
        shop: str,
        product_id: str,
        grams: float,
        reason: str = "",
    ) -> ConsumptionResult:
        """
        Take *grams* of *product_id* from the oldest active lots.

        Raises InsufficientStock, with nothing written, when the active lots
        hold less than requested.
        """
        if not math.isfinite(grams) or grams <= 0:
            raise ValidationError(f"Consume grams must be a positive number, got {grams}")

        batches = self._load(shop)
        lots = self._fifo(batches, product_id)
        available = sum(b.grams for b in lots)
        if available + _EPSILON < grams:
            raise InsufficientStock(product_id, grams, available)

        now = self.clock()
        remaining = grams
        consumed: list[ConsumedFrom] = []
        for lot in lots:
            if remaining <= _EPSILON:
                break
            take = min(lot.grams, remaining)
            lot.grams -= take
            remaining -= take
            if lot.grams <= _EPSILON:
                lot.grams = 0.0
                lot.status = BatchStatus.DEPLETED
            lot.updated_at = now
            consumed.append(ConsumedFrom(
                batch_id=lot.id,
                grams=take,
                price_per_gram=lot.price_per_gram,
                total_cost=take * lot.price_per_gram,
            ))

        self._save(shop, batches)

        total_cost = sum(c.total_cost for c in consumed)
        logger.info(
            "Consumed %g g of %s from %d lot(s)  shop=%s reason=%s",
            grams, product_id, len(consumed), sanitize_shop(shop), reason or "-",
        )
        return ConsumptionResult(
            product_id=product_id,
            grams=grams,
            reason=reason,
            consumed_from=consumed,
            remaining_short=0.0,
            total_cost=total_cost,
            average_cost_per_gram=total_cost / grams,
        )

    def preview_fifo_cost(self, shop: str, product_id: str, grams: float) -> FifoCostPreview:
        """Cost of taking *grams* FIFO right now, without consuming anything."""
        if not math.isfinite(grams) or grams < 0:
            raise ValidationError(f"Preview grams must be a non-negative number, got {grams}")
        remaining = grams
        total_cost = 0.0
        for lot in self._fifo(self._load(shop), product_id):
            if remaining <= 0:
                break
            take = min(lot.grams, remaining)
            total_cost += take * lot.price_per_gram
            remaining -= take
        used = grams - remaining
        return FifoCostPreview(
            total_cost=total_cost,
            cost_per_gram=total_cost / used if used > 0 else 0.0,
            available_grams=used,
            shortfall=max(remaining, 0.0),
        )

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def get_expiring_soon(self, shop: str, within_days: int) -> list[Batch]:
        """Active lots expiring between today and today + within_days, soonest first."""
        today = self._today()
        horizon = today + timedelta(days=within_days)
        lots = [
            b for b in self._load(shop)
            if b.status == BatchStatus.ACTIVE
            and b.expiry_date is not None
            and today <= b.expiry_date <= horizon
        ]
        return sorted(lots, key=lambda b: b.expiry_date)

    def get_expired(self, shop: str) -> list[Batch]:
        """Lots whose expiry date has passed, whatever their status."""
        today = self._today()
        lots = [
            b for b in self._load(shop)
            if b.expiry_date is not None and b.expiry_date < today
        ]
        return sorted(lots, key=lambda b: b.expiry_date)

    def mark_expired(self, shop: str) -> list[str]:
        """Flip active past-expiry lots to 'expired'.  Returns their ids."""
        today = self._today()
        now = self.clock()
        batches = self._load(shop)
        marked = []
        for b in batches:
            if (
                b.status == BatchStatus.ACTIVE
                and b.expiry_date is not None
                and b.expiry_date < today
            ):
                b.status = BatchStatus.EXPIRED
                b.updated_at = now
                marked.append(b.id)
        if marked:
            self._save(shop, batches)
            logger.info("Marked %d batch(es) expired  shop=%s", len(marked), sanitize_shop(shop))
        return marked

    # ------------------------------------------------------------------
    # Lookup and maintenance
    # ------------------------------------------------------------------

    def get_batch(self, shop: str, batch_id: str) -> Batch:
        for b in self._load(shop):
            if b.id == batch_id:
                return b
        raise NotFound(f"Batch not found: {batch_id}")

    def find_by_supplier_ref(
        self, shop: str, product_id: str, supplier_ref: str
    ) -> Optional[Batch]:
        for b in self._load(shop):
            if b.product_id == product_id and b.supplier_batch_ref == supplier_ref:
                return b
        return None

    def list_batches(
        self,
        shop: str,
        product_id: Optional[str] = None,
        status: Optional[BatchStatus | str] = None,
    ) -> list[Batch]:
        batches = self._load(shop)
        if product_id is not None:
            batches = [b for b in batches if b.product_id == product_id]
        if status is not None:
            try:
                wanted = BatchStatus(status)
            except ValueError as exc:
                raise ValidationError(f"Unknown batch status: {status}") from exc
            batches = [b for b in batches if b.status == wanted]
        return batches

    def update_batch(self, shop: str, batch_id: str, updates: BatchUpdate | dict) -> Batch:
        """Edit a lot's metadata.  Quantities and cost basis are not editable."""
        try:
            updates = BatchUpdate.model_validate(updates)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid batch update: {exc}") from exc

        batches = self._load(shop)
        batch = next((b for b in batches if b.id == batch_id), None)
        if batch is None:
            raise NotFound(f"Batch not found: {batch_id}")

        fields = updates.model_fields_set
        if "status" in fields:
            if updates.status not in _MANUAL_STATUSES:
                raise InvalidState(
                    f"Batch status can only be set to expired or recalled, not {updates.status}"
                )
            batch.status = updates.status
        for name in ("expiry_date", "expiry_type", "notes", "supplier_batch_ref"):
            if name in fields:
                setattr(batch, name, getattr(updates, name))
        batch.updated_at = self.clock()

        self._save(shop, batches)
        return batch

    def recall_batch(self, shop: str, batch_id: str) -> Batch:
        """Withdraw a lot from consumption; the record is kept."""
        return self.update_batch(shop, batch_id, {"status": BatchStatus.RECALLED})

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def product_stats(self, shop: str, product_id: str) -> BatchStats:
        batches = self.list_batches(shop, product_id=product_id)
        stats = BatchStats(
            product_id=product_id,
            total_batches=len(batches),
            by_status={s.value: 0 for s in BatchStatus},
        )
        total_cost = 0.0
        for b in batches:
            stats.by_status[b.status.value] += 1
            stats.received_grams += b.original_grams
            total_cost += b.original_grams * b.price_per_gram
            if b.status == BatchStatus.ACTIVE:
                stats.available_grams += b.grams
                stats.available_value += b.remaining_value
        if stats.received_grams > 0:
            stats.average_cost_per_gram = total_cost / stats.received_grams

        active = self._fifo(batches, product_id)
        if active:
            stats.oldest_batch_id = active[0].id
            dated = [b for b in active if b.expiry_date is not None]
            if dated:
                stats.next_expiring_batch_id = min(dated, key=lambda b: b.expiry_date).id
        return stats

    def shop_summary(self, shop: str, expiring_within_days: int = 30) -> ShopBatchSummary:
        batches = self._load(shop)
        return ShopBatchSummary(
            total_products=len({b.product_id for b in batches}),
            total_batches=len(batches),
            expiring_soon=len(self.get_expiring_soon(shop, expiring_within_days)),
            expired=len(self.get_expired(shop)),
            available_value=sum(
                b.remaining_value for b in batches if b.status == BatchStatus.ACTIVE
            ),
        )
