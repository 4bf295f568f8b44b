"""
Inventory engine: the async entry point the host process talks to.

An InventoryEngine is an explicit context object built once from a Config.
It owns the document store, the PO workflow, the lot ledger, the stock
repository and the serial queues; nothing lives in module-level state.

Every mutating operation is submitted to the shop's SerialTaskQueue and its
blocking body (file / SQLite I/O) runs in a worker thread while the queue
holds the slot.  Read-only queries skip the queue.

Receiving follows a propose / apply contract:

  1. receive_items()  records the delivery on the PO and returns the lots
                      to create (ReceiveResult.batches_to_create)
  2. apply_receipt()  creates those lots, recomputes the weighted average
                      cost and applies the stock adjustments

receive_and_apply() runs both phases back to back in a single queue slot.
"""
import asyncio
import functools
import logging
import math
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from config import Config
from models.batch import (
    Batch, BatchSpec, BatchStats, BatchStatus, BatchUpdate, ConsumptionResult,
    FifoCostPreview, ShopBatchSummary,
)
from models.purchase_order import (
    POStats, POStatus, PurchaseOrder, PurchaseOrderCreate, PurchaseOrderPatch,
    ReceivedLine, ReceiveOptions, ReceiveResult,
)
from models.stock import Movement, ProductCostState, ReceiptApplication, StockAdjustment
from .cost_averager import apply_receipt as average_after_receipt
from .document_store import DocumentStore
from .errors import InsufficientStock, InvalidState, ValidationError
from .lot_ledger import LotLedger
from .purchase_orders import PurchaseOrderWorkflow
from .stock_repository import StockRepository
from .task_queue import ShopQueues

logger = logging.getLogger(__name__)


class InventoryEngine:
    """Per-host engine context.  Build one and share it between requests."""

    def __init__(
        self,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or Config()
        self.config.ensure_data_dir()

        clock_kwargs = {"clock": clock} if clock is not None else {}
        self.store = DocumentStore(self.config.data_dir, pretty=self.config.pretty_json)
        self.purchase_orders = PurchaseOrderWorkflow(
            self.store, default_currency=self.config.default_currency, **clock_kwargs
        )
        self.lots = LotLedger(self.store, **clock_kwargs)
        self.stock = StockRepository(self.config.stock_db_path)
        self.queues = ShopQueues(per_shop=self.config.per_shop_queues)

        logger.info(
            "Inventory engine ready: data=%s batch_tracking=%s cost_averaging=%s per_shop_queues=%s",
            self.config.data_dir, self.config.batch_tracking,
            self.config.cost_averaging, self.config.per_shop_queues,
        )

    # ------------------------------------------------------------------
    # Scheduling helpers
    # ------------------------------------------------------------------

    async def _mutate(self, shop: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Run fn(*args) in a worker thread once the shop's queue reaches it."""
        return await self.queues.run(shop, functools.partial(asyncio.to_thread, fn, *args))

    @staticmethod
    async def _read(fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    async def create_purchase_order(
        self, shop: str, data: PurchaseOrderCreate | dict
    ) -> PurchaseOrder:
        return await self._mutate(shop, self.purchase_orders.create, shop, data)

    async def get_purchase_order(self, shop: str, id_or_number: str) -> PurchaseOrder:
        return await self._read(self.purchase_orders.get, shop, id_or_number)

    async def update_purchase_order(
        self, shop: str, po_id: str, patch: PurchaseOrderPatch | dict
    ) -> PurchaseOrder:
        return await self._mutate(shop, self.purchase_orders.update, shop, po_id, patch)

    async def delete_purchase_order(self, shop: str, po_id: str) -> bool:
        return await self._mutate(shop, self.purchase_orders.delete, shop, po_id)

    async def send_purchase_order(self, shop: str, po_id: str) -> PurchaseOrder:
        return await self._mutate(shop, self.purchase_orders.send, shop, po_id)

    async def confirm_purchase_order(
        self, shop: str, po_id: str, expected_delivery_at: Optional[datetime] = None
    ) -> PurchaseOrder:
        return await self._mutate(
            shop, self.purchase_orders.confirm, shop, po_id, expected_delivery_at
        )

    async def cancel_purchase_order(self, shop: str, po_id: str, reason: str = "") -> PurchaseOrder:
        return await self._mutate(shop, self.purchase_orders.cancel, shop, po_id, reason)

    async def receive_items(
        self,
        shop: str,
        po_id: str,
        received_lines: Iterable[ReceivedLine | dict],
        options: Optional[ReceiveOptions | dict] = None,
    ) -> ReceiveResult:
        """Phase 1: record the delivery; nothing is applied to lots or stock."""
        return await self._mutate(
            shop, self.purchase_orders.receive, shop, po_id, list(received_lines), options
        )

    async def apply_receipt(self, shop: str, result: ReceiveResult) -> ReceiptApplication:
        """Phase 2: create the proposed lots and move stock / average cost."""
        return await self._mutate(shop, self._apply_receipt, shop, result)

    async def receive_and_apply(
        self,
        shop: str,
        po_id: str,
        received_lines: Iterable[ReceivedLine | dict],
        options: Optional[ReceiveOptions | dict] = None,
    ) -> tuple[ReceiveResult, ReceiptApplication]:
        lines = list(received_lines)

        def both() -> tuple[ReceiveResult, ReceiptApplication]:
            result = self.purchase_orders.receive(shop, po_id, lines, options)
            return result, self._apply_receipt(shop, result)

        return await self._mutate(shop, both)

    async def list_purchase_orders(
        self,
        shop: str,
        year: Optional[int] = None,
        status: Optional[POStatus | str] = None,
        supplier_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[PurchaseOrder]:
        return await self._read(
            self.purchase_orders.list_orders,
            shop, year, status, supplier_id, limit or self.config.po_list_limit,
        )

    async def pending_purchase_orders(self, shop: str) -> list[PurchaseOrder]:
        return await self._read(self.purchase_orders.pending, shop)

    async def purchase_order_stats(self, shop: str, year: Optional[int] = None) -> POStats:
        return await self._read(self.purchase_orders.stats, shop, year)

    # ------------------------------------------------------------------
    # Lots
    # ------------------------------------------------------------------

    async def create_batch(self, shop: str, spec: BatchSpec | dict) -> Batch:
        """Manual intake: a new lot plus the matching stock / cost adjustment."""
        return await self._mutate(shop, self._create_batch, shop, spec)

    async def consume_stock(
        self, shop: str, product_id: str, grams: float, reason: str = ""
    ) -> ConsumptionResult:
        return await self._mutate(shop, self._consume, shop, product_id, grams, reason)

    async def get_batch(self, shop: str, batch_id: str) -> Batch:
        return await self._read(self.lots.get_batch, shop, batch_id)

    async def list_batches(
        self,
        shop: str,
        product_id: Optional[str] = None,
        status: Optional[BatchStatus | str] = None,
    ) -> list[Batch]:
        return await self._read(self.lots.list_batches, shop, product_id, status)

    async def update_batch(self, shop: str, batch_id: str, updates: BatchUpdate | dict) -> Batch:
        return await self._mutate(shop, self.lots.update_batch, shop, batch_id, updates)

    async def recall_batch(self, shop: str, batch_id: str) -> Batch:
        return await self._mutate(shop, self.lots.recall_batch, shop, batch_id)

    async def get_expiring_soon(self, shop: str, days: Optional[int] = None) -> list[Batch]:
        if days is None:
            days = self.config.expiring_soon_days
        return await self._read(self.lots.get_expiring_soon, shop, days)

    async def get_expired_batches(self, shop: str) -> list[Batch]:
        return await self._read(self.lots.get_expired, shop)

    async def mark_expired_batches(self, shop: str) -> list[str]:
        return await self._mutate(shop, self.lots.mark_expired, shop)

    async def preview_fifo_cost(self, shop: str, product_id: str, grams: float) -> FifoCostPreview:
        return await self._read(self.lots.preview_fifo_cost, shop, product_id, grams)

    async def batch_stats(self, shop: str, product_id: str) -> BatchStats:
        return await self._read(self.lots.product_stats, shop, product_id)

    async def batch_summary(self, shop: str) -> ShopBatchSummary:
        return await self._read(self.lots.shop_summary, shop, self.config.expiring_soon_days)

    # ------------------------------------------------------------------
    # Stock aggregate
    # ------------------------------------------------------------------

    async def get_cost_state(self, shop: str, product_id: str) -> ProductCostState:
        return await self._read(self.stock.get, shop, product_id)

    async def list_movements(
        self, shop: str, product_id: Optional[str] = None, limit: int = 200
    ) -> list[Movement]:
        return await self._read(self.stock.list_movements, shop, product_id, limit)

    # ------------------------------------------------------------------
    # Synchronous bodies (run inside a queue slot)
    # ------------------------------------------------------------------

    def _receive_stock(
        self,
        shop: str,
        product_id: str,
        grams: float,
        price_per_gram: Optional[float],
        source: str,
        reference_id: Optional[str],
    ) -> tuple[StockAdjustment, ProductCostState]:
        """Apply incoming grams to the stock aggregate, averaging in the price."""
        new_average = None
        if self.config.cost_averaging:
            state = self.stock.get(shop, product_id)
            new_average = average_after_receipt(
                state.total_grams, state.average_cost_per_gram, grams, price_per_gram
            )
        adjustment = StockAdjustment(
            product_id=product_id,
            grams_delta=grams,
            new_average_cost_per_gram=new_average,
            source=source,
            reference_id=reference_id,
        )
        return adjustment, self.stock.apply(shop, adjustment)

    def _apply_receipt(self, shop: str, result: ReceiveResult) -> ReceiptApplication:
        application = ReceiptApplication(purchase_order_id=result.purchase_order.id)
        for request in result.batches_to_create:
            if self.config.batch_tracking:
                application.batches.append(
                    self.lots.create_batch(shop, request.model_dump())
                )
            adjustment, state = self._receive_stock(
                shop, request.product_id, request.grams, request.price_per_gram,
                source="receipt", reference_id=result.purchase_order.id,
            )
            application.adjustments.append(adjustment)
            application.cost_states.append(state)
        logger.info(
            "Receipt applied: po=%s lots=%d adjustments=%d",
            result.purchase_order.number, len(application.batches), len(application.adjustments),
        )
        return application

    def _create_batch(self, shop: str, spec: BatchSpec | dict) -> Batch:
        if not self.config.batch_tracking:
            raise InvalidState("Batch tracking is disabled for this installation")
        batch = self.lots.create_batch(shop, spec)
        self._receive_stock(
            shop, batch.product_id, batch.original_grams, batch.price_per_gram,
            source="intake", reference_id=batch.id,
        )
        return batch

    def _consume(
        self, shop: str, product_id: str, grams: float, reason: str
    ) -> ConsumptionResult:
        if not math.isfinite(grams) or grams <= 0:
            raise ValidationError(f"Consume grams must be a positive number, got {grams}")

        if self.config.batch_tracking:
            result = self.lots.consume(shop, product_id, grams, reason)
        else:
            state = self.stock.get(shop, product_id)
            if state.total_grams < grams:
                raise InsufficientStock(product_id, grams, state.total_grams)
            result = ConsumptionResult(
                product_id=product_id,
                grams=grams,
                reason=reason,
                total_cost=grams * state.average_cost_per_gram,
                average_cost_per_gram=state.average_cost_per_gram,
            )

        self.stock.apply(shop, StockAdjustment(
            product_id=product_id,
            grams_delta=-grams,
            new_average_cost_per_gram=None,
            source="consumption",
            reference_id=reason or None,
        ))
        return result
