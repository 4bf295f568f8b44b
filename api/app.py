"""
Inventory engine — FastAPI transport.

Thin HTTP layer over InventoryEngine: validates request bodies, hands them to
the engine and returns its results verbatim.  Engine errors are mapped to
status codes in one exception handler (NotFound → 404, InvalidState and
InsufficientStock → 409, ValidationError → 422).

The engine is built once in create_app() and kept on app.state; there is no
module-level engine.

Endpoints (all scoped by shop)
------------------------------
  GET    /api/health
  GET    /api/shops/{shop}/purchase-orders                 → list (?year= ?status= ?supplier_id= ?limit=)
  POST   /api/shops/{shop}/purchase-orders                 → create draft
  GET    /api/shops/{shop}/purchase-orders/stats           → counts and values (?year=)
  GET    /api/shops/{shop}/purchase-orders/pending         → sent / confirmed / partial orders
  GET    /api/shops/{shop}/purchase-orders/{po}            → one PO (id or number)
  PATCH  /api/shops/{shop}/purchase-orders/{po}            → edit (structural fields: drafts only)
  DELETE /api/shops/{shop}/purchase-orders/{po}            → delete a draft
  POST   /api/shops/{shop}/purchase-orders/{po}/send
  POST   /api/shops/{shop}/purchase-orders/{po}/confirm
  POST   /api/shops/{shop}/purchase-orders/{po}/cancel
  POST   /api/shops/{shop}/purchase-orders/{po}/receive    → reception (+ lots and stock unless apply=false)
  GET    /api/shops/{shop}/batches                         → list (?product_id= ?status=)
  POST   /api/shops/{shop}/batches                         → manual intake
  GET    /api/shops/{shop}/batches/expiring                → active lots expiring soon (?days=)
  GET    /api/shops/{shop}/batches/expired                 → past-expiry lots
  POST   /api/shops/{shop}/batches/mark-expired            → flip active past-expiry lots to expired
  POST   /api/shops/{shop}/batches/consume                 → FIFO consumption
  GET    /api/shops/{shop}/batches/summary                 → lot counts and active value
  GET    /api/shops/{shop}/batches/{batch_id}
  PATCH  /api/shops/{shop}/batches/{batch_id}              → expiry, notes, supplier ref, status
  POST   /api/shops/{shop}/batches/{batch_id}/recall
  GET    /api/shops/{shop}/stock/{product_id}              → total grams and average cost
  GET    /api/shops/{shop}/stock/{product_id}/batches      → per-product lot statistics
  GET    /api/shops/{shop}/stock/{product_id}/fifo-cost    → FIFO cost preview (?grams=)
  GET    /api/shops/{shop}/stock/{product_id}/movements    → movement log (?limit=)
"""
import logging
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import Config
from inventory.engine import InventoryEngine
from inventory.errors import InventoryError
from models.batch import BatchSpec, BatchUpdate
from models.purchase_order import PurchaseOrderCreate, PurchaseOrderPatch
from .models import CancelRequest, ConfirmRequest, ConsumeRequest, ReceiveRequest

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Config] = None,
    engine: Optional[InventoryEngine] = None,
) -> FastAPI:
    app = FastAPI(title="Inventory Engine", docs_url=None, redoc_url=None)
    app.state.engine = engine or InventoryEngine(config)

    def get_engine(request: Request) -> InventoryEngine:
        return request.app.state.engine

    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError):
        logger.info("%s %s → %s: %s", request.method, request.url.path, type(exc).__name__, exc)
        return JSONResponse(
            status_code=exc.http_status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Inputs are not echoed back: NaN / Infinity cannot be rendered as JSON
        detail = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        logger.info("%s %s → invalid request: %s", request.method, request.url.path, detail)
        return JSONResponse(
            status_code=422,
            content={"error": "ValidationError", "detail": detail},
        )

    # ── Health ──────────────────────────────────────────────────────────────

    @app.get("/api/health")
    def health(request: Request):
        cfg = get_engine(request).config
        return {
            "status":         "ok",
            "data_dir":       str(cfg.data_dir),
            "stock_db_path":  str(cfg.stock_db_path),
            "batch_tracking": cfg.batch_tracking,
            "cost_averaging": cfg.cost_averaging,
        }

    # ── Purchase orders ─────────────────────────────────────────────────────

    @app.get("/api/shops/{shop}/purchase-orders")
    async def list_purchase_orders(
        shop: str,
        request: Request,
        year: Optional[int] = Query(default=None),
        status: Optional[str] = Query(default=None),
        supplier_id: Optional[str] = Query(default=None),
        limit: Optional[int] = Query(default=None, ge=1, le=1000),
    ):
        return await get_engine(request).list_purchase_orders(
            shop, year=year, status=status or None,
            supplier_id=supplier_id or None, limit=limit,
        )

    @app.post("/api/shops/{shop}/purchase-orders", status_code=201)
    async def create_purchase_order(shop: str, body: PurchaseOrderCreate, request: Request):
        return await get_engine(request).create_purchase_order(shop, body)

    @app.get("/api/shops/{shop}/purchase-orders/stats")
    async def purchase_order_stats(
        shop: str, request: Request, year: Optional[int] = Query(default=None)
    ):
        return await get_engine(request).purchase_order_stats(shop, year)

    @app.get("/api/shops/{shop}/purchase-orders/pending")
    async def pending_purchase_orders(shop: str, request: Request):
        return await get_engine(request).pending_purchase_orders(shop)

    @app.get("/api/shops/{shop}/purchase-orders/{po_id}")
    async def get_purchase_order(shop: str, po_id: str, request: Request):
        return await get_engine(request).get_purchase_order(shop, po_id)

    @app.patch("/api/shops/{shop}/purchase-orders/{po_id}")
    async def update_purchase_order(
        shop: str, po_id: str, body: PurchaseOrderPatch, request: Request
    ):
        return await get_engine(request).update_purchase_order(shop, po_id, body)

    @app.delete("/api/shops/{shop}/purchase-orders/{po_id}")
    async def delete_purchase_order(shop: str, po_id: str, request: Request):
        deleted = await get_engine(request).delete_purchase_order(shop, po_id)
        return {"deleted": deleted}

    @app.post("/api/shops/{shop}/purchase-orders/{po_id}/send")
    async def send_purchase_order(shop: str, po_id: str, request: Request):
        return await get_engine(request).send_purchase_order(shop, po_id)

    @app.post("/api/shops/{shop}/purchase-orders/{po_id}/confirm")
    async def confirm_purchase_order(
        shop: str, po_id: str, body: ConfirmRequest, request: Request
    ):
        return await get_engine(request).confirm_purchase_order(
            shop, po_id, body.expected_delivery_at
        )

    @app.post("/api/shops/{shop}/purchase-orders/{po_id}/cancel")
    async def cancel_purchase_order(
        shop: str, po_id: str, body: CancelRequest, request: Request
    ):
        return await get_engine(request).cancel_purchase_order(shop, po_id, body.reason)

    @app.post("/api/shops/{shop}/purchase-orders/{po_id}/receive")
    async def receive_items(shop: str, po_id: str, body: ReceiveRequest, request: Request):
        engine = get_engine(request)
        options = {"create_batches": body.create_batches, "notes": body.notes}
        if not body.apply:
            result = await engine.receive_items(shop, po_id, body.lines, options)
            return {"receipt": result, "application": None}
        result, application = await engine.receive_and_apply(shop, po_id, body.lines, options)
        return {"receipt": result, "application": application}

    # ── Batches ─────────────────────────────────────────────────────────────

    @app.get("/api/shops/{shop}/batches")
    async def list_batches(
        shop: str,
        request: Request,
        product_id: Optional[str] = Query(default=None),
        status: Optional[str] = Query(default=None),
    ):
        return await get_engine(request).list_batches(
            shop, product_id=product_id or None, status=status or None
        )

    @app.post("/api/shops/{shop}/batches", status_code=201)
    async def create_batch(shop: str, body: BatchSpec, request: Request):
        return await get_engine(request).create_batch(shop, body)

    @app.get("/api/shops/{shop}/batches/expiring")
    async def expiring_batches(
        shop: str, request: Request, days: Optional[int] = Query(default=None, ge=0)
    ):
        return await get_engine(request).get_expiring_soon(shop, days)

    @app.get("/api/shops/{shop}/batches/expired")
    async def expired_batches(shop: str, request: Request):
        return await get_engine(request).get_expired_batches(shop)

    @app.post("/api/shops/{shop}/batches/mark-expired")
    async def mark_expired(shop: str, request: Request):
        marked = await get_engine(request).mark_expired_batches(shop)
        return {"marked_count": len(marked), "batch_ids": marked}

    @app.post("/api/shops/{shop}/batches/consume")
    async def consume_stock(shop: str, body: ConsumeRequest, request: Request):
        return await get_engine(request).consume_stock(
            shop, body.product_id, body.grams, body.reason
        )

    @app.get("/api/shops/{shop}/batches/summary")
    async def batch_summary(shop: str, request: Request):
        return await get_engine(request).batch_summary(shop)

    @app.get("/api/shops/{shop}/batches/{batch_id}")
    async def get_batch(shop: str, batch_id: str, request: Request):
        return await get_engine(request).get_batch(shop, batch_id)

    @app.patch("/api/shops/{shop}/batches/{batch_id}")
    async def update_batch(shop: str, batch_id: str, body: BatchUpdate, request: Request):
        return await get_engine(request).update_batch(
            shop, batch_id, body.model_dump(exclude_unset=True)
        )

    @app.post("/api/shops/{shop}/batches/{batch_id}/recall")
    async def recall_batch(shop: str, batch_id: str, request: Request):
        return await get_engine(request).recall_batch(shop, batch_id)

    # ── Stock ───────────────────────────────────────────────────────────────

    @app.get("/api/shops/{shop}/stock/{product_id}")
    async def cost_state(shop: str, product_id: str, request: Request):
        return await get_engine(request).get_cost_state(shop, product_id)

    @app.get("/api/shops/{shop}/stock/{product_id}/batches")
    async def product_batch_stats(shop: str, product_id: str, request: Request):
        return await get_engine(request).batch_stats(shop, product_id)

    @app.get("/api/shops/{shop}/stock/{product_id}/fifo-cost")
    async def fifo_cost(
        shop: str, product_id: str, request: Request, grams: float = Query(..., gt=0)
    ):
        return await get_engine(request).preview_fifo_cost(shop, product_id, grams)

    @app.get("/api/shops/{shop}/stock/{product_id}/movements")
    async def movements(
        shop: str,
        product_id: str,
        request: Request,
        limit: int = Query(default=200, ge=1, le=5000),
    ):
        return await get_engine(request).list_movements(shop, product_id, limit)

    return app
