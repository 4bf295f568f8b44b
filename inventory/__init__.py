from .errors import InventoryError, NotFound, InvalidState, ValidationError, InsufficientStock
from .document_store import DocumentStore, sanitize_shop
from .task_queue import SerialTaskQueue, ShopQueues
from .cost_averager import apply_receipt, apply_receipts
from .lot_ledger import LotLedger
from .purchase_orders import PurchaseOrderWorkflow
from .stock_repository import StockRepository
from .engine import InventoryEngine

__all__ = [
    "InventoryError", "NotFound", "InvalidState", "ValidationError", "InsufficientStock",
    "DocumentStore", "sanitize_shop", "SerialTaskQueue", "ShopQueues",
    "apply_receipt", "apply_receipts", "LotLedger", "PurchaseOrderWorkflow",
    "StockRepository", "InventoryEngine",
]
