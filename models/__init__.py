from .purchase_order import (
    POStatus, PurchaseOrder, POLine, POLineInput, Reception, ReceptionLine,
    PurchaseOrderCreate, PurchaseOrderPatch, ReceivedLine, ReceiveOptions,
    BatchRequest, ReceiveResult, POStats,
)
from .batch import (
    Batch, BatchStatus, ExpiryType, BatchSpec, BatchUpdate, ConsumedFrom,
    ConsumptionResult, FifoCostPreview, BatchStats, ShopBatchSummary,
)
from .stock import ProductCostState, StockAdjustment, Movement, ReceiptApplication

__all__ = [
    "POStatus", "PurchaseOrder", "POLine", "POLineInput", "Reception", "ReceptionLine",
    "PurchaseOrderCreate", "PurchaseOrderPatch", "ReceivedLine", "ReceiveOptions",
    "BatchRequest", "ReceiveResult", "POStats",
    "Batch", "BatchStatus", "ExpiryType", "BatchSpec", "BatchUpdate", "ConsumedFrom",
    "ConsumptionResult", "FifoCostPreview", "BatchStats", "ShopBatchSummary",
    "ProductCostState", "StockAdjustment", "Movement", "ReceiptApplication",
]
