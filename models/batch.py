from datetime import date, datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field


class BatchStatus(str, Enum):
    ACTIVE = "active"
    DEPLETED = "depleted"
    EXPIRED = "expired"
    RECALLED = "recalled"


class ExpiryType(str, Enum):
    NONE = "none"
    DLC = "dlc"         # use-by date
    DLUO = "dluo"       # best-before date


class Batch(BaseModel):
    """
    A traceable lot of one product received at one time at one cost.

    grams is the remaining usable quantity; original_grams and
    price_per_gram never change after creation.  Batches are never deleted.
    """
    id: str                                 # LOT-<yyyymmdd>-<XXXXXX>
    shop: str
    product_id: str
    grams: float
    original_grams: float
    price_per_gram: float = 0.0
    supplier_id: Optional[str] = None
    supplier_batch_ref: Optional[str] = None
    purchase_order_id: Optional[str] = None
    expiry_date: Optional[date] = None
    expiry_type: ExpiryType = ExpiryType.NONE
    notes: str = ""
    status: BatchStatus = BatchStatus.ACTIVE
    created_at: datetime
    updated_at: datetime

    @property
    def is_exhausted(self) -> bool:
        return self.grams <= 0

    @property
    def remaining_value(self) -> float:
        return self.grams * self.price_per_gram


class BatchSpec(BaseModel):
    """Caller input for creating a lot (PO receipt or manual intake)."""
    model_config = ConfigDict(allow_inf_nan=False)

    product_id: str
    grams: float
    price_per_gram: float = 0.0
    supplier_id: Optional[str] = None
    supplier_batch_ref: Optional[str] = None
    purchase_order_id: Optional[str] = None
    expiry_date: Optional[date] = None
    expiry_type: ExpiryType = ExpiryType.NONE
    notes: str = ""


class BatchUpdate(BaseModel):
    """Metadata edit; only fields present in the input are applied."""
    expiry_date: Optional[date] = None
    expiry_type: ExpiryType = ExpiryType.NONE
    notes: str = ""
    supplier_batch_ref: Optional[str] = None
    status: Optional[BatchStatus] = None    # only expired / recalled


class ConsumedFrom(BaseModel):
    """Grams taken from one lot by a consumption."""
    batch_id: str
    grams: float
    price_per_gram: float = 0.0
    total_cost: float = 0.0


class ConsumptionResult(BaseModel):
    product_id: str
    grams: float
    reason: str = ""
    consumed_from: List[ConsumedFrom] = Field(default_factory=list)
    remaining_short: float = 0.0
    total_cost: float = 0.0
    average_cost_per_gram: float = 0.0


class FifoCostPreview(BaseModel):
    """Cost of taking a quantity FIFO, computed without consuming."""
    total_cost: float = 0.0
    cost_per_gram: float = 0.0
    available_grams: float = 0.0
    shortfall: float = 0.0


class BatchStats(BaseModel):
    product_id: str
    total_batches: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    received_grams: float = 0.0             # sum of original_grams
    available_grams: float = 0.0            # remaining grams in active lots
    available_value: float = 0.0
    average_cost_per_gram: float = 0.0      # across everything ever received
    oldest_batch_id: Optional[str] = None
    next_expiring_batch_id: Optional[str] = None


class ShopBatchSummary(BaseModel):
    total_products: int = 0
    total_batches: int = 0
    expiring_soon: int = 0
    expired: int = 0
    available_value: float = 0.0
