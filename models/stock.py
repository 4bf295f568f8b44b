from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field

from .batch import Batch


class ProductCostState(BaseModel):
    """The slice of a product's stock aggregate that the engine mutates."""
    product_id: str
    total_grams: float = 0.0
    average_cost_per_gram: float = 0.0
    updated_at: Optional[datetime] = None


class StockAdjustment(BaseModel):
    """
    A change the engine asks the stock aggregate to apply.
    new_average_cost_per_gram=None leaves the current average unchanged.
    """
    product_id: str
    grams_delta: float
    new_average_cost_per_gram: Optional[float] = None
    source: str = "adjustment"              # receipt | intake | consumption | adjustment
    reference_id: Optional[str] = None      # PO id, batch id, order id, ...


class Movement(BaseModel):
    """One row of the stock movement log."""
    id: int
    shop: str
    product_id: str
    timestamp: datetime
    source: str
    grams_delta: float
    total_after: float
    average_cost_after: float
    reference_id: Optional[str] = None


class ReceiptApplication(BaseModel):
    """Outcome of applying the batch requests of a receipt (apply phase)."""
    purchase_order_id: Optional[str] = None
    batches: List[Batch] = Field(default_factory=list)
    adjustments: List[StockAdjustment] = Field(default_factory=list)
    cost_states: List[ProductCostState] = Field(default_factory=list)
