from datetime import date, datetime
from enum import Enum
from typing import Optional, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .batch import ExpiryType


class POStatus(str, Enum):
    """Purchase order lifecycle: draft → sent → confirmed → partial → complete."""
    DRAFT = "draft"
    SENT = "sent"
    CONFIRMED = "confirmed"
    PARTIAL = "partial"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


# Statuses from which goods can be received
RECEIVABLE_STATUSES = {POStatus.SENT, POStatus.CONFIRMED, POStatus.PARTIAL}
TERMINAL_STATUSES = {POStatus.COMPLETE, POStatus.CANCELLED}


class POLine(BaseModel):
    """A single line on a Purchase Order."""
    id: str                                 # line_<n>, sequential within the PO
    product_id: str
    product_name: str = ""
    ordered_grams: float
    received_grams: float = 0.0             # never decreases
    price_per_gram: float = 0.0
    line_total: float = 0.0                 # ordered_grams * price_per_gram
    batch_id: Optional[str] = None          # reserved


class POLineInput(BaseModel):
    """
    A PO line as supplied by a caller on create / update.  Line ids are
    always assigned by the workflow, so an incoming "id" is ignored.
    """
    model_config = ConfigDict(allow_inf_nan=False)

    product_id: str = ""
    product_name: str = ""
    ordered_grams: float = Field(
        default=0.0, validation_alias=AliasChoices("ordered_grams", "grams")
    )
    price_per_gram: float = 0.0


class ReceptionLine(BaseModel):
    line_id: str
    received_grams: float


class Reception(BaseModel):
    """One goods-in event against a PO, possibly partial."""
    id: str
    date: datetime
    notes: str = ""
    lines: List[ReceptionLine] = Field(default_factory=list)


class PurchaseOrder(BaseModel):
    """
    A Purchase Order owned by one shop.

    subtotal and total are rollups of the lines and extra costs; they are
    recomputed by the workflow, never edited directly.
    """
    id: str
    number: str                             # PO-<year>-<seq>
    supplier_id: Optional[str] = None
    supplier_name: str = ""
    lines: List[POLine] = Field(default_factory=list)
    status: POStatus = POStatus.DRAFT
    currency: str = "EUR"

    subtotal: float = 0.0
    shipping_cost: float = 0.0
    other_costs: float = 0.0
    total: float = 0.0

    notes: str = ""
    internal_notes: str = ""
    created_by: Optional[str] = None

    created_at: datetime
    sent_at: Optional[datetime] = None
    expected_delivery_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    updated_at: datetime

    receptions: List[Reception] = Field(default_factory=list)

    def recompute_totals(self) -> None:
        """Refresh subtotal and total from the lines and extra costs."""
        self.subtotal = sum(line.line_total for line in self.lines)
        self.total = self.subtotal + self.shipping_cost + self.other_costs

    @property
    def total_ordered_grams(self) -> float:
        return sum(line.ordered_grams for line in self.lines)

    @property
    def total_received_grams(self) -> float:
        return sum(line.received_grams for line in self.lines)

    def find_line(self, line_id: str) -> Optional[POLine]:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None


class PurchaseOrderCreate(BaseModel):
    """Caller input for creating a draft PO."""
    model_config = ConfigDict(allow_inf_nan=False)

    supplier_id: Optional[str] = None
    supplier_name: str = ""
    lines: List[POLineInput] = Field(default_factory=list)
    currency: Optional[str] = None          # falls back to the configured default
    shipping_cost: float = 0.0
    other_costs: float = 0.0
    expected_delivery_at: Optional[datetime] = None
    notes: str = ""
    internal_notes: str = ""
    created_by: Optional[str] = None


class PurchaseOrderPatch(BaseModel):
    """
    Partial update of a PO.  Only fields explicitly present in the input are
    applied (see model_fields_set).  Everything except notes/internal_notes
    is structural and may only change while the PO is a draft.

    Fields that are not nullable on PurchaseOrder are not nullable here
    either: an explicit null is rejected instead of being persisted.
    """
    model_config = ConfigDict(allow_inf_nan=False)

    supplier_id: Optional[str] = None
    supplier_name: str = ""
    expected_delivery_at: Optional[datetime] = None
    shipping_cost: float = 0.0
    other_costs: float = 0.0
    currency: str = "EUR"
    lines: List[POLineInput] = Field(default_factory=list)
    notes: str = ""
    internal_notes: str = ""


NOTE_FIELDS = {"notes", "internal_notes"}


class ReceivedLine(BaseModel):
    """One line of a goods-in event as supplied by the caller."""
    model_config = ConfigDict(allow_inf_nan=False)

    line_id: str
    received_grams: float
    expiry_date: Optional[date] = None
    expiry_type: Optional[ExpiryType] = None


class ReceiveOptions(BaseModel):
    create_batches: bool = True
    notes: str = ""


class BatchRequest(BaseModel):
    """A lot the caller should create after a receipt (propose phase)."""
    model_config = ConfigDict(allow_inf_nan=False)

    product_id: str
    grams: float
    price_per_gram: float
    supplier_id: Optional[str] = None
    purchase_order_id: Optional[str] = None
    expiry_date: Optional[date] = None
    expiry_type: ExpiryType = ExpiryType.NONE


class ReceiveResult(BaseModel):
    purchase_order: PurchaseOrder
    reception: Reception
    batches_to_create: List[BatchRequest] = Field(default_factory=list)
    is_complete: bool = False


class POStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    total_value: float = 0.0                # every non-cancelled order
    pending_value: float = 0.0              # sent / confirmed / partial
