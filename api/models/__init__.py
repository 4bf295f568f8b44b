"""
Pydantic models for inventory API requests.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ConfirmRequest(BaseModel):
    expected_delivery_at: Optional[datetime] = None


class CancelRequest(BaseModel):
    reason: str = ""


class ReceiveRequest(BaseModel):
    lines: list[dict]               # validated line by line; bad lines are skipped
    create_batches: bool = True
    notes: str = ""
    apply: bool = True              # also create lots and move stock in the same call


class ConsumeRequest(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    product_id: str
    grams: float
    reason: str = ""
