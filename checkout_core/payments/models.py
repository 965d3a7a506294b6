from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class ProviderPayment(BaseModel):
    payment_id: str
    status: str                       # normalized: approved | pending | in_process | rejected | cancelled | unknown
    raw_status: Optional[str] = None
    amount: Decimal
    external_reference: Optional[str] = None
    approved_at: Optional[datetime] = None


class ReconcileResult(BaseModel):
    ok: bool
    status: str
    order_id: Optional[int] = None
    order_public_id: Optional[str] = None
    message: Optional[str] = None
    retryable: bool = False
    error_code: Optional[str] = None


class ConfirmPaymentIn(BaseModel):
    payment_id: str = Field(min_length=1, max_length=128)
