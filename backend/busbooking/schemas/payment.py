"""
Pydantic schemas for payments and the provider callback.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class PaymentCreate(BaseModel):
    booking_id: int
    method: Literal["DEMO", "TELEBIRR"] = "DEMO"
    phone: Optional[str] = Field(None, max_length=32)  # TeleBirr wallet; defaults to the account phone


class PaymentResponse(BaseModel):
    id: int
    booking_id: int
    amount: Decimal
    method: str
    transaction_id: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentResult(BaseModel):
    message: str
    booking_id: int
    booking_status: str
    payment: PaymentResponse
    ticket_codes: list[str] = []


class TelebirrCallback(BaseModel):
    """Webhook body as sent by TeleBirr (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    transaction_id: str = Field(..., alias="transactionId", min_length=1)
    out_trade_no: str = Field(..., alias="outTradeNo")
    status: str
    amount: Decimal
    timestamp: datetime
    currency: Optional[str] = None
    signature: str


class WebhookAck(BaseModel):
    success: bool = True
    message: str
