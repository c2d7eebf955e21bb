from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum

class PaymentStatus(str, Enum):
    REQUIRES_CAPTURE = "requires_capture"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

class PaymentIntent(SQLModel, table=True):
    payment_id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(default="razorpay", max_length=20)
    intent_id: str = Field(max_length=100, unique=True, index=True)  # gateway payment id
    order_id: Optional[str] = Field(default=None, max_length=100, index=True)  # checkout session id
    client_secret: Optional[str] = Field(default=None, max_length=255)
    amount: int = Field(default=0)  # minor units
    currency: str = Field(default="USD", max_length=3)
    status: PaymentStatus = Field(default=PaymentStatus.REQUIRES_CAPTURE)
    billing_email: Optional[str] = Field(default=None, max_length=100)
    billing_contact: Optional[str] = Field(default=None, max_length=20)
    shipping_address: Optional[str] = Field(default=None, max_length=500)
    failure_reason: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
