from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum

class PreorderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COLLECTED = "collected"
    REFUNDED = "refunded"

class Preorder(SQLModel, table=True):
    preorder_id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.user_id", index=True)
    guest_email: Optional[str] = Field(default=None, max_length=100)
    plushie_id: Optional[int] = Field(default=None, foreign_key="plushie.plushie_id", index=True)
    clothing_item_id: Optional[int] = Field(default=None, foreign_key="clothingitem.clothing_item_id", index=True)
    quantity: int = Field(default=1)
    size: Optional[str] = Field(default=None, max_length=10)
    price: int = Field(default=0)  # total charged, minor units
    status: PreorderStatus = Field(default=PreorderStatus.PENDING)
    payment_id: Optional[int] = Field(default=None, foreign_key="paymentintent.payment_id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
