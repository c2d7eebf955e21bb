from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum

class ItemStatus(str, Enum):
    PENDING = "pending"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    CANCELED = "canceled"

class ItemKind(str, Enum):
    PLUSHIE = "plushie"
    CLOTHING = "clothing"

class PledgeItemBase(SQLModel):
    name: str = Field(max_length=200)
    creator_id: Optional[int] = Field(default=None, foreign_key="user.user_id", index=True)
    price: Optional[int] = None  # minor units, falls back to the configured preorder price
    pledged: int = Field(default=0)  # committed preorder quantity
    minimum_goal: int = Field(default=0)
    goal: int = Field(default=0)
    status: ItemStatus = Field(default=ItemStatus.PENDING)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class Plushie(PledgeItemBase, table=True):
    plushie_id: Optional[int] = Field(default=None, primary_key=True)

class ClothingItem(PledgeItemBase, table=True):
    clothing_item_id: Optional[int] = Field(default=None, primary_key=True)
