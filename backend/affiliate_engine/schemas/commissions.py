from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class CommissionRead(BaseModel):
    id: int
    affiliate_id: int
    order_attribution_id: int
    order_id: str
    rebill_sequence: int
    amount: Decimal
    currency: str
    status: str
    eligible_date: datetime
    rule_snapshot: dict
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None
    clawback_required: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class BulkCommissionRequest(BaseModel):
    commission_ids: list[int] = Field(min_length=1)
    reason: Optional[str] = None


class DeliveryRead(BaseModel):
    commission_id: int
    event: str
    ok: bool
    sent: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


class BulkTransitionRead(BaseModel):
    requested: int
    transitioned: int
    transitioned_ids: list[int]
    clawback_ids: list[int] = Field(default_factory=list)
    deliveries: list[DeliveryRead] = Field(default_factory=list)
