from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from affiliate_engine.schemas.commissions import DeliveryRead


class PayoutRunCreate(BaseModel):
    commission_ids: list[int] = Field(min_length=1)
    period_start: datetime
    period_end: datetime


class PayoutRunApprove(BaseModel):
    payout_reference: Optional[str] = None


class PayNowRequest(BaseModel):
    affiliate_id: int
    commission_ids: list[int] = Field(min_length=1)


class PayoutRunRead(BaseModel):
    id: int
    period_start: datetime
    period_end: datetime
    status: str
    payout_reference: Optional[str] = None
    provider_status: Optional[str] = None
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    commission_count: int = 0
    created_at: datetime


class PayoutRunResultRead(BaseModel):
    run: PayoutRunRead
    requested_count: int
    paid_count: int
    paid_ids: list[int]
    detached_ids: list[int] = Field(default_factory=list)
    total_amount: Decimal
    deliveries: list[DeliveryRead] = Field(default_factory=list)


class UpcomingCommissionRead(BaseModel):
    id: int
    order_id: str
    amount: Decimal
    status: str
    eligible_date: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class UpcomingPayoutRead(BaseModel):
    affiliate_id: int
    affiliate_name: str
    affiliate_email: str
    payout_method: Optional[str] = None
    payout_identifier: Optional[str] = None
    currency: str
    total_amount: Decimal
    commission_count: int
    commissions: list[UpcomingCommissionRead]


class UpcomingPayoutsRead(BaseModel):
    as_of: datetime
    payouts: list[UpcomingPayoutRead]
    total_affiliates: int
    total_commissions: int
    total_amount: Decimal
