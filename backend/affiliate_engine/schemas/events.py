from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class AttributionSignalsIn(BaseModel):
    click_id: Optional[str] = None
    coupon: Optional[str] = None
    ip_hash: Optional[str] = None
    ua_hash: Optional[str] = None
    ref: Optional[str] = None


class OrderEvent(BaseModel):
    order_id: str = Field(min_length=1)
    order_number: Optional[str] = None
    subtotal: Decimal = Field(ge=0)
    currency: str = "USD"
    customer_ref: Optional[str] = None
    customer_email: Optional[str] = None
    is_subscription: bool = False
    selling_plan_id: Optional[str] = None
    # Set on rebills: the order that started the subscription.
    original_order_id: Optional[str] = None
    order_created_at: Optional[datetime] = None
    attribution_signals: AttributionSignalsIn = Field(default_factory=AttributionSignalsIn)


class OrderEventResult(BaseModel):
    received: bool = True
    outcome: str
    order_attribution_id: Optional[int] = None
    commission_id: Optional[int] = None
    skipped_reason: Optional[str] = None


class RefundEvent(BaseModel):
    order_id: str = Field(min_length=1)
    reason: Optional[str] = None


class RefundEventResult(BaseModel):
    order_id: str
    reversed_count: int
    reversed_ids: list[int]
    clawback_count: int
    clawback_ids: list[int]


class SubscriptionCancelEvent(BaseModel):
    original_order_id: str = Field(min_length=1)
    selling_plan_id: Optional[str] = None


class SubscriptionCancelResult(BaseModel):
    found: bool
    subscription_id: Optional[int] = None
    active: Optional[bool] = None


class ClickCreate(BaseModel):
    affiliate_id: int
    click_id: Optional[str] = None
    link_id: Optional[int] = None
    landing_url: str = ""
    ip: str
    user_agent: str = ""
    # Landing-page query params; used to pull a partner-supplied click id.
    params: Optional[dict[str, str]] = None


class ClickRead(BaseModel):
    recorded: bool
    click_id: Optional[str] = None
