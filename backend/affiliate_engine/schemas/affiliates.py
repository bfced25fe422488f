from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from affiliate_engine.models.enums import (
    AffiliateStatusEnum,
    CommissionTypeEnum,
    SellingSubscriptionsEnum,
    enum_values,
)


def _check_choice(value, choices: list[str], label: str):
    if value is None:
        return value
    if value not in choices:
        raise ValueError(f"{label} must be one of {', '.join(choices)}")
    return value


class OfferFields(BaseModel):
    @field_validator("commission_type", "subscription_rebill_commission_type", check_fields=False)
    @classmethod
    def _commission_type(cls, value):
        return _check_choice(value, enum_values(CommissionTypeEnum), "commission type")

    @field_validator("selling_subscriptions", check_fields=False)
    @classmethod
    def _selling_subscriptions(cls, value):
        return _check_choice(value, enum_values(SellingSubscriptionsEnum), "selling_subscriptions")


class OfferCreate(OfferFields):
    name: str = Field(min_length=1)
    commission_type: str
    amount: Decimal = Field(ge=0)
    currency: str = "USD"
    attribution_window_days: Optional[int] = Field(default=None, gt=0)
    selling_subscriptions: str = "no"
    subscription_max_payments: Optional[int] = Field(default=None, ge=0)
    subscription_rebill_commission_type: Optional[str] = None
    subscription_rebill_commission_value: Optional[Decimal] = Field(default=None, ge=0)


class OfferUpdate(OfferFields):
    name: Optional[str] = Field(default=None, min_length=1)
    commission_type: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = None
    attribution_window_days: Optional[int] = Field(default=None, gt=0)
    selling_subscriptions: Optional[str] = None
    subscription_max_payments: Optional[int] = Field(default=None, ge=0)
    subscription_rebill_commission_type: Optional[str] = None
    subscription_rebill_commission_value: Optional[Decimal] = Field(default=None, ge=0)


class OfferRead(BaseModel):
    id: int
    name: str
    commission_type: str
    amount: Decimal
    currency: str
    attribution_window_days: Optional[int] = None
    selling_subscriptions: str
    subscription_max_payments: Optional[int] = None
    subscription_rebill_commission_type: Optional[str] = None
    subscription_rebill_commission_value: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AffiliateFields(BaseModel):
    @field_validator("status", check_fields=False)
    @classmethod
    def _status(cls, value):
        return _check_choice(value, enum_values(AffiliateStatusEnum), "status")

    @field_validator("email", check_fields=False)
    @classmethod
    def _email(cls, value):
        if value is None:
            return value
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("email must be a valid address")
        return value


class AffiliateCreate(AffiliateFields):
    name: str = Field(min_length=1)
    email: str
    status: str = AffiliateStatusEnum.PENDING.value
    offer_id: Optional[int] = None
    payout_terms_days: Optional[int] = Field(default=None, ge=0)
    payout_method: Optional[str] = None
    payout_identifier: Optional[str] = None


class AffiliateUpdate(AffiliateFields):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = None
    status: Optional[str] = None
    offer_id: Optional[int] = None
    payout_terms_days: Optional[int] = Field(default=None, ge=0)
    payout_method: Optional[str] = None
    payout_identifier: Optional[str] = None


class AffiliateRead(BaseModel):
    id: int
    affiliate_number: int
    name: str
    email: str
    status: str
    offer_id: Optional[int] = None
    payout_terms_days: Optional[int] = None
    payout_method: Optional[str] = None
    payout_identifier: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AffiliateLinkCreate(BaseModel):
    destination_url: str = Field(min_length=1)
    coupon_code: Optional[str] = None


class AffiliateLinkRead(BaseModel):
    id: int
    affiliate_id: int
    destination_url: str
    coupon_code: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AffiliateSummary(BaseModel):
    affiliate_id: int
    affiliate_number: int
    clicks: int
    conversions: int
    commission_pending: Decimal
    commission_eligible: Decimal
    commission_approved: Decimal
    commission_paid: Decimal
    commission_reversed: Decimal
    unresolved_fraud_flags: int
