from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_engine.core.errors import NotFoundError, ValidationFailedError
from affiliate_engine.crud.affiliates import (
    count_commissions,
    create_affiliate,
    get_affiliate,
    get_affiliate_by_email,
    sum_commissions,
    update_affiliate,
)
from affiliate_engine.crud.offers import get_offer
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.clicks import Click
from affiliate_engine.models.enums import CommissionStatusEnum
from affiliate_engine.models.fraud import FraudFlag


CONVERSION_STATUSES = [
    CommissionStatusEnum.PENDING.value,
    CommissionStatusEnum.ELIGIBLE.value,
    CommissionStatusEnum.APPROVED.value,
    CommissionStatusEnum.PAID.value,
]


def _check_offer(db: Session, *, shop_id: str, offer_id: int | None) -> None:
    if offer_id is not None and get_offer(db, offer_id=offer_id, shop_id=shop_id) is None:
        raise NotFoundError("offer", offer_id)


def register_affiliate(db: Session, *, shop_id: str, **fields) -> Affiliate:
    _check_offer(db, shop_id=shop_id, offer_id=fields.get("offer_id"))
    if get_affiliate_by_email(db, shop_id=shop_id, email=fields["email"]) is not None:
        raise ValidationFailedError(f"An affiliate with email {fields['email']} already exists")
    try:
        return create_affiliate(db, shop_id=shop_id, **fields)
    except IntegrityError as exc:
        if get_affiliate_by_email(db, shop_id=shop_id, email=fields["email"]) is not None:
            raise ValidationFailedError(f"An affiliate with email {fields['email']} already exists") from exc
        raise


def change_affiliate(db: Session, *, shop_id: str, affiliate_id: int, updates: dict) -> Affiliate:
    affiliate = get_affiliate(db, affiliate_id=affiliate_id, shop_id=shop_id)
    if affiliate is None:
        raise NotFoundError("affiliate", affiliate_id)
    if "offer_id" in updates:
        _check_offer(db, shop_id=shop_id, offer_id=updates["offer_id"])
    email = updates.get("email")
    if email and email != affiliate.email:
        other = get_affiliate_by_email(db, shop_id=shop_id, email=email)
        if other is not None and other.id != affiliate.id:
            raise ValidationFailedError(f"An affiliate with email {email} already exists")
    return update_affiliate(db, affiliate=affiliate, updates=updates)


def build_affiliate_summary(db: Session, *, affiliate_id: int) -> dict:
    affiliate = db.get(Affiliate, affiliate_id)
    if affiliate is None:
        raise NotFoundError("affiliate", affiliate_id)
    clicks = (
        db.query(func.count())
        .select_from(Click)
        .filter(Click.affiliate_id == affiliate_id)
        .scalar()
        or 0
    )
    open_flags = (
        db.query(func.count())
        .select_from(FraudFlag)
        .filter(FraudFlag.affiliate_id == affiliate_id, FraudFlag.resolved.is_(False))
        .scalar()
        or 0
    )
    return {
        "affiliate_id": affiliate.id,
        "affiliate_number": affiliate.affiliate_number,
        "clicks": int(clicks),
        "conversions": count_commissions(db, affiliate_id=affiliate_id, statuses=CONVERSION_STATUSES),
        "commission_pending": sum_commissions(db, affiliate_id=affiliate_id, status="pending"),
        "commission_eligible": sum_commissions(db, affiliate_id=affiliate_id, status="eligible"),
        "commission_approved": sum_commissions(db, affiliate_id=affiliate_id, status="approved"),
        "commission_paid": sum_commissions(db, affiliate_id=affiliate_id, status="paid"),
        "commission_reversed": sum_commissions(db, affiliate_id=affiliate_id, status="reversed"),
        "unresolved_fraud_flags": int(open_flags),
    }
