from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_engine.models.attributions import (
    OrderAttribution,
    SubscriptionAttribution,
    SubscriptionPayment,
)


def get_subscription(
    db: Session,
    *,
    order_attribution_id: int,
    selling_plan_id: str,
) -> SubscriptionAttribution | None:
    return (
        db.query(SubscriptionAttribution)
        .filter(
            SubscriptionAttribution.order_attribution_id == order_attribution_id,
            SubscriptionAttribution.selling_plan_id == selling_plan_id,
        )
        .first()
    )


def find_subscription_for_original_order(
    db: Session,
    *,
    original_order_id: str,
    selling_plan_id: str | None,
) -> SubscriptionAttribution | None:
    query = (
        db.query(SubscriptionAttribution)
        .join(OrderAttribution, OrderAttribution.id == SubscriptionAttribution.order_attribution_id)
        .filter(OrderAttribution.order_id == original_order_id)
    )
    if selling_plan_id:
        query = query.filter(SubscriptionAttribution.selling_plan_id == selling_plan_id)
    return query.order_by(SubscriptionAttribution.created_at.desc()).first()


def find_latest_active_subscription(
    db: Session,
    *,
    affiliate_id: int,
    selling_plan_id: str,
) -> SubscriptionAttribution | None:
    return (
        db.query(SubscriptionAttribution)
        .filter(
            SubscriptionAttribution.affiliate_id == affiliate_id,
            SubscriptionAttribution.selling_plan_id == selling_plan_id,
            SubscriptionAttribution.active.is_(True),
        )
        .order_by(SubscriptionAttribution.created_at.desc(), SubscriptionAttribution.id.desc())
        .first()
    )


def create_subscription(
    db: Session,
    *,
    attribution: OrderAttribution,
    selling_plan_id: str,
    max_payments: int | None,
) -> SubscriptionAttribution:
    existing = get_subscription(
        db,
        order_attribution_id=attribution.id,
        selling_plan_id=selling_plan_id,
    )
    if existing:
        return existing
    subscription = SubscriptionAttribution(
        shop_id=attribution.shop_id,
        order_attribution_id=attribution.id,
        affiliate_id=attribution.affiliate_id,
        selling_plan_id=selling_plan_id,
        payments_made=0,
        max_payments=max_payments,
        active=True,
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_subscription(
            db,
            order_attribution_id=attribution.id,
            selling_plan_id=selling_plan_id,
        )
        if existing is None:
            raise
        return existing
    db.refresh(subscription)
    return subscription


def get_payment_by_order(db: Session, *, order_id: str) -> SubscriptionPayment | None:
    return db.query(SubscriptionPayment).filter(SubscriptionPayment.order_id == order_id).first()
