from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from affiliate_engine.models.offers import Offer


def create_offer(
    db: Session,
    *,
    shop_id: str,
    name: str,
    commission_type: str,
    amount: Decimal,
    currency: str = "USD",
    attribution_window_days: int | None = None,
    selling_subscriptions: str = "no",
    subscription_max_payments: int | None = None,
    subscription_rebill_commission_type: str | None = None,
    subscription_rebill_commission_value: Decimal | None = None,
) -> Offer:
    offer = Offer(
        shop_id=shop_id,
        name=name,
        commission_type=commission_type,
        amount=amount,
        currency=currency,
        attribution_window_days=attribution_window_days,
        selling_subscriptions=selling_subscriptions,
        subscription_max_payments=subscription_max_payments,
        subscription_rebill_commission_type=subscription_rebill_commission_type,
        subscription_rebill_commission_value=subscription_rebill_commission_value,
    )
    db.add(offer)
    db.commit()
    db.refresh(offer)
    return offer


def get_offer(db: Session, *, offer_id: int, shop_id: str | None = None) -> Offer | None:
    query = db.query(Offer).filter(Offer.id == offer_id)
    if shop_id is not None:
        query = query.filter(Offer.shop_id == shop_id)
    return query.first()


def list_offers(db: Session, *, shop_id: str) -> list[Offer]:
    return db.query(Offer).filter(Offer.shop_id == shop_id).order_by(Offer.created_at.desc()).all()


def update_offer(db: Session, *, offer: Offer, updates: dict) -> Offer:
    for key, value in updates.items():
        setattr(offer, key, value)
    db.commit()
    db.refresh(offer)
    return offer
