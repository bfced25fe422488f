from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_engine.models.attributions import OrderAttribution


def get_attribution_by_order(db: Session, *, order_id: str) -> OrderAttribution | None:
    return db.query(OrderAttribution).filter(OrderAttribution.order_id == order_id).first()


def create_order_attribution(
    db: Session,
    *,
    shop_id: str,
    order_id: str,
    order_number: str | None,
    affiliate_id: int,
    click_id: str | None,
    attribution_type: str,
    order_total: Decimal | None,
    currency: str,
    customer_ref: str | None,
    order_created_at: datetime,
) -> tuple[OrderAttribution, bool]:
    """Returns (attribution, created). A concurrent duplicate converges on the stored row."""
    attribution = OrderAttribution(
        shop_id=shop_id,
        order_id=order_id,
        order_number=order_number,
        affiliate_id=affiliate_id,
        click_id=click_id,
        attribution_type=attribution_type,
        order_total=order_total,
        currency=currency,
        customer_ref=customer_ref,
        order_created_at=order_created_at,
    )
    db.add(attribution)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_attribution_by_order(db, order_id=order_id)
        if existing is None:
            raise
        return existing, False
    db.refresh(attribution)
    return attribution, True
