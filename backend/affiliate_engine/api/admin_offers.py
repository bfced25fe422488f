from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from affiliate_engine.api.dependencies import get_shop_id, require_admin
from affiliate_engine.core.db import get_db
from affiliate_engine.core.errors import NotFoundError, ValidationFailedError
from affiliate_engine.crud.offers import create_offer, get_offer, list_offers, update_offer
from affiliate_engine.models.enums import SellingSubscriptionsEnum
from affiliate_engine.schemas.affiliates import OfferCreate, OfferRead, OfferUpdate


router = APIRouter(prefix="/admin/offers", tags=["admin"], dependencies=[Depends(require_admin())])

NON_NULL_FIELDS = ("name", "commission_type", "amount", "currency", "selling_subscriptions")


def _check_rebill_rule(values: dict) -> None:
    if values.get("selling_subscriptions") != SellingSubscriptionsEnum.CREDIT_FIRST_ONLY.value:
        return
    if not values.get("subscription_rebill_commission_type") or values.get("subscription_rebill_commission_value") is None:
        raise ValidationFailedError("credit_first_only offers need a rebill commission type and value")


@router.get("", response_model=list[OfferRead])
def list_shop_offers(shop_id: str = Depends(get_shop_id), db: Session = Depends(get_db)):
    return [OfferRead.model_validate(row) for row in list_offers(db, shop_id=shop_id)]


@router.post("", response_model=OfferRead, status_code=status.HTTP_201_CREATED)
def create_shop_offer(
    payload: OfferCreate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    values = payload.model_dump()
    _check_rebill_rule(values)
    return OfferRead.model_validate(create_offer(db, shop_id=shop_id, **values))


@router.patch("/{offer_id}", response_model=OfferRead)
def update_shop_offer(
    offer_id: int,
    payload: OfferUpdate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    offer = get_offer(db, offer_id=offer_id, shop_id=shop_id)
    if offer is None:
        raise NotFoundError("offer", offer_id)
    updates = payload.model_dump(exclude_unset=True)
    for key in NON_NULL_FIELDS:
        if key in updates and updates[key] is None:
            raise ValidationFailedError(f"{key} cannot be null")
    merged = {
        "selling_subscriptions": offer.selling_subscriptions,
        "subscription_rebill_commission_type": offer.subscription_rebill_commission_type,
        "subscription_rebill_commission_value": offer.subscription_rebill_commission_value,
        **updates,
    }
    _check_rebill_rule(merged)
    return OfferRead.model_validate(update_offer(db, offer=offer, updates=updates))
