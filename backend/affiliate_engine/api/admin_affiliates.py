from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from affiliate_engine.api.dependencies import get_shop_id, require_admin
from affiliate_engine.core.affiliates import build_affiliate_summary, change_affiliate, register_affiliate
from affiliate_engine.core.db import get_db
from affiliate_engine.core.errors import NotFoundError, ValidationFailedError
from affiliate_engine.crud.affiliates import (
    create_link,
    delete_affiliate,
    get_affiliate,
    get_link_by_coupon,
    list_affiliates,
)
from affiliate_engine.models.enums import AffiliateStatusEnum, enum_values
from affiliate_engine.schemas.affiliates import (
    AffiliateCreate,
    AffiliateLinkCreate,
    AffiliateLinkRead,
    AffiliateRead,
    AffiliateSummary,
    AffiliateUpdate,
)


router = APIRouter(prefix="/admin/affiliates", tags=["admin"], dependencies=[Depends(require_admin())])


def _get_or_404(db: Session, *, shop_id: str, affiliate_id: int):
    affiliate = get_affiliate(db, affiliate_id=affiliate_id, shop_id=shop_id)
    if affiliate is None:
        raise NotFoundError("affiliate", affiliate_id)
    return affiliate


@router.get("", response_model=list[AffiliateRead])
def list_shop_affiliates(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    if status_filter and status_filter not in enum_values(AffiliateStatusEnum):
        raise ValidationFailedError(f"Unknown affiliate status: {status_filter}")
    return [AffiliateRead.model_validate(row) for row in list_affiliates(db, shop_id=shop_id, status=status_filter)]


@router.post("", response_model=AffiliateRead, status_code=status.HTTP_201_CREATED)
def create_shop_affiliate(
    payload: AffiliateCreate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    affiliate = register_affiliate(db, shop_id=shop_id, **payload.model_dump())
    return AffiliateRead.model_validate(affiliate)


@router.patch("/{affiliate_id}", response_model=AffiliateRead)
def update_shop_affiliate(
    affiliate_id: int,
    payload: AffiliateUpdate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    for key in ("name", "email", "status"):
        if key in updates and updates[key] is None:
            raise ValidationFailedError(f"{key} cannot be null")
    affiliate = change_affiliate(db, shop_id=shop_id, affiliate_id=affiliate_id, updates=updates)
    return AffiliateRead.model_validate(affiliate)


@router.delete("/{affiliate_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_shop_affiliate(
    affiliate_id: int,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    affiliate = _get_or_404(db, shop_id=shop_id, affiliate_id=affiliate_id)
    delete_affiliate(db, affiliate=affiliate)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{affiliate_id}/summary", response_model=AffiliateSummary)
def affiliate_summary(
    affiliate_id: int,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    _get_or_404(db, shop_id=shop_id, affiliate_id=affiliate_id)
    return AffiliateSummary(**build_affiliate_summary(db, affiliate_id=affiliate_id))


@router.post("/{affiliate_id}/links", response_model=AffiliateLinkRead, status_code=status.HTTP_201_CREATED)
def create_affiliate_link(
    affiliate_id: int,
    payload: AffiliateLinkCreate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    affiliate = _get_or_404(db, shop_id=shop_id, affiliate_id=affiliate_id)
    if payload.coupon_code and get_link_by_coupon(db, shop_id=shop_id, coupon_code=payload.coupon_code):
        raise ValidationFailedError(f"Coupon code {payload.coupon_code} is already assigned")
    link = create_link(
        db,
        affiliate=affiliate,
        destination_url=payload.destination_url,
        coupon_code=payload.coupon_code,
    )
    return AffiliateLinkRead.model_validate(link)
