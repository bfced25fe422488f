from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from affiliate_engine.api.dependencies import get_postback_sender, get_shop_id, require_admin
from affiliate_engine.core.db import get_db
from affiliate_engine.core.errors import NotFoundError, ValidationFailedError
from affiliate_engine.core.lifecycle import (
    BulkTransitionResult,
    approve_commissions,
    reject_commissions,
    validate_commissions,
)
from affiliate_engine.core.time import normalize_utc
from affiliate_engine.crud.commissions import get_commission, list_commissions
from affiliate_engine.models.enums import CommissionStatusEnum, enum_values
from affiliate_engine.notifications.senders.base import PostbackSender
from affiliate_engine.schemas.commissions import BulkCommissionRequest, BulkTransitionRead, CommissionRead


router = APIRouter(prefix="/admin/commissions", tags=["admin"], dependencies=[Depends(require_admin())])


def _bulk_read(result: BulkTransitionResult) -> BulkTransitionRead:
    return BulkTransitionRead(**result.to_dict())


@router.get("", response_model=list[CommissionRead])
def list_shop_commissions(
    status: Optional[str] = Query(default=None),
    affiliate_id: Optional[int] = Query(default=None),
    eligible_before: Optional[datetime] = Query(default=None),
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    if status and status not in enum_values(CommissionStatusEnum):
        raise ValidationFailedError(f"Unknown commission status: {status}")
    rows = list_commissions(
        db,
        shop_id=shop_id,
        status=status,
        affiliate_id=affiliate_id,
        eligible_before=normalize_utc(eligible_before),
    )
    return [CommissionRead.model_validate(row) for row in rows]


@router.get("/{commission_id}", response_model=CommissionRead)
def read_commission(
    commission_id: int,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    commission = get_commission(db, commission_id=commission_id, shop_id=shop_id)
    if commission is None:
        raise NotFoundError("commission", commission_id)
    return CommissionRead.model_validate(commission)


@router.post("/validate", response_model=BulkTransitionRead)
def validate(
    payload: BulkCommissionRequest,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    return _bulk_read(validate_commissions(db, shop_id=shop_id, commission_ids=payload.commission_ids))


@router.post("/approve", response_model=BulkTransitionRead)
def approve(
    payload: BulkCommissionRequest,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
    sender: PostbackSender = Depends(get_postback_sender),
):
    result = approve_commissions(db, shop_id=shop_id, commission_ids=payload.commission_ids, sender=sender)
    return _bulk_read(result)


@router.post("/reject", response_model=BulkTransitionRead)
def reject(
    payload: BulkCommissionRequest,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    result = reject_commissions(
        db,
        shop_id=shop_id,
        commission_ids=payload.commission_ids,
        reason=payload.reason,
    )
    return _bulk_read(result)
