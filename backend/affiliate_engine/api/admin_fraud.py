from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from affiliate_engine.api.dependencies import get_shop_id, require_admin
from affiliate_engine.core.db import get_db
from affiliate_engine.core.fraud import create_manual_flag, resolve_fraud_flag
from affiliate_engine.crud.fraud import list_fraud_flags
from affiliate_engine.schemas.fraud import FraudFlagCreate, FraudFlagRead, FraudFlagResolve


router = APIRouter(prefix="/admin/fraud", tags=["admin"], dependencies=[Depends(require_admin())])


@router.get("", response_model=list[FraudFlagRead])
def list_flags(
    resolved: Optional[bool] = Query(default=None),
    affiliate_id: Optional[int] = Query(default=None),
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    rows = list_fraud_flags(db, shop_id=shop_id, resolved=resolved, affiliate_id=affiliate_id)
    return [FraudFlagRead.model_validate(row) for row in rows]


@router.post("", response_model=FraudFlagRead, status_code=status.HTTP_201_CREATED)
def create_flag(
    payload: FraudFlagCreate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    flag = create_manual_flag(
        db,
        shop_id=shop_id,
        commission_id=payload.commission_id,
        flag_type=payload.flag_type,
        score=payload.score,
        reason=payload.reason,
    )
    return FraudFlagRead.model_validate(flag)


@router.post("/{flag_id}/resolve", response_model=FraudFlagRead)
def resolve_flag(
    flag_id: int,
    payload: FraudFlagResolve | None = None,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    flag = resolve_fraud_flag(db, shop_id=shop_id, flag_id=flag_id, note=payload.note if payload else None)
    return FraudFlagRead.model_validate(flag)
