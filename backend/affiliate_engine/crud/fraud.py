from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from affiliate_engine.core.time import utcnow
from affiliate_engine.models.fraud import FraudFlag


def create_fraud_flag(
    db: Session,
    *,
    shop_id: str,
    affiliate_id: int,
    commission_id: int | None,
    flag_type: str,
    score: Decimal | float,
    reason: str | None,
) -> FraudFlag:
    flag = FraudFlag(
        shop_id=shop_id,
        affiliate_id=affiliate_id,
        commission_id=commission_id,
        flag_type=flag_type,
        score=score,
        reason=reason,
        resolved=False,
    )
    db.add(flag)
    db.commit()
    db.refresh(flag)
    return flag


def get_fraud_flag(db: Session, *, flag_id: int, shop_id: str | None = None) -> FraudFlag | None:
    query = db.query(FraudFlag).filter(FraudFlag.id == flag_id)
    if shop_id is not None:
        query = query.filter(FraudFlag.shop_id == shop_id)
    return query.first()


def list_fraud_flags(
    db: Session,
    *,
    shop_id: str,
    resolved: bool | None = None,
    affiliate_id: int | None = None,
) -> list[FraudFlag]:
    query = db.query(FraudFlag).filter(FraudFlag.shop_id == shop_id)
    if resolved is not None:
        query = query.filter(FraudFlag.resolved.is_(resolved))
    if affiliate_id is not None:
        query = query.filter(FraudFlag.affiliate_id == affiliate_id)
    return query.order_by(FraudFlag.created_at.desc(), FraudFlag.id.desc()).all()


def unresolved_commission_ids(db: Session, *, commission_ids: Iterable[int]) -> set[int]:
    ids = list(commission_ids)
    if not ids:
        return set()
    rows = (
        db.query(FraudFlag.commission_id)
        .filter(
            FraudFlag.commission_id.in_(ids),
            FraudFlag.resolved.is_(False),
        )
        .distinct()
        .all()
    )
    return {row[0] for row in rows}


def mark_resolved(db: Session, *, flag: FraudFlag, note: str | None = None) -> FraudFlag:
    flag.resolved = True
    flag.resolved_at = utcnow()
    flag.resolution_note = note
    db.commit()
    db.refresh(flag)
    return flag
