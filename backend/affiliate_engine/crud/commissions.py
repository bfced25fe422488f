from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from affiliate_engine.models.commissions import Commission


def get_commission(db: Session, *, commission_id: int, shop_id: str | None = None) -> Commission | None:
    query = db.query(Commission).filter(Commission.id == commission_id)
    if shop_id is not None:
        query = query.filter(Commission.shop_id == shop_id)
    return query.first()


def get_commission_for_sequence(
    db: Session,
    *,
    order_attribution_id: int,
    rebill_sequence: int,
) -> Commission | None:
    return (
        db.query(Commission)
        .filter(
            Commission.order_attribution_id == order_attribution_id,
            Commission.rebill_sequence == rebill_sequence,
        )
        .first()
    )


def get_commission_for_order(db: Session, *, order_id: str) -> Commission | None:
    return db.query(Commission).filter(Commission.order_id == order_id).first()


def list_commissions(
    db: Session,
    *,
    shop_id: str,
    status: str | None = None,
    statuses: Iterable[str] | None = None,
    affiliate_id: int | None = None,
    eligible_before: datetime | None = None,
) -> list[Commission]:
    query = db.query(Commission).filter(Commission.shop_id == shop_id)
    if status:
        query = query.filter(Commission.status == status)
    if statuses is not None:
        query = query.filter(Commission.status.in_(list(statuses)))
    if affiliate_id is not None:
        query = query.filter(Commission.affiliate_id == affiliate_id)
    if eligible_before is not None:
        query = query.filter(Commission.eligible_date <= eligible_before)
    return query.order_by(Commission.created_at.desc(), Commission.id.desc()).all()


def list_commissions_by_ids(db: Session, *, commission_ids: Iterable[int], shop_id: str) -> list[Commission]:
    ids = list(commission_ids)
    if not ids:
        return []
    return (
        db.query(Commission)
        .filter(Commission.id.in_(ids), Commission.shop_id == shop_id)
        .order_by(Commission.id.asc())
        .all()
    )


def list_commissions_for_order(db: Session, *, shop_id: str, order_id: str) -> list[Commission]:
    """Commissions paid out on this order: the initial purchase and any rebill charged on it."""
    return (
        db.query(Commission)
        .filter(Commission.shop_id == shop_id, Commission.order_id == order_id)
        .order_by(Commission.id.asc())
        .all()
    )


def transition_status(
    db: Session,
    *,
    commission_ids: Iterable[int],
    shop_id: str,
    from_statuses: Iterable[str],
    to_status: str,
    values: dict | None = None,
    eligible_before: datetime | None = None,
) -> list[int]:
    """Compare-and-set status for a set of ids; returns the ids actually moved.

    Rows already moved by a concurrent actor no longer match ``from_statuses``
    and are left out of the result. The caller owns the commit.
    """
    ids = list(commission_ids)
    if not ids:
        return []
    conditions = [
        Commission.id.in_(ids),
        Commission.shop_id == shop_id,
        Commission.status.in_(list(from_statuses)),
    ]
    if eligible_before is not None:
        conditions.append(Commission.eligible_date <= eligible_before)
    stmt = (
        update(Commission)
        .where(*conditions)
        .values(status=to_status, **(values or {}))
        .returning(Commission.id)
    )
    result = db.execute(stmt, execution_options={"synchronize_session": False})
    return sorted(result.scalars().all())
