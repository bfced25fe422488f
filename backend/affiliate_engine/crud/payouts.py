from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from affiliate_engine.models.payouts import PayoutRun, PayoutRunCommission


def get_payout_run(db: Session, *, run_id: int, shop_id: str | None = None) -> PayoutRun | None:
    query = db.query(PayoutRun).filter(PayoutRun.id == run_id)
    if shop_id is not None:
        query = query.filter(PayoutRun.shop_id == shop_id)
    return query.first()


def list_payout_runs(db: Session, *, shop_id: str) -> list[tuple[PayoutRun, int]]:
    counts = (
        db.query(
            PayoutRunCommission.payout_run_id.label("run_id"),
            func.count(PayoutRunCommission.id).label("commission_count"),
        )
        .group_by(PayoutRunCommission.payout_run_id)
        .subquery()
    )
    rows = (
        db.query(PayoutRun, func.coalesce(counts.c.commission_count, 0))
        .outerjoin(counts, counts.c.run_id == PayoutRun.id)
        .filter(PayoutRun.shop_id == shop_id)
        .order_by(PayoutRun.created_at.desc(), PayoutRun.id.desc())
        .all()
    )
    return [(run, int(count)) for run, count in rows]


def list_run_commission_ids(db: Session, *, run_id: int) -> list[int]:
    rows = (
        db.query(PayoutRunCommission.commission_id)
        .filter(PayoutRunCommission.payout_run_id == run_id)
        .order_by(PayoutRunCommission.commission_id.asc())
        .all()
    )
    return [row[0] for row in rows]


def detach_commissions(db: Session, *, run_id: int, commission_ids: list[int]) -> int:
    """Drop member links from a run. The caller owns the commit."""
    if not commission_ids:
        return 0
    return (
        db.query(PayoutRunCommission)
        .filter(
            PayoutRunCommission.payout_run_id == run_id,
            PayoutRunCommission.commission_id.in_(commission_ids),
        )
        .delete(synchronize_session=False)
    )


def delete_payout_run(db: Session, *, run: PayoutRun) -> None:
    db.delete(run)
    db.commit()
