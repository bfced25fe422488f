from __future__ import annotations

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_engine.models.clicks import Click


def insert_click(
    db: Session,
    *,
    click_id: str,
    shop_id: str,
    affiliate_id: int,
    link_id: int | None,
    landing_url: str,
    ip_hash: str,
    user_agent_hash: str,
    created_at: datetime | None = None,
) -> Click:
    """Insert-or-detect: a replayed click id returns the row already stored."""
    existing = get_click(db, click_id=click_id)
    if existing:
        return existing
    click = Click(
        id=click_id,
        shop_id=shop_id,
        affiliate_id=affiliate_id,
        link_id=link_id,
        landing_url=landing_url or "",
        ip_hash=ip_hash,
        user_agent_hash=user_agent_hash,
    )
    if created_at is not None:
        click.created_at = created_at
    db.add(click)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_click(db, click_id=click_id)
        if existing is None:
            raise
        return existing
    db.refresh(click)
    return click


def get_click(db: Session, *, click_id: str) -> Click | None:
    return db.query(Click).filter(Click.id == click_id).first()


def list_fingerprint_clicks(
    db: Session,
    *,
    shop_id: str,
    ip_hash: str,
    user_agent_hash: str,
    since: datetime,
    until: datetime,
) -> list[Click]:
    """Clicks sharing the order's connection fingerprint, newest first."""
    return (
        db.query(Click)
        .filter(
            Click.shop_id == shop_id,
            Click.ip_hash == ip_hash,
            Click.user_agent_hash == user_agent_hash,
            Click.created_at >= since,
            Click.created_at <= until,
        )
        .order_by(Click.created_at.desc(), Click.id.desc())
        .all()
    )


def count_clicks(
    db: Session,
    *,
    affiliate_id: int,
    since: datetime,
    ip_hash: str | None = None,
) -> int:
    query = (
        db.query(func.count())
        .select_from(Click)
        .filter(Click.affiliate_id == affiliate_id, Click.created_at >= since)
    )
    if ip_hash is not None:
        query = query.filter(Click.ip_hash == ip_hash)
    return int(query.scalar() or 0)
