from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from affiliate_engine.models.postbacks import PostbackLog, PostbackTemplate


def create_template(
    db: Session,
    *,
    shop_id: str,
    name: str,
    trigger_event: str,
    base_url: str,
    param_mappings: dict[str, str],
    active: bool = True,
) -> PostbackTemplate:
    template = PostbackTemplate(
        shop_id=shop_id,
        name=name,
        trigger_event=trigger_event,
        base_url=base_url,
        param_mappings=param_mappings,
        active=active,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def list_active_templates(db: Session, *, shop_id: str, trigger_event: str) -> list[PostbackTemplate]:
    return (
        db.query(PostbackTemplate)
        .filter(
            PostbackTemplate.shop_id == shop_id,
            PostbackTemplate.trigger_event == trigger_event,
            PostbackTemplate.active.is_(True),
        )
        .order_by(PostbackTemplate.id.asc())
        .all()
    )


def list_templates(db: Session, *, shop_id: str) -> list[PostbackTemplate]:
    return (
        db.query(PostbackTemplate)
        .filter(PostbackTemplate.shop_id == shop_id)
        .order_by(PostbackTemplate.id.asc())
        .all()
    )


def get_template(db: Session, *, template_id: int) -> PostbackTemplate | None:
    return db.query(PostbackTemplate).filter(PostbackTemplate.id == template_id).first()


def list_logs(
    db: Session,
    *,
    shop_id: str,
    status: str | None = None,
    commission_id: int | None = None,
    limit: int = 100,
) -> list[PostbackLog]:
    query = db.query(PostbackLog).filter(PostbackLog.shop_id == shop_id)
    if status:
        query = query.filter(PostbackLog.status == status)
    if commission_id is not None:
        query = query.filter(PostbackLog.commission_id == commission_id)
    return query.order_by(PostbackLog.last_attempt_at.desc(), PostbackLog.id.desc()).limit(limit).all()


def list_retryable_logs(
    db: Session,
    *,
    max_attempts: int,
    attempted_before: datetime,
    limit: int,
) -> list[PostbackLog]:
    return (
        db.query(PostbackLog)
        .filter(
            PostbackLog.status == "failed",
            PostbackLog.attempts < max_attempts,
            PostbackLog.last_attempt_at <= attempted_before,
        )
        .order_by(PostbackLog.last_attempt_at.asc(), PostbackLog.id.asc())
        .limit(limit)
        .all()
    )
