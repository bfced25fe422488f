from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from affiliate_engine.core.config import settings
from affiliate_engine.core.rules import to_money
from affiliate_engine.models.affiliates import Affiliate, AffiliateLink
from affiliate_engine.models.commissions import Commission


# SQLSTATE PostgreSQL reports when a SERIALIZABLE transaction loses a conflict.
SERIALIZATION_FAILURE = "40001"


def _next_affiliate_number(db: Session, *, shop_id: str) -> int:
    current = (
        db.query(func.max(Affiliate.affiliate_number))
        .filter(Affiliate.shop_id == shop_id)
        .scalar()
    )
    if current is None:
        return settings.AFFILIATE_NUMBER_START
    return int(current) + 1


def _begin_numbering_transaction(db: Session) -> None:
    # Isolation can only be chosen before a transaction touches the database, so
    # whatever the session already read or wrote is committed first.
    if db.in_transaction():
        db.commit()
    if db.get_bind().dialect.name == "postgresql":
        db.connection(execution_options={"isolation_level": "SERIALIZABLE"})


def _is_serialization_failure(exc: OperationalError) -> bool:
    return getattr(exc.orig, "pgcode", None) == SERIALIZATION_FAILURE


def create_affiliate(
    db: Session,
    *,
    shop_id: str,
    name: str,
    email: str,
    status: str = "pending",
    offer_id: int | None = None,
    payout_terms_days: int | None = None,
    payout_method: str | None = None,
    payout_identifier: str | None = None,
) -> Affiliate:
    """Insert an affiliate with the next display number for its shop.

    The max-read and insert run in their own SERIALIZABLE transaction on
    PostgreSQL. A concurrent creator that grabbed the same number trips the
    unique constraint or a serialization failure, and we retry with a fresh read.
    """
    attempts = 0
    while True:
        attempts += 1
        _begin_numbering_transaction(db)
        affiliate = Affiliate(
            shop_id=shop_id,
            affiliate_number=_next_affiliate_number(db, shop_id=shop_id),
            name=name,
            email=email.strip().lower(),
            status=status,
            offer_id=offer_id,
            payout_terms_days=payout_terms_days,
            payout_method=payout_method,
            payout_identifier=payout_identifier,
        )
        db.add(affiliate)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if get_affiliate_by_email(db, shop_id=shop_id, email=email) is not None:
                raise
            if attempts >= settings.AFFILIATE_NUMBER_MAX_RETRIES:
                raise
            continue
        except OperationalError as exc:
            db.rollback()
            if not _is_serialization_failure(exc) or attempts >= settings.AFFILIATE_NUMBER_MAX_RETRIES:
                raise
            continue
        db.refresh(affiliate)
        return affiliate


def get_affiliate(db: Session, *, affiliate_id: int, shop_id: str | None = None) -> Affiliate | None:
    query = db.query(Affiliate).filter(Affiliate.id == affiliate_id)
    if shop_id is not None:
        query = query.filter(Affiliate.shop_id == shop_id)
    return query.first()


def get_affiliate_by_email(db: Session, *, shop_id: str, email: str) -> Affiliate | None:
    return (
        db.query(Affiliate)
        .filter(Affiliate.shop_id == shop_id, Affiliate.email == email.strip().lower())
        .first()
    )


def list_affiliates(db: Session, *, shop_id: str, status: str | None = None) -> list[Affiliate]:
    query = db.query(Affiliate).filter(Affiliate.shop_id == shop_id)
    if status:
        query = query.filter(Affiliate.status == status)
    return query.order_by(Affiliate.affiliate_number.asc()).all()


def update_affiliate(db: Session, *, affiliate: Affiliate, updates: dict) -> Affiliate:
    for key, value in updates.items():
        setattr(affiliate, key, value)
    db.commit()
    db.refresh(affiliate)
    return affiliate


def delete_affiliate(db: Session, *, affiliate: Affiliate) -> None:
    # Clicks, links, attributions, commissions and flags go with it (ON DELETE CASCADE).
    db.delete(affiliate)
    db.commit()


def create_link(
    db: Session,
    *,
    affiliate: Affiliate,
    destination_url: str,
    coupon_code: str | None = None,
) -> AffiliateLink:
    link = AffiliateLink(
        shop_id=affiliate.shop_id,
        affiliate_id=affiliate.id,
        destination_url=destination_url,
        coupon_code=coupon_code.strip().upper() if coupon_code else None,
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link


def get_link_by_coupon(db: Session, *, shop_id: str, coupon_code: str) -> AffiliateLink | None:
    return (
        db.query(AffiliateLink)
        .filter(
            AffiliateLink.shop_id == shop_id,
            AffiliateLink.coupon_code == coupon_code.strip().upper(),
        )
        .first()
    )


def sum_commissions(db: Session, *, affiliate_id: int, status: str) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Commission.amount), 0))
        .filter(
            Commission.affiliate_id == affiliate_id,
            Commission.status == status,
        )
        .scalar()
    )
    return to_money(total or 0)


def count_commissions(db: Session, *, affiliate_id: int, statuses: list[str]) -> int:
    return int(
        db.query(func.count())
        .select_from(Commission)
        .filter(
            Commission.affiliate_id == affiliate_id,
            Commission.status.in_(statuses),
        )
        .scalar()
        or 0
    )
