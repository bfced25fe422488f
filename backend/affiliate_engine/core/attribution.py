"""
Order attribution: picks the affiliate (and click) that gets credit for an order.

Signals are tried in a fixed order. A coupon that maps to an active
affiliate's link wins outright. Otherwise an explicit click id is used when
it is still inside its affiliate's attribution window, and failing that the
newest click sharing the order's IP and user-agent hashes wins (last touch).
Every window is read from the click's affiliate offer at resolution time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from affiliate_engine.core.config import settings
from affiliate_engine.core.hashing import INTERNAL_REFS, generate_click_id, hash_ip, hash_user_agent
from affiliate_engine.core.metrics import record_attribution
from affiliate_engine.core.time import normalize_utc, utcnow
from affiliate_engine.crud.affiliates import get_link_by_coupon
from affiliate_engine.crud.attributions import create_order_attribution, get_attribution_by_order
from affiliate_engine.crud.clicks import get_click, insert_click, list_fingerprint_clicks
from affiliate_engine.models.affiliates import Affiliate, AffiliateLink
from affiliate_engine.models.attributions import OrderAttribution
from affiliate_engine.models.clicks import Click
from affiliate_engine.models.enums import AffiliateStatusEnum, AttributionTypeEnum
from affiliate_engine.models.offers import Offer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributionSignals:
    click_id: str | None = None
    coupon: str | None = None
    ip_hash: str | None = None
    ua_hash: str | None = None
    ref: str | None = None


@dataclass(frozen=True)
class AttributionDecision:
    affiliate: Affiliate
    attribution_type: str
    click: Click | None = None


@dataclass(frozen=True)
class AttributionOutcome:
    attribution: OrderAttribution | None
    created: bool
    method: str


def _is_active(affiliate: Affiliate | None) -> bool:
    return affiliate is not None and affiliate.status == AffiliateStatusEnum.ACTIVE.value


def window_days_for(affiliate: Affiliate) -> int:
    offer = affiliate.offer
    if offer is not None and offer.attribution_window_days:
        return int(offer.attribution_window_days)
    return settings.DEFAULT_ATTRIBUTION_WINDOW_DAYS


def click_in_window(click_time: datetime, order_time: datetime, window_days: int) -> bool:
    # Wall-clock duration, inclusive at both ends.
    return order_time - timedelta(days=window_days) <= click_time <= order_time


def is_internal_ref(ref: str | None) -> bool:
    return bool(ref) and ref.strip().lower() in INTERNAL_REFS


def _lookback_days(db: Session, *, shop_id: str) -> int:
    widest = (
        db.query(func.max(Offer.attribution_window_days))
        .filter(Offer.shop_id == shop_id)
        .scalar()
    )
    return max(settings.FINGERPRINT_LOOKBACK_DAYS, settings.DEFAULT_ATTRIBUTION_WINDOW_DAYS, int(widest or 0))


def _eligible_click(click: Click, order_time: datetime, affiliates: dict[int, Affiliate | None], db: Session) -> Affiliate | None:
    if click.affiliate_id not in affiliates:
        affiliates[click.affiliate_id] = db.get(Affiliate, click.affiliate_id)
    affiliate = affiliates[click.affiliate_id]
    if not _is_active(affiliate):
        return None
    if not click_in_window(click.created_at, order_time, window_days_for(affiliate)):
        return None
    return affiliate


def _resolve_coupon(db: Session, *, shop_id: str, coupon: str) -> AttributionDecision | None:
    link: AffiliateLink | None = get_link_by_coupon(db, shop_id=shop_id, coupon_code=coupon)
    if link is None or not _is_active(link.affiliate):
        return None
    return AttributionDecision(affiliate=link.affiliate, attribution_type=AttributionTypeEnum.COUPON.value)


def resolve_attribution(
    db: Session,
    *,
    shop_id: str,
    signals: AttributionSignals,
    order_time: datetime,
) -> AttributionDecision | None:
    """Pick the winning affiliate for an order without writing anything."""
    order_time = normalize_utc(order_time)
    if is_internal_ref(signals.ref):
        return None

    if signals.coupon and signals.coupon.strip():
        decision = _resolve_coupon(db, shop_id=shop_id, coupon=signals.coupon)
        if decision is not None:
            return decision

    affiliates: dict[int, Affiliate | None] = {}
    if signals.click_id and not is_internal_ref(signals.click_id):
        click = get_click(db, click_id=signals.click_id.strip())
        if click is not None and click.shop_id == shop_id:
            affiliate = _eligible_click(click, order_time, affiliates, db)
            if affiliate is not None:
                return AttributionDecision(
                    affiliate=affiliate,
                    attribution_type=AttributionTypeEnum.LINK.value,
                    click=click,
                )

    if signals.ip_hash and signals.ua_hash:
        candidates = list_fingerprint_clicks(
            db,
            shop_id=shop_id,
            ip_hash=signals.ip_hash,
            user_agent_hash=signals.ua_hash,
            since=order_time - timedelta(days=_lookback_days(db, shop_id=shop_id)),
            until=order_time,
        )
        for click in candidates:
            affiliate = _eligible_click(click, order_time, affiliates, db)
            if affiliate is not None:
                return AttributionDecision(
                    affiliate=affiliate,
                    attribution_type=AttributionTypeEnum.FINGERPRINT.value,
                    click=click,
                )
    return None


def attribute_order(
    db: Session,
    *,
    shop_id: str,
    order_id: str,
    order_number: str | None,
    subtotal: Decimal | None,
    currency: str,
    customer_ref: str | None,
    signals: AttributionSignals,
    order_time: datetime | None = None,
) -> AttributionOutcome:
    """Resolve and persist the attribution for one order id, at most once."""
    existing = get_attribution_by_order(db, order_id=order_id)
    if existing is not None:
        record_attribution("duplicate")
        return AttributionOutcome(attribution=existing, created=False, method=existing.attribution_type)

    order_time = normalize_utc(order_time) or utcnow()
    decision = resolve_attribution(db, shop_id=shop_id, signals=signals, order_time=order_time)
    if decision is None:
        record_attribution("none")
        logger.info(
            "attribution.none",
            extra={"shop_id": shop_id, "order_id": order_id, "internal": is_internal_ref(signals.ref)},
        )
        return AttributionOutcome(attribution=None, created=False, method="none")

    attribution, created = create_order_attribution(
        db,
        shop_id=shop_id,
        order_id=order_id,
        order_number=order_number,
        affiliate_id=decision.affiliate.id,
        click_id=decision.click.id if decision.click is not None else None,
        attribution_type=decision.attribution_type,
        order_total=subtotal,
        currency=currency,
        customer_ref=customer_ref,
        order_created_at=order_time,
    )
    record_attribution(decision.attribution_type if created else "duplicate")
    if created:
        logger.info(
            "attribution.resolved",
            extra={
                "shop_id": shop_id,
                "order_id": order_id,
                "affiliate_id": decision.affiliate.id,
                "click_id": attribution.click_id,
                "method": decision.attribution_type,
            },
        )
    return AttributionOutcome(attribution=attribution, created=created, method=attribution.attribution_type)


def record_click(
    db: Session,
    *,
    affiliate: Affiliate,
    click_id: str | None,
    link_id: int | None,
    landing_url: str,
    ip: str,
    user_agent: str,
    created_at: datetime | None = None,
) -> Click | None:
    """Store a click for an active affiliate. Returns None for anyone else."""
    if not _is_active(affiliate):
        return None
    return insert_click(
        db,
        click_id=(click_id or "").strip() or generate_click_id(),
        shop_id=affiliate.shop_id,
        affiliate_id=affiliate.id,
        link_id=link_id,
        landing_url=landing_url,
        ip_hash=hash_ip(ip),
        user_agent_hash=hash_user_agent(user_agent),
        created_at=normalize_utc(created_at),
    )
