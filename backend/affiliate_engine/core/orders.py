from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from affiliate_engine.core.attribution import AttributionSignals, attribute_order, resolve_attribution
from affiliate_engine.core.commissions import CommissionDecision, create_initial_commission
from affiliate_engine.core.fraud import run_fraud_checks
from affiliate_engine.core.lifecycle import RefundResult, fire_postbacks, reverse_for_refund
from affiliate_engine.core.subscriptions import find_lineage, record_rebill, start_subscription
from affiliate_engine.core.time import normalize_utc, utcnow
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import PostbackEventEnum
from affiliate_engine.notifications.senders.base import PostbackSender
from affiliate_engine.schemas.events import OrderEvent, RefundEvent


logger = logging.getLogger(__name__)

OUTCOME_CREATED = "commission_created"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_SKIPPED = "skipped"
OUTCOME_UNATTRIBUTED = "unattributed"
OUTCOME_UNKNOWN_SUBSCRIPTION = "unknown_subscription"


@dataclass
class OrderOutcome:
    outcome: str
    order_attribution_id: int | None = None
    commission_id: int | None = None
    skipped_reason: str | None = None


def _signals(event: OrderEvent) -> AttributionSignals:
    raw = event.attribution_signals
    return AttributionSignals(
        click_id=raw.click_id,
        coupon=raw.coupon,
        ip_hash=raw.ip_hash,
        ua_hash=raw.ua_hash,
        ref=raw.ref,
    )


def is_rebill(event: OrderEvent) -> bool:
    return bool(
        event.is_subscription
        and event.original_order_id
        and event.original_order_id != event.order_id
    )


def _after_create(
    db: Session,
    *,
    commission: Commission,
    event: OrderEvent,
    click_ip_hash: str | None,
    sender: PostbackSender | None,
) -> None:
    run_fraud_checks(
        db,
        commission=commission,
        customer_email=event.customer_email,
        click_ip_hash=click_ip_hash,
    )
    fire_postbacks(
        sender,
        [commission.id],
        event=PostbackEventEnum.CONVERSION.value,
        scope=commission.shop_id,
    )


def _outcome(decision: CommissionDecision, *, attribution_id: int | None) -> OrderOutcome:
    if decision.commission is None:
        return OrderOutcome(
            outcome=OUTCOME_SKIPPED,
            order_attribution_id=attribution_id,
            skipped_reason=decision.skipped_reason,
        )
    return OrderOutcome(
        outcome=OUTCOME_CREATED if decision.created else OUTCOME_DUPLICATE,
        order_attribution_id=attribution_id,
        commission_id=decision.commission.id,
    )


def _process_rebill(
    db: Session,
    *,
    shop_id: str,
    event: OrderEvent,
    signals: AttributionSignals,
    sender: PostbackSender | None,
) -> OrderOutcome:
    subscription = find_lineage(
        db,
        original_order_id=event.original_order_id,
        selling_plan_id=event.selling_plan_id,
    )
    if subscription is None and event.selling_plan_id:
        decision = resolve_attribution(
            db,
            shop_id=shop_id,
            signals=signals,
            order_time=normalize_utc(event.order_created_at) or utcnow(),
        )
        if decision is not None:
            subscription = find_lineage(
                db,
                original_order_id=None,
                selling_plan_id=event.selling_plan_id,
                fallback_affiliate_id=decision.affiliate.id,
            )
    if subscription is None or subscription.shop_id != shop_id:
        logger.info(
            "subscription.unknown",
            extra={
                "shop_id": shop_id,
                "order_id": event.order_id,
                "original_order_id": event.original_order_id,
                "selling_plan_id": event.selling_plan_id,
            },
        )
        return OrderOutcome(outcome=OUTCOME_UNKNOWN_SUBSCRIPTION)

    rebill = record_rebill(
        db,
        subscription=subscription,
        order_id=event.order_id,
        subtotal=event.subtotal,
        currency=event.currency,
    )
    attribution_id = subscription.order_attribution_id
    if rebill.decision.created:
        attribution = subscription.order_attribution
        click = attribution.click if attribution is not None else None
        _after_create(
            db,
            commission=rebill.decision.commission,
            event=event,
            click_ip_hash=click.ip_hash if click is not None else signals.ip_hash,
            sender=sender,
        )
    return _outcome(rebill.decision, attribution_id=attribution_id)


def process_order_event(
    db: Session,
    *,
    shop_id: str,
    event: OrderEvent,
    sender: PostbackSender | None = None,
) -> OrderOutcome:
    """Order webhook pipeline: attribution, then commission, then fraud checks and postbacks.

    Replays of the same order id converge on the rows written the first time.
    """
    signals = _signals(event)
    if is_rebill(event):
        return _process_rebill(db, shop_id=shop_id, event=event, signals=signals, sender=sender)

    result = attribute_order(
        db,
        shop_id=shop_id,
        order_id=event.order_id,
        order_number=event.order_number,
        subtotal=event.subtotal,
        currency=event.currency,
        customer_ref=event.customer_ref,
        signals=signals,
        order_time=event.order_created_at,
    )
    attribution = result.attribution
    if attribution is None:
        return OrderOutcome(outcome=OUTCOME_UNATTRIBUTED)

    if event.is_subscription and event.selling_plan_id:
        start_subscription(db, attribution=attribution, selling_plan_id=event.selling_plan_id)

    decision = create_initial_commission(
        db,
        attribution=attribution,
        subtotal=event.subtotal,
        currency=event.currency,
    )
    if decision.created:
        click = attribution.click
        _after_create(
            db,
            commission=decision.commission,
            event=event,
            click_ip_hash=click.ip_hash if click is not None else signals.ip_hash,
            sender=sender,
        )
    return _outcome(decision, attribution_id=attribution.id)


def process_refund_event(db: Session, *, shop_id: str, event: RefundEvent) -> RefundResult:
    return reverse_for_refund(db, shop_id=shop_id, order_id=event.order_id, reason=event.reason)
