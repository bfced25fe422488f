"""
Subscription lineage tracking and rebill commissions.

A lineage starts with an attributed subscription purchase. Each later
rebill order is recorded once (by its order id) as a ``SubscriptionPayment``
with sequence ``payments_made + 1``; the counter moves in the same
transaction, whether or not the rebill earned a commission.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_engine.core.commissions import (
    CommissionDecision,
    build_commission,
    select_rule,
    skip_reason,
)
from affiliate_engine.core.metrics import record_commission_created, record_commission_skipped
from affiliate_engine.core.time import utcnow
from affiliate_engine.crud.commissions import get_commission_for_order
from affiliate_engine.crud.subscriptions import (
    create_subscription,
    find_latest_active_subscription,
    find_subscription_for_original_order,
    get_payment_by_order,
)
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.attributions import (
    OrderAttribution,
    SubscriptionAttribution,
    SubscriptionPayment,
)
from affiliate_engine.models.enums import SellingSubscriptionsEnum


logger = logging.getLogger(__name__)

MAX_COUNTER_RETRIES = 3


@dataclass
class RebillOutcome:
    subscription: SubscriptionAttribution | None
    decision: CommissionDecision
    duplicate: bool = False


def start_subscription(
    db: Session,
    *,
    attribution: OrderAttribution,
    selling_plan_id: str,
) -> SubscriptionAttribution:
    affiliate = db.get(Affiliate, attribution.affiliate_id)
    offer = affiliate.offer if affiliate is not None else None
    max_payments = None
    if offer is not None and offer.selling_subscriptions == SellingSubscriptionsEnum.CREDIT_FIRST_ONLY.value:
        max_payments = offer.subscription_max_payments
    return create_subscription(
        db,
        attribution=attribution,
        selling_plan_id=selling_plan_id,
        max_payments=max_payments,
    )


def find_lineage(
    db: Session,
    *,
    original_order_id: str | None,
    selling_plan_id: str | None,
    fallback_affiliate_id: int | None = None,
) -> SubscriptionAttribution | None:
    if original_order_id:
        subscription = find_subscription_for_original_order(
            db,
            original_order_id=original_order_id,
            selling_plan_id=selling_plan_id,
        )
        if subscription is not None:
            return subscription
    if fallback_affiliate_id is not None and selling_plan_id:
        return find_latest_active_subscription(
            db,
            affiliate_id=fallback_affiliate_id,
            selling_plan_id=selling_plan_id,
        )
    return None


def _duplicate_outcome(db: Session, *, order_id: str, subscription: SubscriptionAttribution | None) -> RebillOutcome:
    commission = get_commission_for_order(db, order_id=order_id)
    return RebillOutcome(
        subscription=subscription,
        decision=CommissionDecision(commission=commission, created=False),
        duplicate=True,
    )


def record_rebill(
    db: Session,
    *,
    subscription: SubscriptionAttribution,
    order_id: str,
    subtotal: Decimal,
    currency: str,
) -> RebillOutcome:
    """Record one rebill payment and create its commission when the offer allows."""
    if get_payment_by_order(db, order_id=order_id) is not None:
        return _duplicate_outcome(db, order_id=order_id, subscription=subscription)

    if not subscription.active:
        record_commission_skipped("subscription_inactive")
        logger.info(
            "commission.skipped",
            extra={"reason": "subscription_inactive", "order_id": order_id, "subscription_id": subscription.id},
        )
        return RebillOutcome(
            subscription=subscription,
            decision=CommissionDecision(commission=None, skipped_reason="subscription_inactive"),
        )

    attempts = 0
    while True:
        attempts += 1
        db.refresh(subscription)
        payments_made = int(subscription.payments_made or 0)
        sequence = payments_made + 1
        attribution = db.get(OrderAttribution, subscription.order_attribution_id)
        affiliate = db.get(Affiliate, subscription.affiliate_id)
        offer = affiliate.offer if affiliate is not None else None

        terms = {"payments_made": payments_made, "max_payments": subscription.max_payments}
        reason = skip_reason(offer, is_initial_payment=False, **terms)
        rule = None if reason else select_rule(offer, is_initial_payment=False, **terms)
        amount = rule.compute(Decimal(str(subtotal))) if rule is not None else Decimal("0")
        if reason is None and amount <= 0:
            reason = "zero_amount"

        commission = None
        if reason is None:
            commission = build_commission(
                affiliate=affiliate,
                offer=offer,
                attribution=attribution,
                rule=rule,
                amount=amount,
                order_id=order_id,
                currency=currency,
                rebill_sequence=sequence,
                subscription_attribution_id=subscription.id,
            )
            db.add(commission)
        db.add(
            SubscriptionPayment(
                subscription_attribution_id=subscription.id,
                order_id=order_id,
                sequence=sequence,
                commissioned=commission is not None,
            )
        )
        bumped = db.execute(
            update(SubscriptionAttribution)
            .where(
                SubscriptionAttribution.id == subscription.id,
                SubscriptionAttribution.payments_made == payments_made,
            )
            .values(payments_made=payments_made + 1, updated_at=utcnow()),
            execution_options={"synchronize_session": False},
        )
        if bumped.rowcount != 1:
            db.rollback()
            if attempts >= MAX_COUNTER_RETRIES:
                raise RuntimeError(f"Could not advance payments for subscription {subscription.id}")
            continue
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if get_payment_by_order(db, order_id=order_id) is not None:
                return _duplicate_outcome(db, order_id=order_id, subscription=subscription)
            if attempts >= MAX_COUNTER_RETRIES:
                raise
            continue
        break

    db.refresh(subscription)
    if commission is None:
        record_commission_skipped(reason)
        logger.info(
            "commission.skipped",
            extra={
                "reason": reason,
                "order_id": order_id,
                "subscription_id": subscription.id,
                "payments_made": payments_made,
            },
        )
        return RebillOutcome(
            subscription=subscription,
            decision=CommissionDecision(commission=None, skipped_reason=reason),
        )

    db.refresh(commission)
    record_commission_created("rebill")
    logger.info(
        "commission.created",
        extra={
            "commission_id": commission.id,
            "order_id": order_id,
            "affiliate_id": commission.affiliate_id,
            "amount": commission.amount,
            "rebill_sequence": sequence,
        },
    )
    return RebillOutcome(subscription=subscription, decision=CommissionDecision(commission=commission, created=True))


def cancel_subscription(
    db: Session,
    *,
    shop_id: str,
    original_order_id: str,
    selling_plan_id: str | None = None,
) -> SubscriptionAttribution | None:
    subscription = find_subscription_for_original_order(
        db,
        original_order_id=original_order_id,
        selling_plan_id=selling_plan_id,
    )
    if subscription is None or subscription.shop_id != shop_id:
        return None
    if subscription.active:
        subscription.active = False
        subscription.cancelled_at = utcnow()
        db.commit()
        db.refresh(subscription)
        logger.info(
            "subscription.cancelled",
            extra={"subscription_id": subscription.id, "original_order_id": original_order_id},
        )
    return subscription
