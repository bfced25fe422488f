"""
Commission calculator.

Turns an attributed payment into at most one ``pending`` commission per
(order attribution, rebill sequence). Initial purchases use the offer's main
rule. Rebills follow the offer's ``selling_subscriptions`` policy:

* ``no`` / ``credit_none``: nothing is created.
* ``credit_all``: the main rule again.
* ``credit_first_only``: the rebill rule while ``payments_made`` has not
  passed the cap. With a max of 6, payments 0..6 are commissioned, seven in
  total. A max of 0 or none means every rebill is commissioned. A cap
  snapshotted when the subscription started wins over later offer edits.

Zero amounts never produce a row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_engine.core.config import settings
from affiliate_engine.core.metrics import record_commission_created, record_commission_skipped
from affiliate_engine.core.rules import CommissionRule, OfferSnapshot, build_rule
from affiliate_engine.core.time import utcnow
from affiliate_engine.crud.commissions import get_commission_for_sequence
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.attributions import OrderAttribution
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import CommissionStatusEnum, SellingSubscriptionsEnum
from affiliate_engine.models.offers import Offer


logger = logging.getLogger(__name__)

INITIAL_SEQUENCE = 0


@dataclass
class CommissionDecision:
    commission: Commission | None
    created: bool = False
    skipped_reason: str | None = None


def payout_terms_days(affiliate: Affiliate) -> int:
    if affiliate.payout_terms_days is None:
        return settings.DEFAULT_PAYOUT_TERMS_DAYS
    return int(affiliate.payout_terms_days)


def compute_eligible_date(created_at: datetime, terms_days: int) -> datetime:
    return created_at + timedelta(days=terms_days)


def rebill_allowed(offer: Offer, payments_made: int, *, max_payments: int | None = None) -> bool:
    policy = offer.selling_subscriptions
    if policy == SellingSubscriptionsEnum.CREDIT_ALL.value:
        return True
    if policy != SellingSubscriptionsEnum.CREDIT_FIRST_ONLY.value:
        return False
    cap = max_payments if max_payments is not None else offer.subscription_max_payments
    if not cap:
        return True
    return payments_made <= int(cap)


def select_rule(
    offer: Offer,
    *,
    is_initial_payment: bool,
    payments_made: int = 0,
    max_payments: int | None = None,
) -> CommissionRule | None:
    """The rule that prices this payment, or None when it earns nothing."""
    if is_initial_payment:
        return build_rule(offer.commission_type, offer.amount)
    if not rebill_allowed(offer, payments_made, max_payments=max_payments):
        return None
    if offer.selling_subscriptions == SellingSubscriptionsEnum.CREDIT_ALL.value:
        return build_rule(offer.commission_type, offer.amount)
    return build_rule(
        offer.subscription_rebill_commission_type,
        offer.subscription_rebill_commission_value,
    )


def skip_reason(
    offer: Offer | None,
    *,
    is_initial_payment: bool,
    payments_made: int = 0,
    max_payments: int | None = None,
) -> str | None:
    if offer is None:
        return "no_offer"
    if is_initial_payment:
        return None
    if offer.selling_subscriptions in (
        SellingSubscriptionsEnum.NO.value,
        SellingSubscriptionsEnum.CREDIT_NONE.value,
    ):
        return "rebills_not_credited"
    if not rebill_allowed(offer, payments_made, max_payments=max_payments):
        return "max_payments_reached"
    return None


def build_commission(
    *,
    affiliate: Affiliate,
    offer: Offer,
    attribution: OrderAttribution,
    rule: CommissionRule,
    amount: Decimal,
    order_id: str,
    currency: str,
    rebill_sequence: int,
    subscription_attribution_id: int | None = None,
    now: datetime | None = None,
) -> Commission:
    now = now or utcnow()
    snapshot = OfferSnapshot.capture(
        offer,
        rule=rule,
        is_initial_payment=rebill_sequence == INITIAL_SEQUENCE,
        rebill_sequence=rebill_sequence,
    )
    return Commission(
        shop_id=attribution.shop_id,
        affiliate_id=affiliate.id,
        order_attribution_id=attribution.id,
        subscription_attribution_id=subscription_attribution_id,
        order_id=order_id,
        rebill_sequence=rebill_sequence,
        amount=amount,
        currency=currency or offer.currency,
        status=CommissionStatusEnum.PENDING.value,
        eligible_date=compute_eligible_date(now, payout_terms_days(affiliate)),
        rule_snapshot=snapshot.to_dict(),
        created_at=now,
        updated_at=now,
    )


def _skip(reason: str, **extra) -> CommissionDecision:
    record_commission_skipped(reason)
    logger.info("commission.skipped", extra={"reason": reason, **extra})
    return CommissionDecision(commission=None, skipped_reason=reason)


def create_initial_commission(
    db: Session,
    *,
    attribution: OrderAttribution,
    subtotal: Decimal,
    currency: str,
) -> CommissionDecision:
    existing = get_commission_for_sequence(
        db,
        order_attribution_id=attribution.id,
        rebill_sequence=INITIAL_SEQUENCE,
    )
    if existing is not None:
        return CommissionDecision(commission=existing, created=False)

    affiliate = db.get(Affiliate, attribution.affiliate_id)
    offer = affiliate.offer if affiliate is not None else None
    reason = skip_reason(offer, is_initial_payment=True)
    if reason:
        return _skip(reason, order_id=attribution.order_id, affiliate_id=attribution.affiliate_id)

    rule = select_rule(offer, is_initial_payment=True)
    amount = rule.compute(Decimal(str(subtotal))) if rule is not None else Decimal("0")
    if rule is None or amount <= 0:
        return _skip("zero_amount", order_id=attribution.order_id, affiliate_id=affiliate.id)

    commission = build_commission(
        affiliate=affiliate,
        offer=offer,
        attribution=attribution,
        rule=rule,
        amount=amount,
        order_id=attribution.order_id,
        currency=currency,
        rebill_sequence=INITIAL_SEQUENCE,
    )
    db.add(commission)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = get_commission_for_sequence(
            db,
            order_attribution_id=attribution.id,
            rebill_sequence=INITIAL_SEQUENCE,
        )
        if existing is None:
            raise
        return CommissionDecision(commission=existing, created=False)
    db.refresh(commission)
    record_commission_created("initial")
    logger.info(
        "commission.created",
        extra={
            "commission_id": commission.id,
            "order_id": commission.order_id,
            "affiliate_id": commission.affiliate_id,
            "amount": commission.amount,
            "rebill_sequence": INITIAL_SEQUENCE,
        },
    )
    return CommissionDecision(commission=commission, created=True)
