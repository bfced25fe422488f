"""
Fraud gate and detection heuristics.

The gate is a predicate: given commission ids it returns the ones that still
carry an unresolved flag. Detection runs once after a commission is created
and raises flags that the gate then enforces until an admin resolves them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from affiliate_engine.core.config import settings
from affiliate_engine.core.errors import FraudBlockedError, NotFoundError, ValidationFailedError
from affiliate_engine.core.metrics import record_fraud_flag
from affiliate_engine.core.time import utcnow
from affiliate_engine.crud.affiliates import count_commissions
from affiliate_engine.crud.clicks import count_clicks
from affiliate_engine.crud.fraud import (
    create_fraud_flag,
    get_fraud_flag,
    mark_resolved,
    unresolved_commission_ids,
)
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import CommissionStatusEnum, FraudFlagTypeEnum, enum_values
from affiliate_engine.models.fraud import FraudFlag


logger = logging.getLogger(__name__)

LIVE_STATUSES = [
    CommissionStatusEnum.PENDING.value,
    CommissionStatusEnum.ELIGIBLE.value,
    CommissionStatusEnum.APPROVED.value,
    CommissionStatusEnum.PAID.value,
]


@dataclass(frozen=True)
class FraudCheck:
    flag_type: str
    should_flag: bool
    score: float
    reason: str


def blocking_commission_ids(db: Session, commission_ids: Iterable[int]) -> set[int]:
    return unresolved_commission_ids(db, commission_ids=commission_ids)


def ensure_not_fraud_blocked(db: Session, commission_ids: Iterable[int], *, action: str) -> None:
    blocked = blocking_commission_ids(db, commission_ids)
    if blocked:
        raise FraudBlockedError(blocked, action)


def check_self_referral(
    db: Session,
    *,
    affiliate: Affiliate,
    customer_email: str | None,
    click_ip_hash: str | None,
) -> FraudCheck:
    score = 0
    reasons: list[str] = []
    if customer_email and affiliate.email and customer_email.strip().lower() == affiliate.email.lower():
        score += settings.FRAUD_SELF_REFERRAL_SCORE
        reasons.append("Email matches affiliate email")
    if click_ip_hash:
        recent = count_clicks(
            db,
            affiliate_id=affiliate.id,
            since=utcnow() - timedelta(days=settings.FRAUD_SELF_REFERRAL_IP_DAYS),
            ip_hash=click_ip_hash,
        )
        if recent > settings.FRAUD_SELF_REFERRAL_IP_CLICKS:
            score += 30
            reasons.append(f"Same IP as affiliate with {recent} clicks")
    return FraudCheck(
        flag_type=FraudFlagTypeEnum.SELF_REFERRAL.value,
        should_flag=score >= settings.FRAUD_SELF_REFERRAL_SCORE,
        score=float(score),
        reason="; ".join(reasons),
    )


def check_excessive_clicks(db: Session, *, affiliate: Affiliate) -> FraudCheck:
    hours = settings.FRAUD_CLICK_WINDOW_HOURS
    clicks = count_clicks(db, affiliate_id=affiliate.id, since=utcnow() - timedelta(hours=hours))
    threshold = settings.FRAUD_EXCESSIVE_CLICKS
    if clicks <= threshold:
        return FraudCheck(FraudFlagTypeEnum.EXCESSIVE_CLICKS.value, False, 0.0, "")
    return FraudCheck(
        flag_type=FraudFlagTypeEnum.EXCESSIVE_CLICKS.value,
        should_flag=True,
        score=min(100.0, clicks / threshold * 50),
        reason=f"{clicks} clicks in last {hours} hours",
    )


def check_high_refund_rate(db: Session, *, affiliate: Affiliate) -> FraudCheck:
    total = count_commissions(db, affiliate_id=affiliate.id, statuses=LIVE_STATUSES)
    if total == 0:
        return FraudCheck(FraudFlagTypeEnum.HIGH_REFUND_RATE.value, False, 0.0, "")
    reversed_count = count_commissions(
        db,
        affiliate_id=affiliate.id,
        statuses=[CommissionStatusEnum.REVERSED.value],
    )
    rate = reversed_count / total * 100
    threshold = settings.FRAUD_REFUND_RATE_PERCENT
    if rate <= threshold:
        return FraudCheck(FraudFlagTypeEnum.HIGH_REFUND_RATE.value, False, 0.0, "")
    return FraudCheck(
        flag_type=FraudFlagTypeEnum.HIGH_REFUND_RATE.value,
        should_flag=True,
        score=min(100.0, rate / threshold * 50),
        reason=f"{rate:.1f}% refund rate ({reversed_count}/{total})",
    )


def _score(value: float) -> Decimal:
    return Decimal(str(round(value, 2)))


def run_fraud_checks(
    db: Session,
    *,
    commission: Commission,
    customer_email: str | None = None,
    click_ip_hash: str | None = None,
) -> list[FraudFlag]:
    affiliate = db.get(Affiliate, commission.affiliate_id)
    if affiliate is None:
        return []
    checks = [
        check_self_referral(db, affiliate=affiliate, customer_email=customer_email, click_ip_hash=click_ip_hash),
        check_excessive_clicks(db, affiliate=affiliate),
        check_high_refund_rate(db, affiliate=affiliate),
    ]
    flags = []
    for check in checks:
        if not check.should_flag:
            continue
        flag = create_fraud_flag(
            db,
            shop_id=commission.shop_id,
            affiliate_id=affiliate.id,
            commission_id=commission.id,
            flag_type=check.flag_type,
            score=_score(check.score),
            reason=check.reason,
        )
        record_fraud_flag(check.flag_type)
        logger.warning(
            "fraud.flagged",
            extra={
                "commission_id": commission.id,
                "affiliate_id": affiliate.id,
                "flag_type": check.flag_type,
                "score": check.score,
            },
        )
        flags.append(flag)
    return flags


def create_manual_flag(
    db: Session,
    *,
    shop_id: str,
    commission_id: int,
    flag_type: str = FraudFlagTypeEnum.MANUAL.value,
    score: float = 0,
    reason: str | None = None,
) -> FraudFlag:
    if flag_type not in enum_values(FraudFlagTypeEnum):
        raise ValidationFailedError(f"Unknown fraud flag type: {flag_type}")
    commission = (
        db.query(Commission)
        .filter(Commission.id == commission_id, Commission.shop_id == shop_id)
        .first()
    )
    if commission is None:
        raise NotFoundError("commission", commission_id)
    flag = create_fraud_flag(
        db,
        shop_id=shop_id,
        affiliate_id=commission.affiliate_id,
        commission_id=commission.id,
        flag_type=flag_type,
        score=_score(score),
        reason=reason,
    )
    record_fraud_flag(flag_type)
    return flag


def resolve_fraud_flag(db: Session, *, shop_id: str, flag_id: int, note: str | None = None) -> FraudFlag:
    flag = get_fraud_flag(db, flag_id=flag_id, shop_id=shop_id)
    if flag is None:
        raise NotFoundError("fraud_flag", flag_id)
    if flag.resolved:
        return flag
    flag = mark_resolved(db, flag=flag, note=note)
    logger.info("fraud.resolved", extra={"flag_id": flag.id, "commission_id": flag.commission_id})
    return flag
