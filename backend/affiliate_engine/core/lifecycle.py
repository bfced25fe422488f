"""
Commission state machine.

    pending -> eligible -> approved -> paid
                  \\           /
                   -> reversed

Every bulk action is a compare-and-set on status, so ids moved by a
concurrent actor simply drop out of the result. Postbacks fire only after
the transition has committed; a failed delivery is reported, never rolled
back.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.orm import Session

from affiliate_engine.core.errors import ValidationFailedError
from affiliate_engine.core.fraud import ensure_not_fraud_blocked
from affiliate_engine.core.metrics import record_transition
from affiliate_engine.core.time import utcnow
from affiliate_engine.crud.commissions import list_commissions_for_order, transition_status
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import CommissionStatusEnum, PostbackEventEnum
from affiliate_engine.notifications.senders.base import DeliveryResult, PostbackSender


logger = logging.getLogger(__name__)

PENDING = CommissionStatusEnum.PENDING.value
ELIGIBLE = CommissionStatusEnum.ELIGIBLE.value
APPROVED = CommissionStatusEnum.APPROVED.value
PAID = CommissionStatusEnum.PAID.value
REVERSED = CommissionStatusEnum.REVERSED.value

ALLOWED_TRANSITIONS = {
    PENDING: {ELIGIBLE, REVERSED},
    ELIGIBLE: {APPROVED, PAID, REVERSED},
    APPROVED: {PAID, REVERSED},
    PAID: set(),
    REVERSED: set(),
}
PAYABLE_STATUSES = (ELIGIBLE, APPROVED)
REVERSIBLE_STATUSES = (ELIGIBLE, APPROVED)
# Refunds may land before validation too; anything short of paid reverses.
REFUND_REVERSIBLE_STATUSES = (PENDING, ELIGIBLE, APPROVED)


@dataclass
class BulkTransitionResult:
    requested: int
    transitioned: int
    transitioned_ids: list[int] = field(default_factory=list)
    clawback_ids: list[int] = field(default_factory=list)
    deliveries: list[DeliveryResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "requested": self.requested,
            "transitioned": self.transitioned,
            "transitioned_ids": list(self.transitioned_ids),
            "clawback_ids": list(self.clawback_ids),
            "deliveries": [delivery.to_dict() for delivery in self.deliveries],
        }


@dataclass
class RefundResult:
    order_id: str
    reversed_ids: list[int] = field(default_factory=list)
    clawback_ids: list[int] = field(default_factory=list)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def normalize_ids(commission_ids: Iterable[int]) -> list[int]:
    ids = sorted({int(value) for value in commission_ids or []})
    if not ids:
        raise ValidationFailedError("commission_ids must not be empty")
    return ids


def _current_statuses(db: Session, *, shop_id: str, ids: list[int]) -> dict[int, str]:
    rows = (
        db.query(Commission.id, Commission.status)
        .filter(Commission.id.in_(ids), Commission.shop_id == shop_id)
        .all()
    )
    return {row[0]: row[1] for row in rows}


def _record(before: dict[int, str], moved: list[int], to_status: str, **extra) -> None:
    by_source = Counter(before.get(commission_id) for commission_id in moved)
    for from_status, count in by_source.items():
        record_transition(from_status, to_status, count)
    if moved:
        logger.info(
            "commission.transition",
            extra={"to_status": to_status, "count": len(moved), "commission_ids": moved, **extra},
        )


def fire_postbacks(
    sender: PostbackSender | None,
    commission_ids: Iterable[int],
    *,
    event: str,
    scope: str,
) -> list[DeliveryResult]:
    """At-least-once delivery attempt per id; a failure is reported in the result."""
    if sender is None:
        return []
    results = []
    for commission_id in commission_ids:
        try:
            results.append(sender.fire_postback(commission_id, event, scope))
        except Exception as exc:
            logger.exception(
                "postback.failed",
                extra={"commission_id": commission_id, "event": event, "shop_id": scope},
            )
            results.append(
                DeliveryResult(commission_id=commission_id, event=event, ok=False, errors=[str(exc)])
            )
    return results


def _bulk_transition(
    db: Session,
    *,
    shop_id: str,
    ids: list[int],
    from_statuses: tuple[str, ...],
    to_status: str,
    values: dict | None = None,
    **log_extra,
) -> list[int]:
    before = _current_statuses(db, shop_id=shop_id, ids=ids)
    moved = transition_status(
        db,
        commission_ids=ids,
        shop_id=shop_id,
        from_statuses=from_statuses,
        to_status=to_status,
        values={"updated_at": utcnow(), **(values or {})},
    )
    db.commit()
    _record(before, moved, to_status, shop_id=shop_id, **log_extra)
    return moved


def validate_commissions(db: Session, *, shop_id: str, commission_ids: Iterable[int]) -> BulkTransitionResult:
    """pending -> eligible, refused while any requested commission is flagged."""
    ids = normalize_ids(commission_ids)
    ensure_not_fraud_blocked(db, _current_statuses(db, shop_id=shop_id, ids=ids).keys(), action="validate")
    moved = _bulk_transition(db, shop_id=shop_id, ids=ids, from_statuses=(PENDING,), to_status=ELIGIBLE)
    return BulkTransitionResult(requested=len(ids), transitioned=len(moved), transitioned_ids=moved)


def approve_commissions(
    db: Session,
    *,
    shop_id: str,
    commission_ids: Iterable[int],
    sender: PostbackSender | None = None,
) -> BulkTransitionResult:
    """eligible -> approved, fraud-gated, then approval postbacks."""
    ids = normalize_ids(commission_ids)
    ensure_not_fraud_blocked(db, _current_statuses(db, shop_id=shop_id, ids=ids).keys(), action="approve")
    moved = _bulk_transition(
        db,
        shop_id=shop_id,
        ids=ids,
        from_statuses=(ELIGIBLE,),
        to_status=APPROVED,
        values={"approved_at": utcnow()},
    )
    deliveries = fire_postbacks(sender, moved, event=PostbackEventEnum.APPROVAL.value, scope=shop_id)
    return BulkTransitionResult(
        requested=len(ids),
        transitioned=len(moved),
        transitioned_ids=moved,
        deliveries=deliveries,
    )


def _flag_paid_for_clawback(db: Session, *, shop_id: str, ids: list[int], **log_extra) -> list[int]:
    """Mark the paid commissions among ids; money already left, so status stays paid."""
    paid = (
        db.query(Commission)
        .filter(Commission.id.in_(ids), Commission.shop_id == shop_id, Commission.status == PAID)
        .order_by(Commission.id.asc())
        .all()
    )
    if not paid:
        return []
    for commission in paid:
        commission.clawback_required = True
    db.commit()
    clawback_ids = [commission.id for commission in paid]
    logger.warning(
        "commission.clawback_required",
        extra={"shop_id": shop_id, "commission_ids": clawback_ids, **log_extra},
    )
    return clawback_ids


def reject_commissions(
    db: Session,
    *,
    shop_id: str,
    commission_ids: Iterable[int],
    reason: str | None = None,
) -> BulkTransitionResult:
    """eligible|approved -> reversed. Paid ids are flagged for clawback and reported apart."""
    ids = normalize_ids(commission_ids)
    reason = reason or "Rejected by admin"
    moved = _bulk_transition(
        db,
        shop_id=shop_id,
        ids=ids,
        from_statuses=REVERSIBLE_STATUSES,
        to_status=REVERSED,
        values={"reversed_at": utcnow(), "reversal_reason": reason},
    )
    clawback_ids = _flag_paid_for_clawback(db, shop_id=shop_id, ids=ids, reason=reason)
    return BulkTransitionResult(
        requested=len(ids),
        transitioned=len(moved),
        transitioned_ids=moved,
        clawback_ids=clawback_ids,
    )


def reverse_for_refund(db: Session, *, shop_id: str, order_id: str, reason: str | None = None) -> RefundResult:
    """Reverse every unpaid commission on a refunded order; flag paid ones for clawback."""
    result = RefundResult(order_id=order_id)
    commissions = list_commissions_for_order(db, shop_id=shop_id, order_id=order_id)
    if not commissions:
        return result

    ids = [commission.id for commission in commissions]
    result.reversed_ids = _bulk_transition(
        db,
        shop_id=shop_id,
        ids=ids,
        from_statuses=REFUND_REVERSIBLE_STATUSES,
        to_status=REVERSED,
        values={"reversed_at": utcnow(), "reversal_reason": reason or "Order refunded"},
        order_id=order_id,
    )
    result.clawback_ids = _flag_paid_for_clawback(db, shop_id=shop_id, ids=ids, order_id=order_id)
    return result
