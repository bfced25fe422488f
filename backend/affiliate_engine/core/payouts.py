"""
Payout runs.

A run groups payable commissions (``eligible`` or ``approved``) for one shop.
Approving a draft run pays every member that is still payable in the same
transaction that moves the run to ``paid``; members that are not payable are
unlinked so the paid run only holds paid commissions. Draft runs can be
cancelled, releasing their members. A commission sits in at most one draft run.
"Pay now" submits to the payout provider first and only then records a run
that is already ``paid``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from affiliate_engine.core.errors import InvalidTransitionError, NotFoundError, ValidationFailedError
from affiliate_engine.core.fraud import ensure_not_fraud_blocked
from affiliate_engine.core.lifecycle import PAID, PAYABLE_STATUSES, fire_postbacks, normalize_ids
from affiliate_engine.core.metrics import record_payout_run, record_transition
from affiliate_engine.core.time import normalize_utc, utcnow
from affiliate_engine.crud.affiliates import get_affiliate
from affiliate_engine.crud.commissions import list_commissions, list_commissions_by_ids, transition_status
from affiliate_engine.crud.payouts import (
    delete_payout_run,
    detach_commissions,
    get_payout_run,
    list_run_commission_ids,
)
from affiliate_engine.integrations.payouts.base import PayoutItem, PayoutProvider
from affiliate_engine.models.affiliates import Affiliate
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import PayoutRunStatusEnum, PostbackEventEnum
from affiliate_engine.models.payouts import PayoutRun, PayoutRunCommission
from affiliate_engine.notifications.senders.base import DeliveryResult, PostbackSender


logger = logging.getLogger(__name__)


@dataclass
class PayoutRunResult:
    run: PayoutRun
    requested: int = 0
    paid_ids: list[int] = field(default_factory=list)
    detached_ids: list[int] = field(default_factory=list)
    total_amount: Decimal = Decimal("0.00")
    deliveries: list[DeliveryResult] = field(default_factory=list)


def _load_members(db: Session, *, shop_id: str, ids: list[int]) -> list[Commission]:
    commissions = list_commissions_by_ids(db, commission_ids=ids, shop_id=shop_id)
    missing = sorted(set(ids) - {commission.id for commission in commissions})
    if missing:
        raise NotFoundError("commission", ", ".join(str(value) for value in missing))
    return commissions


def _not_payable(commissions: list[Commission], *, now: datetime | None = None) -> list[int]:
    blocked = []
    for commission in commissions:
        if commission.status not in PAYABLE_STATUSES:
            blocked.append(commission.id)
        elif now is not None and commission.eligible_date > now:
            blocked.append(commission.id)
    return blocked


def _ids_in_open_runs(db: Session, *, ids: list[int]) -> list[int]:
    rows = (
        db.query(PayoutRunCommission.commission_id)
        .join(PayoutRun, PayoutRun.id == PayoutRunCommission.payout_run_id)
        .filter(
            PayoutRunCommission.commission_id.in_(ids),
            PayoutRun.status == PayoutRunStatusEnum.DRAFT.value,
        )
        .all()
    )
    return sorted({row[0] for row in rows})


def _total(commissions: Iterable[Commission]) -> Decimal:
    return sum((Decimal(str(commission.amount)) for commission in commissions), Decimal("0.00"))


@dataclass
class UpcomingPayout:
    affiliate: Affiliate
    commissions: list[Commission] = field(default_factory=list)

    @property
    def total_amount(self) -> Decimal:
        return _total(self.commissions)


def upcoming_payouts(db: Session, *, shop_id: str, as_of: datetime | None = None) -> list[UpcomingPayout]:
    """Payable commissions whose eligible date has passed by as_of, grouped per affiliate, largest first."""
    cutoff = normalize_utc(as_of) or utcnow()
    commissions = list_commissions(db, shop_id=shop_id, statuses=PAYABLE_STATUSES, eligible_before=cutoff)
    grouped: dict[int, UpcomingPayout] = {}
    for commission in sorted(commissions, key=lambda row: (row.eligible_date, row.id)):
        payout = grouped.setdefault(commission.affiliate_id, UpcomingPayout(affiliate=commission.affiliate))
        payout.commissions.append(commission)
    return sorted(grouped.values(), key=lambda payout: (-payout.total_amount, payout.affiliate.id))


def create_payout_run(
    db: Session,
    *,
    shop_id: str,
    commission_ids: Iterable[int],
    period_start: datetime,
    period_end: datetime,
) -> PayoutRun:
    ids = normalize_ids(commission_ids)
    period_start = normalize_utc(period_start)
    period_end = normalize_utc(period_end)
    if period_start > period_end:
        raise ValidationFailedError("period_start must not be after period_end")

    commissions = _load_members(db, shop_id=shop_id, ids=ids)
    blocked = _not_payable(commissions)
    if blocked:
        raise InvalidTransitionError(
            blocked,
            to_status=PAID,
            reason="Only eligible or approved commissions can be added to a payout run",
        )
    already_batched = _ids_in_open_runs(db, ids=ids)
    if already_batched:
        raise ValidationFailedError(
            f"Commissions already in a draft payout run: {', '.join(str(value) for value in already_batched)}"
        )

    run = PayoutRun(
        shop_id=shop_id,
        period_start=period_start,
        period_end=period_end,
        status=PayoutRunStatusEnum.DRAFT.value,
    )
    run.commission_links = [PayoutRunCommission(commission_id=commission_id) for commission_id in ids]
    db.add(run)
    db.commit()
    db.refresh(run)
    record_payout_run(run.status)
    logger.info("payout_run.created", extra={"shop_id": shop_id, "run_id": run.id, "count": len(ids)})
    return run


def approve_payout_run(
    db: Session,
    *,
    shop_id: str,
    run_id: int,
    payout_reference: str | None = None,
    sender: PostbackSender | None = None,
) -> PayoutRunResult:
    run = get_payout_run(db, run_id=run_id, shop_id=shop_id)
    if run is None:
        raise NotFoundError("payout_run", run_id)
    ids = list_run_commission_ids(db, run_id=run.id)
    if run.status != PayoutRunStatusEnum.DRAFT.value:
        raise InvalidTransitionError(
            ids,
            from_status=run.status,
            to_status=PayoutRunStatusEnum.PAID.value,
            reason=f"Payout run {run.id} is already {run.status}",
        )
    if not ids:
        raise ValidationFailedError(f"Payout run {run.id} has no commissions")

    now = utcnow()
    commissions = _load_members(db, shop_id=shop_id, ids=ids)
    not_payable = set(_not_payable(commissions, now=now))
    candidates = [commission.id for commission in commissions if commission.id not in not_payable]
    if not candidates:
        raise InvalidTransitionError(
            ids,
            to_status=PAID,
            reason=f"No commission in payout run {run.id} is payable; cancel the run or wait for eligible dates",
        )
    ensure_not_fraud_blocked(db, candidates, action="pay")

    before = {commission.id: commission.status for commission in commissions}
    moved = transition_status(
        db,
        commission_ids=candidates,
        shop_id=shop_id,
        from_statuses=PAYABLE_STATUSES,
        to_status=PAID,
        values={"paid_at": now, "updated_at": now},
        eligible_before=now,
    )
    if not moved:
        db.rollback()
        raise InvalidTransitionError(
            candidates,
            to_status=PAID,
            reason=f"Commissions in payout run {run.id} were moved by another request",
        )
    # A paid run only ever links paid commissions; the rest go back to the pool.
    detached = sorted(set(ids) - set(moved))
    detach_commissions(db, run_id=run.id, commission_ids=detached)

    run.status = PayoutRunStatusEnum.PAID.value
    run.approved_at = now
    run.paid_at = now
    if payout_reference:
        run.payout_reference = payout_reference
    db.commit()
    db.refresh(run)

    for from_status in {before[commission_id] for commission_id in moved}:
        record_transition(from_status, PAID, sum(1 for value in moved if before[value] == from_status))
    record_payout_run(run.status)
    total = _total(commission for commission in commissions if commission.id in set(moved))
    if detached:
        logger.warning(
            "payout_run.partial",
            extra={"shop_id": shop_id, "run_id": run.id, "detached_ids": detached},
        )
    logger.info(
        "payout_run.paid",
        extra={"shop_id": shop_id, "run_id": run.id, "count": len(moved), "total_amount": total},
    )
    deliveries = fire_postbacks(sender, moved, event=PostbackEventEnum.PAYMENT.value, scope=shop_id)
    return PayoutRunResult(
        run=run,
        requested=len(ids),
        paid_ids=moved,
        detached_ids=detached,
        total_amount=total,
        deliveries=deliveries,
    )


def cancel_payout_run(db: Session, *, shop_id: str, run_id: int) -> list[int]:
    """Delete a draft run; its members become free for another run. Returns the released ids."""
    run = get_payout_run(db, run_id=run_id, shop_id=shop_id)
    if run is None:
        raise NotFoundError("payout_run", run_id)
    ids = list_run_commission_ids(db, run_id=run.id)
    if run.status != PayoutRunStatusEnum.DRAFT.value:
        raise InvalidTransitionError(
            ids,
            from_status=run.status,
            to_status="cancelled",
            reason=f"Only draft payout runs can be cancelled; run {run.id} is {run.status}",
        )
    delete_payout_run(db, run=run)
    logger.info("payout_run.cancelled", extra={"shop_id": shop_id, "run_id": run_id, "released_ids": ids})
    return ids


def pay_now(
    db: Session,
    *,
    shop_id: str,
    affiliate_id: int,
    commission_ids: Iterable[int],
    provider: PayoutProvider,
    sender: PostbackSender | None = None,
) -> PayoutRunResult:
    """Send money for one affiliate's payable commissions, then record a paid run."""
    ids = normalize_ids(commission_ids)
    affiliate = get_affiliate(db, affiliate_id=affiliate_id, shop_id=shop_id)
    if affiliate is None:
        raise NotFoundError("affiliate", affiliate_id)
    if not (affiliate.payout_identifier or "").strip():
        raise ValidationFailedError(f"Affiliate {affiliate.id} has no payout identifier configured")

    now = utcnow()
    commissions = _load_members(db, shop_id=shop_id, ids=ids)
    foreign = [commission.id for commission in commissions if commission.affiliate_id != affiliate.id]
    if foreign:
        raise ValidationFailedError(
            f"Commissions do not belong to affiliate {affiliate.id}: {', '.join(str(value) for value in foreign)}"
        )
    blocked = _not_payable(commissions, now=now)
    if blocked:
        raise InvalidTransitionError(
            blocked,
            to_status=PAID,
            reason="Some commissions are not eligible or not ready for payout",
        )
    already_batched = _ids_in_open_runs(db, ids=ids)
    if already_batched:
        raise ValidationFailedError(
            "Commissions already in a draft payout run; approve or cancel that run first: "
            f"{', '.join(str(value) for value in already_batched)}"
        )
    ensure_not_fraud_blocked(db, ids, action="pay")

    items = [
        PayoutItem(
            commission_id=commission.id,
            receiver=affiliate.payout_identifier.strip(),
            amount=Decimal(str(commission.amount)),
            currency=commission.currency,
            note=f"Commission for order {commission.order_id}",
        )
        for commission in commissions
    ]
    # Raises PayoutProviderError before anything is written.
    batch = provider.submit_payout(items, sender_batch_id=f"PAYOUT_{affiliate.id}_{int(now.timestamp() * 1000)}")

    before = {commission.id: commission.status for commission in commissions}
    moved = transition_status(
        db,
        commission_ids=ids,
        shop_id=shop_id,
        from_statuses=PAYABLE_STATUSES,
        to_status=PAID,
        values={"paid_at": now, "updated_at": now},
    )
    if len(moved) != len(ids):
        logger.error(
            "payout_run.partial",
            extra={
                "shop_id": shop_id,
                "affiliate_id": affiliate.id,
                "payout_reference": batch.batch_id,
                "missed_ids": sorted(set(ids) - set(moved)),
            },
        )
    paid = [commission for commission in commissions if commission.id in set(moved)]
    run = PayoutRun(
        shop_id=shop_id,
        period_start=min((commission.created_at for commission in paid), default=now),
        period_end=max((commission.created_at for commission in paid), default=now),
        status=PayoutRunStatusEnum.PAID.value,
        payout_reference=batch.batch_id,
        provider_status=batch.status,
        approved_at=now,
        paid_at=now,
    )
    run.commission_links = [PayoutRunCommission(commission_id=commission_id) for commission_id in moved]
    db.add(run)
    db.commit()
    db.refresh(run)

    for from_status in {before[commission_id] for commission_id in moved}:
        record_transition(from_status, PAID, sum(1 for value in moved if before[value] == from_status))
    record_payout_run(run.status)
    total = _total(paid)
    logger.info(
        "payout_run.paid",
        extra={
            "shop_id": shop_id,
            "run_id": run.id,
            "count": len(moved),
            "total_amount": total,
            "payout_reference": batch.batch_id,
        },
    )
    deliveries = fire_postbacks(sender, moved, event=PostbackEventEnum.PAYMENT.value, scope=shop_id)
    return PayoutRunResult(run=run, requested=len(ids), paid_ids=moved, total_amount=total, deliveries=deliveries)


def refresh_payout_run_status(db: Session, *, shop_id: str, run_id: int, provider: PayoutProvider) -> PayoutRun:
    run = get_payout_run(db, run_id=run_id, shop_id=shop_id)
    if run is None:
        raise NotFoundError("payout_run", run_id)
    if not run.payout_reference:
        raise ValidationFailedError(f"Payout run {run.id} has no provider reference")
    run.provider_status = provider.get_payout_status(run.payout_reference)
    db.commit()
    db.refresh(run)
    return run
