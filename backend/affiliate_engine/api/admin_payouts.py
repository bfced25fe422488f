from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from affiliate_engine.api.dependencies import (
    get_payout_provider,
    get_postback_sender,
    get_shop_id,
    require_admin,
)
from affiliate_engine.core.db import get_db
from affiliate_engine.core.payouts import (
    PayoutRunResult,
    approve_payout_run,
    cancel_payout_run,
    create_payout_run,
    pay_now,
    refresh_payout_run_status,
    upcoming_payouts,
)
from affiliate_engine.core.time import normalize_utc, utcnow
from affiliate_engine.crud.payouts import list_payout_runs, list_run_commission_ids
from affiliate_engine.integrations.payouts.base import PayoutProvider
from affiliate_engine.models.payouts import PayoutRun
from affiliate_engine.notifications.senders.base import PostbackSender
from affiliate_engine.schemas.commissions import DeliveryRead
from affiliate_engine.schemas.payouts import (
    PayNowRequest,
    PayoutRunApprove,
    PayoutRunCreate,
    PayoutRunRead,
    PayoutRunResultRead,
    UpcomingCommissionRead,
    UpcomingPayoutRead,
    UpcomingPayoutsRead,
)


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin())])


def _run_read(run: PayoutRun, commission_count: int) -> PayoutRunRead:
    return PayoutRunRead(
        id=run.id,
        period_start=run.period_start,
        period_end=run.period_end,
        status=run.status,
        payout_reference=run.payout_reference,
        provider_status=run.provider_status,
        approved_at=run.approved_at,
        paid_at=run.paid_at,
        commission_count=commission_count,
        created_at=run.created_at,
    )


def _result_read(result: PayoutRunResult) -> PayoutRunResultRead:
    return PayoutRunResultRead(
        run=_run_read(result.run, len(result.paid_ids)),
        requested_count=result.requested,
        paid_count=len(result.paid_ids),
        paid_ids=result.paid_ids,
        detached_ids=result.detached_ids,
        total_amount=result.total_amount,
        deliveries=[DeliveryRead(**delivery.to_dict()) for delivery in result.deliveries],
    )


@router.get("/payout-runs", response_model=list[PayoutRunRead])
def list_runs(shop_id: str = Depends(get_shop_id), db: Session = Depends(get_db)):
    return [_run_read(run, count) for run, count in list_payout_runs(db, shop_id=shop_id)]


@router.post("/payout-runs", response_model=PayoutRunRead, status_code=status.HTTP_201_CREATED)
def create_run(
    payload: PayoutRunCreate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    run = create_payout_run(
        db,
        shop_id=shop_id,
        commission_ids=payload.commission_ids,
        period_start=payload.period_start,
        period_end=payload.period_end,
    )
    return _run_read(run, len(list_run_commission_ids(db, run_id=run.id)))


@router.post("/payout-runs/{run_id}/approve", response_model=PayoutRunResultRead)
def approve_run(
    run_id: int,
    payload: PayoutRunApprove | None = None,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
    sender: PostbackSender = Depends(get_postback_sender),
):
    result = approve_payout_run(
        db,
        shop_id=shop_id,
        run_id=run_id,
        payout_reference=payload.payout_reference if payload else None,
        sender=sender,
    )
    return _result_read(result)


@router.post("/payout-runs/{run_id}/refresh", response_model=PayoutRunRead)
def refresh_run(
    run_id: int,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
    provider: PayoutProvider = Depends(get_payout_provider),
):
    run = refresh_payout_run_status(db, shop_id=shop_id, run_id=run_id, provider=provider)
    return _run_read(run, len(list_run_commission_ids(db, run_id=run.id)))


@router.get("/payouts/upcoming", response_model=UpcomingPayoutsRead)
def list_upcoming_payouts(
    as_of: Optional[datetime] = Query(default=None),
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    cutoff = normalize_utc(as_of) or utcnow()
    payouts = [
        UpcomingPayoutRead(
            affiliate_id=payout.affiliate.id,
            affiliate_name=payout.affiliate.name,
            affiliate_email=payout.affiliate.email,
            payout_method=payout.affiliate.payout_method,
            payout_identifier=payout.affiliate.payout_identifier,
            currency=payout.commissions[0].currency,
            total_amount=payout.total_amount,
            commission_count=len(payout.commissions),
            commissions=[UpcomingCommissionRead.model_validate(row) for row in payout.commissions],
        )
        for payout in upcoming_payouts(db, shop_id=shop_id, as_of=cutoff)
    ]
    return UpcomingPayoutsRead(
        as_of=cutoff,
        payouts=payouts,
        total_affiliates=len(payouts),
        total_commissions=sum(payout.commission_count for payout in payouts),
        total_amount=sum((payout.total_amount for payout in payouts), Decimal("0.00")),
    )


@router.post("/payouts/pay", response_model=PayoutRunResultRead, status_code=status.HTTP_201_CREATED)
def pay_affiliate_now(
    payload: PayNowRequest,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
    provider: PayoutProvider = Depends(get_payout_provider),
    sender: PostbackSender = Depends(get_postback_sender),
):
    result = pay_now(
        db,
        shop_id=shop_id,
        affiliate_id=payload.affiliate_id,
        commission_ids=payload.commission_ids,
        provider=provider,
        sender=sender,
    )
    return _result_read(result)


@router.delete("/payout-runs/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_run(
    run_id: int,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    cancel_payout_run(db, shop_id=shop_id, run_id=run_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
