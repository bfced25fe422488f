from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from affiliate_engine.api.dependencies import get_postback_sender, get_shop_id
from affiliate_engine.core.db import get_db
from affiliate_engine.core.orders import process_order_event, process_refund_event
from affiliate_engine.core.subscriptions import cancel_subscription
from affiliate_engine.notifications.senders.base import PostbackSender
from affiliate_engine.schemas.events import (
    OrderEvent,
    OrderEventResult,
    RefundEvent,
    RefundEventResult,
    SubscriptionCancelEvent,
    SubscriptionCancelResult,
)


# Payloads arrive already verified and parsed by whatever fronts this service.
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/orders", response_model=OrderEventResult)
def receive_order(
    payload: OrderEvent,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
    sender: PostbackSender = Depends(get_postback_sender),
):
    outcome = process_order_event(db, shop_id=shop_id, event=payload, sender=sender)
    return OrderEventResult(
        outcome=outcome.outcome,
        order_attribution_id=outcome.order_attribution_id,
        commission_id=outcome.commission_id,
        skipped_reason=outcome.skipped_reason,
    )


@router.post("/refunds", response_model=RefundEventResult)
def receive_refund(
    payload: RefundEvent,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    result = process_refund_event(db, shop_id=shop_id, event=payload)
    return RefundEventResult(
        order_id=result.order_id,
        reversed_count=len(result.reversed_ids),
        reversed_ids=result.reversed_ids,
        clawback_count=len(result.clawback_ids),
        clawback_ids=result.clawback_ids,
    )


@router.post("/subscriptions/cancel", response_model=SubscriptionCancelResult)
def receive_subscription_cancel(
    payload: SubscriptionCancelEvent,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    subscription = cancel_subscription(
        db,
        shop_id=shop_id,
        original_order_id=payload.original_order_id,
        selling_plan_id=payload.selling_plan_id,
    )
    if subscription is None:
        return SubscriptionCancelResult(found=False)
    return SubscriptionCancelResult(found=True, subscription_id=subscription.id, active=subscription.active)
