from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from affiliate_engine.core.config import settings
from affiliate_engine.core.db import get_db
from affiliate_engine.integrations.payouts.base import PayoutProvider
from affiliate_engine.integrations.payouts.paypal import PayPalPayoutProvider
from affiliate_engine.notifications.senders.base import PostbackSender
from affiliate_engine.notifications.senders.http import TemplatePostbackSender


ADMIN_TOKEN_HEADER = "X-Admin-Token"


def get_shop_id(request: Request) -> str:
    shop_id = (request.headers.get(settings.SHOP_HEADER_NAME) or "").strip()
    if not shop_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{settings.SHOP_HEADER_NAME} header is required",
        )
    return shop_id


def require_admin():
    def _dependency(request: Request) -> None:
        supplied = request.headers.get(ADMIN_TOKEN_HEADER) or ""
        if not supplied or not hmac.compare_digest(supplied, settings.ADMIN_API_TOKEN):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    return _dependency


def get_postback_sender(db: Session = Depends(get_db)) -> PostbackSender:
    return TemplatePostbackSender(db)


def get_payout_provider() -> PayoutProvider:
    return PayPalPayoutProvider()
