from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from affiliate_engine.api.dependencies import get_shop_id
from affiliate_engine.core.attribution import record_click
from affiliate_engine.core.db import get_db
from affiliate_engine.core.errors import NotFoundError
from affiliate_engine.core.hashing import extract_click_id
from affiliate_engine.crud.affiliates import get_affiliate
from affiliate_engine.models.affiliates import AffiliateLink
from affiliate_engine.schemas.events import ClickCreate, ClickRead


router = APIRouter(tags=["clicks"])


@router.post("/clicks", response_model=ClickRead, status_code=status.HTTP_201_CREATED)
def track_click(
    payload: ClickCreate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    affiliate = get_affiliate(db, affiliate_id=payload.affiliate_id, shop_id=shop_id)
    if affiliate is None:
        raise NotFoundError("affiliate", payload.affiliate_id)
    if payload.link_id is not None:
        link = db.get(AffiliateLink, payload.link_id)
        if link is None or link.affiliate_id != affiliate.id:
            raise NotFoundError("link", payload.link_id)
    click_id = payload.click_id or extract_click_id(payload.params or {})
    click = record_click(
        db,
        affiliate=affiliate,
        click_id=click_id,
        link_id=payload.link_id,
        landing_url=payload.landing_url,
        ip=payload.ip,
        user_agent=payload.user_agent,
    )
    if click is None:
        return ClickRead(recorded=False)
    return ClickRead(recorded=True, click_id=click.id)
