from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from affiliate_engine.api.dependencies import get_shop_id, require_admin
from affiliate_engine.core.db import get_db
from affiliate_engine.crud.postbacks import create_template, list_logs, list_templates
from affiliate_engine.schemas.postbacks import PostbackLogRead, PostbackTemplateCreate, PostbackTemplateRead


router = APIRouter(prefix="/admin/postbacks", tags=["admin"], dependencies=[Depends(require_admin())])


@router.get("/templates", response_model=list[PostbackTemplateRead])
def list_shop_templates(shop_id: str = Depends(get_shop_id), db: Session = Depends(get_db)):
    return [PostbackTemplateRead.model_validate(row) for row in list_templates(db, shop_id=shop_id)]


@router.post("/templates", response_model=PostbackTemplateRead, status_code=status.HTTP_201_CREATED)
def create_shop_template(
    payload: PostbackTemplateCreate,
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    template = create_template(db, shop_id=shop_id, **payload.model_dump())
    return PostbackTemplateRead.model_validate(template)


@router.get("/logs", response_model=list[PostbackLogRead])
def list_shop_logs(
    status_filter: Optional[str] = Query(None, alias="status"),
    commission_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    shop_id: str = Depends(get_shop_id),
    db: Session = Depends(get_db),
):
    rows = list_logs(db, shop_id=shop_id, status=status_filter, commission_id=commission_id, limit=limit)
    return [PostbackLogRead.model_validate(row) for row in rows]
