from __future__ import annotations

import logging
from urllib.parse import urlencode

import requests
from sqlalchemy.orm import Session

from affiliate_engine.core.config import settings
from affiliate_engine.core.metrics import record_postback
from affiliate_engine.core.time import utcnow
from affiliate_engine.crud.postbacks import get_template, list_active_templates
from affiliate_engine.models.commissions import Commission
from affiliate_engine.models.enums import PostbackLogStatusEnum
from affiliate_engine.models.postbacks import PostbackLog, PostbackTemplate
from affiliate_engine.notifications.senders.base import DeliveryResult, PostbackSender


logger = logging.getLogger(__name__)

RESPONSE_BODY_LIMIT = 1000


def build_postback_params(commission: Commission) -> dict[str, str]:
    attribution = commission.order_attribution
    params = {
        "click_id": attribution.click_id if attribution is not None else None,
        "order_id": commission.order_id,
        "commission_amount": str(commission.amount),
        "currency": commission.currency,
        "status": commission.status,
    }
    return {key: value for key, value in params.items() if value}


def build_postback_url(template: PostbackTemplate, params: dict[str, str]) -> str:
    mappings = template.param_mappings if isinstance(template.param_mappings, dict) else {}
    query = [(partner_key, params[ours]) for ours, partner_key in mappings.items() if params.get(ours)]
    if not query:
        return template.base_url
    separator = "&" if "?" in template.base_url else "?"
    return f"{template.base_url}{separator}{urlencode(query)}"


def send_postback(url: str) -> tuple[bool, int | None, str | None]:
    """GET the partner URL. Returns (ok, status_code, body) and never raises."""
    try:
        resp = requests.get(
            url,
            headers={"User-Agent": settings.POSTBACK_USER_AGENT},
            timeout=settings.POSTBACK_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        return False, None, str(exc)[:RESPONSE_BODY_LIMIT]
    body = (resp.text or "")[:RESPONSE_BODY_LIMIT]
    return resp.status_code < 400, resp.status_code, body or None


class TemplatePostbackSender(PostbackSender):
    """Delivers a commission event to every active partner template for the shop.

    One ``PostbackLog`` row is written per template attempt; failed rows are
    picked up again by ``jobs.postback_retry``.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def fire_postback(self, commission_id: int, event: str, scope: str) -> DeliveryResult:
        result = DeliveryResult(commission_id=commission_id, event=event, ok=True)
        templates = list_active_templates(self.db, shop_id=scope, trigger_event=event)
        if not templates:
            return result
        commission = (
            self.db.query(Commission)
            .filter(Commission.id == commission_id, Commission.shop_id == scope)
            .first()
        )
        if commission is None:
            result.ok = False
            result.errors.append("commission_not_found")
            return result

        params = build_postback_params(commission)
        now = utcnow()
        for template in templates:
            ok, status_code, body = send_postback(build_postback_url(template, params))
            self.db.add(
                PostbackLog(
                    shop_id=scope,
                    commission_id=commission_id,
                    postback_template_id=template.id,
                    event=event,
                    status=PostbackLogStatusEnum.SUCCESS.value if ok else PostbackLogStatusEnum.FAILED.value,
                    response_code=status_code,
                    response_body=body,
                    attempts=1,
                    last_attempt_at=now,
                )
            )
            record_postback(event, success=ok)
            if ok:
                result.sent += 1
                continue
            result.failed += 1
            result.errors.append(f"template {template.id}: {status_code or body}")
            logger.warning(
                "postback.failed",
                extra={
                    "commission_id": commission_id,
                    "template_id": template.id,
                    "event": event,
                    "response_code": status_code,
                },
            )
        self.db.commit()
        result.ok = result.failed == 0
        return result

    def retry(self, log: PostbackLog) -> bool:
        """Re-send a logged attempt and update that log in place. The caller commits."""
        template = get_template(self.db, template_id=log.postback_template_id)
        commission = self.db.get(Commission, log.commission_id)
        now = utcnow()
        log.attempts = (log.attempts or 0) + 1
        log.last_attempt_at = now
        if template is None or not template.active or commission is None:
            return False
        ok, status_code, body = send_postback(build_postback_url(template, build_postback_params(commission)))
        log.response_code = status_code
        log.response_body = body
        if ok:
            log.status = PostbackLogStatusEnum.SUCCESS.value
        record_postback(log.event, success=ok)
        return ok
