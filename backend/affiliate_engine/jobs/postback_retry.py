from __future__ import annotations

import argparse
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from affiliate_engine.core.config import settings
from affiliate_engine.core.db import SessionLocal
from affiliate_engine.core.logging import configure_logging
from affiliate_engine.core.metrics import record_job_run
from affiliate_engine.core.time import utcnow
from affiliate_engine.crud.postbacks import list_retryable_logs
from affiliate_engine.notifications.senders.http import TemplatePostbackSender


logger = logging.getLogger(__name__)


def run_postback_retry(
    db: Session,
    *,
    batch_size: int = settings.POSTBACK_RETRY_BATCH_SIZE,
    max_attempts: int = settings.POSTBACK_MAX_ATTEMPTS,
    retry_after_seconds: int = settings.POSTBACK_RETRY_AFTER_SECONDS,
) -> tuple[int, int]:
    """Re-send failed postbacks that have waited long enough. Returns (processed, succeeded)."""
    logs = list_retryable_logs(
        db,
        max_attempts=max_attempts,
        attempted_before=utcnow() - timedelta(seconds=retry_after_seconds),
        limit=batch_size,
    )
    sender = TemplatePostbackSender(db)
    succeeded = 0
    for log in logs:
        if sender.retry(log):
            succeeded += 1
    if logs:
        db.commit()
    return len(logs), succeeded


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Retry failed partner postbacks.")
    parser.add_argument("--batch-size", type=int, default=settings.POSTBACK_RETRY_BATCH_SIZE)
    parser.add_argument("--max-attempts", type=int, default=settings.POSTBACK_MAX_ATTEMPTS)
    parser.add_argument("--retry-after-seconds", type=int, default=settings.POSTBACK_RETRY_AFTER_SECONDS)
    return parser.parse_args()


def main() -> None:
    configure_logging()
    args = _parse_args()
    success = True
    try:
        with SessionLocal() as db:
            processed, succeeded = run_postback_retry(
                db,
                batch_size=args.batch_size,
                max_attempts=args.max_attempts,
                retry_after_seconds=args.retry_after_seconds,
            )
        logger.info("postback_retry.completed", extra={"processed": processed, "succeeded": succeeded})
    except Exception:
        success = False
        logger.exception("postback_retry.failed")
        raise
    finally:
        record_job_run(job_name="postback_retry", success=success)


if __name__ == "__main__":
    main()
