"""
Celery tasks: deliver loyalty points for referral redemptions.
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.referral.config import get_credit_retry_batch
from app.referral.credits import CreditDeliveryService, LoyaltyClient
from app.referral.service import ReferralService
from app.referral.store import ReferralStore

logger = logging.getLogger(__name__)


@celery_app.task(
    name="app.referral.tasks.deliver_referral_credit",
    time_limit=60,
    soft_time_limit=55,
)
def deliver_referral_credit(redemption_id: str) -> dict:
    """Credit owner and new user for one redemption (enqueued right after redemption commits)."""
    db = SessionLocal()
    client = LoyaltyClient()
    try:
        settled = CreditDeliveryService(db, client).deliver(redemption_id)
        return {"redemption_id": redemption_id, "settled": settled}
    except Exception:
        db.rollback()
        logger.exception("deliver_referral_credit_error", extra={"redemption_id": redemption_id})
        return {"redemption_id": redemption_id, "settled": False, "error": "exception"}
    finally:
        client.close()
        db.close()


@celery_app.task(
    name="app.referral.tasks.retry_pending_credits",
    time_limit=240,
    soft_time_limit=230,
)
def retry_pending_credits() -> dict:
    """Beat: retry pending credits (missed enqueues, loyalty outages)."""
    db = SessionLocal()
    client = LoyaltyClient()
    try:
        ids = ReferralStore(db).pending_credit_ids(get_credit_retry_batch())
        svc = CreditDeliveryService(db, client)
        settled = 0
        for redemption_id in ids:
            if svc.deliver(redemption_id):
                settled += 1
        logger.info("retry_pending_credits_done", extra={"count": len(ids), "settled": settled})
        return {"pending": len(ids), "settled": settled}
    except Exception:
        db.rollback()
        logger.exception("retry_pending_credits_error")
        return {"pending": 0, "settled": 0, "error": "exception"}
    finally:
        client.close()
        db.close()


@celery_app.task(
    name="app.referral.tasks.requeue_failed_credits",
    time_limit=60,
    soft_time_limit=55,
)
def requeue_failed_credits() -> dict:
    """Beat: move credits parked as failed back to pending (loyalty outages longer than the retry budget)."""
    db = SessionLocal()
    try:
        requeued = ReferralService(db).requeue_failed_credits()
        return {"requeued": requeued}
    except Exception:
        db.rollback()
        logger.exception("requeue_failed_credits_error")
        return {"requeued": 0, "error": "exception"}
    finally:
        db.close()
