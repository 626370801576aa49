"""
Loyalty point crediting for redemptions.

A committed ReferralRedemption is the source of truth. Crediting is at-least-once:
each award carries an idempotency key derived from the redemption id, so the
loyalty service can safely see the same award twice.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.referral_redemption import CreditStatus, ReferralRedemption
from app.referral.config import get_credit_max_attempts
from app.referral.store import ReferralStore
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import (
    loyalty_request_duration_seconds,
    loyalty_requests_total,
    referral_credit_deliveries_total,
)
from app.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferralRedeemed:
    redemption_id: str
    referral_code: str
    owner_user_id: str
    new_user_id: str
    owner_points: int
    new_user_points: int


class LoyaltyClient:
    """Sync client for the loyalty service points API."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float | None = None) -> None:
        self._base_url = (base_url or settings.loyalty_api_base).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.loyalty_api_key
        self._timeout = timeout or settings.loyalty_timeout
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._client = httpx.Client(timeout=self._timeout, headers=headers)
        return self._client

    def award_points(
        self,
        user_id: str,
        points: int,
        idempotency_key: str,
        description: str,
        metadata: dict | None = None,
    ) -> dict:
        """Credit points; raises httpx.HTTPError on transport failure or non-2xx."""
        breaker = get_circuit_breaker("loyalty")
        return breaker.call(self._post_award, user_id, points, idempotency_key, description, metadata or {})

    def _post_award(
        self, user_id: str, points: int, idempotency_key: str, description: str, metadata: dict
    ) -> dict:
        start = time.time()
        try:
            resp = self.client.post(
                f"{self._base_url}/loyalty/points/earn",
                json={
                    "userId": user_id,
                    "amount": points,
                    "source": "REFERRAL",
                    "transactionId": idempotency_key,
                    "description": description,
                    "metadata": metadata,
                },
                headers={"Idempotency-Key": idempotency_key},
            )
            resp.raise_for_status()
            loyalty_requests_total.labels(status="success").inc()
            return resp.json() if resp.content else {}
        except httpx.HTTPError:
            loyalty_requests_total.labels(status="error").inc()
            raise
        finally:
            loyalty_request_duration_seconds.observe(time.time() - start)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class CreditDeliveryService:
    def __init__(self, db: Session, client: LoyaltyClient):
        self.db = db
        self.store = ReferralStore(db)
        self.client = client

    def deliver(self, redemption_id: str) -> bool:
        """
        Credit both parties of a redemption. Returns True once settled.
        On failure the attempt is recorded and the redemption stays pending
        until referral_credit_max_attempts, then it is parked as failed.
        """
        redemption = self.store.get_redemption(redemption_id)
        if redemption is None:
            logger.warning("referral_credit_unknown_redemption", extra={"redemption_id": redemption_id})
            return False
        if redemption.credit_status == CreditStatus.SETTLED:
            return True

        try:
            self._award(redemption)
        except Exception as exc:
            self._record_failure(redemption, exc)
            return False

        redemption.credit_status = CreditStatus.SETTLED
        redemption.credited_at = utcnow()
        redemption.credit_attempts += 1
        redemption.last_credit_error = None
        self.db.add(redemption)
        self.db.commit()
        referral_credit_deliveries_total.labels(status="settled").inc()
        logger.info(
            "referral_credit_settled",
            extra={
                "redemption_id": redemption.id,
                "owner_user_id": redemption.owner_user_id,
                "new_user_id": redemption.new_user_id,
            },
        )
        return True

    def _award(self, redemption: ReferralRedemption) -> None:
        context = {"referralCode": redemption.referral_code, "redemptionId": redemption.id}
        if redemption.points_awarded_to_owner > 0:
            self.client.award_points(
                redemption.owner_user_id,
                redemption.points_awarded_to_owner,
                f"{redemption.id}:owner",
                "Referral reward",
                context,
            )
        if redemption.points_awarded_to_new_user > 0:
            self.client.award_points(
                redemption.new_user_id,
                redemption.points_awarded_to_new_user,
                f"{redemption.id}:new_user",
                "Welcome bonus for joining with a referral code",
                context,
            )

    def _record_failure(self, redemption: ReferralRedemption, exc: Exception) -> None:
        redemption.credit_attempts += 1
        redemption.last_credit_error = f"{type(exc).__name__}: {exc}"[:500]
        if redemption.credit_attempts >= get_credit_max_attempts():
            redemption.credit_status = CreditStatus.FAILED
            status = "failed"
        else:
            status = "retry"
        self.db.add(redemption)
        self.db.commit()
        referral_credit_deliveries_total.labels(status=status).inc()
        logger.warning(
            "referral_credit_failed",
            extra={
                "redemption_id": redemption.id,
                "attempt": redemption.credit_attempts,
                "error": type(exc).__name__,
            },
        )


def enqueue_credit(event: ReferralRedeemed) -> None:
    """
    Hand the redemption to the worker. Broker errors are logged, not raised:
    the redemption is already committed and retry_pending_credits will pick it up.
    """
    from app.referral.tasks import deliver_referral_credit

    try:
        deliver_referral_credit.delay(event.redemption_id)
    except Exception:
        logger.exception(
            "referral_credit_enqueue_failed",
            extra={"redemption_id": event.redemption_id},
        )


def enqueue_credit_retry() -> None:
    """Kick a retry_pending_credits run now instead of waiting for the next beat tick."""
    from app.referral.tasks import retry_pending_credits

    try:
        retry_pending_credits.delay()
    except Exception:
        logger.exception("referral_credit_retry_enqueue_failed")
