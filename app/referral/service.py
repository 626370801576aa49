"""
ReferralService: code generation, validation, redemption, stats, cleanup.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.referral_code import CodeStatus, ReferralCode
from app.models.referral_redemption import CreditStatus, ReferralRedemption
from app.referral.codes import new_code, normalize_code
from app.referral.config import (
    calc_owner_points,
    get_cleanup_retention,
    get_code_max_attempts,
    get_code_ttl,
    get_default_max_uses,
    get_new_user_points,
)
from app.referral.credits import ReferralRedeemed, enqueue_credit
from app.referral.errors import FAILURE_MESSAGES, GenerationExhausted, ReferralFailure
from app.referral.store import ReferralStore
from app.utils.metrics import (
    referral_codes_generated_total,
    referral_redemptions_total,
    referral_validations_total,
)
from app.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: str | None = None
    record: ReferralCode | None = None


@dataclass(frozen=True)
class ProcessOutcome:
    success: bool
    message: str
    reason: str | None = None
    points_awarded: int | None = None
    redemption_id: str | None = None


class ReferralService:
    def __init__(self, db: Session, publish: Callable[[ReferralRedeemed], None] = enqueue_credit):
        self.db = db
        self.store = ReferralStore(db)
        self.publish = publish

    # ------------------------------------------------------------------
    # Code generation
    # ------------------------------------------------------------------

    def generate_code(self, owner_user_id: str) -> ReferralCode:
        """
        Return the owner's usable code, minting one if there is none.
        Idempotent while the current code stays ACTIVE, including under concurrent
        first calls: the partial unique index on ACTIVE codes lets only one mint win.
        """
        now = utcnow()
        existing = self._usable_code_for(owner_user_id, now)
        if existing is not None:
            return existing

        max_attempts = get_code_max_attempts()
        ttl = get_code_ttl()
        for attempt in range(1, max_attempts + 1):
            code = new_code()
            if self.store.code_exists(code):
                logger.info("referral_code_collision", extra={"code": code, "attempt": attempt})
                continue
            record = ReferralCode(
                code=code,
                owner_user_id=owner_user_id,
                status=CodeStatus.ACTIVE,
                use_count=0,
                max_uses=get_default_max_uses(),
                created_at=now,
                expires_at=now + ttl if ttl else None,
                last_activity_at=now,
            )
            try:
                self.store.add_code(record)
                self.db.commit()
            except IntegrityError:
                # Lost a race: either on the code itself or to a concurrent mint for this owner.
                self.db.rollback()
                winner = self._usable_code_for(owner_user_id, now)
                if winner is not None:
                    logger.info(
                        "referral_code_concurrent_generate",
                        extra={"user_id": owner_user_id, "code": winner.code},
                    )
                    return winner
                logger.info("referral_code_collision", extra={"code": code, "attempt": attempt})
                continue

            referral_codes_generated_total.inc()
            logger.info(
                "referral_code_generated",
                extra={"user_id": owner_user_id, "code": code, "attempt": attempt},
            )
            return record

        logger.error(
            "referral_code_generation_exhausted",
            extra={"user_id": owner_user_id, "attempt": max_attempts},
        )
        raise GenerationExhausted(owner_user_id, max_attempts)

    def _usable_code_for(self, owner_user_id: str, now: datetime) -> ReferralCode | None:
        """The owner's ACTIVE code if still usable. A stale ACTIVE row is retired so a new one can be minted."""
        existing = self.store.find_active_for_owner(owner_user_id)
        if existing is None:
            return None
        if self._is_expired(existing, now):
            self.store.mark_expired(existing.id)
            self.db.commit()
            return None
        if self._is_exhausted(existing):
            self.store.mark_exhausted(existing.id)
            self.db.commit()
            return None
        return existing

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_code(self, raw_code: str | None) -> ValidationResult:
        """Read-mostly check. The only write is the lazy ACTIVE -> EXPIRED transition."""
        code = normalize_code(raw_code)
        record = self.store.get_by_code(code) if code else None
        if record is None:
            result = ValidationResult(valid=False, reason=ReferralFailure.NOT_FOUND)
        else:
            reason = self._check_usable(record, utcnow())
            result = ValidationResult(valid=reason is None, reason=reason, record=record)
        referral_validations_total.labels(result=result.reason or "valid").inc()
        return result

    def _check_usable(self, record: ReferralCode, now: datetime) -> str | None:
        """Failure reason for a stored code, or None. Order: revoked, expired, exhausted."""
        if record.status == CodeStatus.REVOKED:
            return ReferralFailure.REVOKED
        if record.status == CodeStatus.EXPIRED or self._is_expired(record, now):
            if record.status == CodeStatus.ACTIVE:
                code_id = record.id
                if self.store.mark_expired(code_id):
                    self.db.commit()
                    logger.info("referral_code_expired", extra={"code_id": code_id})
            return ReferralFailure.EXPIRED
        if record.status == CodeStatus.EXHAUSTED or self._is_exhausted(record):
            return ReferralFailure.EXHAUSTED
        return None

    @staticmethod
    def _is_expired(record: ReferralCode, now: datetime) -> bool:
        expires_at = as_utc(record.expires_at)
        return expires_at is not None and now > expires_at

    @staticmethod
    def _is_exhausted(record: ReferralCode) -> bool:
        return record.max_uses is not None and record.use_count >= record.max_uses

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    def process_referral(
        self,
        raw_code: str,
        new_user_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> ProcessOutcome:
        """
        Redeem a code for a new user. The use-count increment and the redemption row
        commit together or not at all; point crediting is handed off after commit.
        """
        code = normalize_code(raw_code)
        now = utcnow()

        if self.store.find_redemption_for_user(new_user_id) is not None:
            return self._failed(ReferralFailure.ALREADY_REFERRED, code, new_user_id)

        record = self.store.get_by_code(code) if code else None
        if record is None:
            return self._failed(ReferralFailure.NOT_FOUND, code, new_user_id)
        if record.owner_user_id == new_user_id:
            return self._failed(ReferralFailure.SELF_REFERRAL, code, new_user_id)

        reason = self._check_usable(record, now)
        if reason is not None:
            return self._failed(reason, code, new_user_id)

        code_id = record.id
        owner_user_id = record.owner_user_id
        owner_points = calc_owner_points(self.store.count_redemptions_for_owner(owner_user_id))
        new_user_points = get_new_user_points()

        try:
            if not self.store.try_consume_use(code_id, now):
                # Someone else took the last use (or the code changed state) since the check.
                self.db.rollback()
                record = self.store.get_by_code(code)
                reason = self._check_usable(record, now) if record else ReferralFailure.NOT_FOUND
                return self._failed(reason or ReferralFailure.EXHAUSTED, code, new_user_id)

            redemption = self.store.add_redemption(
                ReferralRedemption(
                    code_id=code_id,
                    referral_code=code,
                    owner_user_id=owner_user_id,
                    new_user_id=new_user_id,
                    redeemed_at=now,
                    context=metadata or {},
                    points_awarded_to_owner=owner_points,
                    points_awarded_to_new_user=new_user_points,
                    credit_status=CreditStatus.PENDING,
                    credit_attempts=0,
                )
            )
            redemption_id = redemption.id
            self.db.commit()
        except IntegrityError:
            # Concurrent submission for the same signup won the unique index.
            self.db.rollback()
            return self._failed(ReferralFailure.ALREADY_REFERRED, code, new_user_id)
        except Exception:
            self.db.rollback()
            raise

        referral_redemptions_total.labels(result="success").inc()
        logger.info(
            "referral_processed",
            extra={
                "redemption_id": redemption_id,
                "code": code,
                "owner_user_id": owner_user_id,
                "new_user_id": new_user_id,
                "points": new_user_points,
            },
        )
        self.publish(
            ReferralRedeemed(
                redemption_id=redemption_id,
                referral_code=code,
                owner_user_id=owner_user_id,
                new_user_id=new_user_id,
                owner_points=owner_points,
                new_user_points=new_user_points,
            )
        )
        return ProcessOutcome(
            success=True,
            message="Referral processed successfully",
            points_awarded=new_user_points,
            redemption_id=redemption_id,
        )

    def _failed(self, reason: str, code: str, new_user_id: str) -> ProcessOutcome:
        referral_redemptions_total.labels(result=reason).inc()
        logger.info(
            "referral_rejected",
            extra={"code": code, "new_user_id": new_user_id, "reason": reason},
        )
        return ProcessOutcome(success=False, message=FAILURE_MESSAGES[reason], reason=reason)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_user_stats(self, user_id: str) -> dict:
        """Referral dashboard stats for a code owner."""
        now = utcnow()
        active = self.store.find_active_for_owner(user_id)
        if active is not None and (self._is_expired(active, now) or self._is_exhausted(active)):
            active = None

        summary = self.store.owner_credit_summary(user_id)
        total = summary["total"]
        successful = summary[CreditStatus.SETTLED]
        recent = self.store.recent_redemptions_for_owner(user_id)

        return {
            "referralCode": active.code if active else None,
            "isActive": active is not None,
            "codeGenerated": active is not None or self.store.owner_has_code(user_id),
            "totalRedemptions": total,
            "successfulConversions": successful,
            "pendingReferrals": summary[CreditStatus.PENDING],
            "totalPointsEarned": summary["settled_points"],
            "conversionRate": round(successful / total, 4) if total else 0,
            "recentReferrals": [
                {
                    "newUserId": r.new_user_id,
                    "redeemedAt": as_utc(r.redeemed_at).isoformat(),
                    "status": r.credit_status,
                    "pointsAwarded": r.points_awarded_to_owner,
                }
                for r in recent
            ],
        }

    def get_global_stats(self) -> dict:
        total_codes = self.store.count_codes()
        total_redemptions = self.store.count_redemptions()
        return {
            "totalCodes": total_codes,
            "activeCodes": self.store.count_codes(CodeStatus.ACTIVE),
            "totalRedemptions": total_redemptions,
            "pendingCredits": self.store.count_redemptions(CreditStatus.PENDING),
            "topReferrers": self.store.top_referrers(),
            "conversionRate": round(total_redemptions / total_codes, 4) if total_codes else 0,
        }

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def cleanup_expired_codes(self, now: datetime | None = None) -> int:
        """
        Delete EXPIRED/EXHAUSTED codes idle past the retention window.
        Codes with unsettled credits are kept; redemptions are never deleted.
        """
        now = now or utcnow()
        expired = self.store.expire_overdue(now)
        removed = self.store.delete_cleanable(now - get_cleanup_retention())
        self.db.commit()
        logger.info("referral_codes_cleaned", extra={"count": removed, "expired": expired})
        return removed

    def revoke_code(self, raw_code: str, reason: str = "admin") -> bool:
        record = self.store.get_by_code(normalize_code(raw_code))
        if record is None:
            return False
        code_id = record.id
        revoked = self.store.revoke(code_id, reason, utcnow())
        self.db.commit()
        if revoked:
            logger.info("referral_code_revoked", extra={"code_id": code_id, "reason": reason})
        return revoked

    def requeue_failed_credits(self) -> int:
        """Give parked (failed) credits a fresh attempt budget so the retry job picks them up again."""
        count = self.store.requeue_failed_credits()
        self.db.commit()
        logger.info("referral_credits_requeued", extra={"count": count})
        return count
