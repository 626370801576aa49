"""
ReferralStore: persistence for referral codes and redemptions.

Concurrency-sensitive writes are single conditional UPDATE statements;
callers never read-then-write use_count or status.
"""
from __future__ import annotations

import functools
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import and_, case, delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.referral_code import CodeStatus, ReferralCode
from app.models.referral_redemption import CreditStatus, ReferralRedemption
from app.referral.errors import StoreFailure


def _store_errors(func_: Callable) -> Callable:
    """Unique violations propagate for the caller to interpret; anything else is a StoreFailure."""

    @functools.wraps(func_)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func_(*args, **kwargs)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise StoreFailure(f"{func_.__name__} failed: {type(exc).__name__}") from exc

    return wrapper


class ReferralStore:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Codes
    # ------------------------------------------------------------------

    @_store_errors
    def get_by_code(self, code: str) -> ReferralCode | None:
        return self.db.query(ReferralCode).filter(ReferralCode.code == code).one_or_none()

    @_store_errors
    def code_exists(self, code: str) -> bool:
        stmt = select(ReferralCode.id).where(ReferralCode.code == code).exists()
        return self.db.query(stmt).scalar() or False

    @_store_errors
    def find_active_for_owner(self, owner_user_id: str) -> ReferralCode | None:
        return (
            self.db.query(ReferralCode)
            .filter(
                ReferralCode.owner_user_id == owner_user_id,
                ReferralCode.status == CodeStatus.ACTIVE,
            )
            .order_by(ReferralCode.created_at.desc())
            .first()
        )

    @_store_errors
    def owner_has_code(self, owner_user_id: str) -> bool:
        stmt = select(ReferralCode.id).where(ReferralCode.owner_user_id == owner_user_id).exists()
        return self.db.query(stmt).scalar() or False

    @_store_errors
    def add_code(self, record: ReferralCode) -> ReferralCode:
        self.db.add(record)
        self.db.flush()
        return record

    @_store_errors
    def try_consume_use(self, code_id: str, now: datetime) -> bool:
        """
        Atomically take one use of an ACTIVE code.
        The row flips to EXHAUSTED in the same statement when the cap is reached.
        Returns False if the code is no longer ACTIVE, already at its cap or past expires_at.
        """
        reaches_cap = and_(
            ReferralCode.max_uses.isnot(None),
            ReferralCode.use_count + 1 >= ReferralCode.max_uses,
        )
        result = self.db.execute(
            update(ReferralCode)
            .where(
                ReferralCode.id == code_id,
                ReferralCode.status == CodeStatus.ACTIVE,
                or_(
                    ReferralCode.max_uses.is_(None),
                    ReferralCode.use_count < ReferralCode.max_uses,
                ),
                or_(ReferralCode.expires_at.is_(None), ReferralCode.expires_at > now),
            )
            .values(
                use_count=ReferralCode.use_count + 1,
                status=case((reaches_cap, CodeStatus.EXHAUSTED), else_=ReferralCode.status),
                last_activity_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @_store_errors
    def mark_expired(self, code_id: str) -> bool:
        """ACTIVE -> EXPIRED, idle since expires_at. No-op for any other status."""
        result = self.db.execute(
            update(ReferralCode)
            .where(
                ReferralCode.id == code_id,
                ReferralCode.status == CodeStatus.ACTIVE,
                ReferralCode.expires_at.isnot(None),
            )
            .values(status=CodeStatus.EXPIRED, last_activity_at=ReferralCode.expires_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @_store_errors
    def mark_exhausted(self, code_id: str) -> bool:
        """ACTIVE code already at its cap -> EXHAUSTED (e.g. after max_uses was lowered)."""
        result = self.db.execute(
            update(ReferralCode)
            .where(
                ReferralCode.id == code_id,
                ReferralCode.status == CodeStatus.ACTIVE,
                ReferralCode.max_uses.isnot(None),
                ReferralCode.use_count >= ReferralCode.max_uses,
            )
            .values(status=CodeStatus.EXHAUSTED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @_store_errors
    def expire_overdue(self, now: datetime) -> int:
        result = self.db.execute(
            update(ReferralCode)
            .where(
                ReferralCode.status == CodeStatus.ACTIVE,
                ReferralCode.expires_at.isnot(None),
                ReferralCode.expires_at < now,
            )
            .values(status=CodeStatus.EXPIRED, last_activity_at=ReferralCode.expires_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @_store_errors
    def revoke(self, code_id: str, reason: str, now: datetime) -> bool:
        result = self.db.execute(
            update(ReferralCode)
            .where(ReferralCode.id == code_id, ReferralCode.status != CodeStatus.REVOKED)
            .values(
                status=CodeStatus.REVOKED,
                revoked_at=now,
                revoke_reason=reason,
                last_activity_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @_store_errors
    def delete_cleanable(self, inactive_since: datetime) -> int:
        """Delete EXPIRED/EXHAUSTED codes idle since before the cutoff with every credit settled."""
        unsettled = exists().where(
            ReferralRedemption.code_id == ReferralCode.id,
            ReferralRedemption.credit_status != CreditStatus.SETTLED,
        ).correlate(ReferralCode)
        result = self.db.execute(
            delete(ReferralCode)
            .where(
                ReferralCode.status.in_(CodeStatus.CLEANABLE),
                ReferralCode.last_activity_at < inactive_since,
                ~unsettled,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Redemptions
    # ------------------------------------------------------------------

    @_store_errors
    def get_redemption(self, redemption_id: str) -> ReferralRedemption | None:
        return (
            self.db.query(ReferralRedemption)
            .filter(ReferralRedemption.id == redemption_id)
            .one_or_none()
        )

    @_store_errors
    def find_redemption_for_user(self, new_user_id: str) -> ReferralRedemption | None:
        return (
            self.db.query(ReferralRedemption)
            .filter(ReferralRedemption.new_user_id == new_user_id)
            .one_or_none()
        )

    @_store_errors
    def add_redemption(self, redemption: ReferralRedemption) -> ReferralRedemption:
        """Flushes immediately so a duplicate new_user_id raises IntegrityError here."""
        self.db.add(redemption)
        self.db.flush()
        return redemption

    @_store_errors
    def count_redemptions_for_owner(self, owner_user_id: str) -> int:
        return (
            self.db.query(func.count(ReferralRedemption.id))
            .filter(ReferralRedemption.owner_user_id == owner_user_id)
            .scalar()
            or 0
        )

    @_store_errors
    def recent_redemptions_for_owner(self, owner_user_id: str, limit: int = 5) -> list[ReferralRedemption]:
        return (
            self.db.query(ReferralRedemption)
            .filter(ReferralRedemption.owner_user_id == owner_user_id)
            .order_by(ReferralRedemption.redeemed_at.desc())
            .limit(limit)
            .all()
        )

    @_store_errors
    def owner_credit_summary(self, owner_user_id: str) -> dict[str, int]:
        """{credit_status: (count, owner points)} folded into a flat dict."""
        rows = (
            self.db.query(
                ReferralRedemption.credit_status,
                func.count(ReferralRedemption.id),
                func.coalesce(func.sum(ReferralRedemption.points_awarded_to_owner), 0),
            )
            .filter(ReferralRedemption.owner_user_id == owner_user_id)
            .group_by(ReferralRedemption.credit_status)
            .all()
        )
        summary = {"total": 0, "settled": 0, "pending": 0, "failed": 0, "settled_points": 0}
        for credit_status, count, points in rows:
            summary["total"] += count
            summary[credit_status] = count
            if credit_status == CreditStatus.SETTLED:
                summary["settled_points"] = int(points)
        return summary

    @_store_errors
    def pending_credit_ids(self, limit: int) -> list[str]:
        rows = (
            self.db.query(ReferralRedemption.id)
            .filter(ReferralRedemption.credit_status == CreditStatus.PENDING)
            .order_by(ReferralRedemption.redeemed_at.asc())
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    @_store_errors
    def requeue_failed_credits(self) -> int:
        """failed -> pending with a fresh attempt budget. Returns rows moved."""
        result = self.db.execute(
            update(ReferralRedemption)
            .where(ReferralRedemption.credit_status == CreditStatus.FAILED)
            .values(credit_status=CreditStatus.PENDING, credit_attempts=0)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Global aggregates
    # ------------------------------------------------------------------

    @_store_errors
    def count_codes(self, status: str | None = None) -> int:
        q = self.db.query(func.count(ReferralCode.id))
        if status is not None:
            q = q.filter(ReferralCode.status == status)
        return q.scalar() or 0

    @_store_errors
    def count_redemptions(self, credit_status: str | None = None) -> int:
        q = self.db.query(func.count(ReferralRedemption.id))
        if credit_status is not None:
            q = q.filter(ReferralRedemption.credit_status == credit_status)
        return q.scalar() or 0

    @_store_errors
    def top_referrers(self, limit: int = 10) -> list[dict[str, Any]]:
        """Owners by redemption count. pointsEarned counts settled credits only, like user stats."""
        redemptions = func.count(ReferralRedemption.id).label("redemptions")
        settled_points = case(
            (ReferralRedemption.credit_status == CreditStatus.SETTLED, ReferralRedemption.points_awarded_to_owner),
            else_=0,
        )
        points = func.coalesce(func.sum(settled_points), 0).label("points")
        rows = (
            self.db.query(ReferralRedemption.owner_user_id, redemptions, points)
            .group_by(ReferralRedemption.owner_user_id)
            .order_by(redemptions.desc(), ReferralRedemption.owner_user_id.asc())
            .limit(limit)
            .all()
        )
        return [
            {"userId": row.owner_user_id, "redemptions": row.redemptions, "pointsEarned": int(row.points)}
            for row in rows
        ]
