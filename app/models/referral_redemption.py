from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.db.base import Base, JSONType


class CreditStatus:
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


class ReferralRedemption(Base):
    __tablename__ = "referral_redemptions"

    # Also the idempotency key for loyalty point crediting.
    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    code_id = Column(String, nullable=False, index=True)
    referral_code = Column(String(32), nullable=False, index=True)
    owner_user_id = Column(String, nullable=False, index=True)
    # One redemption per signup, ever.
    new_user_id = Column(String, nullable=False, unique=True)
    redeemed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    # "metadata" is reserved on declarative classes.
    context = Column("metadata", JSONType, nullable=False, default=dict)
    points_awarded_to_owner = Column(Integer, nullable=False, default=0)
    points_awarded_to_new_user = Column(Integer, nullable=False, default=0)

    credit_status = Column(String, nullable=False, default=CreditStatus.PENDING, index=True)
    credit_attempts = Column(Integer, nullable=False, default=0)
    credited_at = Column(DateTime(timezone=True), nullable=True)
    last_credit_error = Column(Text, nullable=True)
