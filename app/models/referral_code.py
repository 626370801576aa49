from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text

from app.db.base import Base


class CodeStatus:
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    EXHAUSTED = "EXHAUSTED"
    REVOKED = "REVOKED"

    # Terminal states eligible for admin cleanup.
    CLEANABLE = (EXPIRED, EXHAUSTED)


class ReferralCode(Base):
    __tablename__ = "referral_codes"
    __table_args__ = (
        # At most one ACTIVE code per owner; concurrent generate calls collide here.
        Index(
            "uq_referral_codes_owner_active",
            "owner_user_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    code = Column(String(32), unique=True, nullable=False, index=True)
    owner_user_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=CodeStatus.ACTIVE, index=True)
    max_uses = Column(Integer, nullable=True)  # null = unlimited
    use_count = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    expires_at = Column(DateTime(timezone=True), nullable=True)  # null = never expires
    # Last redemption or status change; cleanup retention counts from here.
    last_activity_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoke_reason = Column(Text, nullable=True)
