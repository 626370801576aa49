from typing import Any

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


class AuditService:
    """Append-only trail of admin actions on the referral program."""

    CODE = "referral_code"
    CREDIT = "referral_credit"

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        admin: dict,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        **payload: Any,
    ) -> AuditLog:
        """admin is the resolved bearer identity ({user_id, role})."""
        entry = AuditLog(
            actor_type=str(admin.get("role") or "ADMIN").lower(),
            actor_id=admin.get("user_id"),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
        )
        self.db.add(entry)
        self.db.commit()
        return entry
