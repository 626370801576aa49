"""HTTP tests for /referrals endpoints."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from app.models.audit_log import AuditLog
from app.models.referral_code import CodeStatus, ReferralCode
from app.models.referral_redemption import CreditStatus, ReferralRedemption
from app.referral.errors import StoreFailure


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_request_id_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert resp.headers["X-Request-ID"] == "req-42"


class TestAuth:
    def test_generate_requires_token(self, client):
        assert client.post("/referrals/generate").status_code == 401

    def test_invalid_token_rejected(self, client):
        resp = client.post("/referrals/generate", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_admin_routes_forbidden_for_users(self, client, auth_headers):
        headers = auth_headers("U1")
        assert client.get("/referrals/admin/stats", headers=headers).status_code == 403
        assert client.post("/referrals/admin/cleanup", headers=headers).status_code == 403


class TestGenerate:
    def test_generate_is_idempotent(self, client, auth_headers):
        headers = auth_headers("U1")

        first = client.post("/referrals/generate", headers=headers)
        second = client.post("/referrals/generate", headers=headers)

        assert first.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert len(body["data"]["referralCode"]) == 8
        assert second.json()["data"]["referralCode"] == body["data"]["referralCode"]


class TestValidate:
    def test_valid_code_is_public(self, client, make_code):
        make_code(code="OPEN2345")

        resp = client.get("/referrals/validate", params={"code": "open2345"})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": {"valid": True}}

    def test_unknown_code(self, client):
        resp = client.get("/referrals/validate", params={"code": "NOPE2345"})
        assert resp.json()["data"] == {"valid": False, "reason": "NOT_FOUND"}

    def test_expired_code(self, client, make_code):
        make_code(code="PAST2345", expires_at=datetime.now(timezone.utc) - timedelta(days=1))

        resp = client.get("/referrals/validate", params={"code": "PAST2345"})

        assert resp.json()["data"] == {"valid": False, "reason": "EXPIRED"}

    def test_missing_code(self, client):
        resp = client.get("/referrals/validate")
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Referral code is required"}

    def test_rate_limited(self, client):
        with patch("app.api.routes.referrals.check_validate_rate_limit", return_value=False):
            resp = client.get("/referrals/validate", params={"code": "ANY02345"})
        assert resp.status_code == 429
        assert resp.json()["success"] is False


class TestProcess:
    def test_process_success_then_already_referred(self, client, auth_headers, db_session):
        code = client.post("/referrals/generate", headers=auth_headers("U1")).json()["data"]["referralCode"]

        resp = client.post(
            "/referrals/process",
            json={"referralCode": code.lower(), "metadata": {"source": "sms"}},
            headers=auth_headers("U2"),
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "data": {"message": "Referral processed successfully", "pointsAwarded": 250},
        }
        client.enqueued.assert_called_once()

        again = client.post("/referrals/process", json={"referralCode": code}, headers=auth_headers("U2"))
        assert again.status_code == 400
        assert again.json() == {
            "success": False,
            "error": "You have already used a referral code",
            "reason": "ALREADY_REFERRED",
        }

    def test_self_referral(self, client, auth_headers):
        code = client.post("/referrals/generate", headers=auth_headers("U1")).json()["data"]["referralCode"]

        resp = client.post("/referrals/process", json={"referralCode": code}, headers=auth_headers("U1"))

        assert resp.status_code == 400
        assert resp.json()["reason"] == "SELF_REFERRAL"

    def test_exhausted(self, client, auth_headers, make_code):
        make_code(code="ONCE2345", owner="U1", max_uses=1)
        client.post("/referrals/process", json={"referralCode": "ONCE2345"}, headers=auth_headers("U2"))

        resp = client.post("/referrals/process", json={"referralCode": "ONCE2345"}, headers=auth_headers("U3"))

        assert resp.status_code == 400
        assert resp.json()["reason"] == "EXHAUSTED"

    def test_rejects_unknown_fields(self, client, auth_headers):
        resp = client.post(
            "/referrals/process",
            json={"referralCode": "ABCD2345", "pointsAwarded": 10000},
            headers=auth_headers("U2"),
        )
        assert resp.status_code == 422

    def test_rejects_blank_code(self, client, auth_headers):
        resp = client.post("/referrals/process", json={"referralCode": "   "}, headers=auth_headers("U2"))
        assert resp.status_code == 422


class TestStats:
    def test_user_stats(self, client, auth_headers):
        headers = auth_headers("U1")
        code = client.post("/referrals/generate", headers=headers).json()["data"]["referralCode"]
        client.post("/referrals/process", json={"referralCode": code}, headers=auth_headers("U2"))

        data = client.get("/referrals/stats", headers=headers).json()["data"]

        assert data["referralCode"] == code
        assert data["totalRedemptions"] == 1
        assert data["pendingReferrals"] == 1
        assert data["totalPointsEarned"] == 0
        assert data["recentReferrals"][0]["newUserId"] == "U2"

    def test_admin_stats(self, client, auth_headers, make_code):
        make_code(code="AAAA2345", owner="U1")

        resp = client.get("/referrals/admin/stats", headers=auth_headers("A1", role="admin"))

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["totalCodes"] == 1
        assert data["activeCodes"] == 1
        assert data["conversionRate"] == 0


class TestAdmin:
    def test_cleanup_is_audited(self, client, auth_headers, make_code, db_session):
        make_code(
            code="DEAD2345",
            status=CodeStatus.EXPIRED,
            last_activity_at=datetime.now(timezone.utc) - timedelta(days=90),
        )

        resp = client.post("/referrals/admin/cleanup", headers=auth_headers("A1", role="ADMIN"))

        assert resp.status_code == 200
        assert resp.json()["data"] == {"cleanedCount": 1}
        assert resp.json()["message"] == "Cleaned up 1 expired referral codes"
        entry = db_session.query(AuditLog).one()
        assert entry.action == "referral_codes_cleanup"
        assert entry.actor_id == "A1"
        assert entry.payload == {"cleaned_count": 1}

    def test_revoke(self, client, auth_headers, make_code, db_session):
        make_code(code="EVIL2345")
        headers = auth_headers("A1", role="ADMIN")

        resp = client.post("/referrals/admin/codes/evil2345/revoke", json={"reason": "fraud"}, headers=headers)

        assert resp.status_code == 200
        assert resp.json()["data"] == {"code": "EVIL2345", "status": "REVOKED"}
        record = db_session.query(ReferralCode).filter(ReferralCode.code == "EVIL2345").one()
        assert record.status == CodeStatus.REVOKED
        assert record.revoke_reason == "fraud"

        validate = client.get("/referrals/validate", params={"code": "EVIL2345"})
        assert validate.json()["data"]["reason"] == "REVOKED"

    def test_revoke_unknown(self, client, auth_headers):
        resp = client.post("/referrals/admin/codes/NONE2345/revoke", headers=auth_headers("A1", role="ADMIN"))
        assert resp.status_code == 404

    def test_retry_failed_credits(self, client, auth_headers, db_session):
        db_session.add(ReferralRedemption(
            code_id="c1",
            referral_code="AAAA2345",
            owner_user_id="U1",
            new_user_id="N1",
            credit_status=CreditStatus.FAILED,
            credit_attempts=10,
        ))
        db_session.commit()

        resp = client.post("/referrals/admin/credits/retry", headers=auth_headers("A1", role="ADMIN"))

        assert resp.status_code == 200
        assert resp.json()["data"] == {"requeuedCount": 1}
        redemption = db_session.query(ReferralRedemption).one()
        assert redemption.credit_status == CreditStatus.PENDING
        assert redemption.credit_attempts == 0
        client.retry_enqueued.assert_called_once_with()
        entry = db_session.query(AuditLog).one()
        assert entry.action == "referral_credits_requeue"
        assert entry.entity_type == "referral_credit"
        assert entry.payload == {"requeued_count": 1}

    def test_retry_failed_credits_requires_admin(self, client, auth_headers):
        resp = client.post("/referrals/admin/credits/retry", headers=auth_headers("U1"))
        assert resp.status_code == 403


class TestInternalErrors:
    GENERIC = {"success": False, "error": "Internal server error"}

    def test_store_failure_is_generic_500(self, client, auth_headers):
        with patch(
            "app.referral.store.ReferralStore.find_active_for_owner",
            side_effect=StoreFailure("find_active_for_owner failed: connection reset by db-7"),
        ):
            resp = client.post("/referrals/generate", headers=auth_headers("U1"))

        assert resp.status_code == 500
        assert resp.json() == self.GENERIC
        assert "db-7" not in resp.text

    def test_generation_exhausted_is_generic_500(self, client, auth_headers):
        with patch("app.referral.store.ReferralStore.code_exists", return_value=True):
            resp = client.post("/referrals/generate", headers=auth_headers("U1"))

        assert resp.status_code == 500
        assert resp.json() == self.GENERIC
        assert "U1" not in resp.text
