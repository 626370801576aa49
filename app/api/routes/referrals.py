"""
Referral API: generate, validate, process, per-user stats, admin stats/cleanup/revoke/credit retry.
Responses use the platform envelope { success, data } / { success, error }.
"""
from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.referral.credits import enqueue_credit_retry
from app.referral.service import ReferralService
from app.schemas.referrals import ProcessReferralRequest, RevokeCodeRequest
from app.services.audit.service import AuditService
from app.services.auth.jwt import get_current_user, require_admin
from app.services.rate_limit import check_validate_rate_limit, get_client_ip

router = APIRouter(prefix="/referrals", tags=["referrals"])


def _error(status_code: int, message: str, reason: str | None = None) -> JSONResponse:
    body = {"success": False, "error": message}
    if reason:
        body["reason"] = reason
    return JSONResponse(status_code=status_code, content=body)


@router.post("/generate")
def generate_code(
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Return the caller's referral code, minting one on first call."""
    record = ReferralService(db).generate_code(current_user["user_id"])
    return {
        "success": True,
        "data": {"referralCode": record.code},
        "message": "Referral code generated successfully",
    }


@router.get("/validate")
def validate_code(
    request: Request,
    code: str | None = Query(None, max_length=64),
    db: Session = Depends(get_db),
):
    """Public: is this code redeemable right now?"""
    if not check_validate_rate_limit(get_client_ip(request)):
        return _error(status.HTTP_429_TOO_MANY_REQUESTS, "Too many requests. Try again later.")
    if not code or not code.strip():
        return _error(status.HTTP_400_BAD_REQUEST, "Referral code is required")

    result = ReferralService(db).validate_code(code)
    data = {"valid": result.valid}
    if result.reason:
        data["reason"] = result.reason
    return {"success": True, "data": data}


@router.post("/process")
def process_referral(
    body: ProcessReferralRequest = Body(...),
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Redeem a referral code for the authenticated (newly signed-up) user."""
    outcome = ReferralService(db).process_referral(
        body.referral_code, current_user["user_id"], body.metadata
    )
    if not outcome.success:
        return _error(status.HTTP_400_BAD_REQUEST, outcome.message, outcome.reason)
    return {
        "success": True,
        "data": {"message": outcome.message, "pointsAwarded": outcome.points_awarded},
    }


@router.get("/stats")
def user_stats(
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": ReferralService(db).get_user_stats(current_user["user_id"])}


# ---------- Admin ----------
@router.get("/admin/stats")
def admin_stats(
    admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": ReferralService(db).get_global_stats()}


@router.post("/admin/cleanup")
def admin_cleanup(
    admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Delete idle EXPIRED/EXHAUSTED codes whose credits are all settled."""
    cleaned = ReferralService(db).cleanup_expired_codes()
    AuditService(db).record(admin, "referral_codes_cleanup", AuditService.CODE, cleaned_count=cleaned)
    return {
        "success": True,
        "data": {"cleanedCount": cleaned},
        "message": f"Cleaned up {cleaned} expired referral codes",
    }


@router.post("/admin/codes/{code}/revoke")
def admin_revoke(
    code: str,
    body: RevokeCodeRequest | None = Body(None),
    admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reason = body.reason if body else "admin"
    if not ReferralService(db).revoke_code(code, reason):
        return _error(status.HTTP_404_NOT_FOUND, "Referral code not found or already revoked")
    AuditService(db).record(admin, "referral_code_revoke", AuditService.CODE, code.upper(), reason=reason)
    return {"success": True, "data": {"code": code.upper(), "status": "REVOKED"}}


@router.post("/admin/credits/retry")
def admin_retry_credits(
    admin: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Move credits parked as failed back to pending and start a retry run."""
    requeued = ReferralService(db).requeue_failed_credits()
    AuditService(db).record(admin, "referral_credits_requeue", AuditService.CREDIT, requeued_count=requeued)
    enqueue_credit_retry()
    return {
        "success": True,
        "data": {"requeuedCount": requeued},
        "message": f"Requeued {requeued} failed referral credits",
    }
