"""
Referral failures and errors.

Business-rule failures are values (ReferralFailure) reported to the user with 400.
Exceptions are reserved for conditions the user cannot fix.
"""
from __future__ import annotations


class ReferralFailure:
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    EXHAUSTED = "EXHAUSTED"
    REVOKED = "REVOKED"
    ALREADY_REFERRED = "ALREADY_REFERRED"
    SELF_REFERRAL = "SELF_REFERRAL"


FAILURE_MESSAGES = {
    ReferralFailure.NOT_FOUND: "Referral code not found",
    ReferralFailure.EXPIRED: "Referral code has expired",
    ReferralFailure.EXHAUSTED: "Referral code has reached its usage limit",
    ReferralFailure.REVOKED: "Referral code is no longer valid",
    ReferralFailure.ALREADY_REFERRED: "You have already used a referral code",
    ReferralFailure.SELF_REFERRAL: "You cannot use your own referral code",
}


class ReferralError(Exception):
    """Base class for non-user-facing referral errors (HTTP 500)."""


class GenerationExhausted(ReferralError):
    """Could not mint a unique code within the retry budget."""

    def __init__(self, owner_user_id: str, attempts: int) -> None:
        super().__init__(f"no unique referral code after {attempts} attempts")
        self.owner_user_id = owner_user_id
        self.attempts = attempts


class StoreFailure(ReferralError):
    """Persistence layer unavailable or failed unexpectedly."""
