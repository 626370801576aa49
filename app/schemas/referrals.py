from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.referral.codes import normalize_code


class ProcessReferralRequest(BaseModel):
    """Body of POST /referrals/process. Only the listed fields are accepted."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    referral_code: str = Field(..., alias="referralCode", min_length=1, max_length=32)
    metadata: dict[str, Any] | None = None

    @field_validator("referral_code")
    @classmethod
    def normalize(cls, v: str) -> str:
        v = normalize_code(v)
        if not v:
            raise ValueError("Referral code is required")
        return v


class RevokeCodeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field("admin", max_length=255)
