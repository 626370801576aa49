"""
Referral program config: typed wrappers over app.core.config.settings.
"""
from __future__ import annotations

import json
from datetime import timedelta

from app.core.config import settings


def get_code_length() -> int:
    return settings.referral_code_length


def get_code_alphabet() -> str:
    return settings.referral_code_alphabet


def get_code_max_attempts() -> int:
    return settings.referral_code_max_attempts


def get_code_ttl() -> timedelta | None:
    days = settings.referral_code_ttl_days
    return timedelta(days=days) if days else None


def get_default_max_uses() -> int | None:
    return settings.referral_default_max_uses


def get_new_user_points() -> int:
    return settings.referral_new_user_points


def get_cleanup_retention() -> timedelta:
    return timedelta(days=settings.referral_cleanup_retention_days)


def get_credit_max_attempts() -> int:
    return settings.referral_credit_max_attempts


def get_credit_retry_batch() -> int:
    return settings.referral_credit_retry_batch


def get_owner_points_ladder() -> dict[int, int]:
    """Return {min_prior_redemptions: points}."""
    raw = json.loads(settings.referral_owner_points_ladder)
    return {int(k): int(v) for k, v in raw.items()}


def calc_owner_points(prior_redemptions: int) -> int:
    """Points for the code owner, tiered by how many signups they already brought in."""
    ladder = get_owner_points_ladder()
    result = 0
    for threshold in sorted(ladder.keys()):
        if prior_redemptions >= threshold:
            result = ladder[threshold]
    return result
