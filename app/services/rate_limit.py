"""
Fixed-window rate limiter for public endpoints (referral code validation),
so codes cannot be enumerated by brute force.
"""
import logging

import redis
from starlette.requests import Request

from app.core.config import settings

logger = logging.getLogger("rate_limit")


def get_client_ip(request: Request) -> str:
    """Client IP (supports X-Forwarded-For from proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def check_rate_limit(scope: str, client_ip: str, limit: int, window_seconds: int) -> bool:
    """
    Returns True if the request is allowed, False if rate limited.
    Increments the window counter on each call.
    """
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        key = f"rate:{scope}:{client_ip}"
        current = client.incr(key)
        if current == 1:
            client.expire(key, window_seconds)
        if current > limit:
            logger.warning("rate_limited", extra={"ip": client_ip, "count": current, "path": scope})
            return False
        return True
    except redis.RedisError as e:
        logger.warning("rate_limit_redis_error", extra={"error": str(e)})
        return True  # Fail open - never block validation because Redis is down


def check_validate_rate_limit(client_ip: str) -> bool:
    return check_rate_limit(
        "referral_validate",
        client_ip,
        settings.referral_validate_rate_limit,
        settings.referral_validate_rate_window_seconds,
    )
