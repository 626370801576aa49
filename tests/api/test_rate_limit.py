"""Tests for the Redis fixed-window rate limiter."""
from unittest.mock import MagicMock, patch

import redis

from app.services.rate_limit import check_rate_limit, get_client_ip


def _redis_returning(count):
    client = MagicMock()
    client.incr.return_value = count
    return client


def test_first_hit_sets_window():
    client = _redis_returning(1)
    with patch("app.services.rate_limit.redis.Redis.from_url", return_value=client):
        assert check_rate_limit("referral_validate", "1.2.3.4", limit=3, window_seconds=60) is True

    client.incr.assert_called_once_with("rate:referral_validate:1.2.3.4")
    client.expire.assert_called_once_with("rate:referral_validate:1.2.3.4", 60)


def test_over_limit_blocked():
    client = _redis_returning(4)
    with patch("app.services.rate_limit.redis.Redis.from_url", return_value=client):
        assert check_rate_limit("referral_validate", "1.2.3.4", limit=3, window_seconds=60) is False
    client.expire.assert_not_called()


def test_fails_open_when_redis_down():
    client = MagicMock()
    client.incr.side_effect = redis.ConnectionError("down")
    with patch("app.services.rate_limit.redis.Redis.from_url", return_value=client):
        assert check_rate_limit("referral_validate", "1.2.3.4", limit=3, window_seconds=60) is True


def test_client_ip_ignores_forwarded_header_outside_production():
    request = MagicMock()
    request.headers = {"X-Forwarded-For": "9.9.9.9"}
    request.client.host = "10.0.0.1"

    assert get_client_ip(request) == "10.0.0.1"


def test_client_ip_trusts_forwarded_header_from_known_proxy():
    request = MagicMock()
    request.headers = {"X-Forwarded-For": "9.9.9.9, 10.0.0.1"}
    request.client.host = "10.0.0.1"

    with patch("app.services.rate_limit.settings") as mock_settings:
        mock_settings.app_env = "production"
        mock_settings.trusted_proxy_ips_set = {"10.0.0.1"}
        assert get_client_ip(request) == "9.9.9.9"
