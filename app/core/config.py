"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated. Empty = default list in app.main.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # AUTH (tokens issued by the platform auth service)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"
    admin_role: str = "ADMIN"

    # ===========================================
    # REFERRAL PROGRAM
    # ===========================================
    referral_code_length: int = 8
    # No 0/O, 1/I/L: codes are read aloud and typed by hand.
    referral_code_alphabet: str = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
    referral_code_max_attempts: int = 5
    referral_code_ttl_days: int | None = None  # None = codes never expire
    referral_default_max_uses: int | None = None  # None = unlimited
    referral_new_user_points: int = 250
    # {min prior redemptions: points for the owner}
    referral_owner_points_ladder: str = '{"0": 500, "10": 750, "25": 1000}'
    referral_cleanup_retention_days: int = 30
    referral_credit_max_attempts: int = 10
    referral_credit_retry_batch: int = 100
    referral_validate_rate_limit: int = 30
    referral_validate_rate_window_seconds: int = 60

    # ===========================================
    # LOYALTY SERVICE (points crediting)
    # ===========================================
    loyalty_api_base: str = "http://loyalty:8000/api"
    loyalty_api_key: str = ""
    loyalty_timeout: float = 5.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("referral_code_alphabet")
    @classmethod
    def validate_alphabet(cls, v: str) -> str:
        """Alphabet must be upper-case and free of duplicates."""
        v = v.strip().upper()
        if len(set(v)) != len(v) or len(v) < 16:
            raise ValueError("referral_code_alphabet must hold at least 16 distinct characters")
        return v

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure token secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("jwt_secret_key must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("jwt_secret_key is too weak, please change it")
        return v

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
