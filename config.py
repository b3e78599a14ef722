"""
Configuration management for the HR-SM license guard backend.
Centralized configuration with environment variables.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Environment
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    app_name: str = Field(default="HR-SM License Guard", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")
    debug: bool = Field(default=False, validation_alias="DEBUG")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON")
    security_audit_log_file: Optional[str] = Field(default=None, validation_alias="SECURITY_AUDIT_LOG_FILE")

    # Redis configuration (optional, second cache layer)
    redis_url: Optional[str] = Field(default=None, validation_alias="REDIS_URL")
    redis_timeout: int = Field(default=5, validation_alias="REDIS_TIMEOUT")

    # License authority
    license_server_url: str = Field(default="http://localhost:4000", validation_alias="LICENSE_SERVER_URL")
    license_server_api_key: Optional[str] = Field(default=None, validation_alias="LICENSE_SERVER_API_KEY")
    license_user_agent: str = Field(default="HR-SM-Backend/1.0", validation_alias="LICENSE_USER_AGENT")
    license_request_timeout: float = Field(default=5.0, validation_alias="LICENSE_REQUEST_TIMEOUT")  # seconds per attempt
    license_validation_deadline: float = Field(default=20.0, validation_alias="LICENSE_VALIDATION_DEADLINE")  # whole retry sequence
    license_max_retries: int = Field(default=3, validation_alias="LICENSE_MAX_RETRIES")
    license_retry_base_delay: float = Field(default=1.0, validation_alias="LICENSE_RETRY_BASE_DELAY")
    license_retry_backoff_factor: float = Field(default=2.0, validation_alias="LICENSE_RETRY_BACKOFF_FACTOR")
    license_retry_max_delay: float = Field(default=8.0, validation_alias="LICENSE_RETRY_MAX_DELAY")
    machine_id: Optional[str] = Field(default=None, validation_alias="MACHINE_ID")

    # License validation cache
    license_cache_ttl: int = Field(default=900, validation_alias="LICENSE_CACHE_TTL")  # 15 minutes
    license_offline_grace: int = Field(default=3600, validation_alias="LICENSE_OFFLINE_GRACE")  # 1 hour
    license_cache_max_entries: int = Field(default=10000, validation_alias="LICENSE_CACHE_MAX_ENTRIES")
    module_license_cache_ttl: int = Field(default=300, validation_alias="MODULE_LICENSE_CACHE_TTL")  # 5 minutes

    # Paths that never go through license validation
    license_skip_paths: List[str] = Field(
        default=[
            "/api/platform",
            "/health",
            "/metrics",
            "/docs",
            "/openapi.json",
        ],
        validation_alias="LICENSE_SKIP_PATHS"
    )

    # Rate limiting for license checks
    license_rate_limit_window: int = Field(default=60, validation_alias="LICENSE_RATE_LIMIT_WINDOW")
    license_rate_limit_max_requests: int = Field(default=100, validation_alias="LICENSE_RATE_LIMIT_MAX_REQUESTS")
    license_authority_calls_per_window: int = Field(default=60, validation_alias="LICENSE_AUTHORITY_CALLS_PER_WINDOW")

    # Usage limits
    usage_warning_percentage: int = Field(default=80, validation_alias="USAGE_WARNING_PERCENTAGE")

    # Background jobs
    maintenance_sweep_interval: int = Field(default=300, validation_alias="MAINTENANCE_SWEEP_INTERVAL")  # 5 minutes
    background_validation_enabled: bool = Field(default=True, validation_alias="BACKGROUND_VALIDATION_ENABLED")
    background_validation_interval: int = Field(default=600, validation_alias="BACKGROUND_VALIDATION_INTERVAL")

    # Attack pattern analysis
    attack_analysis_enabled: bool = Field(default=True, validation_alias="ATTACK_ANALYSIS_ENABLED")
    attack_events_per_key: int = Field(default=200, validation_alias="ATTACK_EVENTS_PER_KEY")
    violation_store_max_items: int = Field(default=1000, validation_alias="VIOLATION_STORE_MAX_ITEMS")

    brute_force_failed_attempts: int = Field(default=10, validation_alias="BRUTE_FORCE_FAILED_ATTEMPTS")
    brute_force_critical_attempts: int = Field(default=20, validation_alias="BRUTE_FORCE_CRITICAL_ATTEMPTS")
    brute_force_unique_usernames: int = Field(default=5, validation_alias="BRUTE_FORCE_UNIQUE_USERNAMES")
    brute_force_password_variations: int = Field(default=10, validation_alias="BRUTE_FORCE_PASSWORD_VARIATIONS")
    brute_force_window: int = Field(default=900, validation_alias="BRUTE_FORCE_WINDOW")  # 15 minutes
    brute_force_lockout: int = Field(default=3600, validation_alias="BRUTE_FORCE_LOCKOUT")  # 1 hour

    credential_stuffing_attempts: int = Field(default=50, validation_alias="CREDENTIAL_STUFFING_ATTEMPTS")
    credential_stuffing_unique_pairs: int = Field(default=20, validation_alias="CREDENTIAL_STUFFING_UNIQUE_PAIRS")
    credential_stuffing_success_rate: float = Field(default=0.05, validation_alias="CREDENTIAL_STUFFING_SUCCESS_RATE")
    credential_stuffing_distributed_ips: int = Field(default=3, validation_alias="CREDENTIAL_STUFFING_DISTRIBUTED_IPS")
    credential_stuffing_window: int = Field(default=3600, validation_alias="CREDENTIAL_STUFFING_WINDOW")  # 1 hour

    session_lifetime: int = Field(default=86400, validation_alias="SESSION_LIFETIME")  # 24 hours
    session_ip_window: int = Field(default=3600, validation_alias="SESSION_IP_WINDOW")
    session_abuse_sessions: int = Field(default=10, validation_alias="SESSION_ABUSE_SESSIONS")
    session_abuse_users: int = Field(default=5, validation_alias="SESSION_ABUSE_USERS")
    session_cross_tenant_count: int = Field(default=3, validation_alias="SESSION_CROSS_TENANT_COUNT")

    coordinated_min_ips: int = Field(default=4, validation_alias="COORDINATED_MIN_IPS")
    coordinated_min_tenants: int = Field(default=5, validation_alias="COORDINATED_MIN_TENANTS")
    coordinated_window: int = Field(default=1800, validation_alias="COORDINATED_WINDOW")  # 30 minutes
    coordinated_similarity_threshold: float = Field(default=0.7, validation_alias="COORDINATED_SIMILARITY_THRESHOLD")
    coordinated_sync_variance_ratio: float = Field(default=0.1, validation_alias="COORDINATED_SYNC_VARIANCE_RATIO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)


# Global settings instance
settings = Settings()
