"""
Centralized configuration management for the access core.

Pydantic Settings groups, each loaded from the environment (and .env),
aggregated into a single Settings object.

Usage:
    from access_core.config import get_settings

    settings = get_settings()
    if settings.rbac.enforce_last_admin:
        ...
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvSettings(BaseSettings):
    """Reads the process environment, then .env; unknown keys are ignored."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# =============================================================================
# Database Settings (Supabase)
# =============================================================================


class DatabaseSettings(EnvSettings):
    """Configuration for the Supabase-backed stores."""

    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL",
    )
    supabase_key: Optional[SecretStr] = Field(
        default=None,
        description="Supabase anon/public key",
    )
    supabase_service_role_key: Optional[SecretStr] = Field(
        default=None,
        alias="supabase_service_key",
        description="Supabase service role key (server-side writes)",
    )

    @property
    def is_configured(self) -> bool:
        """Check if Supabase is properly configured."""
        return bool(self.supabase_url and (self.supabase_key or self.supabase_service_role_key))

    @property
    def api_key(self) -> Optional[str]:
        """Service role key if present, else the public key."""
        secret = self.supabase_service_role_key or self.supabase_key
        return secret.get_secret_value() if secret else None


# =============================================================================
# Security Settings
# =============================================================================


class SecuritySettings(EnvSettings):
    """Configuration for request identity and CORS."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    dev_mode: bool = Field(
        default=False,
        description="Accept user_id query parameter on the websocket channel",
    )
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed CORS origins",
    )
    trusted_user_header: str = Field(
        default="X-User-ID",
        description="Header carrying the user id verified by the identity provider",
    )
    tenant_header: str = Field(
        default="X-Tenant-ID",
        description="Header carrying the caller's active tenant",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def origins_list(self) -> List[str]:
        """Get parsed list of allowed origins."""
        return [
            origin.strip()
            for origin in self.allowed_origins.split(",")
            if origin.strip()
        ]


# =============================================================================
# RBAC Policy Settings
# =============================================================================


class RbacSettings(EnvSettings):
    """Policy flags for membership and tenant lifecycle operations."""

    enforce_last_admin: bool = Field(
        default=True,
        description="Reject removing or demoting the last active company admin",
    )
    allow_self_demotion: bool = Field(
        default=False,
        description="Allow an admin to change or remove their own membership",
    )
    self_service_tenant_creation: bool = Field(
        default=True,
        description="Allow any authenticated user to create a company",
    )


# =============================================================================
# Audit Settings
# =============================================================================


class AuditSettings(EnvSettings):
    """Configuration for the audit log."""

    audit_mirror_size: int = Field(
        default=1000,
        ge=0,
        description="Entries kept in the in-memory mirror of recent appends",
    )
    audit_default_query_limit: int = Field(
        default=100,
        ge=1,
        description="Page size when a query does not specify one",
    )
    audit_max_query_limit: int = Field(
        default=500,
        ge=1,
        description="Largest page size a query may request",
    )
    audit_outbox_max_size: int = Field(
        default=10000,
        ge=0,
        description="Failed appends kept for retry before the oldest are dropped",
    )
    audit_cascade_on_tenant_delete: bool = Field(
        default=True,
        description="Delete a tenant's audit entries when the tenant is deleted",
    )


# =============================================================================
# Realtime Settings
# =============================================================================


class RealtimeSettings(EnvSettings):
    """Configuration for the propagation channel and the session cache."""

    realtime_ws_path: str = Field(
        default="/api/live",
        description="Path of the propagation websocket",
    )
    realtime_reconnect_interval: float = Field(
        default=3.0,
        gt=0,
        description="Seconds between client reconnect attempts",
    )
    permission_cache_ttl: float = Field(
        default=60.0,
        gt=0,
        description="Seconds a cached permission set stays valid on the client",
    )


# =============================================================================
# Notification Settings
# =============================================================================


class NotificationSettings(EnvSettings):
    """Configuration for the outbound email relay."""

    email_relay_url: Optional[str] = Field(
        default=None,
        description="HTTP endpoint that accepts outbound email jobs",
    )
    email_relay_token: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token for the email relay",
    )
    email_from: str = Field(
        default="noreply@buildpro.app",
        description="Sender address for invitations and welcome mail",
    )
    app_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used in invitation links",
    )
    email_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout in seconds for relay requests",
    )

    @property
    def is_configured(self) -> bool:
        """Check if an email relay is configured."""
        return bool(self.email_relay_url)


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(EnvSettings):
    """Configuration for logging."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format_json: bool = Field(
        default=False,
        description="Force JSON log format in development",
    )
    request_logging_enabled: bool = Field(
        default=True,
        description="Enable request logging middleware",
    )


# =============================================================================
# Monitoring Settings (Sentry)
# =============================================================================


class SentrySettings(EnvSettings):
    """Configuration for Sentry error tracking."""

    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment name",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry transaction sample rate (0.0 to 1.0)",
    )
    sentry_release: Optional[str] = Field(
        default="buildpro-access@1.0.0",
        description="Sentry release version",
    )

    @property
    def is_configured(self) -> bool:
        """Check if Sentry is configured."""
        return bool(self.sentry_dsn)


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(EnvSettings):
    """Aggregates all configuration groups."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    rbac: RbacSettings = Field(default_factory=RbacSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    @property
    def is_supabase_configured(self) -> bool:
        """Check if the Supabase stores can be used."""
        return self.database.is_configured

    @property
    def is_sentry_configured(self) -> bool:
        """Check if Sentry error tracking is available."""
        return self.sentry.is_configured

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.security.is_production

    def get_config_summary(self) -> dict:
        """
        Get a summary of configuration status for logging.

        Never includes secrets.
        """
        return {
            "environment": self.security.environment,
            "dev_mode": self.security.dev_mode,
            "supabase_configured": self.is_supabase_configured,
            "sentry_configured": self.is_sentry_configured,
            "email_relay_configured": self.notifications.is_configured,
            "enforce_last_admin": self.rbac.enforce_last_admin,
            "allow_self_demotion": self.rbac.allow_self_demotion,
            "self_service_tenant_creation": self.rbac.self_service_tenant_creation,
            "audit_cascade_on_tenant_delete": self.audit.audit_cascade_on_tenant_delete,
            "realtime_ws_path": self.realtime.realtime_ws_path,
            "allowed_origins": self.security.origins_list,
            "log_level": self.logging.log_level,
        }


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Call get_settings.cache_clear() (or reload_settings()) to reload.
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from the environment."""
    get_settings.cache_clear()
    return get_settings()
