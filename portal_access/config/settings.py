from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for writing audit rows on behalf of the platform

    # Scope transitions
    entry_intent_ttl_seconds: int = 30

    # Session continuity (defaults; per-user preferences override idle timeout)
    inactivity_timeout_minutes: int = 30
    warning_countdown_minutes: int = 2
    absolute_session_hours: int = 8
    auth_grace_period_seconds: int = 60

    # Identity cache
    session_cache_ttl_seconds: int = 60
    session_cache_max_size: int = 500

    # In-memory registries: idle tab storage and signed-out continuity guards are pruned after these
    tab_storage_idle_seconds: int = 28800
    expired_guard_retention_seconds: int = 300

    # Audit sink
    audit_sink_critical: bool = False

    # App
    app_name: str = "portal-access"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
