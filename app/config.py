"""
Application Configuration
Loads settings from environment variables with validation
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================
    # Application Settings
    # ============================================
    app_name: str = "ComplianceManager"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # ============================================
    # Server Settings
    # ============================================
    host: str = "0.0.0.0"
    port: int = 8000

    # ============================================
    # Compliance Backend
    # ============================================
    compliance_api_base_url: str = "http://localhost:3333/api"
    compliance_api_token: str = ""

    # ============================================
    # Xero OAuth (client-side fallback only)
    # ============================================
    xero_client_id: str = ""
    xero_redirect_uri: str = "http://localhost:3001/redirecturl"
    xero_scopes: str = "offline_access accounting.transactions accounting.contacts accounting.settings"
    oauth_state_lifetime_minutes: int = 10

    # ============================================
    # Timeouts & Backpressure
    # ============================================
    authorization_url_timeout_seconds: float = 10.0
    settings_timeout_seconds: float = 5.0
    status_refresh_cooldown_seconds: float = 10.0
    resource_request_delay_seconds: float = 0.5

    # ============================================
    # Demo Mode
    # ============================================
    demo_tenant_id: str = "a1b2c3d4-e5f6-7890-1234-567890abcdef"
    demo_tenant_name: str = "Demo Company (AU)"

    # ============================================
    # Table Rendering
    # ============================================
    max_table_columns: int = 8
    max_key_value_fields: int = 12

    # ============================================
    # Tax Calculations
    # ============================================
    fbt_rate: float = 0.47

    # ============================================
    # CORS Settings
    # ============================================
    cors_origins: str = "http://localhost:3000,http://localhost:3001,http://localhost:5173"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def xero_scopes_list(self) -> List[str]:
        """Parse Xero scopes string into a list."""
        return [scope.strip() for scope in self.xero_scopes.split()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid loading .env file on every call.
    """
    return Settings()


# Export a default settings instance for convenience
settings = get_settings()
