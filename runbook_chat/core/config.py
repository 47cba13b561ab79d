"""
Application configuration loaded from environment variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runbook chat server configuration."""

    model_config = SettingsConfigDict(env_prefix="RBC_", env_file=".env", extra="ignore")

    # Document store
    data_dir: str = "./data"

    # Session tokens
    token_format: Literal["transparent", "jwt"] = "transparent"
    token_ttl_hours: int = 24
    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    jwt_algorithm: str = "HS256"

    # Access control
    admin_role: str = "org_admin"
    tenant_bypass_roles: list[str] = []

    # Realtime
    liveness_probe_interval_seconds: float = 30.0
    liveness_timeout_seconds: float = 90.0
    outbox_max_size: int = 1000
    close_replaced_sessions: bool = True

    # Message history
    message_page_size: int = 50
    message_page_max: int = 100

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    debug: bool = False

    # CORS
    cors_origins: list[str] = ["http://localhost:5173"]

    # Logging
    log_level: str = "info"
    log_format: Literal["json", "text"] = "json"

    @property
    def token_ttl_ms(self) -> int:
        return self.token_ttl_hours * 60 * 60 * 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()
