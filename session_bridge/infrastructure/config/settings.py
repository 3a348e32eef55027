"""
Unified Configuration Settings - Single Source of Truth
=======================
All application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings
from pydantic import AliasChoices, Field, field_validator
from typing import List
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# === DOCUMENT STORE CONFIGURATION ===

class StoreSettings(BaseSettings):
    """Document store holding the persisted session record"""
    url: str = Field(default="", description="MongoDB connection string (never logged un-redacted)")
    database: str = Field(default="helpdesk", description="Database name used when the URL has none")
    collection: str = Field(default="whatsapp-sessions", description="Collection holding the session record")
    session_name: str = Field(default="whatsapp-support-bot", description="Fixed _id of the session record")
    server_selection_timeout_ms: int = Field(default=15000)
    socket_timeout_ms: int = Field(default=45000)
    archive_collections: List[str] = Field(
        default_factory=lambda: [
            "whatsapp-RemoteAuth-whatsapp-support-bot.files",
            "whatsapp-RemoteAuth-whatsapp-support-bot.chunks",
        ],
        description="Transport archive collections dropped by administrative cleanup"
    )

    class Config:
        env_prefix = "MONGO_"


# === AUTOMATION CLIENT CONFIGURATION ===

class ClientSettings(BaseSettings):
    """Automation client (transport) configuration"""
    client_id: str = Field(default="whatsapp-support-bot")
    data_path: str = Field(default="./whatsapp-session", description="Local session directory used by the transport")
    backup_sync_interval_ms: int = Field(default=300000, description="Transport's own periodic session sync")
    transport_factory: str = Field(default="", description="Import path 'module:callable' of the transport factory")
    qr_expiry_minutes: int = Field(default=2, description="QR codes expire after this many minutes")
    archive_marker: str = Field(default="RemoteAuth", description="Marker in temporary session-archive file names")

    @field_validator('transport_factory')
    @classmethod
    def validate_factory_path(cls, v):
        if v and ':' not in v:
            raise ValueError(f"Invalid transport factory '{v}'. Expected format: 'package.module:callable'")
        return v

    class Config:
        env_prefix = "CLIENT_"


# === HEALTH MONITOR CONFIGURATION ===

class HealthSettings(BaseSettings):
    """Periodic health probe and shutdown timing"""
    interval_minutes: float = Field(default=10.0, description="Minutes between health cycles")
    final_flush_wait_seconds: float = Field(default=2.0, description="Bounded wait for the final flush on shutdown")
    recovery_backoff_max_cycles: int = Field(
        default=0,
        description="Max cycles skipped between failed recoveries (0 = retry every cycle)"
    )

    @field_validator('interval_minutes', 'final_flush_wait_seconds')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    class Config:
        env_prefix = "HEALTH_"


# === HTTP API CONFIGURATION ===

class ApiSettings(BaseSettings):
    """Administrative HTTP surface"""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    admin_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("admin_api_key", "API_ADMIN_API_KEY", "ADMIN_API_KEY"),
        description="Bearer token required by administrative endpoints"
    )

    class Config:
        env_prefix = "API_"


# === TICKETING CONFIGURATION ===

class TicketingSettings(BaseSettings):
    """Ticketing backend the intake flow files tickets into"""
    url: str = Field(default="")
    api_key: str = Field(default="")

    class Config:
        env_prefix = "OSTICKET_"


class DeploymentSettings(BaseSettings):
    """Deployment metadata reported by /status"""
    environment: str = Field(default="development")
    deployment_id: str = Field(default="local")
    build_id: str = Field(default="development")

    class Config:
        env_prefix = "DEPLOY_"


# === LOGGING CONFIGURATION ===

class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: LogLevel = Field(default=LogLevel.INFO)
    file_enabled: bool = Field(default=False)
    console_enabled: bool = Field(default=True)
    structured_logging: bool = Field(default=True)
    log_dir: str = Field(default="logs")
    max_file_size_mb: int = Field(default=100)
    backup_count: int = Field(default=5)

    class Config:
        env_prefix = "LOG_"


# === MAIN APPLICATION SETTINGS ===

class AppSettings(BaseSettings):
    """Main application settings - Single Source of Truth"""

    app_name: str = Field(default="Helpdesk Session Bridge")
    version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    store: StoreSettings = Field(default_factory=StoreSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    ticketing: TicketingSettings = Field(default_factory=TicketingSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"  # Allows HEALTH__INTERVAL_MINUTES=5
        case_sensitive = False
        extra = "ignore"


# Required for a fully working deployment; reported (not enforced) by /status
REQUIRED_SETTINGS = {
    "MONGO_URL": lambda s: s.store.url,
    "API_ADMIN_API_KEY": lambda s: s.api.admin_api_key,
    "OSTICKET_URL": lambda s: s.ticketing.url,
    "OSTICKET_API_KEY": lambda s: s.ticketing.api_key,
}


def find_missing_settings(settings: AppSettings) -> List[str]:
    """List required settings that are not configured."""
    return [name for name, getter in REQUIRED_SETTINGS.items() if not getter(settings)]

