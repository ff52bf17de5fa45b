"""Configuration management."""

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.version import ExchangeVersion


class Settings(BaseSettings):
    """Client settings, read from the environment or a ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Exchange endpoint
    ews_server_url: str = Field(..., description="EWS endpoint, host name or server URL")
    ews_email: str = Field(..., description="Primary SMTP address of the mailbox")
    ews_server_version: ExchangeVersion = Field(
        default=ExchangeVersion.EXCHANGE_2013_SP1,
        description="Requested server version sent with every request"
    )

    # Authentication
    ews_auth_type: Literal["basic", "ntlm", "oauth2"] = "ntlm"
    ews_username: Optional[str] = None
    ews_password: Optional[str] = None
    ews_access_token: Optional[str] = None

    # HTTP
    request_timeout: float = Field(default=120, gt=0)
    connection_pool_size: int = Field(default=10, ge=1)
    verify_ssl: bool = True

    # Time zone used to interpret naive datetimes
    timezone: str = "UTC"

    # Streaming notifications
    heartbeat_interval: float = Field(default=45.0, description="Seconds without data before a stream is dropped")
    streaming_connection_timeout: int = Field(default=30, description="Lifetime of one streaming connection, minutes")

    # Logging
    configure_logging: bool = Field(
        default=False,
        description="Install console and rotating file handlers on the root logger when the service is created"
    )
    log_level: str = "INFO"
    log_dir: str = "logs"
    trace_enabled: bool = False

    @field_validator("ews_server_url")
    @classmethod
    def normalize_server_url(cls, value: str) -> str:
        """
        Accept a full endpoint, a server URL or a bare host name.

        ``https://mail.company.com/EWS/Exchange.asmx``, ``https://mail.company.com``
        and ``mail.company.com`` all resolve to the full endpoint URL.
        """
        value = value.strip()
        if not value:
            raise ValueError("EWS_SERVER_URL must not be empty")
        if value.endswith("/EWS/Exchange.asmx"):
            return value
        if "/EWS/" in value:
            if value.endswith(".asmx"):
                return value
            return value.rstrip("/") + "/Exchange.asmx"
        scheme = "http" if value.startswith("http://") else "https"
        server = value.replace("https://", "").replace("http://", "").rstrip("/")
        return f"{scheme}://{server}/EWS/Exchange.asmx"

    @field_validator("heartbeat_interval")
    @classmethod
    def validate_heartbeat_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("heartbeat_interval must be positive")
        return value

    @field_validator("streaming_connection_timeout")
    @classmethod
    def validate_streaming_connection_timeout(cls, value: int) -> int:
        if not 1 <= value <= 30:
            raise ValueError("streaming_connection_timeout must be between 1 and 30 minutes")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value
