from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigServiceSettings(BaseSettings):
    """Settings of the config manager service itself, read from PROXY_CONFIG_* env vars."""
    model_config = SettingsConfigDict(env_prefix="PROXY_CONFIG_")

    # Option sources
    CONFIG_FILE: Optional[str] = None
    ENV_FILE: Optional[str] = None
    WATCH_CONFIG: bool = True

    # Seconds each subscriber gets to apply a snapshot, unbounded when unset
    SUBSCRIBER_TIMEOUT: Optional[float] = None

    # Pins the service log level, otherwise each snapshot's log_level applies
    LOG_LEVEL: Optional[str] = None

    # API settings
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
