from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "vault-pki-fetch"
    LOG_LEVEL: str = "WARNING"

    # PKI backend
    VAULT_ADDR: Optional[str] = None
    VAULT_CACERT: Optional[str] = None
    VAULT_TIMEOUT: Optional[float] = None  # None = wait forever

    # Issuance defaults
    DEFAULT_TTL: str = "8760h"

    # Telemetry (console exporters for logs, spans and metrics)
    TELEMETRY_CONSOLE_EXPORT: bool = False


settings = Settings()
