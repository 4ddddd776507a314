"""
clawgate settings, read from the environment or a local .env file.

DATABASE_URL points at the credential store (async SQLAlchemy URL) and
RATE_LIMIT_STORAGE_URI at the limits backend. API keys themselves never
appear here; only their digests live in the store.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field
from typing import List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Credential store (async SQLAlchemy URL)
    database_url: str = Field(
        default="sqlite+aiosqlite:///data/clawgate.db",
        validation_alias=AliasChoices("DATABASE_URL", "CLAWGATE_DATABASE_URL"),
    )

    # Rate limiting backend, any `limits` storage URI (memory://, redis://...)
    rate_limit_storage_uri: str = "memory://"

    # Browser sessions
    session_cookie_name: str = "lc_session"

    # CORS
    allowed_origins: str = "http://localhost:3000"

    log_level: str = "INFO"

    @property
    def origins_list(self) -> List[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


settings = Settings()
