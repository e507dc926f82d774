from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    port: int = 3000

    # Application URLs
    public_url: str = ""
    allowed_origins: list[str] = Field(default_factory=list)

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _parse_origin_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    @field_validator("public_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    # Admin API security
    admin_key: str = ""

    # Platform application credentials
    client_id: str = ""
    client_secret: str = ""
    oauth_base_url: str = "https://id.twitch.tv/oauth2"
    helix_base_url: str = "https://api.twitch.tv/helix"
    http_timeout_seconds: float = 10.0

    # Event stream
    eventsub_enabled: bool = True
    eventsub_ws_url: str = "wss://eventsub.wss.twitch.tv/ws"
    eventsub_reconnect_delay_seconds: float = 1.5

    # Persistence
    store_backend: Literal["file", "relational", "hosted"] = "file"
    karma_data_path: str = "data/karma.json"
    database_url: str = "sqlite+aiosqlite:///./karma.db"
    supabase_url: str | None = None
    supabase_key: str | None = None

    # Ledger bounds and reward mapping
    karma_min: Decimal = Decimal("-5")
    karma_max: Decimal = Decimal("5")
    reward_map_json: str | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.karma_min > self.karma_max:
            raise ValueError("karma_min must not exceed karma_max")
        return self

    @property
    def base_url(self) -> str:
        return self.public_url or f"http://localhost:{self.port}"

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.base_url}/api/v1/auth/callback"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
