import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # GitHub credentials (never logged)
    github_token: str = Field(default="", alias="GH_TOKEN")
    github_token_fallback: str = Field(default="", alias="GITHUB_TOKEN")
    enterprise_token: str = Field(default="", alias="GH_ENTERPRISE_TOKEN")

    # Remote client
    default_host: str = Field(default="github.com", alias="GHBOARD_HOST")
    request_timeout: float = Field(default=30.0, alias="GHBOARD_REQUEST_TIMEOUT")

    # Cache
    cache_ttl_minutes: int = Field(default=10, alias="GHBOARD_CACHE_TTL")
    cache_max_size: int = Field(default=500, alias="GHBOARD_CACHE_MAX_SIZE")

    # Background refresh
    refresh_interval_minutes: int = Field(
        default=10, ge=1, alias="GHBOARD_REFRESH_INTERVAL"
    )
    refresh_stagger_seconds: int = Field(default=15, alias="GHBOARD_REFRESH_STAGGER")
    refresh_jitter_seconds: int = Field(default=5, alias="GHBOARD_REFRESH_JITTER")
    rate_limit_low_water: int = Field(
        default=100, alias="GHBOARD_RATE_LIMIT_LOW_WATER"
    )
    max_ephemeral_tabs: int = Field(default=5, alias="GHBOARD_MAX_EPHEMERAL_TABS")

    debug: bool = Field(default=False, alias="GHBOARD_DEBUG")


global_settings = Settings.model_validate(dict(os.environ))
