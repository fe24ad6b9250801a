"""Configuration settings for the docs crawler service."""

from typing import Annotated, List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import ConfigurationError


class CrawlerConfig(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOCS_CRAWLER_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    SERVICE_NAME: str = "docs-crawler"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Job defaults
    DEFAULT_MAX_DEPTH: int = Field(default=3, ge=0)
    DEFAULT_MAX_PAGES: int = Field(default=500, ge=1)
    DEFAULT_CONCURRENCY: int = Field(default=2, ge=1)
    DEFAULT_MAX_RETRIES: int = Field(default=3, ge=0)

    # Batch defaults
    BATCH_DEFAULT_MAX_DEPTH: int = 5
    BATCH_DEFAULT_MAX_PAGES: int = 500

    # Retry / timeouts (seconds)
    RETRY_BASE_DELAY: float = 1.0
    HTTP_REQUEST_TIMEOUT: float = 10.0
    PAGE_TIMEOUT: float = 90.0
    NAVIGATION_TIMEOUT: float = 30.0
    PAGE_LOAD_TIMEOUT: float = 60.0
    ACTION_TIMEOUT: float = 15.0

    # Browser
    BROWSER_TYPE: str = "chromium"
    BROWSER_HEADLESS: bool = True
    READY_SELECTORS: Annotated[List[str], NoDecode] = ["body"]
    BLOCKED_RESOURCE_TYPES: Annotated[List[str], NoDecode] = ["image", "stylesheet", "font", "media"]
    USER_AGENT: str = "DocsCrawler/1.0"

    # Job bookkeeping
    JOB_RETENTION_DAYS: int = 7
    SWEEP_INTERVAL: float = 3600.0
    BATCH_POLL_INTERVAL: float = 1.0

    # Storage
    REDIS_URL: Optional[str] = None
    DOCUMENT_STORE_PATH: str = "./data/documents"
    SOURCE_REGISTRY_PATH: str = "./data/sources.json"

    @field_validator("READY_SELECTORS", "BLOCKED_RESOURCE_TYPES", mode="before")
    @classmethod
    def parse_comma_list(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("BROWSER_TYPE")
    @classmethod
    def check_browser_type(cls, v: str) -> str:
        if v not in ("chromium", "firefox", "webkit"):
            raise ValueError(f"Unknown browser type: {v}")
        return v


def load_config(**overrides) -> CrawlerConfig:
    """Read settings from the environment, raising ConfigurationError when invalid."""
    try:
        return CrawlerConfig(**overrides)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid crawler configuration",
            {"errors": [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]}
        ) from e
