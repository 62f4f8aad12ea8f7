"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]

DEFAULT_LLM_MODEL = "moonshotai/kimi-k2.5"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "fromscreen"
    app_env: str = "dev"
    database_url: str = ""
    llm_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = ""
    llm_timeout_s: float = Field(default=60.0, ge=0.5)
    llm_max_duration_s: float = Field(default=300.0, ge=1.0)
    site_url: str = "http://localhost:3000"
    site_title: str = "fromscreen.dev"
    quota_capacity: int = Field(default=5, ge=1)
    quota_refill_rate: int = Field(default=5, ge=1)
    quota_interval_s: int = Field(default=86400, ge=1)
    session_cookie_name: str = "session_id"
    session_cookie_max_age_s: int = Field(default=60 * 60 * 24 * 30, ge=60)
    # Unset means secure cookies in production only.
    session_cookie_secure: bool | None = None
    format_print_width: int = Field(default=120, ge=40)
    format_indent_width: int = Field(default=2, ge=1)
    history_limit: int = Field(default=50, ge=1, le=500)
    stream_emit_timeout_s: float = Field(default=30.0, ge=0.1)

    model_config = SettingsConfigDict(
        env_prefix="FROMSCREEN_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_llm_api_key(self) -> str:
        return self.llm_api_key or os.getenv("OPENROUTER_API_KEY", "")

    def resolved_session_cookie_secure(self) -> bool:
        if self.session_cookie_secure is not None:
            return self.session_cookie_secure
        return self.app_env.strip().lower() == "production"

    def resolved_llm_model(self) -> str:
        """Configured model id, or the default when unset or blank."""
        return self.llm_model.strip() or DEFAULT_LLM_MODEL


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
