"""Centralized configuration using pydantic-settings."""

import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings

from src.exceptions import ConfigError, PromptTemplateError

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_PATH = "prompts/newsletter-edition.md"

# Number of most recent editions regenerated in last-N mode
LAST_N_EDITION_COUNT = 3

# Pause between users to stay under the Gemini rate limit
INTER_USER_DELAY_SECONDS = 10.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase (service role, the worker bypasses RLS)
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Gemini API for newsletter and subject line generation
    gemini_api_key: str = ""
    gemini_model_name: str = "gemini-2.5-flash"

    # Edition worker
    edition_worker_enabled: bool = True
    edition_lookback_hours: int = 24
    edition_worker_l10: bool = False
    edition_worker_l10_count: int = LAST_N_EDITION_COUNT
    subj_line_test: bool = False
    subj_line_test_count: int = 5
    edition_prompt_path: str = DEFAULT_PROMPT_PATH
    edition_inter_user_delay_seconds: float = INTER_USER_DELAY_SECONDS

    # "test" disables inter-user pacing
    app_env: str = "production"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()


@dataclass(frozen=True)
class EditionWorkerConfig:
    """Configuration for one run of the newsletter edition worker."""

    lookback_hours: int
    last10_mode: bool
    prompt_path: str = DEFAULT_PROMPT_PATH
    last10_count: int = LAST_N_EDITION_COUNT
    subj_line_test: bool = False
    subj_line_test_count: int = 5
    inter_user_delay_seconds: float = INTER_USER_DELAY_SECONDS
    environment: str = "production"

    @property
    def mode(self) -> str:
        if self.last10_mode:
            return "L10_TESTING"
        if self.subj_line_test:
            return "SUBJECT_LINE_TEST"
        return "NORMAL"

    @property
    def pacing_enabled(self) -> bool:
        return self.environment != "test" and self.inter_user_delay_seconds > 0


def load_edition_worker_config(source: Settings | None = None) -> EditionWorkerConfig:
    """Build and validate an EditionWorkerConfig from settings.

    Raises:
        ConfigError: If a value is out of range, both test modes are enabled,
            the Gemini key is missing, or the prompt template is unusable.
    """
    from src.prompt_builder import load_prompt_template

    s = source or settings

    if not 1 <= s.edition_lookback_hours <= 168:
        raise ConfigError(
            f"Invalid EDITION_LOOKBACK_HOURS: {s.edition_lookback_hours}. "
            "Must be a number between 1 and 168 (hours)."
        )
    if not 1 <= s.edition_worker_l10_count <= 10:
        raise ConfigError(
            f"Invalid EDITION_WORKER_L10_COUNT: {s.edition_worker_l10_count}. "
            "Must be a number between 1 and 10."
        )
    if not 1 <= s.subj_line_test_count <= 100:
        raise ConfigError(
            f"Invalid SUBJ_LINE_TEST_COUNT: {s.subj_line_test_count}. "
            "Must be a number between 1 and 100."
        )
    if s.edition_worker_l10 and s.subj_line_test:
        raise ConfigError(
            "Cannot enable both EDITION_WORKER_L10 and SUBJ_LINE_TEST at the same time. "
            "Please choose one testing mode."
        )
    if s.edition_inter_user_delay_seconds < 0:
        raise ConfigError("EDITION_INTER_USER_DELAY_SECONDS must not be negative")

    if not s.gemini_api_key.strip():
        raise ConfigError("GEMINI_API_KEY environment variable is required but not set.")
    if not s.gemini_api_key.startswith("AIza"):
        logger.warning("GEMINI_API_KEY does not start with 'AIza', it may not be a valid Google API key.")

    try:
        load_prompt_template(s.edition_prompt_path)
    except PromptTemplateError as e:
        raise ConfigError(f"Invalid edition prompt configuration: {e}") from e

    return EditionWorkerConfig(
        lookback_hours=s.edition_lookback_hours,
        last10_mode=s.edition_worker_l10,
        prompt_path=s.edition_prompt_path,
        last10_count=s.edition_worker_l10_count,
        subj_line_test=s.subj_line_test,
        subj_line_test_count=s.subj_line_test_count,
        inter_user_delay_seconds=s.edition_inter_user_delay_seconds,
        environment=s.app_env,
    )


def config_summary(config: EditionWorkerConfig) -> dict:
    """Loggable view of the worker configuration (no secrets)."""
    return {
        "mode": config.mode,
        "lookback_hours": config.lookback_hours,
        "last10_mode": config.last10_mode,
        "last10_count": config.last10_count,
        "subj_line_test": config.subj_line_test,
        "subj_line_test_count": config.subj_line_test_count,
        "prompt_path": str(Path(config.prompt_path)),
        "inter_user_delay_seconds": config.inter_user_delay_seconds,
        "gemini_api_key_configured": bool(settings.gemini_api_key),
    }
