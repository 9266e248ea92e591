import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from hairlab.errors import ConfigurationError

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_DIAGNOSIS_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str
    gemini_base_url: str = DEFAULT_BASE_URL
    diagnosis_model: str = DEFAULT_DIAGNOSIS_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    retry_limit: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0
    retry_transient_only: bool = False
    request_timeout_seconds: float = 300.0
    fetch_timeout_seconds: float = 60.0
    session_ttl_seconds: int = 3600
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment, reading a local .env first."""
        load_dotenv()

        api_key = os.getenv("GEMINI_API_KEY", "").strip()
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set")

        return cls(
            gemini_api_key=api_key,
            gemini_base_url=os.getenv("GEMINI_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            diagnosis_model=os.getenv("DIAGNOSIS_MODEL", DEFAULT_DIAGNOSIS_MODEL),
            image_model=os.getenv("IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
            retry_limit=_env_number("RETRY_LIMIT", 3, int),
            retry_base_delay=_env_number("RETRY_BASE_DELAY", 1.0, float),
            retry_max_delay=_env_number("RETRY_MAX_DELAY", 8.0, float),
            retry_transient_only=_env_flag("RETRY_TRANSIENT_ONLY", False),
            request_timeout_seconds=_env_number("REQUEST_TIMEOUT_SECONDS", 300.0, float),
            fetch_timeout_seconds=_env_number("FETCH_TIMEOUT_SECONDS", 60.0, float),
            session_ttl_seconds=_env_number("SESSION_TTL_SECONDS", 3600, int),
            log_level=_env_log_level("LOG_LEVEL", "INFO"),
        )


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be true or false, got {raw!r}")


def _env_log_level(name: str, default: str) -> str:
    level = os.getenv(name, "").strip().upper() or default
    # getLevelName maps known names to their number and echoes unknown ones back
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigurationError(f"{name} must be a logging level name, got {level!r}")
    return level


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
