"""Simplified configuration management."""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field


def _load_env_file() -> None:
    """Load .env from root directory if present."""
    env_path = Path(__file__).parent.parent / ".env"
    if not env_path.is_file():
        return
    try:
        for line in env_path.read_text(encoding="utf-8").splitlines():
            stripped = line.strip()
            if stripped and not stripped.startswith("#") and "=" in stripped:
                key, value = stripped.split("=", 1)
                key, value = key.strip(), value.strip().strip("'\"")
                if key and value and key not in os.environ:
                    os.environ[key] = value
    except Exception:
        pass


_load_env_file()


DEFAULT_APP_NAME = "Synopsis Keeper"
DEFAULT_APP_VERSION = "0.1.0"

DEFAULT_SCRIPTWRITER_PROMPT = """Based on the current situation, generate a story synopsis for what happens next.
User's preference for this synopsis: {{user_demand}}
{{old_synopsis_reference}}
The synopsis should outline the key events and story beats that will unfold, without spoiling specific details.
Focus on creating an engaging narrative that suits the characters and setting."""

DEFAULT_INJECTION_TEMPLATE = """The following is a story outline invisible to {{user}}. You should guide them through this story without spoilers.
Synopsis: {{synopsis}}
If the user shows signs of deviating from the story or the current synopsis has been completed, insert <end of current synopsis> in your response as a marker."""


def _env_int(name: str, fallback: int) -> int:
    try:
        return int(os.getenv(name, str(fallback)))
    except (TypeError, ValueError):
        return fallback


def _env_float(name: str, fallback: float) -> float:
    try:
        return float(os.getenv(name, str(fallback)))
    except (TypeError, ValueError):
        return fallback


def _env_flag(name: str, fallback: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    return raw.strip().lower() not in {"", "0", "false", "no", "off"}


def _get_port() -> int:
    """Get server port, checking PORT first, then SYNOPSIS_PORT."""
    port = os.getenv("PORT") or os.getenv("SYNOPSIS_PORT")
    if port:
        try:
            return int(port)
        except ValueError:
            pass
    return 8001


class Settings(BaseModel):
    """Application settings with lightweight env fallbacks."""

    # App metadata
    app_name: str = Field(default=DEFAULT_APP_NAME)
    app_version: str = Field(default=DEFAULT_APP_VERSION)

    # Server runtime
    server_host: str = Field(default=os.getenv("SYNOPSIS_HOST", "0.0.0.0"))
    server_port: int = Field(default_factory=_get_port)

    # Generation backends
    synopsis_source: str = Field(default=os.getenv("SYNOPSIS_SOURCE", "main"))
    summarizer_model: str = Field(default=os.getenv("SUMMARIZER_MODEL", "claude-sonnet-4-5-20250929"))
    llm_api_key: Optional[str] = Field(default=os.getenv("LLM_API_KEY"))
    llm_base_url: str = Field(default=os.getenv("LLM_BASE_URL", "https://ai.megallm.io/v1"))
    local_base_url: Optional[str] = Field(default=os.getenv("LOCAL_LLM_BASE_URL", "http://127.0.0.1:1234/v1"))
    local_model: str = Field(default=os.getenv("LOCAL_LLM_MODEL", "local-model"))
    request_timeout_seconds: float = Field(default=_env_float("SYNOPSIS_REQUEST_TIMEOUT", 60.0))

    # Token accounting
    tokenizer_encoding: str = Field(default=os.getenv("SYNOPSIS_TOKENIZER_ENCODING", "cl100k_base"))
    synopsis_context_size: int = Field(default=_env_int("SYNOPSIS_CONTEXT_SIZE", 8192))
    synopsis_token_padding: int = Field(default=_env_int("SYNOPSIS_TOKEN_PADDING", 64))

    # Trigger controls
    synopsis_trigger_mode: str = Field(default=os.getenv("SYNOPSIS_TRIGGER_MODE", "interval"))
    synopsis_interval: int = Field(default=_env_int("SYNOPSIS_INTERVAL", 10))
    synopsis_force_words: int = Field(default=_env_int("SYNOPSIS_FORCE_WORDS", 0))
    synopsis_check_empty: bool = Field(default=_env_flag("SYNOPSIS_CHECK_EMPTY", True))
    synopsis_frozen: bool = Field(default=_env_flag("SYNOPSIS_FROZEN", False))

    # Packing controls
    synopsis_packing_strategy: str = Field(default=os.getenv("SYNOPSIS_PACKING_STRATEGY", "forward"))
    synopsis_max_turns_per_request: int = Field(default=_env_int("SYNOPSIS_MAX_TURNS", 0))
    synopsis_override_response_length: int = Field(default=_env_int("SYNOPSIS_OVERRIDE_RESPONSE_LENGTH", 0))
    synopsis_history_count: int = Field(default=_env_int("SYNOPSIS_HISTORY_COUNT", 1))
    synopsis_history_fraction: float = Field(default=_env_float("SYNOPSIS_HISTORY_FRACTION", 0.2))
    synopsis_archive_limit: int = Field(default=_env_int("SYNOPSIS_ARCHIVE_LIMIT", 20))

    # Prompt text
    scriptwriter_prompt: str = Field(default=DEFAULT_SCRIPTWRITER_PROMPT)
    injection_template: str = Field(default=DEFAULT_INJECTION_TEMPLATE)
    injection_position: str = Field(default=os.getenv("SYNOPSIS_INJECTION_POSITION", "in_prompt"))
    injection_depth: int = Field(default=_env_int("SYNOPSIS_INJECTION_DEPTH", 2))
    injection_role: str = Field(default=os.getenv("SYNOPSIS_INJECTION_ROLE", "system"))

    # Storage
    data_dir: Path = Field(
        default=Path(os.getenv("SYNOPSIS_DATA_DIR", str(Path(__file__).resolve().parent / "data")))
    )

    # HTTP behaviour
    cors_allow_origins_raw: str = Field(default=os.getenv("SYNOPSIS_CORS_ALLOW_ORIGINS", "*"))
    enable_docs: bool = Field(default=os.getenv("SYNOPSIS_ENABLE_DOCS", "1") != "0")
    docs_url: Optional[str] = Field(default=os.getenv("SYNOPSIS_DOCS_URL", "/docs"))

    @property
    def cors_allow_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_allow_origins_raw.strip() in {"", "*"}:
            return ["*"]
        return [origin.strip() for origin in self.cors_allow_origins_raw.split(",") if origin.strip()]

    @property
    def resolved_docs_url(self) -> Optional[str]:
        """Return documentation URL when docs are enabled."""
        return (self.docs_url or "/docs") if self.enable_docs else None

    @property
    def summarization_enabled(self) -> bool:
        """Automatic synopsis generation is active unless frozen."""
        return not self.synopsis_frozen


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
