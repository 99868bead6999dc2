"""Runtime configuration loaded from environment variables.

The repo-root `.env` is loaded by the app factory and the dev launcher;
`get_settings()` re-reads the current environment on every call so tests can
change values between cases without cache invalidation.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.3-70b-versatile"


class Settings(BaseModel):
    """Provider, orchestration and storage settings."""

    llm_base_url: str = DEFAULT_BASE_URL
    llm_api_key: str = ""
    default_model: str = DEFAULT_MODEL

    # Sampling parameters sent with every chat completion
    temperature: float = 0.8
    top_p: float = 0.9
    max_tokens: int = 2048

    history_limit: int = 20
    min_completion_tokens: int = 4096
    capacity_warning_ratio: float = 0.2
    rate_limit_fallback_wait: float = 60.0
    provider_timeout: float = 60.0
    max_corrective_retries: int = 2
    server_error_retries: int = 1
    server_error_backoff: float = 1.0

    data_dir: Path = Path("data")


_ENV_FIELDS: dict[str, str] = {
    "LLM_BASE_URL": "llm_base_url",
    "LLM_API_KEY": "llm_api_key",
    "DEFAULT_MODEL": "default_model",
    "LLM_TEMPERATURE": "temperature",
    "LLM_TOP_P": "top_p",
    "LLM_MAX_TOKENS": "max_tokens",
    "HISTORY_LIMIT": "history_limit",
    "MIN_COMPLETION_TOKENS": "min_completion_tokens",
    "CAPACITY_WARNING_RATIO": "capacity_warning_ratio",
    "RATE_LIMIT_FALLBACK_WAIT": "rate_limit_fallback_wait",
    "PROVIDER_TIMEOUT": "provider_timeout",
    "MAX_CORRECTIVE_RETRIES": "max_corrective_retries",
    "SERVER_ERROR_RETRIES": "server_error_retries",
    "SERVER_ERROR_BACKOFF": "server_error_backoff",
    "DATA_DIR": "data_dir",
}


def get_settings() -> Settings:
    """Build Settings from the *current* environment.

    Empty variables count as unset. Values are coerced and validated by
    pydantic, so a malformed number fails loudly at startup.
    """
    values: dict[str, str] = {}
    for env_name, field_name in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw:
            values[field_name] = raw
    return Settings(**values)
