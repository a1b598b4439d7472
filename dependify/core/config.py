"""
Runtime settings for the orchestration core.

Values come from environment variables (a local ``.env`` file is loaded
first when present):

- LLM_API_BASE: Base URL of the Messages API (default: https://api.anthropic.com/v1)
- LLM_API_KEY: API key (may be unset; model calls then fail and fall back)
- LLM_API_VERSION: Value for the anthropic-version header (default: 2023-06-01)
- LLM_CAPABLE_MODEL / LLM_CHEAP_MODEL: Model names per tier
- LLM_TIMEOUT_SECONDS: Per-request timeout for remote model calls (default: 60)
- LLM_COST_PER_1K_TOKENS: Optional cost hint for metrics (USD, float)
- OLLAMA_URL / OLLAMA_MODEL / OLLAMA_TIMEOUT_SECONDS: Local model settings
- ORCHESTRATOR_MAX_ROUNDS: Max model calls per request (default: 8)
- ORCHESTRATOR_MAX_TOKENS: max_tokens per model call (default: 4096)
- ORCHESTRATOR_TIMEOUT_SECONDS: Whole-request deadline (default: none)
- LOG_LEVEL / LOG_JSON / SERVICE_NAME: Logging settings
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_API_BASE = "https://api.anthropic.com/v1"
DEFAULT_API_VERSION = "2023-06-01"
DEFAULT_CAPABLE_MODEL = "claude-sonnet-4-5"
DEFAULT_CHEAP_MODEL = "claude-haiku-4-5"
DEFAULT_LOCAL_URL = "http://localhost:11434"
DEFAULT_LOCAL_MODEL = "llama3.1:8b"
LOCAL_MODEL_TIMEOUT_SECONDS = 30.0


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    return float(env.get(key, "") or default)


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    return int(env.get(key, "") or default)


@dataclass(frozen=True)
class Settings:
    """Immutable settings snapshot."""

    llm_api_base: str = DEFAULT_API_BASE
    llm_api_key: Optional[str] = None
    llm_api_version: str = DEFAULT_API_VERSION
    capable_model: str = DEFAULT_CAPABLE_MODEL
    cheap_model: str = DEFAULT_CHEAP_MODEL
    llm_timeout_seconds: float = 60.0
    llm_cost_per_1k_tokens: float = 0.0

    local_model_url: str = DEFAULT_LOCAL_URL
    local_model: str = DEFAULT_LOCAL_MODEL
    local_timeout_seconds: float = LOCAL_MODEL_TIMEOUT_SECONDS

    max_rounds: int = 8
    max_tokens: int = 4096
    request_timeout_seconds: Optional[float] = None

    log_level: str = "INFO"
    log_json: bool = True
    service_name: str = "dependify_orchestrator"

    def __post_init__(self):
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from a mapping of environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ)
        """
        env = os.environ if env is None else env

        timeout = env.get("ORCHESTRATOR_TIMEOUT_SECONDS")

        return cls(
            llm_api_base=env.get("LLM_API_BASE", DEFAULT_API_BASE),
            llm_api_key=env.get("LLM_API_KEY") or None,
            llm_api_version=env.get("LLM_API_VERSION", DEFAULT_API_VERSION),
            capable_model=env.get("LLM_CAPABLE_MODEL", DEFAULT_CAPABLE_MODEL),
            cheap_model=env.get("LLM_CHEAP_MODEL", DEFAULT_CHEAP_MODEL),
            llm_timeout_seconds=_get_float(env, "LLM_TIMEOUT_SECONDS", 60.0),
            llm_cost_per_1k_tokens=_get_float(env, "LLM_COST_PER_1K_TOKENS", 0.0),
            local_model_url=env.get("OLLAMA_URL", DEFAULT_LOCAL_URL),
            local_model=env.get("OLLAMA_MODEL", DEFAULT_LOCAL_MODEL),
            local_timeout_seconds=_get_float(
                env, "OLLAMA_TIMEOUT_SECONDS", LOCAL_MODEL_TIMEOUT_SECONDS
            ),
            max_rounds=_get_int(env, "ORCHESTRATOR_MAX_ROUNDS", 8),
            max_tokens=_get_int(env, "ORCHESTRATOR_MAX_TOKENS", 4096),
            request_timeout_seconds=float(timeout) if timeout else None,
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_json=env.get("LOG_JSON", "true").lower() == "true",
            service_name=env.get("SERVICE_NAME", "dependify_orchestrator"),
        )


_settings: Optional[Settings] = None


def get_settings(reload: bool = False) -> Settings:
    """
    Get the process-wide settings snapshot, loading ``.env`` on first use.

    Args:
        reload: Re-read the environment even if settings were already loaded
    """
    global _settings
    if _settings is None or reload:
        env_path = Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
        _settings = Settings.from_env()
    return _settings
