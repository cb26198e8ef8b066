"""Settings management with Pydantic Settings.

Configuration priority (highest to lowest):
1. Environment variables
2. .env file in current directory
3. User config file (~/.config/evolution-solver/config.yaml)
4. Default values
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# User config directory
USER_CONFIG_DIR = Path.home() / ".config" / "evolution-solver"
USER_CONFIG_FILE = USER_CONFIG_DIR / "config.yaml"


def _load_user_config() -> dict[str, Any]:
    """Load user configuration from ~/.config/evolution-solver/config.yaml."""
    if USER_CONFIG_FILE.exists():
        with open(USER_CONFIG_FILE, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    return {}


class ModelConfig(BaseSettings):
    """Configuration for a specific model."""

    model: str
    fallback: list[str] = Field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 8192


class TaskRoutingConfig(BaseSettings):
    """Task-to-model routing configuration."""

    variation: ModelConfig = Field(
        default_factory=lambda: ModelConfig(
            model="o3",
            fallback=["gpt-4o"],
            temperature=1.0,
            max_tokens=16384,
        )
    )
    enrichment: ModelConfig = Field(
        default_factory=lambda: ModelConfig(
            model="o3",
            fallback=["gpt-4o"],
            temperature=0.7,
            max_tokens=4096,
        )
    )


class OpenAIConfig(BaseSettings):
    """OpenAI-specific configuration."""

    base_url: str = "https://api.openai.com/v1"
    api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="OPENAI_API_KEY",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,  # Allow both field name and alias
    )


class OpenRouterConfig(BaseSettings):
    """OpenRouter-specific configuration."""

    base_url: str = "https://openrouter.ai/api/v1"
    api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="OPENROUTER_API_KEY",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


class OracleConfig(BaseSettings):
    """Behaviour of individual oracle calls."""

    max_retries: int = Field(default=3, ge=1, description="Attempts per model on transient errors")
    retry_min_delay: float = Field(default=1.0, ge=0.0)
    retry_max_delay: float = Field(default=10.0, ge=0.0)
    request_timeout: float = Field(default=300.0, gt=0.0)
    structured_output: bool = True


class PhaseTimeoutConfig(BaseSettings):
    """Seconds a started phase may run before the orchestrator re-dispatches it."""

    variator: float = Field(default=180.0, gt=0.0)
    enricher: float = Field(default=600.0, gt=0.0)
    ranker: float = Field(default=300.0, gt=0.0)


class OrchestratorConfig(BaseSettings):
    """Orchestrator self-check scheduling."""

    phase_timeouts: PhaseTimeoutConfig = Field(default_factory=PhaseTimeoutConfig)
    backoff_base: float = Field(default=5.0, gt=0.0)
    backoff_max: float = Field(default=60.0, gt=0.0)
    backoff_jitter: float = Field(default=1.0, ge=0.0)
    max_check_attempts: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _validate_backoff(self) -> "OrchestratorConfig":
        if self.backoff_jitter >= self.backoff_max:
            raise ValueError("backoff_jitter must be smaller than backoff_max")
        if self.backoff_base > self.backoff_max:
            raise ValueError("backoff_base must not exceed backoff_max")
        return self


class Settings(BaseSettings):
    """Main application settings.

    Configuration is loaded from multiple sources (highest priority first):
    1. Environment variables (EVOLUTION_SOLVER_* prefix)
    2. .env file in current directory
    3. User config file (~/.config/evolution-solver/config.yaml)
    4. Default values

    Example .env file:
        OPENAI_API_KEY=sk-your-key
        EVOLUTION_SOLVER_DISPATCH_BACKEND=workflow
        EVOLUTION_SOLVER_ORCHESTRATOR__MAX_CHECK_ATTEMPTS=200

    Example config.yaml:
        default_provider: openrouter
        openrouter:
          api_key: sk-or-v1-your-key
        store_backend: file
    """

    model_config = SettingsConfigDict(
        env_prefix="EVOLUTION_SOLVER_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    # Provider selection
    default_provider: str = "openai"

    # Task routing
    task_routing: TaskRoutingConfig = Field(default_factory=TaskRoutingConfig)

    # Provider configs
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    openrouter: OpenRouterConfig = Field(default_factory=OpenRouterConfig)

    oracle: OracleConfig = Field(default_factory=OracleConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)

    # Variator in-phase retries on malformed oracle output
    variator_max_attempts: int = Field(default=3, ge=1)

    # Dispatch
    dispatch_backend: Literal["queue", "workflow"] = "queue"
    queue_max_deliveries: int = Field(default=3, ge=1)

    # Persistence
    store_backend: Literal["memory", "file"] = "file"
    data_dir: Path = Field(default_factory=lambda: Path("local_data") / "jobs")

    def get_model_config(self, task: str) -> ModelConfig:
        """Get model configuration for a specific task."""
        routing: dict[str, Any] = self.task_routing.model_dump()
        if task in routing:
            return ModelConfig(**routing[task])
        # Default to variation config
        return self.task_routing.variation


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Loads configuration from:
    1. Default values
    2. User config file (~/.config/evolution-solver/config.yaml)
    3. .env file
    4. Environment variables (highest priority)
    """
    user_config = _load_user_config()

    # Provider sections are BaseSettings that read their key from the
    # environment; keep the user-file key only when the env var is unset.
    provider_configs: dict[str, BaseSettings] = {}
    for name, config_cls in (("openai", OpenAIConfig), ("openrouter", OpenRouterConfig)):
        if name in user_config:
            provider_configs[name] = config_cls(**user_config.pop(name))

    settings = Settings(**user_config)

    for name, provider_config in provider_configs.items():
        current = getattr(settings, name)
        if (
            provider_config.api_key.get_secret_value()
            and not current.api_key.get_secret_value()
        ):
            setattr(settings, name, provider_config)

    return settings


def init_user_config() -> Path:
    """Initialize user config directory and return the config file path.

    Creates ~/.config/evolution-solver/config.yaml with a template if it doesn't exist.
    """
    USER_CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    if not USER_CONFIG_FILE.exists():
        template = """# Evolution Solver Configuration
# This file is loaded automatically. Environment variables take priority.

# Provider: openai | openrouter
default_provider: openai

# OpenAI API configuration
openai:
  api_key: ""  # Your OpenAI API key (or set OPENAI_API_KEY env var)

# OpenRouter API configuration
# openrouter:
#   api_key: ""  # Your OpenRouter API key (or set OPENROUTER_API_KEY env var)

# Model routing per oracle task
# task_routing:
#   variation:
#     model: "o3"
#     fallback: ["gpt-4o"]
#   enrichment:
#     model: "o3"
#     fallback: ["gpt-4o"]

# Orchestrator timing (seconds)
# orchestrator:
#   phase_timeouts:
#     variator: 180
#     enricher: 600
#     ranker: 300
#   backoff_base: 5
#   backoff_max: 60
#   max_check_attempts: 100

# Dispatch backend: queue | workflow
# dispatch_backend: queue

# Persistence: file | memory
# store_backend: file
# data_dir: local_data/jobs
"""
        USER_CONFIG_FILE.write_text(template, encoding="utf-8")

    return USER_CONFIG_FILE
