"""Configuration loader with Pydantic validation and env var expansion."""

import logging
import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from ..settings import DATA_DIR

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "models.yaml"


class GeneratorConfig(BaseModel):
    """Configuration for the structured-generation backend."""

    backend: Literal["openrouter", "anthropic", "mock"] = "openrouter"
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = 0.3
    max_tokens: int = 2048


class RetrievalConfig(BaseModel):
    """Configuration for the retrieval backend."""

    backend: Literal["tavily", "mock"] = "tavily"
    api_key: str | None = None
    search_depth: Literal["basic", "advanced"] = "basic"
    max_results: int = 5


class StorageConfig(BaseModel):
    """Configuration for document persistence."""

    backend: Literal["memory", "file", "convex"] = "file"
    path: str = ".cortex/sessions"
    url: str | None = None  # For Convex backend


class EventsConfig(BaseModel):
    """Configuration for progress event sinks."""

    log_events: bool = True
    convex_url: str | None = None  # Stream events to Convex when set


class RetryConfig(BaseModel):
    """Retry and timeout policy for retrieval and generation calls."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_factor: float = 2.0
    initial_delay: float = 1.0
    call_timeout: float | None = 60.0


class PlannerConfig(BaseModel):
    """Configuration for the planner (kickoff and evaluation)."""

    initial_questions: int = Field(default=3, ge=1, le=5)
    max_new_questions: int = Field(default=5, ge=0, le=5)
    max_validation_attempts: int = Field(default=2, ge=1)
    initial_max_cycles: int = Field(default=10, ge=1, le=20)
    followup_max_cycles: int = Field(default=5, ge=1, le=20)


class ExecutorConfig(BaseModel):
    """Configuration for the per-question search/reflect loop."""

    max_queries_per_cycle: int = Field(default=3, ge=1)
    min_searches_before_done: int = Field(default=2, ge=0)
    no_progress_limit: int = Field(default=2, ge=1)  # Consecutive no_change reflections
    compaction_threshold: int = Field(default=40, ge=2)
    compaction_keep_last: int = Field(default=30, ge=1)


class OrchestratorConfig(BaseModel):
    """Configuration for the top-level research loop."""

    max_steps: int = Field(default=60, ge=1)  # Planner calls + executor cycles
    max_wall_time_seconds: float | None = 600.0
    max_concurrent_questions: int = Field(default=5, ge=1)


class ResearchConfig(BaseModel):
    """Configuration for the entire research core."""

    planner: PlannerConfig = PlannerConfig()
    executor: ExecutorConfig = ExecutorConfig()
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    retry: RetryConfig = RetryConfig()


class ProfileConfig(BaseModel):
    """Configuration profile containing all backend configs."""

    generator: GeneratorConfig
    retrieval: RetrievalConfig
    storage: StorageConfig = StorageConfig()
    events: EventsConfig = EventsConfig()
    research: ResearchConfig = ResearchConfig()


class ConfigFile(BaseModel):
    """Root configuration file structure."""

    profiles: dict[str, ProfileConfig]


ENV_REF = re.compile(r"\$\{([^}]+)\}")


def expand_env_vars(data):
    """Expand ``${VAR}`` references throughout a parsed YAML structure.

    A value that is exactly one reference to an unset variable becomes None.
    References embedded in longer strings are left as written when unset.

    Args:
        data: Dict, list, or primitive value

    Returns:
        Data structure with env vars expanded
    """
    if isinstance(data, dict):
        return {k: expand_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    if not isinstance(data, str):
        return data

    whole = ENV_REF.fullmatch(data)
    if whole:
        return os.environ.get(whole.group(1))
    return ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(0)), data)


def load_config_file(config_path: Path) -> ConfigFile:
    """Load and validate every profile in a YAML config file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config is invalid
    """
    with open(config_path) as f:
        raw_data = yaml.safe_load(f)

    expanded_data = expand_env_vars(raw_data)
    return ConfigFile(**expanded_data)


def load_config_from_yaml(config_path: Path, profile_name: str) -> ProfileConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config YAML file
        profile_name: Name of profile to load

    Returns:
        ProfileConfig for the requested profile

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config is invalid
        KeyError: If profile doesn't exist
    """
    config_file = load_config_file(config_path)

    if profile_name not in config_file.profiles:
        available = ", ".join(config_file.profiles.keys())
        raise KeyError(
            f"Profile '{profile_name}' not found. " f"Available profiles: {available}"
        )

    return config_file.profiles[profile_name]


def load_config_from_env() -> ProfileConfig:
    """Load configuration from environment variables (fallback mode).

    Returns:
        ProfileConfig constructed from environment variables
    """
    if os.environ.get("ANTHROPIC_API_KEY") and not os.environ.get("OPENROUTER_API_KEY"):
        generator = GeneratorConfig(
            backend="anthropic",
            model=os.environ.get("ANTHROPIC_DEFAULT_MODEL"),
            api_key=os.environ.get("ANTHROPIC_API_KEY"),
        )
    else:
        generator = GeneratorConfig(
            backend="openrouter",
            model=os.environ.get("OPENROUTER_DEFAULT_MODEL"),
            api_key=os.environ.get("OPENROUTER_API_KEY"),
            base_url=os.environ.get("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
        )

    retrieval = RetrievalConfig(
        backend="tavily",
        api_key=os.environ.get("TAVILY_API_KEY"),
    )

    storage = StorageConfig(
        backend="file",
        path=f"{DATA_DIR}/sessions",
    )

    events = EventsConfig(convex_url=os.environ.get("CONVEX_URL") or None)

    return ProfileConfig(
        generator=generator,
        retrieval=retrieval,
        storage=storage,
        events=events,
    )


def load_config(
    profile: str | None = None,
    config_path: Path | None = None,
) -> ProfileConfig:
    """Load configuration from YAML file or environment variables.

    This is the main entry point for loading configuration. It tries to load
    from a YAML config file first, and falls back to environment variables
    if the file doesn't exist.

    Args:
        profile: Profile name to load. If None, uses MODEL_PROFILE env var
                or "dev" as default.
        config_path: Path to config file. If None, uses cortex/config/models.yaml.

    Returns:
        ProfileConfig with all backend configurations

    Raises:
        ValidationError: If configuration is invalid
        KeyError: If requested profile doesn't exist
    """
    if profile is None:
        profile = os.environ.get("MODEL_PROFILE", "dev")

    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found, using environment variables")
        return load_config_from_env()

    return load_config_from_yaml(config_path, profile)
