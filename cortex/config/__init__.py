"""Configuration system for backends and the research loop."""

from .loader import (
    load_config,
    load_config_from_env,
    load_config_from_yaml,
    ProfileConfig,
    GeneratorConfig,
    RetrievalConfig,
    StorageConfig,
    EventsConfig,
    RetryConfig,
    PlannerConfig,
    ExecutorConfig,
    OrchestratorConfig,
    ResearchConfig,
)
from .factory import (
    MockRetriever,
    MockStructuredGenerator,
    create_llm_provider,
    create_generator,
    create_retriever,
    create_blob_store,
    create_progress_sink,
    create_from_profile,
    open_service,
)

__all__ = [
    # Loader
    "load_config",
    "load_config_from_env",
    "load_config_from_yaml",
    "ProfileConfig",
    "GeneratorConfig",
    "RetrievalConfig",
    "StorageConfig",
    "EventsConfig",
    # Research loop config
    "RetryConfig",
    "PlannerConfig",
    "ExecutorConfig",
    "OrchestratorConfig",
    "ResearchConfig",
    # Factory
    "MockRetriever",
    "MockStructuredGenerator",
    "create_llm_provider",
    "create_generator",
    "create_retriever",
    "create_blob_store",
    "create_progress_sink",
    "create_from_profile",
    "open_service",
]
