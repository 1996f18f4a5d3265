from .settings import (
    EngineConfig,
    ContextConfig,
    LearningConfig,
    DatabaseConfig,
    GitConfig,
    LoggingConfig,
    load_config,
    deep_merge,
)

__all__ = [
    "EngineConfig",
    "ContextConfig",
    "LearningConfig",
    "DatabaseConfig",
    "GitConfig",
    "LoggingConfig",
    "load_config",
    "deep_merge",
]
