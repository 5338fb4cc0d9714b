"""
Pipeline configuration.
"""

from .settings import (
    DEFAULT_CONFIG_PATH,
    CuratedSettings,
    DatabaseSettings,
    OrchestratorSettings,
    PipelineConfig,
    ReaderSettings,
    TransformSettings,
    load_config,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "CuratedSettings",
    "DatabaseSettings",
    "OrchestratorSettings",
    "PipelineConfig",
    "ReaderSettings",
    "TransformSettings",
    "load_config",
]
