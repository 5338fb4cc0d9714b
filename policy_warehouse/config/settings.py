"""
Pipeline configuration models and YAML loading.

Every setting has a default, so an empty or missing file yields a working
configuration. Database credentials can also come from PW_DB_* environment
variables (read by the connection pool).
"""

from decimal import Decimal
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from policy_warehouse.observability.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/pipeline.yaml"


class ReaderSettings(BaseModel):
    """Delimited text parsing options."""

    delimiter: str = Field(",", min_length=1, max_length=1)
    header_skip: int = Field(1, ge=0)
    null_tokens: list[str] = Field(default_factory=lambda: ["", "NULL"])
    encoding: str = "utf-8"


class TransformSettings(BaseModel):
    """
    RAW -> STAGING rule settings.

    premium_floor is exclusive (premium must be > floor); claim_amount_floor
    is inclusive (amount must be >= floor).
    """

    premium_floor: Decimal = Decimal("0")
    claim_amount_floor: Decimal = Decimal("0")
    uppercase_fields: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "policies": ["product_type"],
            "claims": ["claim_type", "claim_status"],
        }
    )
    batch_size: int = Field(10000, gt=0)
    write_chunk_size: int = Field(500, gt=0)
    supersede: Literal["replace", "retain"] = "replace"


class CuratedSettings(BaseModel):
    """Curated aggregation settings."""

    fraud_threshold: int = Field(3, ge=0)
    fraud_product_type: str = "FUNERAL"
    geo_round_digits: int = Field(2, ge=0, le=8)
    ratio_scale: int = Field(4, ge=0, le=12)


class OrchestratorSettings(BaseModel):
    """Run orchestration settings."""

    stage_timeout_seconds: float = Field(300.0, gt=0)
    stage_retries: int = Field(2, ge=0)
    retry_delay_seconds: float = Field(2.0, ge=0)
    error_sample_size: int = Field(10, ge=0)
    max_parallel_runs: int = Field(4, gt=0)


class DatabaseSettings(BaseModel):
    """PostgreSQL connection settings; None falls back to PW_DB_* env vars."""

    host: str | None = None
    port: int | None = None
    name: str | None = None
    user: str | None = None
    password: str | None = None
    min_size: int = 1
    max_size: int = 4
    timeout: float = 30.0


class PipelineConfig(BaseModel):
    """Top-level pipeline configuration."""

    reader: ReaderSettings = Field(default_factory=ReaderSettings)
    transform: TransformSettings = Field(default_factory=TransformSettings)
    curated: CuratedSettings = Field(default_factory=CuratedSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    schemas_path: str | None = None


def load_config(config_path: str | Path | None = None) -> PipelineConfig:
    """
    Load pipeline configuration from YAML.

    Args:
        config_path: YAML file path (default: config/pipeline.yaml)

    Returns:
        PipelineConfig; built-in defaults when the file does not exist

    Raises:
        pydantic.ValidationError: If the file contains invalid settings
    """
    path = Path(config_path or DEFAULT_CONFIG_PATH)
    if not path.exists():
        if config_path is not None:
            logger.warning(f"Configuration file not found: {path}; using defaults")
        return PipelineConfig()

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    config = PipelineConfig.model_validate(raw)
    logger.debug(f"Loaded pipeline configuration from {path}")
    return config
