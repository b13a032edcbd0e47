"""Unified configuration schema for ado_replicator.

Defines Pydantic models for the unified config structure with dedicated
sections for the organization connection, replication behaviour and
logging.

Usage:
    from ado_replicator.config_schema import (
        UnifiedConfig, build_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class AdoConfig(BaseModel):
    """Organization connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    organization_url: str | None = Field(
        default=None, description="Organization URL"
    )
    access_token: str | None = Field(
        default=None, description="Personal access token"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    api_version: str = Field(default="7.1", description="REST API version")
    max_parallel_requests: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum target projects processed concurrently (1-32)",
    )
    request_timeout: int = Field(
        default=60,
        ge=1,
        le=600,
        description="HTTP read timeout in seconds (1-600)",
    )

    model_config = {"frozen": True}


class ReplicationConfig(BaseModel):
    """Replication engine settings.

    Attributes:
        state_dir: Directory holding the source-to-target identity map.
        feature_settle_seconds: Wait after feature-state writes before
            reading them back.
        project_creation_timeout: Seconds to wait for a new project.
    """

    state_dir: str = Field(
        default=".ado_replicator",
        description="Directory for the identity map",
    )
    feature_settle_seconds: float = Field(default=5.0, ge=0)
    project_creation_timeout: int = Field(default=300, ge=1)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    ado: AdoConfig = Field(default_factory=AdoConfig)
    replication: ReplicationConfig = Field(default_factory=ReplicationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)

