"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config import load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.client import AdoClient

logger = logging.getLogger(__name__)

_CREDENTIAL_HINT = "Check ADO_ORGANIZATION_URL and ADO_ACCESS_TOKEN."


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Create AdoClient and validate the access token
    - Fail fast if the organization is unreachable

    On shutdown:
    - Log shutdown message

    Args:
        config_overrides: Optional dict with config values from CLI (url, token, insecure)

    Yields:
        Dict with 'client' key containing the initialized AdoClient

    Raises:
        RuntimeError: If configuration is invalid or the connection fails.
    """
    logger.info("MCP server starting...")
    _stderr_print("ADO Replicator MCP Server starting...")

    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        yaml_fallbacks: dict[str, Any] | None = None
        replication_fallbacks: dict[str, Any] | None = None
        config_files = discover_config_files()
        sources = []

        if config_files:
            config_path = config_files[0]
            raw = load_hierarchical_config()
            unified = build_config(raw)
            yaml_fallbacks = {
                k: v
                for k, v in unified.ado.model_dump().items()
                if v is not None
            }
            replication_fallbacks = unified.replication.model_dump()
            sources.append(f"config file: {config_path}")
            if not (config_overrides or {}).get("debug"):
                logging.getLogger("ado_replicator").setLevel(
                    unified.logging.level.upper()
                )

        overrides = config_overrides or {}
        config = load_config(
            url=overrides.get("url"),
            token=overrides.get("token"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
            replication_fallbacks=replication_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("Organization: %s", config.organization_url)
        _stderr_print(f"  Organization: {config.organization_url}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(f"  {_CREDENTIAL_HINT}")
        raise RuntimeError(f"Configuration error: {e}. {_CREDENTIAL_HINT}") from e

    logger.info("Validating access token...")
    _stderr_print("  Validating access token...")
    client = AdoClient(config)
    if not await run_sync(client.validate_credential):
        logger.error("Failed to connect to %s", config.organization_url)
        _stderr_print("ERROR: Azure DevOps connection failed.")
        _stderr_print(f"  {_CREDENTIAL_HINT}")
        raise RuntimeError(
            f"Azure DevOps connection failed. {_CREDENTIAL_HINT}"
        )

    logger.info("Connected to %s", config.organization_url)
    init_semaphore(config.max_parallel_requests)
    _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"client": client}

    logger.info("MCP server shutting down")
    _stderr_print("ADO Replicator MCP Server shutting down.")
