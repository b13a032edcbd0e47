"""Connection configuration for the replication engine.

Reads the organization URL and access token from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    ADO_ORGANIZATION_URL: Organization URL, e.g. https://dev.azure.com/contoso (required)
    ADO_ACCESS_TOKEN: Personal access token (required)
    ADO_INSECURE: Skip SSL verification (optional, default: false)
    ADO_API_VERSION: REST API version (optional, default: 7.1)
    ADO_MAX_PARALLEL_REQUESTS: Max parallel target deployments (optional, default: 4)
    ADO_REQUEST_TIMEOUT: Read timeout in seconds (optional, default: 60)
"""

import logging
import os
from dataclasses import dataclass, replace
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass
class Config:
    organization_url: str
    access_token: str
    insecure: bool = False
    debug: bool = False
    api_version: str = "7.1"
    max_parallel_requests: int = 4
    request_timeout: int = 60
    state_dir: str = ".ado_replicator"
    feature_settle_seconds: float = 5.0
    project_creation_timeout: int = 300


def normalize_organization_url(url: str) -> str:
    """Return a canonical form of *url* for comparing organizations.

    Both hosted forms, ``https://dev.azure.com/{org}`` and
    ``https://{org}.visualstudio.com``, map to ``https://dev.azure.com/{org}``
    with anything after the organization dropped.  Other URLs (on-premises
    servers) are only stripped, lower-cased and trimmed of trailing slashes.
    """
    normalized = url.strip().rstrip("/").lower()
    parsed = urlparse(normalized)
    host = parsed.hostname or ""
    if host == "dev.azure.com":
        org = parsed.path.strip("/").split("/", 1)[0]
        if org:
            return f"https://dev.azure.com/{org}"
    elif host.endswith(".visualstudio.com"):
        org = host.split(".", 1)[0]
        return f"https://dev.azure.com/{org}"
    return normalized


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL format is invalid or the token is empty.
    """
    config.organization_url = config.organization_url.strip()

    if not config.organization_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid organization URL '{config.organization_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.organization_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid organization URL '{config.organization_url}': URL must include a hostname"
        )

    config.organization_url = config.organization_url.removesuffix("/")

    if not config.access_token.strip():
        raise ValueError(
            "Access token cannot be empty. Set ADO_ACCESS_TOKEN environment variable."
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def with_organization(
    config: Config, organization_url: str, access_token: str | None = None
) -> Config:
    """Return a copy of *config* pointing at another organization.

    The token is reused when *access_token* is not given.
    """
    new_config = replace(
        config,
        organization_url=organization_url,
        access_token=access_token or config.access_token,
    )
    validate_config(new_config)
    return new_config


def _int_setting(
    env_key: str,
    fb: dict,
    fb_key: str,
    default: int,
    low: int,
    high: int,
) -> int:
    raw = os.getenv(env_key)
    if raw is not None:
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
            ) from None
        if not (low <= value <= high):
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a number between {low} and {high}"
            )
        return value
    if fb_key in fb:
        return int(fb[fb_key])
    return default


def load_config(
    url: str | None = None,
    token: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
    replication_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override organization URL.
        token: Override access token.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Values from the YAML config file ``ado`` section.
        replication_fallbacks: Values from the YAML ``replication`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the organization URL or token is missing after
            checking all sources.
    """
    fb = yaml_fallbacks or {}
    rfb = replication_fallbacks or {}

    org_url = url or os.getenv("ADO_ORGANIZATION_URL") or fb.get("organization_url")
    if not org_url:
        raise ValueError(
            "Organization URL not found. Set ADO_ORGANIZATION_URL environment variable, "
            "pass --url CLI argument, or add 'organization_url' to config.yml."
        )

    access_token = token or os.getenv("ADO_ACCESS_TOKEN") or fb.get("access_token")
    if not access_token:
        raise ValueError(
            "Access token not found. Set ADO_ACCESS_TOKEN environment variable, "
            "pass --token CLI argument, or add 'access_token' to config.yml."
        )

    def get_bool_env(key: str) -> bool | None:
        """Return True/False from env var, or None if unset."""
        val = os.getenv(key)
        if val is None:
            return None
        return val.lower() in ("true", "1", "yes", "on")

    if insecure:
        final_insecure = True
    else:
        env_insecure = get_bool_env("ADO_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = get_bool_env("ADO_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    api_version = os.getenv("ADO_API_VERSION") or fb.get("api_version") or "7.1"

    config = Config(
        organization_url=org_url.strip(),
        access_token=access_token.strip(),
        insecure=final_insecure,
        debug=final_debug,
        api_version=str(api_version),
        max_parallel_requests=_int_setting(
            "ADO_MAX_PARALLEL_REQUESTS", fb, "max_parallel_requests", 4, 1, 32
        ),
        request_timeout=_int_setting(
            "ADO_REQUEST_TIMEOUT", fb, "request_timeout", 60, 1, 600
        ),
        state_dir=str(rfb.get("state_dir", ".ado_replicator")),
        feature_settle_seconds=float(rfb.get("feature_settle_seconds", 5.0)),
        project_creation_timeout=int(rfb.get("project_creation_timeout", 300)),
    )

    validate_config(config)

    return config
