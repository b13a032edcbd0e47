"""Remote API client, entity models and error taxonomy."""

from .async_utils import run_sync
from .client import AdoClient
from .errors import (
    ConflictError,
    NotFoundError,
    ReplicatorError,
    UpstreamError,
    ValidationError,
)

__all__ = [
    "AdoClient",
    "ConflictError",
    "NotFoundError",
    "ReplicatorError",
    "UpstreamError",
    "ValidationError",
    "run_sync",
]
