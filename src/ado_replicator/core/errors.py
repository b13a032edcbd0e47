"""Error taxonomy shared by the client and the replication engine."""


class ReplicatorError(Exception):
    """Base exception for replication errors."""

    pass


class NotFoundError(ReplicatorError):
    """A project, work item or other resource does not exist."""

    pass


class UpstreamError(ReplicatorError):
    """The remote service was unreachable, rate-limited or answered with an
    unexpected status.

    Attributes:
        status_code: HTTP status code, or ``None`` for transport failures.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConflictError(UpstreamError):
    """The resource already exists (HTTP 409)."""

    pass


class ValidationError(ReplicatorError):
    """The request is malformed: missing ids, empty selections, target
    equal to source."""

    pass
