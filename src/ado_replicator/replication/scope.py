"""Collect-and-continue error accumulator.

An ``ErrorScope`` is handed to one step, category or target loop.  Each
item runs inside ``scope.capture(...)``; a ``ReplicatorError`` raised by
the item is logged and recorded in the scope instead of escaping, so the
loop moves on to the next item.  Errors of any other type propagate.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from ..core.errors import ReplicatorError

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    """Result slot filled by ``ErrorScope.capture``."""

    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class ErrorScope:
    name: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @contextmanager
    def capture(self, what: str, *, warning: bool = False) -> Iterator[Outcome]:
        """Run the block, recording a ``ReplicatorError`` against *what*.

        With ``warning=True`` the failure is recorded as a warning and
        does not fail the scope.
        """
        outcome = Outcome()
        try:
            yield outcome
        except ReplicatorError as exc:
            outcome.error = str(exc)
            message = f"{what}: {exc}"
            if warning:
                logger.warning("[%s] %s", self.name, message)
                self.warnings.append(message)
            else:
                logger.error("[%s] %s", self.name, message)
                self.errors.append(message)

    def warn(self, message: str) -> None:
        logger.warning("[%s] %s", self.name, message)
        self.warnings.append(message)

    def fail(self, message: str) -> None:
        logger.error("[%s] %s", self.name, message)
        self.errors.append(message)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def summary(self) -> str | None:
        """All errors joined into one message, or None."""
        if not self.errors:
            return None
        if len(self.errors) == 1:
            return self.errors[0]
        return f"{len(self.errors)} failures: " + "; ".join(self.errors)
