"""Progress notifications for long-running tools.

The replication engines report progress through a plain
``Callable[[str], None]`` and run in worker threads.  ``handle_call_tool``
builds a callback for the current request when the client sent a
``progressToken`` and stores it in a context variable; tool handlers pick
it up with ``current_progress()`` and hand it to the engines.
"""

import asyncio
import itertools
import logging
from concurrent.futures import Future
from contextvars import ContextVar, Token
from typing import Any

from ..replication.models import ProgressCallback

logger = logging.getLogger(__name__)

_current: ContextVar[ProgressCallback | None] = ContextVar(
    "ado_replicator_progress", default=None
)


def current_progress() -> ProgressCallback | None:
    """Progress callback of the tool call being handled, if any."""
    return _current.get()


def set_progress(callback: ProgressCallback | None) -> Token:
    return _current.set(callback)


def reset_progress(token: Token) -> None:
    _current.reset(token)


def _log_failure(future: Future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.warning("Progress notification failed: %s", future.exception())


def make_progress_callback(
    session: Any,
    progress_token: str | int,
    loop: asyncio.AbstractEventLoop | None = None,
) -> ProgressCallback:
    """Forward progress lines as ``notifications/progress`` on *session*.

    Must be called on the event loop.  The returned callback may be called
    from any thread; notifications are scheduled on that loop and never
    awaited, so a worker thread is not blocked by a slow client.
    """
    loop = loop or asyncio.get_running_loop()
    counter = itertools.count(1)

    def report(message: str) -> None:
        logger.debug("Progress: %s", message)
        future = asyncio.run_coroutine_threadsafe(
            session.send_progress_notification(
                progress_token, float(next(counter)), message=message
            ),
            loop,
        )
        future.add_done_callback(_log_failure)

    return report


def request_progress(server: Any) -> ProgressCallback | None:
    """Callback for the request *server* is handling, or None.

    None when called outside a request or when the client did not ask for
    progress.
    """
    try:
        ctx = server.request_context
    except LookupError:
        return None
    progress_token = ctx.meta.progressToken if ctx.meta is not None else None
    if progress_token is None:
        return None
    return make_progress_callback(ctx.session, progress_token)
