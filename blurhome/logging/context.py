#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright (C) 2026 The Blurhome Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# See the GNU Affero General Public License for more details:
# <https://www.gnu.org/licenses/agpl-3.0.html>.
#
#

"""Thread-local-alike tracking of the request being processed.

Each inbound HTTP request gets an identifier such as ``GET-12``. It is stored
in a context variable so that it follows the request through coroutines
(Twisted runs each coroutine step inside the context captured when the
coroutine was started) and into the thread pool via `defer_to_thread`.

`LoggingContextFilter` copies the identifier onto every log record as
``record.request`` so that the log format can include ``%(request)s``.
"""

import contextvars
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from typing_extensions import ParamSpec

from twisted.internet import threads
from twisted.internet.defer import Deferred
from twisted.internet.interfaces import IReactorFromThreads
from twisted.python.threadpool import ThreadPool

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

SENTINEL_REQUEST = "sentinel"

_current_request: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "blurhome_current_request", default=None
)


def current_request_id() -> Optional[str]:
    """Get the identifier of the request being processed, if any."""
    return _current_request.get()


def set_current_request_id(request_id: Optional[str]) -> contextvars.Token:
    """Set the request identifier for the current context.

    Returns:
        A token which can be passed to `_current_request.reset`.
    """
    return _current_request.set(request_id)


@contextmanager
def request_context(request_id: Optional[str]) -> Iterator[None]:
    """Run a block with the given request identifier, restoring the previous
    one afterwards."""
    token = _current_request.set(request_id)
    try:
        yield
    finally:
        _current_request.reset(token)


class LoggingContextFilter(logging.Filter):
    """Logging filter that adds values from the current request context to
    each record.

    Args:
        request: The default request identifier to use for records logged
            outside of a request.
    """

    def __init__(self, request: str = ""):
        super().__init__()
        self._default_request = request

    def filter(self, record: logging.LogRecord) -> bool:
        """Add each field from the logging context to the record.

        Returns:
            True to include the record in the log output.
        """
        request_id = current_request_id()
        record.request = request_id or self._default_request or SENTINEL_REQUEST
        return True


def defer_to_thread(
    reactor: "IReactorFromThreads",
    f: Callable[P, R],
    *args: P.args,
    **kwargs: P.kwargs,
) -> "Deferred[R]":
    """
    Calls the function `f` using a thread from the reactor's default threadpool and
    returns the result as a Deferred.

    The current request context is copied into the thread, so log lines emitted
    by `f` carry the identifier of the request that scheduled it.

    Args:
        reactor: The reactor in whose main thread the Deferred will be invoked,
            and whose threadpool we should use for the function.

            Normally this will be hs.get_reactor().

        f: The function to call.

        args: positional arguments to pass to f.

        kwargs: keyword arguments to pass to f.

    Returns:
        A Deferred which fires a callback with the result of `f`, or an
            errback if `f` throws an exception.
    """
    return defer_to_threadpool(reactor, reactor.getThreadPool(), f, *args, **kwargs)  # type: ignore[attr-defined]


def defer_to_threadpool(
    reactor: "IReactorFromThreads",
    threadpool: ThreadPool,
    f: Callable[P, R],
    *args: P.args,
    **kwargs: P.kwargs,
) -> "Deferred[R]":
    """
    A wrapper for twisted.internet.threads.deferToThreadpool, which handles
    request contexts correctly.

    Args:
        reactor: The reactor in whose main thread the Deferred will be invoked.
            Normally this will be hs.get_reactor().

        threadpool: The threadpool to use for running `f`. Normally this will be
            hs.get_reactor().getThreadPool().

        f: The function to call.

        args: positional arguments to pass to f.

        kwargs: keyword arguments to pass to f.

    Returns:
        A Deferred which fires a callback with the result of `f`, or an
            errback if `f` throws an exception.
    """
    ctx = contextvars.copy_context()

    def g() -> R:
        return ctx.run(f, *args, **kwargs)

    return threads.deferToThreadPool(reactor, threadpool, g)  # type: ignore[arg-type]

