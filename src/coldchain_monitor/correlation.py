"""Correlation ids for tracing one inbound message or command through the logs.

The id lives in a context variable, so every coroutine and callback running
inside a `correlation_context()` picks it up without passing it around.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "get_correlation_id",
    "new_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "coldchain_correlation_id",
    default=None,
)


def new_correlation_id() -> str:
    """Return a fresh correlation id (UUID4 hex)."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    """Return the correlation id of the current context, if any."""
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """Scope a correlation id, generating one when none is given.

    The previous id is restored on exit.

    Example:
        with correlation_context() as corr_id:
            synchronizer.handle_message(message)

    """
    token = _correlation_id.set(correlation_id or new_correlation_id())
    try:
        yield _correlation_id.get() or ""
    finally:
        _correlation_id.reset(token)
