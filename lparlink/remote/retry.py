"""Retry-until-ready combinator for non-blocking protocol steps.

Every multi-step operation in this package (channel open, exec, read, close,
SCP send and receive) is driven the same way: attempt the step; if it raises
``BlockingIOError`` wait for the session to become ready and attempt the same
step again. Any other exception is a hard error and propagates unchanged.

Example::

    channel = retry_would_block(session.open_channel, session.wait_ready)
    retry_would_block(channel.exec, session.wait_ready, "uname -a")
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Direction(enum.Flag):
    """Which way a blocked step is waiting on the socket."""

    NONE = 0
    INBOUND = enum.auto()
    OUTBOUND = enum.auto()


def retry_would_block(
    step: Callable[..., T],
    wait_ready: Callable[[], None],
    *args,
    **kwargs,
) -> T:
    """Run ``step`` until it stops raising ``BlockingIOError``.

    Args:
        step: The fallible primitive. Called with ``*args`` and ``**kwargs``
            on every attempt.
        wait_ready: Readiness wait invoked once per would-block report.

    Returns:
        Whatever ``step`` returns on its first non-blocking attempt.
    """
    waits = 0
    while True:
        try:
            result = step(*args, **kwargs)
        except BlockingIOError:
            waits += 1
            wait_ready()
            continue
        if waits:
            logger.debug(
                "%s completed after %d readiness wait(s)",
                getattr(step, "__name__", "step"),
                waits,
            )
        return result
