"""
Single-flight guard for reconciliation sweeps.

The cron job, ``POST /api/reconcile`` and ``keeper reconcile`` all enter the
same key, so at most one sweep runs per process. Separate processes are not
excluded; the engine's compare-and-set writes cover that case.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

logger = logging.getLogger(__name__)

RECONCILE_KEY = "reconcile"

T = TypeVar("T")

# Only touched from the event loop thread
_in_flight: set[str] = set()


@contextmanager
def single_flight(key: str) -> Iterator[bool]:
    """Hold ``key`` for the block. Yields False if it is already held."""
    if key in _in_flight:
        logger.info("%s already in flight, skipping", key)
        yield False
        return
    _in_flight.add(key)
    try:
        yield True
    finally:
        _in_flight.discard(key)


async def run_exclusive(key: str, job: Callable[[], Awaitable[T]]) -> tuple[bool, T | None]:
    """Run ``job`` under ``key``. Returns (False, None) if it was already running."""
    with single_flight(key) as acquired:
        if not acquired:
            return False, None
        return True, await job()


def is_running(key: str) -> bool:
    return key in _in_flight


def clear() -> None:
    """Drop every held key. Only for testing."""
    _in_flight.clear()
