# -*- coding: utf-8 -*-
"""
Uplift: Spectral uplifting of colors through metamer mismatch volumes
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: uplift_context.py - Execution context for data-parallel solves.

A ``SolverContext`` owns one thread pool and is passed explicitly to the
functions that fan out work (mismatch sampling, per-vertex builder updates).
Functions accept ``context=None`` and then run serially in the calling
thread. Results always come back in input order, so outputs never depend on
the number of workers.

Numba kernels and the scipy solvers release the GIL for most of their
runtime, which is why a thread pool is sufficient here.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, TypeVar

from uplift_config import get_settings

__all__ = ["SolverContext", "run_map"]

logger = logging.getLogger("uplift.context")

T = TypeVar("T")
R = TypeVar("R")


class SolverContext:
    """
    Thread pool shared by one engine.

    Usage::

        with SolverContext(max_workers=4) as ctx:
            samples = solve_mismatch_solid(..., context=ctx)
    """

    __slots__ = ("_executor", "_max_workers", "_lock", "_closed")

    def __init__(self, max_workers: Optional[int] = None) -> None:
        if max_workers is None:
            max_workers = get_settings().max_workers
        if max_workers is not None and max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._closed:
                raise RuntimeError("SolverContext is closed")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="uplift")
                logger.debug("Started worker pool (max_workers=%s)",
                             self._executor._max_workers)
            return self._executor

    def map(self, fn: Callable[[T], R], items: Iterable[T]) -> List[R]:
        """Applies ``fn`` to every item on the pool; results keep input order."""
        items = list(items)
        if len(items) <= 1:
            return [fn(item) for item in items]
        return list(self._get_executor().map(fn, items))

    def close(self) -> None:
        """Shuts the pool down, waiting for running work."""
        with self._lock:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
            logger.debug("Worker pool shut down")

    def __enter__(self) -> "SolverContext":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def run_map(context: Optional[SolverContext], fn: Callable[[T], R], items: Iterable[T]) -> List[R]:
    """Maps on ``context`` if given, else serially."""
    if context is None:
        return [fn(item) for item in items]
    return context.map(fn, items)
