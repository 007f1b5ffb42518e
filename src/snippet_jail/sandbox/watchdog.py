"""Deadline enforcement for evaluations that may never yield."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TypeVar

from snippet_jail.errors import EvaluationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Watchdog:
    """Run actions under a fixed wall-clock deadline.

    The action runs on a worker thread owned by the watchdog while the
    calling thread waits for it.  When the deadline elapses first the
    caller-supplied ``on_timeout`` callback forcibly stops the action, the
    watchdog waits at most ``stop_grace_seconds`` for it to unwind, and
    :class:`~snippet_jail.errors.EvaluationTimeout` is raised.  A late
    result or error of the stopped action is discarded.

    ``run_watched`` therefore returns within
    ``timeout_seconds + stop_grace_seconds`` no matter what the action does.
    """

    def __init__(self, timeout_seconds: float, stop_grace_seconds: float = 2.0) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive.")
        if stop_grace_seconds < 0:
            raise ValueError("stop_grace_seconds must not be negative.")
        self.timeout_seconds = timeout_seconds
        self.stop_grace_seconds = stop_grace_seconds
        self._executor = self._new_executor()

    @staticmethod
    def _new_executor() -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="watchdog")

    def run_watched(self, action: Callable[[], T], on_timeout: Callable[[], None]) -> T:
        """Run *action*, stopping it through *on_timeout* if it overruns.

        Raises:
            EvaluationTimeout: If the deadline elapsed.
            Exception: Whatever *action* raised, if it finished in time.
        """
        future: Future[T] = self._executor.submit(action)
        # An action may raise TimeoutError itself; only the wait decides.
        done, _ = wait([future], timeout=self.timeout_seconds)
        if done:
            return future.result()

        logger.warning("Action exceeded %.3gs deadline, forcing stop", self.timeout_seconds)
        try:
            on_timeout()
        except Exception:
            logger.exception("Forced stop callback failed")

        done, _ = wait([future], timeout=self.stop_grace_seconds)
        if not done:
            # The worker is stuck for good; later actions get a fresh one.
            logger.error(
                "Action did not stop within %.3gs grace period, abandoning its worker",
                self.stop_grace_seconds,
            )
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = self._new_executor()

        raise EvaluationTimeout(self.timeout_seconds)

    def close(self) -> None:
        """Release the worker thread; in-flight actions are not waited for."""
        self._executor.shutdown(wait=False, cancel_futures=True)
