"""Scoped activation of the restricted execution context."""

from __future__ import annotations

import io
import logging
import sys
import threading
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager, redirect_stderr, redirect_stdout
from typing import TextIO, TypeVar

from snippet_jail.errors import SandboxBusyError
from snippet_jail.sandbox.filter import ExecutionFilter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Sandbox:
    """Run one action at a time inside the restricted context.

    While active, the execution filter enforces its policy, stdout and
    stderr go to the given streams and stdin is empty.  The context is torn
    down on every exit path, including exceptions raised by the action.
    A second activation while one is running raises
    :class:`~snippet_jail.errors.SandboxBusyError`.
    """

    def __init__(
        self,
        execution_filter: ExecutionFilter,
        out: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self._filter = execution_filter
        self._out = out
        self._err = err
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def activated(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SandboxBusyError("A sandboxed action is already running.")
        try:
            with ExitStack() as stack:
                if self._out is not None:
                    stack.enter_context(redirect_stdout(self._out))
                if self._err is not None:
                    stack.enter_context(redirect_stderr(self._err))
                stack.enter_context(_redirect_stdin(io.StringIO()))

                self._filter.activate()
                stack.callback(self._filter.deactivate)
                # Runs first on exit: push buffered text out while the
                # redirection is still in place.
                stack.callback(self._flush)
                yield
        finally:
            self._lock.release()

    def run_in_sandbox(self, action: Callable[[], T]) -> T:
        """Run *action* inside the restricted context and return its result."""
        with self.activated():
            return action()

    def _flush(self) -> None:
        for stream in (self._out, self._err):
            if stream is None:
                continue
            try:
                stream.flush()
            except (OSError, ValueError):
                logger.warning("Failed to flush sandbox output stream", exc_info=True)


@contextmanager
def _redirect_stdin(stream: TextIO) -> Iterator[None]:
    previous = sys.stdin
    sys.stdin = stream
    try:
        yield
    finally:
        sys.stdin = previous
