"""Run the snippet interpreter in a child process that can be killed.

Python cannot interrupt a thread stuck in untrusted code, so every
engine session lives in its own ``spawn``-ed process.  The parent side,
:class:`SubprocessEngine`, talks to :func:`serve` over a
:func:`multiprocessing.Pipe`:

* requests are ``(name, argument)`` tuples: ``("evaluate", command)``,
  ``("diagnostics", snippet_id)`` and ``("close", None)``;
* while an evaluation runs the child streams ``("stdout", bytes)`` and
  ``("stderr", bytes)`` messages, which the parent writes into its
  output sinks;
* each request ends with ``("ok", payload)`` or
  ``("fail", (exception_type, message))``.

A forced :meth:`SubprocessEngine.stop` kills the child, after which the
engine is terminal.
"""

from __future__ import annotations

import io
import logging
import multiprocessing
import os
import threading
from functools import partial
from multiprocessing.connection import Connection
from typing import Any, BinaryIO, Protocol

from snippet_jail.engine.base import ExecutionEngine
from snippet_jail.engine.interpreter import SnippetInterpreter
from snippet_jail.errors import EngineError, EngineRetiredError, EngineStoppedError
from snippet_jail.models.events import Diagnostic, SnippetEvent
from snippet_jail.sandbox.context import Sandbox
from snippet_jail.sandbox.filter import ExecutionFilter
from snippet_jail.sandbox.security import ExecutionPolicy

logger = logging.getLogger(__name__)

# Seconds to wait for a child to exit after a "close" request or a kill.
_EXIT_WAIT_SECONDS: float = 2.0


class OutputSink(Protocol):
    def write(self, data: bytes) -> int: ...


# ----------------------------------------------------------------------
# Child side
# ----------------------------------------------------------------------


class _PipeWriter(io.RawIOBase):
    """Raw byte stream forwarding every write to the parent as a message."""

    def __init__(self, conn: Connection, channel: str) -> None:
        super().__init__()
        self._conn = conn
        self._channel = channel

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        chunk = bytes(data)
        if chunk:
            self._conn.send((self._channel, chunk))
        return len(chunk)


def _text_stream(conn: Connection, channel: str, encoding: str) -> io.TextIOWrapper:
    raw: BinaryIO = io.BufferedWriter(_PipeWriter(conn, channel))
    return io.TextIOWrapper(raw, encoding=encoding, errors="replace", line_buffering=True)


def _limit_memory(megabytes: int) -> None:
    import resource

    limit = megabytes * 1024 * 1024
    resource.setrlimit(resource.RLIMIT_AS, (limit, limit))


def serve(
    conn: Connection,
    policy: ExecutionPolicy,
    encoding: str = "utf-8",
    memory_limit_mb: int = 0,
) -> None:
    """Child process entry point: answer requests until closed.

    Every evaluation runs inside a :class:`Sandbox`, so the execution
    filter is only active while untrusted code runs and stdout/stderr are
    forwarded to the parent for exactly that time.
    """
    if memory_limit_mb > 0:
        _limit_memory(memory_limit_mb)

    execution_filter = ExecutionFilter(policy)
    interpreter = SnippetInterpreter(execution_filter)
    sandbox = Sandbox(
        execution_filter,
        out=_text_stream(conn, "stdout", encoding),
        err=_text_stream(conn, "stderr", encoding),
    )
    conn.send(("ready", os.getpid()))

    while True:
        try:
            request, argument = conn.recv()
        except EOFError:
            break
        if request == "close":
            break
        try:
            if request == "evaluate":
                reply: Any = sandbox.run_in_sandbox(partial(interpreter.evaluate, argument))
            elif request == "diagnostics":
                reply = interpreter.diagnostics(argument)
            else:
                raise ValueError(f"Unknown engine request: {request!r}")
        except Exception as exc:
            conn.send(("fail", (exc.__class__.__name__, str(exc))))
        else:
            conn.send(("ok", reply))
    conn.close()


# ----------------------------------------------------------------------
# Parent side
# ----------------------------------------------------------------------


class SubprocessEngine(ExecutionEngine):
    """An :class:`ExecutionEngine` backed by a dedicated child process.

    Parameters
    ----------
    policy:
        Execution policy enforced by the child's filter.
    out, err:
        Sinks receiving the raw bytes the snippets write to stdout and
        stderr.  Both may be the same object.  ``None`` discards output.
    encoding:
        Encoding of the child's text streams.
    memory_limit_mb:
        Address-space limit applied to the child; ``0`` disables it.
    start_timeout:
        Seconds to wait for the child to report readiness.

    Raises
    ------
    EngineError
        If the child does not start in time.
    """

    def __init__(
        self,
        policy: ExecutionPolicy,
        *,
        out: OutputSink | None = None,
        err: OutputSink | None = None,
        encoding: str = "utf-8",
        memory_limit_mb: int = 0,
        start_timeout: float = 30.0,
    ) -> None:
        self._out = out
        self._err = err
        self._lock = threading.Lock()
        self._busy = False
        self._stopped = False
        self._closed = False

        context = multiprocessing.get_context("spawn")
        self._conn, child_conn = context.Pipe()
        self._process = context.Process(
            target=serve,
            args=(child_conn, policy, encoding, memory_limit_mb),
            name="snippet-engine",
            daemon=True,
        )
        self._process.start()
        child_conn.close()

        try:
            self._await_ready(start_timeout)
        except BaseException:
            self._kill()
            self._conn.close()
            self._closed = True
            raise
        logger.info("Engine process %s started", self.pid)

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _await_ready(self, timeout: float) -> None:
        try:
            if not self._conn.poll(timeout):
                raise EngineError(f"Engine process did not start within {timeout:g}s")
            message = self._conn.recv()
        except (EOFError, OSError) as exc:
            raise EngineError(
                f"Engine process exited during startup (exit code {self._process.exitcode})"
            ) from exc
        if not (isinstance(message, tuple) and message[0] == "ready"):
            raise EngineError(f"Unexpected startup message from engine: {message!r}")

    # ------------------------------------------------------------------
    # ExecutionEngine interface
    # ------------------------------------------------------------------

    def evaluate(self, command: str) -> list[SnippetEvent]:
        return self._request("evaluate", command)

    def diagnostics(self, snippet_id: str) -> list[Diagnostic]:
        return self._request("diagnostics", snippet_id)

    def stop(self) -> None:
        """Kill the child if an evaluation is in flight; otherwise do nothing."""
        with self._lock:
            if self._stopped or not self._busy:
                return
            self._stopped = True
        logger.warning("Stopping engine process %s", self.pid)
        self._kill()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stopped = True
        if self._process.is_alive():
            try:
                self._conn.send(("close", None))
            except OSError:
                logger.debug("Engine process %s already gone", self.pid)
            self._process.join(_EXIT_WAIT_SECONDS)
        self._kill()
        self._conn.close()
        logger.info("Engine process %s closed", self.pid)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _kill(self) -> None:
        if self._process.is_alive():
            self._process.kill()
            self._process.join(_EXIT_WAIT_SECONDS)

    def _forward(self, sink: OutputSink | None, data: bytes) -> None:
        # Output of an evaluation that is being stopped is discarded.
        if sink is not None and not self._stopped:
            sink.write(data)

    def _request(self, name: str, argument: Any) -> Any:
        with self._lock:
            if self._stopped:
                raise EngineRetiredError("The engine has been stopped and cannot be reused.")
            self._busy = True
        try:
            self._conn.send((name, argument))
            while True:
                kind, payload = self._conn.recv()
                if kind == "stdout":
                    self._forward(self._out, payload)
                elif kind == "stderr":
                    self._forward(self._err, payload)
                else:
                    break
        except (EOFError, OSError) as exc:
            if self._stopped:
                raise EngineStoppedError("The evaluation was interrupted by a forced stop.") from exc
            self._stopped = True
            self._kill()
            logger.error(
                "Engine process %s died unexpectedly (exit code %s)",
                self.pid,
                self._process.exitcode,
            )
            raise EngineError(
                f"Engine process exited unexpectedly (exit code {self._process.exitcode})"
            ) from exc
        finally:
            with self._lock:
                self._busy = False

        if kind == "ok":
            return payload
        exc_type, message = payload
        if exc_type == "ValueError":
            raise ValueError(message)
        raise EngineError(f"Engine request {name!r} failed: {exc_type}: {message}")
