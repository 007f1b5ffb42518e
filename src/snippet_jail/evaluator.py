"""The evaluation wrapper: one engine session under a deadline, a policy and an output cap."""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial

from snippet_jail.config import Settings
from snippet_jail.engine.base import ExecutionEngine
from snippet_jail.engine.host import SubprocessEngine
from snippet_jail.errors import EngineError, EngineRetiredError, EvaluationTimeout
from snippet_jail.models.events import Diagnostic, SnippetEvent
from snippet_jail.models.result import EvaluationResult
from snippet_jail.sandbox.capture import OutputCapture
from snippet_jail.sandbox.security import ExecutionPolicy
from snippet_jail.sandbox.watchdog import Watchdog

logger = logging.getLogger(__name__)

EngineFactory = Callable[[ExecutionPolicy, OutputCapture], ExecutionEngine]


class SnippetEvaluator:
    """Evaluate untrusted commands in one persistent engine session.

    The policy, the output capture and the engine are created once, at
    construction; malformed configuration fails here rather than on the
    first :meth:`eval`.  Each :meth:`eval` runs the engine under the
    watchdog deadline and always leaves the output capture empty.

    When a timeout forces the engine to stop, or the engine dies, the
    evaluator is *retired*: its engine is closed and every later call
    raises :class:`~snippet_jail.errors.EngineRetiredError`.  Create a new
    evaluator to continue.

    The evaluator is not thread-safe; callers run one call at a time.

    Parameters
    ----------
    settings:
        Configuration; defaults to ``Settings()`` read from the environment.
    watchdog:
        Deadline enforcer to share with other evaluators.  It runs one
        action at a time and the deadline covers time spent queued, so a
        shared watchdog is only for evaluators whose calls are serialized.
        When omitted the evaluator creates its own and closes it in
        :meth:`close`.
    engine_factory:
        Builds the engine from the policy and the output capture.  The
        default starts a :class:`~snippet_jail.engine.host.SubprocessEngine`.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        watchdog: Watchdog | None = None,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        self._settings = settings or Settings()
        policy = ExecutionPolicy.from_settings(self._settings)
        self._capture = OutputCapture(
            initial_capacity=self._settings.output_initial_capacity_bytes,
            max_bytes=self._settings.max_output_bytes,
            encoding=self._settings.output_encoding,
        )

        self._owns_watchdog = watchdog is None
        self._watchdog = watchdog or Watchdog(
            self._settings.timeout_seconds, self._settings.stop_grace_seconds
        )
        factory = engine_factory or self._start_engine
        try:
            self._engine = factory(policy, self._capture)
        except BaseException:
            if self._owns_watchdog:
                self._watchdog.close()
            raise

        self._retired = False
        self._closed = False

    def _start_engine(self, policy: ExecutionPolicy, capture: OutputCapture) -> ExecutionEngine:
        return SubprocessEngine(
            policy,
            out=capture,
            err=capture,
            encoding=capture.encoding,
            memory_limit_mb=self._settings.engine_memory_limit_mb,
            start_timeout=self._settings.engine_start_timeout_seconds,
        )

    @property
    def retired(self) -> bool:
        """True once the evaluator can no longer be used."""
        return self._retired or self._closed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def eval(self, command: str) -> EvaluationResult:
        """Evaluate *command* and return its events and captured output.

        Raises:
            EvaluationTimeout: The deadline elapsed.  If the engine had to
                be stopped the evaluator is retired as well.
            EngineError: The engine failed; the evaluator is retired.
            EngineRetiredError: The evaluator was retired or closed earlier.
        """
        self._ensure_usable()
        try:
            events = self._watchdog.run_watched(
                partial(self._engine.evaluate, command), self._engine.stop
            )
            return EvaluationResult(events=tuple(events), stdout=self._capture.drain())
        except EvaluationTimeout:
            if self._engine.stopped:
                self._retire("evaluation exceeded its deadline")
            raise
        except EngineError as exc:
            self._retire(str(exc))
            raise
        finally:
            self._capture.reset()

    def get_diagnostics(self, snippet: SnippetEvent | str) -> list[Diagnostic]:
        """Return the compile-time diagnostics of a snippet event (or snippet id).

        Raises:
            ValueError: The snippet is unknown to this session.
            EngineRetiredError: The evaluator was retired or closed earlier.
        """
        self._ensure_usable()
        snippet_id = snippet.snippet_id if isinstance(snippet, SnippetEvent) else snippet
        try:
            return self._engine.diagnostics(snippet_id)
        except EngineError as exc:
            self._retire(str(exc))
            raise

    def close(self) -> None:
        """Release the engine and, if owned, the watchdog.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            self._engine.close()
        finally:
            if self._owns_watchdog:
                self._watchdog.close()

    def __enter__(self) -> SnippetEvaluator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_usable(self) -> None:
        if self._closed:
            raise EngineRetiredError("The evaluator has been closed.")
        if self._retired:
            raise EngineRetiredError("The evaluator was retired after its engine stopped.")

    def _retire(self, reason: str) -> None:
        if self._retired:
            return
        logger.warning("Retiring evaluator: %s", reason)
        self._retired = True
        self._engine.close()
