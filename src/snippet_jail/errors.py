"""Error taxonomy for the evaluation core.

Compile and runtime failures of untrusted code are *data*
(:class:`~snippet_jail.models.events.SnippetEvent`), never exceptions.
Only the conditions below propagate to callers.
"""

from __future__ import annotations


class SnippetJailError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(SnippetJailError, ValueError):
    """Raised at construction time when configuration is malformed."""


class EvaluationTimeout(SnippetJailError, TimeoutError):
    """Raised when an evaluation overruns the watchdog deadline.

    Attributes:
        timeout_seconds: The deadline that elapsed.
    """

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Evaluation timed out after {timeout_seconds:g}s")


class EngineError(SnippetJailError):
    """The engine process failed to start or died unexpectedly."""


class EngineStoppedError(EngineError):
    """An in-flight evaluation was interrupted by a forced stop."""


class EngineRetiredError(EngineError):
    """The engine (or the evaluator owning it) can no longer be used."""


class SandboxBusyError(SnippetJailError, RuntimeError):
    """A sandboxed action was started while another one was running."""


class BlockedSymbolError(SnippetJailError):
    """Raised inside untrusted code when the execution policy denies access.

    Attributes:
        symbol: The package, class or ``Owner#method`` that was denied.
    """

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"Access to {symbol!r} is blocked by the execution policy")
