"""Abstract engine interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from snippet_jail.models.events import Diagnostic, SnippetEvent


class ExecutionEngine(ABC):
    """The interactive engine that compiles and runs snippets.

    An engine keeps session state (definitions, variables) across
    :meth:`evaluate` calls and is not reentrant: callers run one
    evaluation at a time.
    """

    @abstractmethod
    def evaluate(self, command: str) -> list[SnippetEvent]:
        """Decompose *command* into snippets and run them in order.

        Compile and runtime failures are reported as events, never raised.

        Parameters
        ----------
        command:
            Source text as submitted by the caller.

        Returns
        -------
        list[SnippetEvent]
            One event per snippet in source order, each followed by the
            overwrite events it caused.
        """
        ...

    @abstractmethod
    def diagnostics(self, snippet_id: str) -> list[Diagnostic]:
        """Return the compile-time diagnostics for a snippet.

        Raises
        ------
        ValueError
            If no snippet with *snippet_id* exists in this session.
        """
        ...

    def stop(self) -> None:
        """Forcibly stop the in-flight evaluation, if any.

        The default engine cannot be stopped; this is a no-op.
        """

    @property
    def stopped(self) -> bool:
        """True once :meth:`stop` has ended an evaluation and the engine is terminal."""
        return False

    def close(self) -> None:
        """Release the engine's resources."""
