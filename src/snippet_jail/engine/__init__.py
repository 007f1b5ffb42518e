"""Snippet execution engines."""

from snippet_jail.engine.base import ExecutionEngine
from snippet_jail.engine.host import SubprocessEngine
from snippet_jail.engine.interpreter import SnippetInterpreter

__all__ = ["ExecutionEngine", "SnippetInterpreter", "SubprocessEngine"]
