"""Core domain models for snippet evaluation."""

from snippet_jail.models.enums import DiagnosticSeverity, SnippetKind, SnippetStatus
from snippet_jail.models.events import Diagnostic, SnippetEvent
from snippet_jail.models.result import EvaluationResult

__all__ = [
    "Diagnostic",
    "DiagnosticSeverity",
    "EvaluationResult",
    "SnippetEvent",
    "SnippetKind",
    "SnippetStatus",
]
