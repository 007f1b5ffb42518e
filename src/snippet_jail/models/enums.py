"""SnippetKind, SnippetStatus and DiagnosticSeverity enums."""

from enum import StrEnum


class SnippetKind(StrEnum):
    """What a single snippet of a command turned out to be."""

    EXPRESSION = "EXPRESSION"
    STATEMENT = "STATEMENT"
    VARIABLE = "VARIABLE"
    DEFINITION = "DEFINITION"
    IMPORT = "IMPORT"
    ERRONEOUS = "ERRONEOUS"


class SnippetStatus(StrEnum):
    """Outcome of defining/executing one snippet.

      VALID       - compiled and ran to completion.
      REJECTED    - failed to compile; diagnostics explain why.
      EXCEPTION   - raised at runtime, including execution policy denials.
      OVERWRITTEN - every name it defined was redefined by a later snippet.
    """

    VALID = "VALID"
    REJECTED = "REJECTED"
    EXCEPTION = "EXCEPTION"
    OVERWRITTEN = "OVERWRITTEN"


class DiagnosticSeverity(StrEnum):
    """Severity of a compile-time diagnostic."""

    ERROR = "ERROR"
    WARNING = "WARNING"
