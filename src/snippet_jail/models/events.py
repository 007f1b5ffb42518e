"""SnippetEvent and Diagnostic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from snippet_jail.models.enums import DiagnosticSeverity, SnippetKind, SnippetStatus


class SnippetEvent(BaseModel):
    """The recorded outcome of processing one snippet."""

    model_config = ConfigDict(frozen=True)

    snippet_id: str = Field(
        description="Engine-session-unique identifier of the snippet.",
    )
    source: str = Field(
        description="Source text of the snippet as submitted.",
    )
    kind: SnippetKind = Field(
        description="Syntactic category of the snippet.",
    )
    status: SnippetStatus = Field(
        description="Status of the snippet after this event.",
    )
    value: str | None = Field(
        default=None,
        description="repr() of an expression's value, if it produced one.",
    )
    exception: str | None = Field(
        default=None,
        description="'ExceptionType: message' if the snippet raised.",
    )
    caused_by: str | None = Field(
        default=None,
        description="Id of the snippet whose evaluation triggered this event (overwrites).",
    )

    @property
    def succeeded(self) -> bool:
        return self.status not in (SnippetStatus.REJECTED, SnippetStatus.EXCEPTION)


class Diagnostic(BaseModel):
    """A compile-time message tied to one snippet."""

    model_config = ConfigDict(frozen=True)

    severity: DiagnosticSeverity
    message: str
    line: int | None = Field(default=None, description="1-based start line.")
    column: int | None = Field(default=None, description="1-based start column.")
    end_line: int | None = None
    end_column: int | None = None
