"""EvaluationResult model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from snippet_jail.models.events import SnippetEvent


class EvaluationResult(BaseModel):
    """Immutable record produced by one ``eval`` call.

    Events are in the source order of the decomposed command, each
    followed by the overwrite events it caused.
    """

    model_config = ConfigDict(frozen=True)

    events: tuple[SnippetEvent, ...] = Field(
        default=(),
        description="Snippet events in source order.",
    )
    stdout: str = Field(
        default="",
        description="Everything written to stdout/stderr during the evaluation.",
    )

    @field_validator("stdout", mode="before")
    @classmethod
    def _absent_output_is_empty(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def succeeded(self) -> bool:
        """True if no snippet was rejected or raised."""
        return all(event.succeeded for event in self.events)
