"""Evaluate/diagnostics/close endpoints for evaluation sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, Request, Response
from pydantic import BaseModel, Field

from snippet_jail.errors import EngineError, EvaluationTimeout
from snippet_jail.models.events import Diagnostic, SnippetEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])

SessionId = Annotated[
    str,
    Path(
        pattern=r"^[A-Za-z0-9_.:-]{1,128}$",
        description="Caller-chosen session identifier, e.g. a chat channel id.",
    ),
]


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class EvalRequest(BaseModel):
    """Request body for ``POST /v1/sessions/{session_id}/eval``."""

    command: str = Field(description="Source text to evaluate in the session.")


class EvalResponse(BaseModel):
    """Response body for ``POST /v1/sessions/{session_id}/eval``."""

    session_id: str
    events: list[SnippetEvent]
    stdout: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/{session_id}/eval", response_model=EvalResponse)
async def evaluate(
    body: EvalRequest,
    request: Request,
    session_id: SessionId,
) -> EvalResponse:
    """Evaluate a command in the session, creating the session on first use.

    Rejected snippets and runtime failures are part of a normal 200
    response.  A command over the size limit is refused with 413, a
    command that overran its deadline yields 504 and an engine failure
    yields 503; the next command then starts a fresh session state.
    """
    settings = request.app.state.settings
    manager = request.app.state.sessions

    size = len(body.command.encode("utf-8"))
    if size > settings.max_command_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=(
                f"Command exceeds maximum allowed size "
                f"({size:,} bytes > {settings.max_command_size_bytes:,} bytes)."
            ),
        )

    try:
        result = await asyncio.to_thread(manager.eval, session_id, body.command)
    except EvaluationTimeout as exc:
        logger.info("Evaluation in session %s timed out", session_id)
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except EngineError as exc:
        logger.error("Engine failure in session %s: %s", session_id, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return EvalResponse(
        session_id=session_id,
        events=list(result.events),
        stdout=result.stdout,
    )


@router.get(
    "/{session_id}/snippets/{snippet_id}/diagnostics",
    response_model=list[Diagnostic],
)
async def get_diagnostics(
    snippet_id: str,
    request: Request,
    session_id: SessionId,
) -> list[Diagnostic]:
    """Get the compile-time diagnostics of one snippet of the session."""
    manager = request.app.state.sessions

    try:
        return await asyncio.to_thread(manager.diagnostics, session_id, snippet_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found.") from None
    except ValueError:
        raise HTTPException(
            status_code=404,
            detail=f"Snippet {snippet_id} not found in session {session_id}.",
        ) from None
    except EngineError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@router.delete("/{session_id}", status_code=204)
async def close_session(request: Request, session_id: SessionId) -> Response:
    """Close the session and discard its state."""
    manager = request.app.state.sessions

    if not await asyncio.to_thread(manager.close_session, session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found.")
    return Response(status_code=204)


@router.get("", response_model=list[str])
async def list_sessions(request: Request) -> list[str]:
    """List active session ids, least recently used first."""
    return request.app.state.sessions.session_ids()
