"""Per-conversation evaluator sessions with idle expiry and LRU eviction."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from snippet_jail.config import Settings
from snippet_jail.errors import ConfigurationError
from snippet_jail.evaluator import SnippetEvaluator
from snippet_jail.models.events import Diagnostic
from snippet_jail.models.result import EvaluationResult

logger = logging.getLogger(__name__)

EvaluatorFactory = Callable[[], SnippetEvaluator]


@dataclass
class _Session:
    last_used: float
    evaluator: SnippetEvaluator | None = None
    closed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    def close(self) -> None:
        # Waits for an in-flight evaluation of this session to finish.
        with self.lock:
            self.closed = True
            if self.evaluator is not None:
                self.evaluator.close()
                self.evaluator = None


class SessionManager:
    """Keep one :class:`SnippetEvaluator` per session id.

    Evaluators are created on first use and replaced transparently when a
    previous one was retired.  Calls for the same session are serialized;
    different sessions evaluate concurrently.  Sessions idle for longer
    than ``session_idle_seconds`` are dropped by :meth:`expire_idle`, and
    the least recently used session is closed once more than
    ``max_sessions`` exist.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        evaluator_factory: EvaluatorFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or Settings()
        if self._settings.max_sessions < 1:
            raise ConfigurationError("max_sessions must be at least 1.")
        self._factory = evaluator_factory or (lambda: SnippetEvaluator(self._settings))
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: OrderedDict[str, _Session] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> list[str]:
        """Return the active session ids, least recently used first."""
        with self._lock:
            return list(self._sessions)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def eval(self, session_id: str, command: str) -> EvaluationResult:
        """Evaluate *command* in the session, creating it if needed.

        Errors of :meth:`SnippetEvaluator.eval` propagate; a retired
        evaluator is discarded first, so the next call starts afresh.
        """
        while True:
            session = self._touch(session_id)
            with session.lock:
                if session.closed:
                    # Evicted or expired between lookup and lock; start over.
                    continue
                if session.evaluator is None:
                    session.evaluator = self._factory()
                    logger.info("Started evaluator for session %s", session_id)
                evaluator = session.evaluator
                try:
                    return evaluator.eval(command)
                finally:
                    session.last_used = self._clock()
                    if evaluator.retired:
                        logger.warning("Discarding retired evaluator of session %s", session_id)
                        evaluator.close()
                        session.evaluator = None

    def diagnostics(self, session_id: str, snippet_id: str) -> list[Diagnostic]:
        """Return the diagnostics of one snippet of a session.

        Raises:
            KeyError: The session does not exist or has no live evaluator.
            ValueError: The snippet is unknown to the session.
        """
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        with session.lock:
            if session.closed or session.evaluator is None:
                raise KeyError(session_id)
            return session.evaluator.get_diagnostics(snippet_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close_session(self, session_id: str) -> bool:
        """Close a session; return False if it did not exist."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info("Closed session %s", session_id)
        return True

    def expire_idle(self) -> int:
        """Close every session idle for longer than ``session_idle_seconds``."""
        deadline = self._clock() - self._settings.session_idle_seconds
        with self._lock:
            expired = [sid for sid, session in self._sessions.items() if session.last_used < deadline]
            sessions = [self._sessions.pop(sid) for sid in expired]
        for sid, session in zip(expired, sessions):
            session.close()
            logger.info("Expired idle session %s", sid)
        return len(expired)

    def close(self) -> None:
        """Close every session."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        if sessions:
            logger.info("Closed %d session(s)", len(sessions))

    def _touch(self, session_id: str) -> _Session:
        now = self._clock()
        evicted: list[tuple[str, _Session]] = []
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = _Session(last_used=now)
                self._sessions[session_id] = session
                logger.info("Created session %s", session_id)
            else:
                session.last_used = now
                self._sessions.move_to_end(session_id)
            while len(self._sessions) > self._settings.max_sessions:
                evicted.append(self._sessions.popitem(last=False))
        for sid, old in evicted:
            old.close()
            logger.info("Evicted least recently used session %s", sid)
        return session
