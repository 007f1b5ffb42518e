"""Integration tests for the child-process engine."""

from __future__ import annotations

import threading
import time

import pytest

from snippet_jail.engine.host import SubprocessEngine
from snippet_jail.errors import EngineError, EngineRetiredError, EngineStoppedError
from snippet_jail.models.enums import SnippetStatus
from snippet_jail.sandbox.capture import OutputCapture
from snippet_jail.sandbox.security import ExecutionPolicy


@pytest.fixture
def capture():
    return OutputCapture()


@pytest.fixture
def engine(policy, capture):
    engine = SubprocessEngine(policy, out=capture, err=capture, start_timeout=60.0)
    yield engine
    engine.close()


class TestSubprocessEngine:
    def test_evaluate_returns_events(self, engine):
        (event,) = engine.evaluate("1 + 1")
        assert event.status == SnippetStatus.VALID
        assert event.value == "2"

    def test_output_is_forwarded_to_sink(self, engine, capture):
        engine.evaluate("print('from the child')")
        assert capture.drain() == "from the child\n"

    def test_policy_applies_in_child(self, engine):
        (event,) = engine.evaluate("import os")
        assert event.status == SnippetStatus.EXCEPTION

    def test_diagnostics_over_the_pipe(self, engine):
        (event,) = engine.evaluate("1 +")
        (diagnostic,) = engine.diagnostics(event.snippet_id)
        assert diagnostic.line == 1

    def test_unknown_snippet_raises_value_error(self, engine):
        with pytest.raises(ValueError, match="Unknown snippet id"):
            engine.diagnostics("404")

    def test_stop_without_evaluation_is_a_no_op(self, engine):
        engine.stop()
        assert not engine.stopped
        assert engine.evaluate("'still alive'")[0].value == "'still alive'"

    def test_stop_kills_running_evaluation(self, engine):
        errors: list[BaseException] = []

        def run():
            try:
                engine.evaluate("while True:\n    pass")
            except BaseException as exc:
                errors.append(exc)

        worker = threading.Thread(target=run)
        worker.start()
        time.sleep(1.0)
        engine.stop()
        worker.join(10)

        assert not worker.is_alive()
        assert engine.stopped
        assert isinstance(errors[0], EngineStoppedError)
        with pytest.raises(EngineRetiredError):
            engine.evaluate("1")

    def test_close_is_idempotent(self, engine):
        engine.close()
        engine.close()
        assert engine.stopped


class TestEngineDeath:
    def test_unexpected_exit_is_an_engine_error(self, capture):
        engine = SubprocessEngine(ExecutionPolicy(), out=capture, err=capture, start_timeout=60.0)
        try:
            with pytest.raises(EngineError, match="exited unexpectedly"):
                engine.evaluate("import os\nos._exit(3)")
            assert engine.stopped
        finally:
            engine.close()
