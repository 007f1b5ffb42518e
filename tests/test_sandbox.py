"""Tests for scoped activation of the restricted context."""

from __future__ import annotations

import io
import sys

import pytest

from snippet_jail.errors import SandboxBusyError
from snippet_jail.sandbox.capture import OutputCapture
from snippet_jail.sandbox.context import Sandbox


class FlushRecorder(io.StringIO):
    def __init__(self):
        super().__init__()
        self.flushes = 0

    def flush(self):
        self.flushes += 1
        super().flush()


class TestSandbox:
    """Tests for Sandbox.run_in_sandbox and Sandbox.activated."""

    def test_returns_action_result(self, execution_filter):
        sandbox = Sandbox(execution_filter)
        assert sandbox.run_in_sandbox(lambda: 7) == 7

    def test_filter_active_only_during_action(self, execution_filter):
        sandbox = Sandbox(execution_filter)
        seen = sandbox.run_in_sandbox(lambda: execution_filter.active)
        assert seen is True
        assert execution_filter.active is False

    def test_deactivated_when_action_raises(self, execution_filter):
        sandbox = Sandbox(execution_filter)

        def fail():
            raise RuntimeError("untrusted failure")

        with pytest.raises(RuntimeError, match="untrusted failure"):
            sandbox.run_in_sandbox(fail)
        assert execution_filter.active is False
        assert not sandbox.busy

    def test_redirects_stdout_and_stderr(self, execution_filter):
        capture = OutputCapture()
        sandbox = Sandbox(execution_filter, out=capture, err=capture)

        def speak():
            print("to stdout")
            print("to stderr", file=sys.stderr)

        sandbox.run_in_sandbox(speak)
        assert capture.drain() == "to stdout\nto stderr\n"

    def test_streams_restored_afterwards(self, execution_filter):
        stdout, stderr, stdin = sys.stdout, sys.stderr, sys.stdin
        sandbox = Sandbox(execution_filter, out=io.StringIO(), err=io.StringIO())
        sandbox.run_in_sandbox(lambda: None)
        assert sys.stdout is stdout
        assert sys.stderr is stderr
        assert sys.stdin is stdin

    def test_stdin_is_empty(self, execution_filter):
        sandbox = Sandbox(execution_filter)
        assert sandbox.run_in_sandbox(lambda: sys.stdin.read()) == ""

    def test_input_sees_end_of_file(self, execution_filter):
        sandbox = Sandbox(execution_filter, out=io.StringIO())
        with pytest.raises(EOFError):
            sandbox.run_in_sandbox(input)

    def test_streams_flushed_before_exit(self, execution_filter):
        out, err = FlushRecorder(), FlushRecorder()
        sandbox = Sandbox(execution_filter, out=out, err=err)
        sandbox.run_in_sandbox(lambda: None)
        assert out.flushes >= 1
        assert err.flushes >= 1

    def test_reentrant_activation_is_refused(self, execution_filter):
        sandbox = Sandbox(execution_filter)

        def nested():
            assert sandbox.busy
            return sandbox.run_in_sandbox(lambda: "inner")

        with pytest.raises(SandboxBusyError):
            sandbox.run_in_sandbox(nested)
        assert not sandbox.busy
        assert sandbox.run_in_sandbox(lambda: "again") == "again"

    def test_activated_context_manager(self, execution_filter):
        sandbox = Sandbox(execution_filter)
        with sandbox.activated():
            assert execution_filter.active
        assert not execution_filter.active
