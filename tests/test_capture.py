"""Tests for the bounded output capture."""

from __future__ import annotations

import sys
from contextlib import redirect_stderr, redirect_stdout

import pytest

from snippet_jail.errors import ConfigurationError
from snippet_jail.sandbox.capture import TRUNCATION_MARKER, OutputCapture


class TestOutputCapture:
    def test_empty_drain(self):
        assert OutputCapture().drain() == ""

    def test_text_and_bytes(self):
        capture = OutputCapture()
        assert capture.write("héllo ") == len("héllo ".encode("utf-8"))
        capture.write(b"world\n")
        assert capture.drain() == "héllo world\n"

    def test_drain_resets(self):
        capture = OutputCapture()
        capture.write("first")
        capture.drain()
        assert len(capture) == 0
        assert capture.drain() == ""

    def test_reset_discards_output(self):
        capture = OutputCapture()
        capture.write("x" * 100)
        capture.reset()
        assert capture.drain() == ""

    def test_grows_past_initial_capacity(self):
        capture = OutputCapture(initial_capacity=4, max_bytes=1024)
        capture.write("abcdefghij" * 10)
        assert capture.drain() == "abcdefghij" * 10
        assert not capture.truncated

    def test_truncates_at_hard_cap(self):
        capture = OutputCapture(initial_capacity=4, max_bytes=10)
        assert capture.write("x" * 25) == 25
        assert capture.truncated
        assert capture.drain() == "x" * 10 + TRUNCATION_MARKER

    def test_writes_after_cap_are_dropped(self):
        capture = OutputCapture(max_bytes=3)
        capture.write("abc")
        capture.write("def")
        assert capture.drain() == "abc" + TRUNCATION_MARKER

    def test_truncation_never_splits_a_character(self):
        capture = OutputCapture(max_bytes=5)
        capture.write("abcdé")  # é is two bytes in UTF-8
        assert capture.drain() == "abcd" + TRUNCATION_MARKER

    def test_truncation_flag_cleared_by_reset(self):
        capture = OutputCapture(max_bytes=2)
        capture.write("abc")
        capture.reset()
        assert not capture.truncated
        capture.write("ok")
        assert capture.drain() == "ok"

    def test_other_encoding(self):
        capture = OutputCapture(encoding="latin-1")
        capture.write("café")
        assert len(capture) == 4
        assert capture.drain() == "café"
        assert capture.encoding == "iso8859-1"

    def test_stdout_and_stderr_share_one_capture(self):
        capture = OutputCapture()
        with redirect_stdout(capture), redirect_stderr(capture):
            print("out")
            print("err", file=sys.stderr)
        assert capture.drain() == "out\nerr\n"

    def test_unknown_encoding_is_fatal(self):
        with pytest.raises(ConfigurationError, match="not available"):
            OutputCapture(encoding="no-such-codec")

    @pytest.mark.parametrize("kwargs", [{"initial_capacity": 0}, {"max_bytes": 0}, {"max_bytes": -5}])
    def test_sizes_must_be_positive(self, kwargs):
        with pytest.raises(ConfigurationError):
            OutputCapture(**kwargs)
