"""Sandbox subsystem: policy, filtering, output capture and deadline enforcement."""

from snippet_jail.sandbox.capture import OutputCapture
from snippet_jail.sandbox.context import Sandbox
from snippet_jail.sandbox.filter import ExecutionFilter
from snippet_jail.sandbox.security import ExecutionPolicy
from snippet_jail.sandbox.watchdog import Watchdog

__all__ = [
    "ExecutionFilter",
    "ExecutionPolicy",
    "OutputCapture",
    "Sandbox",
    "Watchdog",
]
