"""Shared fixtures: a small execution policy used across the test suite."""

from __future__ import annotations

import pytest

from snippet_jail.config import Settings
from snippet_jail.sandbox.filter import ExecutionFilter
from snippet_jail.sandbox.security import ExecutionPolicy

BLOCKED_PACKAGES = ["os", "subprocess", "socket"]
BLOCKED_CLASSES = ["collections.OrderedDict", "pathlib.Path"]
BLOCKED_METHODS = ["builtins#open", "builtins.str#upper", "json#dumps"]


@pytest.fixture
def policy() -> ExecutionPolicy:
    return ExecutionPolicy.from_lists(
        packages=BLOCKED_PACKAGES,
        classes=BLOCKED_CLASSES,
        methods=BLOCKED_METHODS,
    )


@pytest.fixture
def execution_filter(policy: ExecutionPolicy) -> ExecutionFilter:
    return ExecutionFilter(policy)


def make_settings(**overrides) -> Settings:
    """Settings with the test policy and generous engine start-up time."""
    values = {
        "blocked_packages": ",".join(BLOCKED_PACKAGES),
        "blocked_classes": ",".join(BLOCKED_CLASSES),
        "blocked_methods": ",".join(BLOCKED_METHODS),
        "timeout_seconds": 10.0,
        "stop_grace_seconds": 2.0,
        "engine_start_timeout_seconds": 60.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def settings_factory():
    return make_settings
