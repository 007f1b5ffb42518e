"""Tests for the execution filter's decisions and enforcement."""

from __future__ import annotations

import builtins
import collections
import json
import os
import pathlib

import pytest

from snippet_jail.errors import BlockedSymbolError
from snippet_jail.sandbox.filter import ExecutionFilter, qualified_name
from snippet_jail.sandbox.security import ExecutionPolicy


class TestDecisions:
    def test_package_prefix_matching(self, execution_filter):
        assert not execution_filter.allows_package("os")
        assert not execution_filter.allows_package("os.path")
        assert execution_filter.allows_package("ossaudiodev")
        assert execution_filter.allows_package("collections")

    def test_class_matching(self, execution_filter):
        assert not execution_filter.allows_class("collections.OrderedDict")
        assert execution_filter.allows_class("collections.Counter")

    def test_method_matching(self, execution_filter):
        assert not execution_filter.allows_method("builtins.str", "upper")
        assert execution_filter.allows_method("builtins.str", "lower")
        assert execution_filter.allows_method("builtins.bytes", "upper")

    def test_qualified_name(self):
        assert qualified_name(collections.OrderedDict) == "collections.OrderedDict"
        assert qualified_name(str) == "builtins.str"


class TestInactiveFilter:
    def test_everything_passes_while_inactive(self, execution_filter):
        assert not execution_filter.active
        assert execution_filter.check_value(os) is os
        assert execution_filter.check_name("open", builtins.open) is builtins.open
        assert execution_filter.check_attribute(collections, "OrderedDict") is collections.OrderedDict

    def test_activation_toggles(self, execution_filter):
        execution_filter.activate()
        assert execution_filter.active
        execution_filter.deactivate()
        assert not execution_filter.active


class TestActiveFilter:
    def setup_method(self):
        self.filter = ExecutionFilter(
            ExecutionPolicy.from_lists(
                packages=["os"],
                classes=["collections.OrderedDict"],
                methods=["builtins#open", "builtins.str#upper", "json#dumps"],
            )
        )
        self.filter.activate()

    def test_blocked_module_value(self):
        with pytest.raises(BlockedSymbolError, match="'os'") as excinfo:
            self.filter.check_value(os)
        assert excinfo.value.symbol == "os"

    def test_submodule_blocked_by_access_path(self):
        # os.path is posixpath or ntpath; the path it was reached by decides.
        with pytest.raises(BlockedSymbolError, match="os.path"):
            self.filter.check_attribute(os, "path")

    def test_allowed_module_value(self):
        assert self.filter.check_value(collections) is collections

    def test_blocked_class_by_access_path(self):
        with pytest.raises(BlockedSymbolError, match="collections.OrderedDict"):
            self.filter.check_attribute(collections, "OrderedDict")

    def test_blocked_class_value(self):
        with pytest.raises(BlockedSymbolError):
            self.filter.check_value(collections.OrderedDict)

    def test_instances_are_checked_by_class(self):
        with pytest.raises(BlockedSymbolError):
            self.filter.check_value(collections.OrderedDict())

    def test_subclass_of_blocked_class(self):
        class Ordered(collections.OrderedDict):
            pass

        with pytest.raises(BlockedSymbolError, match="collections.OrderedDict"):
            self.filter.check_value(Ordered)
        with pytest.raises(BlockedSymbolError, match="collections.OrderedDict"):
            self.filter.check_value(Ordered())

    def test_blocked_class_matched_by_published_name(self):
        path_filter = ExecutionFilter(ExecutionPolicy.from_lists(classes=["pathlib.Path"]))
        path_filter.activate()
        with pytest.raises(BlockedSymbolError, match="pathlib.Path"):
            path_filter.check_value(pathlib.Path)
        with pytest.raises(BlockedSymbolError, match="pathlib.Path"):
            path_filter.check_value(pathlib.PosixPath)
        with pytest.raises(BlockedSymbolError, match="pathlib.Path"):
            path_filter.check_value(pathlib.Path("/"))
        assert path_filter.check_value(pathlib.PurePosixPath) is pathlib.PurePosixPath

    def test_allowed_class(self):
        assert self.filter.check_attribute(collections, "Counter") is collections.Counter
        counter = collections.Counter("aab")
        assert self.filter.check_value(counter) is counter

    def test_class_from_blocked_package(self):
        with pytest.raises(BlockedSymbolError):
            self.filter.check_value(os.stat_result)

    def test_blocked_method_on_instance(self):
        with pytest.raises(BlockedSymbolError, match="builtins.str#upper"):
            self.filter.check_attribute("abc", "upper")

    def test_other_method_on_same_class_allowed(self):
        lower = self.filter.check_attribute("ABC", "lower")
        assert lower() == "abc"

    def test_blocked_method_reached_through_subclass(self):
        class Shout(str):
            pass

        with pytest.raises(BlockedSymbolError):
            self.filter.check_attribute(Shout("x"), "upper")

    def test_blocked_method_on_class_object(self):
        with pytest.raises(BlockedSymbolError):
            self.filter.check_attribute(str, "upper")

    def test_blocked_module_function(self):
        with pytest.raises(BlockedSymbolError, match="json#dumps"):
            self.filter.check_attribute(json, "dumps")
        assert self.filter.check_attribute(json, "loads") is json.loads

    def test_blocked_function_value(self):
        with pytest.raises(BlockedSymbolError):
            self.filter.check_value(json.dumps)

    def test_blocked_builtin_name(self):
        with pytest.raises(BlockedSymbolError, match="builtins#open"):
            self.filter.check_name("open", builtins.open)

    def test_allowed_builtin_name(self):
        assert self.filter.check_name("len", len) is len

    def test_shadowed_builtin_name_is_not_the_builtin(self):
        def open():  # noqa: A001
            return "mine"

        assert self.filter.check_name("open", open) is open

    def test_registered_replacement_counts_as_builtin(self):
        def replacement(*args):
            return None

        self.filter.register_builtin("open", replacement)
        with pytest.raises(BlockedSymbolError):
            self.filter.check_name("open", replacement)

    def test_attribute_default(self):
        assert self.filter.check_attribute(collections, "no_such_thing", 5) == 5

    def test_missing_attribute_raises(self):
        with pytest.raises(AttributeError):
            self.filter.check_attribute(collections, "no_such_thing")


class TestGuardedImport:
    def setup_method(self):
        self.imported: list[str] = []

        def recording_import(name, globals=None, locals=None, fromlist=(), level=0):
            self.imported.append(name)
            return builtins.__import__(name, globals, locals, fromlist, level)

        self.filter = ExecutionFilter(
            ExecutionPolicy.from_lists(
                packages=["os"],
                classes=["collections.OrderedDict"],
                methods=["json#dumps"],
            ),
            import_function=recording_import,
        )
        self.filter.activate()

    def test_blocked_package_is_never_imported(self):
        with pytest.raises(BlockedSymbolError):
            self.filter.guarded_import("os.path")
        assert self.imported == []

    def test_allowed_import(self):
        module = self.filter.guarded_import("collections")
        assert module is collections
        assert self.imported == ["collections"]

    def test_from_import_of_blocked_class(self):
        with pytest.raises(BlockedSymbolError):
            self.filter.guarded_import("collections", fromlist=("OrderedDict",))

    def test_from_import_of_blocked_method(self):
        with pytest.raises(BlockedSymbolError, match="json#dumps"):
            self.filter.guarded_import("json", fromlist=("dumps",))

    def test_from_import_of_allowed_names(self):
        module = self.filter.guarded_import("collections", fromlist=("Counter", "deque"))
        assert module is collections

    def test_star_import_checks_every_public_name(self):
        with pytest.raises(BlockedSymbolError):
            self.filter.guarded_import("collections", fromlist=("*",))

    def test_inactive_filter_imports_anything(self):
        self.filter.deactivate()
        assert self.filter.guarded_import("os") is os
