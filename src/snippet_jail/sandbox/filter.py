"""Execution filter: the capability check consulted on every symbol resolution.

The engine's rewritten snippets call into an :class:`ExecutionFilter` for
every name, attribute, subscript and call result they resolve, and for
every import.  While the filter is inactive all checks pass, so the
restricted context only applies inside :meth:`Sandbox.run_in_sandbox
<snippet_jail.sandbox.context.Sandbox.run_in_sandbox>`.
"""

from __future__ import annotations

import builtins
import logging
import sys
from collections.abc import Callable, Sequence
from types import BuiltinFunctionType, FunctionType, ModuleType
from typing import Any

from snippet_jail.errors import BlockedSymbolError
from snippet_jail.sandbox.security import METHOD_SEPARATOR, ExecutionPolicy

logger = logging.getLogger(__name__)

_MISSING = object()

ImportFunction = Callable[..., ModuleType]


def qualified_name(cls: type) -> str:
    """Return ``module.QualName`` for *cls*."""
    return f"{cls.__module__}.{cls.__qualname__}"


class ExecutionFilter:
    """Allow/deny decisions for packages, classes and methods.

    The ``allows_*`` methods are pure decisions.  The ``check_*`` methods
    enforce them while the filter is active by raising
    :class:`~snippet_jail.errors.BlockedSymbolError`, which reaches the
    caller as an ordinary runtime failure of the snippet.
    """

    def __init__(self, policy: ExecutionPolicy, import_function: ImportFunction | None = None) -> None:
        self._policy = policy
        self._import = import_function or builtins.__import__
        self._active = False
        self._builtin_replacements: dict[str, Any] = {}

    @property
    def policy(self) -> ExecutionPolicy:
        return self._policy

    def register_builtin(self, name: str, replacement: Any) -> None:
        """Treat *replacement* as the builtin *name* for ``builtins#name`` checks."""
        self._builtin_replacements[name] = replacement

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._active

    def activate(self) -> None:
        self._active = True

    def deactivate(self) -> None:
        self._active = False

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def allows_package(self, name: str) -> bool:
        """False if *name* is, or lives under, a blocked package."""
        for prefix in self._policy.blocked_packages:
            if name == prefix or name.startswith(prefix + "."):
                return False
        return True

    def allows_class(self, name: str) -> bool:
        """False if the fully-qualified class *name* is blocked."""
        return name not in self._policy.blocked_classes

    def allows_method(self, owner: str, method: str) -> bool:
        """False if *method* is blocked on *owner* (matched by name only)."""
        return (owner, method) not in self._policy.blocked_methods

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    def _deny(self, symbol: str) -> None:
        logger.debug("Denied access to %s", symbol)
        raise BlockedSymbolError(symbol)

    def _check_package(self, name: str) -> None:
        if not self.allows_package(name):
            self._deny(name)

    def _check_class_name(self, name: str) -> None:
        if not self.allows_class(name):
            self._deny(name)

    def _check_method(self, owners: Sequence[str], method: str) -> None:
        for owner in owners:
            if not self.allows_method(owner, method):
                self._deny(f"{owner}{METHOD_SEPARATOR}{method}")

    def _check_class(self, cls: type) -> None:
        module = getattr(cls, "__module__", None)
        if isinstance(module, str):
            self._check_package(module)
        # Subclasses of a blocked class are blocked too.
        for klass in cls.__mro__:
            self._check_class_name(qualified_name(klass))
            alias = self._blocked_alias(klass)
            if alias is not None:
                self._deny(alias)

    def _blocked_alias(self, cls: type) -> str | None:
        """Return the blocked name *cls* is published under, if any.

        Classes are often defined in a private module and re-exported
        (``pathlib._local.Path`` as ``pathlib.Path``).  Only modules that are
        already loaded are consulted.
        """
        for name in self._policy.blocked_classes:
            module_name, _, attribute = name.rpartition(".")
            module = sys.modules.get(module_name)
            if module is not None and vars(module).get(attribute) is cls:
                return name
        return None

    def check_value(self, value: Any) -> Any:
        """Check a resolved object and return it unchanged if allowed.

        Modules are checked by package, classes by package and name,
        functions by package and ``module#name``, and any other object by
        its class.
        """
        if not self._active:
            return value
        if isinstance(value, ModuleType):
            self._check_package(value.__name__)
        elif isinstance(value, type):
            self._check_class(value)
        elif isinstance(value, (FunctionType, BuiltinFunctionType)):
            self._check_function(value)
        else:
            self._check_class(type(value))
        return value

    def _check_function(self, func: FunctionType | BuiltinFunctionType) -> None:
        # Bound built-in methods ("abc".upper) carry no module; the attribute
        # access that produced them has been checked already.
        module = getattr(func, "__module__", None)
        name = getattr(func, "__name__", None)
        if not isinstance(module, str) or not isinstance(name, str):
            return
        self._check_package(module)
        owners = [module]
        if getattr(builtins, name, _MISSING) is func and module != "builtins":
            owners.append("builtins")
        self._check_method(owners, name)

    def _is_builtin(self, name: str, value: Any) -> bool:
        if getattr(builtins, name, _MISSING) is value:
            return True
        return self._builtin_replacements.get(name, _MISSING) is value

    def check_name(self, name: str, value: Any) -> Any:
        """Check a value loaded through the bare identifier *name*."""
        if not self._active:
            return value
        if self._is_builtin(name, value):
            self._check_method(["builtins"], name)
            self._check_class_name(f"builtins.{name}")
        return self.check_value(value)

    def check_attribute(self, obj: Any, name: str, *default: Any) -> Any:
        """Resolve ``getattr(obj, name[, default])`` under the policy.

        The ``(owner, name)`` pair is checked before the attribute is
        read.  For modules the owner is the module name; for classes and
        instances every class of the MRO is an owner.
        """
        if not self._active:
            return getattr(obj, name, *default)

        path: str | None = None
        if isinstance(obj, ModuleType):
            owners = [obj.__name__]
            path = f"{obj.__name__}.{name}"
            self._check_class_name(path)
        elif isinstance(obj, type):
            owners = [qualified_name(k) for k in obj.__mro__]
        else:
            owners = [qualified_name(k) for k in type(obj).__mro__]
        self._check_method(owners, name)

        value = getattr(obj, name, *default)
        if path is not None and isinstance(value, ModuleType):
            self._check_package(path)
        return self.check_value(value)

    def guarded_import(
        self,
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: Sequence[str] | None = (),
        level: int = 0,
    ) -> ModuleType:
        """Drop-in ``__import__`` that applies the package, class and method checks."""
        if self._active and level == 0:
            self._check_package(name)
        module = self._import(name, globals, locals, fromlist, level)
        if not self._active:
            return module

        self._check_package(module.__name__)
        for item in fromlist or ():
            if item == "*":
                names = getattr(module, "__all__", None) or [
                    n for n in vars(module) if not n.startswith("_")
                ]
                for star_name in names:
                    self._check_imported(module, star_name)
            else:
                self._check_imported(module, item)
        return module

    def _check_imported(self, module: ModuleType, item: str) -> None:
        path = f"{module.__name__}.{item}"
        self._check_class_name(path)
        self._check_method([module.__name__], item)
        value = getattr(module, item, _MISSING)
        if value is _MISSING:
            return
        if isinstance(value, ModuleType):
            self._check_package(path)
        self.check_value(value)
