"""Execution policy: the immutable set of symbols untrusted code may not resolve."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from snippet_jail.config import comma_separated
from snippet_jail.errors import ConfigurationError

if TYPE_CHECKING:
    from snippet_jail.config import Settings

# Dotted Python names: ``os``, ``os.path``, ``collections.OrderedDict``,
# ``_io.FileIO``.  Qualnames of nested classes are dotted as well.
_DOTTED_NAME_RE: re.Pattern[str] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_IDENTIFIER_RE: re.Pattern[str] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

METHOD_SEPARATOR = "#"


def parse_method_entry(entry: str) -> tuple[str, str]:
    """Split ``Owner#method`` into its two parts.

    Raises:
        ConfigurationError: If the separator is missing or repeated, or
            either side is empty.
    """
    owner, sep, method = entry.partition(METHOD_SEPARATOR)
    if not sep or METHOD_SEPARATOR in method or not owner or not method:
        raise ConfigurationError(
            f"Malformed blocked method entry {entry!r}: expected 'ClassName#methodName'."
        )
    return owner, method


@dataclass(frozen=True)
class ExecutionPolicy:
    """Immutable execution policy consulted on every symbol resolution.

    There is no allow-list mode: everything not explicitly blocked is
    permitted.  All entries are validated in ``__post_init__`` so a broken
    policy fails at construction, never at first use.

    Attributes:
        blocked_packages: Package prefixes; ``os`` blocks ``os`` and
            ``os.path`` but not ``ossaudiodev``.
        blocked_classes: Fully-qualified class names.
        blocked_methods: ``(owner, method_name)`` pairs, where the owner is
            a class, a module, or ``builtins`` for built-in functions.
    """

    blocked_packages: frozenset[str] = field(default_factory=frozenset)
    blocked_classes: frozenset[str] = field(default_factory=frozenset)
    blocked_methods: frozenset[tuple[str, str]] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        """Normalise to frozensets and validate every entry."""
        object.__setattr__(self, "blocked_packages", frozenset(self.blocked_packages))
        object.__setattr__(self, "blocked_classes", frozenset(self.blocked_classes))
        object.__setattr__(
            self,
            "blocked_methods",
            frozenset(tuple(pair) for pair in self.blocked_methods),
        )

        for package in self.blocked_packages:
            if not _DOTTED_NAME_RE.match(package):
                raise ConfigurationError(f"Invalid blocked package name: {package!r}")
        for cls in self.blocked_classes:
            if not _DOTTED_NAME_RE.match(cls):
                raise ConfigurationError(f"Invalid blocked class name: {cls!r}")
        for pair in self.blocked_methods:
            if len(pair) != 2:
                raise ConfigurationError(f"Blocked method must be an (owner, name) pair: {pair!r}")
            owner, method = pair
            if not _DOTTED_NAME_RE.match(owner) or not _IDENTIFIER_RE.match(method):
                raise ConfigurationError(
                    f"Invalid blocked method entry: {owner}{METHOD_SEPARATOR}{method}"
                )

    @classmethod
    def from_lists(
        cls,
        packages: Iterable[str] = (),
        classes: Iterable[str] = (),
        methods: Iterable[str] = (),
    ) -> ExecutionPolicy:
        """Build a policy from ``blocked.*`` style entries.

        Method entries use the ``ClassName#methodName`` form.
        """
        return cls(
            blocked_packages=frozenset(packages),
            blocked_classes=frozenset(classes),
            blocked_methods=frozenset(parse_method_entry(entry) for entry in methods),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> ExecutionPolicy:
        """Build the policy from the comma-separated settings values."""
        return cls.from_lists(
            packages=comma_separated(settings.blocked_packages),
            classes=comma_separated(settings.blocked_classes),
            methods=comma_separated(settings.blocked_methods),
        )

    @property
    def is_permissive(self) -> bool:
        """True if nothing at all is blocked."""
        return not (self.blocked_packages or self.blocked_classes or self.blocked_methods)
