"""In-process snippet interpreter: decomposition, compilation and execution."""

from __future__ import annotations

import ast
import itertools
import logging
import warnings
from dataclasses import dataclass, field
from types import CodeType
from typing import Any

from snippet_jail.engine.base import ExecutionEngine
from snippet_jail.engine.guard import build_builtins, check_reserved_names, rewrite
from snippet_jail.models.enums import DiagnosticSeverity, SnippetKind, SnippetStatus
from snippet_jail.models.events import Diagnostic, SnippetEvent
from snippet_jail.sandbox.filter import ExecutionFilter

logger = logging.getLogger(__name__)

# Maximum length of an expression value's repr() reported in an event.
_MAX_VALUE_CHARS: int = 4096

_DIAGNOSTIC_WARNINGS: tuple[type[Warning], ...] = (SyntaxWarning, DeprecationWarning)


@dataclass
class _Snippet:
    snippet_id: str
    source: str
    kind: SnippetKind
    status: SnippetStatus = SnippetStatus.VALID
    names: set[str] = field(default_factory=set)

    @property
    def filename(self) -> str:
        return f"<snippet-{self.snippet_id}>"


def _kind_of(node: ast.stmt) -> SnippetKind:
    if isinstance(node, ast.Expr):
        return SnippetKind.EXPRESSION
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        return SnippetKind.DEFINITION
    if isinstance(node, (ast.Import, ast.ImportFrom)):
        return SnippetKind.IMPORT
    if isinstance(node, (ast.Assign, ast.AnnAssign, ast.AugAssign)):
        return SnippetKind.VARIABLE
    return SnippetKind.STATEMENT


def _target_names(target: ast.expr) -> set[str]:
    if isinstance(target, ast.Name):
        return {target.id}
    if isinstance(target, (ast.Tuple, ast.List)):
        names: set[str] = set()
        for element in target.elts:
            names |= _target_names(element)
        return names
    if isinstance(target, ast.Starred):
        return _target_names(target.value)
    return set()


def _defined_names(node: ast.stmt) -> set[str]:
    """Top-level names a snippet (re)defines."""
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        return {node.name}
    if isinstance(node, ast.Import):
        return {alias.asname or alias.name.partition(".")[0] for alias in node.names}
    if isinstance(node, ast.ImportFrom):
        return {alias.asname or alias.name for alias in node.names if alias.name != "*"}
    if isinstance(node, ast.Assign):
        names: set[str] = set()
        for target in node.targets:
            names |= _target_names(target)
        return names | _walrus_names(node.value)
    if isinstance(node, ast.AnnAssign) and node.value is not None:
        return _target_names(node.target) | _walrus_names(node.value)
    if isinstance(node, (ast.For, ast.AsyncFor)):
        return _target_names(node.target) | _walrus_names(node)
    if isinstance(node, (ast.With, ast.AsyncWith)):
        names = _walrus_names(node)
        for item in node.items:
            if item.optional_vars is not None:
                names |= _target_names(item.optional_vars)
        return names
    return _walrus_names(node)


def _walrus_names(node: ast.AST) -> set[str]:
    """Names bound by ``:=`` in the module scope of *node*."""
    names: set[str] = set()
    for child in ast.iter_child_nodes(node):
        if isinstance(child, ast.NamedExpr):
            names |= _target_names(child.target)
        if not isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)):
            names |= _walrus_names(child)
    return names


def _deleted_names(node: ast.stmt) -> set[str]:
    if not isinstance(node, ast.Delete):
        return set()
    names: set[str] = set()
    for target in node.targets:
        names |= _target_names(target)
    return names


def _segment(command: str, node: ast.stmt) -> str:
    """Source text of one top-level statement, decorators included."""
    segment = ast.get_source_segment(command, node)
    if segment is None:
        return ast.unparse(node)
    decorators = getattr(node, "decorator_list", None)
    if decorators:
        lines = command.splitlines(keepends=True)
        segment = "".join(lines[decorators[0].lineno - 1 : node.lineno - 1]) + segment
    return segment


def _describe(value: Any) -> str | None:
    if value is None:
        return None
    text = repr(value)
    if len(text) > _MAX_VALUE_CHARS:
        text = text[:_MAX_VALUE_CHARS] + "... [truncated]"
    return text


def _format_exception(exc: BaseException) -> str:
    try:
        message = str(exc)
    except Exception:
        message = "<exception str() failed>"
    return f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__


def _from_syntax_error(exc: SyntaxError) -> Diagnostic:
    return Diagnostic(
        severity=DiagnosticSeverity.ERROR,
        message=exc.msg or str(exc),
        line=exc.lineno or None,
        column=exc.offset or None,
        end_line=getattr(exc, "end_lineno", None) or None,
        end_column=getattr(exc, "end_offset", None) or None,
    )


class SnippetInterpreter(ExecutionEngine):
    """Run Python snippets in one persistent namespace.

    Every top-level statement of a command is a snippet.  Snippets are
    rewritten so that symbol resolution goes through *execution_filter*;
    the filter only denies anything while active, so :meth:`evaluate`
    is meant to run inside a :class:`~snippet_jail.sandbox.context.Sandbox`.
    """

    def __init__(self, execution_filter: ExecutionFilter) -> None:
        self._builtins = build_builtins(execution_filter)
        self._namespace: dict[str, Any] = {"__name__": "__main__", "__doc__": None}
        self._snippets: dict[str, _Snippet] = {}
        self._owners: dict[str, str] = {}
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # ExecutionEngine interface
    # ------------------------------------------------------------------

    def evaluate(self, command: str) -> list[SnippetEvent]:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                tree = ast.parse(command, filename="<command>", mode="exec")
        except (SyntaxError, ValueError):
            snippet = self._register(command, SnippetKind.ERRONEOUS)
            return [self._reject(snippet)]

        events: list[SnippetEvent] = []
        for node in tree.body:
            events.extend(self._run(node, _segment(command, node)))
        return events

    def diagnostics(self, snippet_id: str) -> list[Diagnostic]:
        snippet = self._snippets.get(snippet_id)
        if snippet is None:
            raise ValueError(f"Unknown snippet id: {snippet_id!r}")

        errors: list[Diagnostic] = []
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                tree = ast.parse(snippet.source, snippet.filename, "exec")
                check_reserved_names(tree, snippet.filename)
                compile(tree, snippet.filename, "exec", dont_inherit=True)
            except SyntaxError as exc:
                errors.append(_from_syntax_error(exc))
            except ValueError as exc:
                errors.append(Diagnostic(severity=DiagnosticSeverity.ERROR, message=str(exc)))

        diagnostics = [
            Diagnostic(
                severity=DiagnosticSeverity.WARNING,
                message=str(warning.message),
                line=warning.lineno or None,
            )
            for warning in caught
            if issubclass(warning.category, _DIAGNOSTIC_WARNINGS)
            and warning.filename == snippet.filename
        ]
        return diagnostics + errors

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _register(self, source: str, kind: SnippetKind) -> _Snippet:
        snippet = _Snippet(snippet_id=str(next(self._ids)), source=source, kind=kind)
        self._snippets[snippet.snippet_id] = snippet
        return snippet

    def _event(self, snippet: _Snippet, **extra: Any) -> SnippetEvent:
        return SnippetEvent(
            snippet_id=snippet.snippet_id,
            source=snippet.source,
            kind=snippet.kind,
            status=snippet.status,
            **extra,
        )

    def _reject(self, snippet: _Snippet) -> SnippetEvent:
        snippet.status = SnippetStatus.REJECTED
        return self._event(snippet)

    def _compile(self, node: ast.stmt, kind: SnippetKind, filename: str) -> CodeType:
        if kind is SnippetKind.EXPRESSION:
            tree: ast.AST = ast.Expression(body=node.value)
            mode = "eval"
        else:
            tree = ast.Module(body=[node], type_ignores=[])
            mode = "exec"
        tree = rewrite(tree, filename)
        with warnings.catch_warnings():
            # Compile-time warnings are reported through diagnostics().
            warnings.simplefilter("ignore")
            return compile(tree, filename, mode, dont_inherit=True)

    def _run(self, node: ast.stmt, source: str) -> list[SnippetEvent]:
        kind = _kind_of(node)
        names = _defined_names(node)
        snippet = self._register(source, kind)
        try:
            code = self._compile(node, kind, snippet.filename)
        except (SyntaxError, ValueError):
            return [self._reject(snippet)]

        # Snippets may have clobbered it; always run with the guarded builtins.
        self._namespace["__builtins__"] = self._builtins
        try:
            value = _describe(eval(code, self._namespace))
        except BaseException as exc:  # noqa: BLE001 - untrusted code may raise anything
            snippet.status = SnippetStatus.EXCEPTION
            return [self._event(snippet, exception=_format_exception(exc))]

        snippet.status = SnippetStatus.VALID
        events = [self._event(snippet, value=value if kind is SnippetKind.EXPRESSION else None)]
        events.extend(self._claim(snippet, names))
        self._release(_deleted_names(node))
        return events

    def _release(self, names: set[str]) -> None:
        """Forget the owners of deleted *names*; their snippets keep their status."""
        for name in names:
            owner_id = self._owners.pop(name, None)
            if owner_id is not None:
                self._snippets[owner_id].names.discard(name)

    def _claim(self, snippet: _Snippet, names: set[str]) -> list[SnippetEvent]:
        """Record *snippet* as the owner of *names*, overwriting earlier owners."""
        overwritten: list[SnippetEvent] = []
        snippet.names = set(names)
        for name in sorted(names):
            previous_id = self._owners.get(name)
            self._owners[name] = snippet.snippet_id
            if previous_id is None or previous_id == snippet.snippet_id:
                continue
            previous = self._snippets[previous_id]
            previous.names.discard(name)
            if not previous.names and previous.status is SnippetStatus.VALID:
                previous.status = SnippetStatus.OVERWRITTEN
                overwritten.append(self._event(previous, caused_by=snippet.snippet_id))
        if overwritten:
            logger.debug("Snippet %s overwrote %d snippet(s)", snippet.snippet_id, len(overwritten))
        return overwritten
