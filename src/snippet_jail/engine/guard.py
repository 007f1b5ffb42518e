"""Symbol-resolution hook for untrusted snippets.

Untrusted code is rewritten before compilation so that every name load,
attribute load, subscript load and call result passes through an
:class:`~snippet_jail.sandbox.filter.ExecutionFilter`::

    os.system("ls")
    # becomes
    __jail_value__(__jail_getattr__(__jail_name__("os", os), "system")("ls"))

The guard callables live in the snippet namespace's ``__builtins__`` so
they are resolved like any other builtin.  Identifiers starting with
``__jail_`` are reserved and rejected at compile time, which keeps user
code from shadowing the guards.
"""

from __future__ import annotations

import ast
import builtins
import sys
from typing import Any

from snippet_jail.sandbox.filter import ExecutionFilter

RESERVED_PREFIX = "__jail_"
NAME_GUARD = "__jail_name__"
ATTRIBUTE_GUARD = "__jail_getattr__"
VALUE_GUARD = "__jail_value__"


def _guard_call(guard: str, *args: ast.expr) -> ast.Call:
    return ast.Call(func=ast.Name(id=guard, ctx=ast.Load()), args=list(args), keywords=[])


class SymbolGuardTransformer(ast.NodeTransformer):
    """Wrap every load in a call to the matching guard."""

    def visit_Name(self, node: ast.Name) -> ast.AST:
        if not isinstance(node.ctx, ast.Load):
            return node
        return ast.copy_location(_guard_call(NAME_GUARD, ast.Constant(node.id), node), node)

    def visit_Attribute(self, node: ast.Attribute) -> ast.AST:
        self.generic_visit(node)
        if not isinstance(node.ctx, ast.Load):
            return node
        return ast.copy_location(
            _guard_call(ATTRIBUTE_GUARD, node.value, ast.Constant(node.attr)), node
        )

    def visit_Subscript(self, node: ast.Subscript) -> ast.AST:
        self.generic_visit(node)
        if not isinstance(node.ctx, ast.Load):
            return node
        return ast.copy_location(_guard_call(VALUE_GUARD, node), node)

    def visit_Call(self, node: ast.Call) -> ast.AST:
        self.generic_visit(node)
        return ast.copy_location(_guard_call(VALUE_GUARD, node), node)

    def visit_match_case(self, node: ast.match_case) -> ast.AST:
        # Patterns only accept names and attributes; leave them untouched.
        if node.guard is not None:
            node.guard = self.visit(node.guard)
        body: list[ast.stmt] = []
        for stmt in node.body:
            result = self.visit(stmt)
            if isinstance(result, list):
                body.extend(result)
            elif result is not None:
                body.append(result)
        node.body = body
        return node


def _reserved(name: str | None) -> bool:
    return bool(name) and name.startswith(RESERVED_PREFIX)


def check_reserved_names(tree: ast.AST, filename: str = "<snippet>") -> None:
    """Raise :class:`SyntaxError` if *tree* uses a reserved identifier."""
    for node in ast.walk(tree):
        names: list[str | None] = []
        if isinstance(node, ast.Name):
            if node.id == "__builtins__" and not isinstance(node.ctx, ast.Load):
                raise SyntaxError(
                    "cannot rebind __builtins__",
                    (filename, node.lineno, node.col_offset + 1, None),
                )
            names.append(node.id)
        elif isinstance(node, ast.arg):
            names.append(node.arg)
        elif isinstance(node, ast.Attribute):
            names.append(node.attr)
        elif isinstance(node, ast.alias):
            names.extend([node.name, node.asname])
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names.append(node.name)
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            names.extend(node.names)
        elif isinstance(node, ast.keyword):
            names.append(node.arg)
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)):
            names.append(node.name)
        for name in names:
            if _reserved(name):
                raise SyntaxError(
                    f"identifiers starting with {RESERVED_PREFIX!r} are reserved",
                    (filename, getattr(node, "lineno", 1), getattr(node, "col_offset", 0) + 1, None),
                )


def rewrite(tree: ast.AST, filename: str = "<snippet>") -> ast.AST:
    """Validate and rewrite *tree* in place, returning it ready to compile."""
    check_reserved_names(tree, filename)
    tree = SymbolGuardTransformer().visit(tree)
    return ast.fix_missing_locations(tree)


def _caller_namespaces(
    namespace: dict[str, Any],
    globals: dict[str, Any] | None,
    locals: Any,
) -> tuple[dict[str, Any], Any]:
    # eval()/exec() without globals run in the namespace of *their* caller,
    # which is two frames up from here.
    if globals is None:
        frame = sys._getframe(2)
        globals = frame.f_globals
        if locals is None:
            locals = frame.f_locals
    elif locals is None:
        locals = globals
    globals.setdefault("__builtins__", namespace)
    return globals, locals


def build_builtins(execution_filter: ExecutionFilter) -> dict[str, Any]:
    """Return a ``__builtins__`` mapping for snippet namespaces.

    Besides the guards themselves, ``__import__`` and ``getattr`` consult
    the filter, and ``compile``/``eval``/``exec`` rewrite source strings
    the same way snippets are rewritten.
    """
    real_compile = builtins.compile
    real_eval = builtins.eval
    real_exec = builtins.exec
    namespace = dict(vars(builtins))

    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        return execution_filter.guarded_import(name, globals, locals, fromlist, level)

    def guarded_getattr(obj, name, *default):
        return execution_filter.check_attribute(obj, name, *default)

    def guarded_compile(source, filename, mode, flags=0, dont_inherit=False, optimize=-1):
        if flags & ast.PyCF_ONLY_AST:
            return real_compile(source, filename, mode, flags, True, optimize)
        if isinstance(source, (str, bytes)):
            source = ast.parse(source, filename, mode)
        if isinstance(source, ast.AST):
            source = rewrite(source, filename)
        return real_compile(source, filename, mode, flags, True, optimize)

    def guarded_eval(source, globals=None, locals=None):
        globals, locals = _caller_namespaces(namespace, globals, locals)
        if isinstance(source, str):
            source = guarded_compile(source.lstrip(" \t"), "<string>", "eval")
        elif isinstance(source, bytes):
            source = guarded_compile(source, "<string>", "eval")
        return real_eval(source, globals, locals)

    def guarded_exec(source, globals=None, locals=None):
        globals, locals = _caller_namespaces(namespace, globals, locals)
        if isinstance(source, (str, bytes)):
            source = guarded_compile(source, "<string>", "exec")
        return real_exec(source, globals, locals)

    replacements = {
        "__import__": guarded_import,
        "getattr": guarded_getattr,
        "compile": guarded_compile,
        "eval": guarded_eval,
        "exec": guarded_exec,
    }
    for name, replacement in replacements.items():
        execution_filter.register_builtin(name, replacement)

    namespace.update(replacements)
    namespace.update(
        {
            NAME_GUARD: execution_filter.check_name,
            ATTRIBUTE_GUARD: execution_filter.check_attribute,
            VALUE_GUARD: execution_filter.check_value,
        }
    )
    return namespace
