# sandbox.py
# Restricted evaluation of playbook-supplied rule functions.
#
# Playbook authors write small Python snippets in one of three forms:
#
#   lambda stdout, stderr, context: 1 if "PASS" in stdout else -1
#
#   def check(stdout, stderr, context):
#       return 1 if context["version"] in stdout else -1
#
#   1 if "PASS" in stdout else -1          # naked expression
#
# All three normalise to one callable. Every call compiles the source into a
# fresh namespace, so nothing survives between invocations. The AST is
# screened first: no imports, no global/nonlocal, no dunder names or
# attributes. Builtins are an allow-list.

import ast
import builtins
import inspect
import json
import re
from typing import Any, Callable

SAFE_BUILTINS: dict[str, Any] = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "enumerate", "filter", "float",
        "int", "isinstance", "len", "list", "map", "max", "min", "range",
        "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
        "ValueError", "KeyError", "IndexError", "TypeError", "Exception",
    )
}
SAFE_BUILTINS.update({"True": True, "False": False, "None": None})

SAFE_MODULES: dict[str, Any] = {"re": re, "json": json}

_FORBIDDEN_NODES = (ast.Import, ast.ImportFrom, ast.Global, ast.Nonlocal)


class SandboxError(Exception):
    """Raised when function source is rejected, fails to compile, or fails to run."""


# ---------------------------------------------------------------------------
# Screening
# ---------------------------------------------------------------------------


def _screen(tree: ast.AST) -> None:
    for node in ast.walk(tree):
        if isinstance(node, _FORBIDDEN_NODES):
            raise SandboxError(f"{type(node).__name__} is not allowed in rule functions")
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise SandboxError(f"name {node.id!r} is not allowed in rule functions")
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise SandboxError(f"attribute {node.attr!r} is not allowed in rule functions")


def _parse(source: str) -> tuple[ast.AST, str]:
    """Return (tree, mode) where mode is 'eval' or 'exec'."""
    source = source.strip()
    if not source:
        raise SandboxError("empty function source")
    try:
        return ast.parse(source, mode="eval"), "eval"
    except SyntaxError:
        pass
    try:
        return ast.parse(source, mode="exec"), "exec"
    except SyntaxError as exc:
        raise SandboxError(f"syntax error: {exc.msg} (line {exc.lineno})") from exc


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def _fresh_namespace() -> dict[str, Any]:
    namespace: dict[str, Any] = {"__builtins__": dict(SAFE_BUILTINS)}
    namespace.update(SAFE_MODULES)
    return namespace


def load_function(source: str, names: tuple[str, ...]) -> Callable[..., Any]:
    """
    Compile `source` and return a callable taking keyword arguments `names`.

    Lambda and def forms are bound to `names` by _adapt. Naked expressions
    see `names` as variables.
    """
    tree, mode = _parse(source)
    _screen(tree)
    namespace = _fresh_namespace()

    try:
        if mode == "eval":
            if isinstance(tree.body, ast.Lambda):
                fn = eval(compile(tree, "<rule>", "eval"), namespace)
                return _adapt(fn, names)
            code = compile(tree, "<rule>", "eval")

            def naked(**inputs: Any) -> Any:
                # Inputs go in as globals so comprehensions can see them.
                scope = dict(namespace)
                scope.update(inputs)
                return eval(code, scope)

            return naked

        defs = [node for node in tree.body if isinstance(node, ast.FunctionDef)]
        if not defs:
            raise SandboxError("statement blocks must define a function with 'def'")
        exec(compile(tree, "<rule>", "exec"), namespace)
        return _adapt(namespace[defs[-1].name], names)
    except SandboxError:
        raise
    except Exception as exc:
        raise SandboxError(f"{type(exc).__name__}: {exc}") from exc


def _adapt(fn: Callable[..., Any], names: tuple[str, ...]) -> Callable[..., Any]:
    """
    Bind inputs to a user function's signature.

    Parameters that all carry known input names are bound by name, so
    `lambda os, cwd: ...` works. Otherwise inputs are passed positionally
    in `names` order, trimmed to the declared arity, so
    `lambda out, err, ctx: ...` and `lambda out: ...` both work.

    In a mixed signature the unknown names are still positional:
    `lambda stdout, ctx: ...` receives stderr as `ctx`. A known name
    sitting at another input's position is rejected, since positional
    binding would hand it the wrong value.
    """
    params = list(inspect.signature(fn).parameters.values())
    if any(p.kind is p.VAR_KEYWORD for p in params):
        return lambda **inputs: fn(**inputs)

    named = [p for p in params if p.kind is not p.VAR_POSITIONAL]
    if named and all(p.name in names for p in named):
        return lambda **inputs: fn(**{p.name: inputs[p.name] for p in named})

    for index, param in enumerate(named):
        if param.name in names and names.index(param.name) != index:
            expected = names[index] if index < len(names) else "nothing"
            raise SandboxError(
                f"parameter {param.name!r} is in position {index + 1}, which receives "
                f"{expected}; use only the input names ({', '.join(names)}) or none of them"
            )

    if any(p.kind is p.VAR_POSITIONAL for p in params):
        arity = len(names)
    else:
        arity = len(params)

    def call(**inputs: Any) -> Any:
        return fn(*[inputs[name] for name in names[:arity]])

    return call


def call_function(source: str, names: tuple[str, ...], **inputs: Any) -> Any:
    """Compile and invoke in one step. Any failure surfaces as SandboxError."""
    fn = load_function(source, names)
    try:
        return fn(**inputs)
    except Exception as exc:
        raise SandboxError(f"{type(exc).__name__}: {exc}") from exc
