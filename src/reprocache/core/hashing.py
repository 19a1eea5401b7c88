"""
Deterministic fingerprinting for computation units.

A fingerprint is the cache key of a unit: a SHA-256 digest over the unit's
normalized body, its declared params, and the fingerprints of its upstream
units. Because upstream fingerprints are folded in, a change anywhere
upstream changes every fingerprint downstream of it.

Manifesto:
    - **Deterministic:** same body + params + upstream fingerprints → same digest
    - **Order-free:** execution order and wall-clock time never enter the digest
    - **Formatting-insensitive:** comments and whitespace in a function body
      do not invalidate the cache
    - **Canonical:** everything hashed goes through ``canonical_json()``

Architecture:
    ::

        hash_body(body)
          ├── str       → sha256("expr:" + body.strip())
          ├── function  → sha256(ast.dump(normalized FunctionDef))
          ├── lambda    → sha256(ast.dump(the one Lambda node it compiled from))
          ├── partial   → sha256(hash_body(func) + bound args)
          ├── instance  → sha256(class name + hash_body(__call__))
          └── fallback  → sha256(code object: bytecode, consts, names)

        fingerprint(unit, upstream_fingerprints)
          = sha256(canonical_json({
                "format": FINGERPRINT_FORMAT,
                "body": hash_body(unit.body),
                "params": unit.params,
                "upstream": [[id, fp], ...sorted by id],
            }))

Examples:
    >>> compute_hash("a", "b") == compute_hash("a", "b")
    True
    >>> len(hash_body("alpha + beta * x"))
    64

Tags:
    hashing, fingerprint, reproducibility, reprocache
"""

from __future__ import annotations

import ast
import functools
import hashlib
import inspect
import json
import textwrap
import types
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from reprocache.core.errors import MalformedUnitError

if TYPE_CHECKING:
    from reprocache.orchestration.unit import ComputationUnit

# Bump when the digest recipe changes so old artifacts stop matching.
FINGERPRINT_FORMAT = 2


def canonical_json(obj: Any) -> bytes:
    """Canonical JSON for hashing: UTF-8, sorted keys, no whitespace."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute a short deterministic hash from values.

    Values are joined with ``|`` after ``str()`` conversion, so the result
    is order-dependent.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


# =============================================================================
# Body hashing
# =============================================================================


class _StripNames(ast.NodeTransformer):
    """Drop the parts of a definition that do not change what it computes."""

    def visit_FunctionDef(self, node: ast.FunctionDef) -> ast.AST:
        node.name = ""
        node.decorator_list = []
        node.returns = None
        if node.body and _is_docstring(node.body[0]):
            node.body = node.body[1:] or [ast.Pass()]
        self.generic_visit(node)
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_arg(self, node: ast.arg) -> ast.AST:
        node.annotation = None
        return node


def _is_docstring(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and isinstance(stmt.value.value, str)
    )


def _source_digest(func: Callable[..., Any]) -> str | None:
    """Digest of the normalized source AST, or None if it cannot be isolated."""
    try:
        lines, first_line = inspect.getsourcelines(func)
    except (OSError, TypeError):
        return None

    source = textwrap.dedent("".join(lines))
    try:
        tree: ast.AST = ast.parse(source)
    except SyntaxError:
        # Lambdas embedded mid-expression yield source fragments that do not parse.
        return None

    code = getattr(func, "__code__", None)
    if code is not None and code.co_name == "<lambda>":
        # getsource returns the whole statement; several lambdas may share it.
        indent = len(lines[0]) - len(source.splitlines(keepends=True)[0])
        node = _find_lambda(tree, code, first_line - 1, indent)
        if node is None:
            return None
        tree = node

    tree = _StripNames().visit(tree)
    dumped = ast.dump(tree, annotate_fields=False, include_attributes=False)
    return sha256_hex(("ast:" + dumped).encode("utf-8"))


def _find_lambda(tree: ast.AST, code: types.CodeType, line_offset: int, col_offset: int) -> ast.Lambda | None:
    """
    Pick the ``Lambda`` node that compiled to ``code``.

    Candidates start on ``co_firstlineno``; the winner is the one whose span
    holds the most instruction positions of ``code``. A tie (nested lambdas
    on one line) returns None.
    """
    positions = [
        (line, col)
        for line, end_line, col, end_col in code.co_positions()
        if None not in (line, end_line, col, end_col) and (end_line, end_col) > (line, col)
    ]

    scored: list[tuple[int, ast.Lambda]] = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Lambda) or node.lineno + line_offset != code.co_firstlineno:
            continue
        start = (node.lineno + line_offset, node.col_offset + col_offset)
        end = (node.end_lineno + line_offset, node.end_col_offset + col_offset)
        scored.append((sum(1 for pos in positions if start <= pos < end), node))

    scored.sort(key=lambda item: item[0], reverse=True)
    if not scored or scored[0][0] == 0:
        return None
    if len(scored) > 1 and scored[1][0] == scored[0][0]:
        return None
    return scored[0][1]


def _code_parts(code: types.CodeType) -> list[Any]:
    consts = []
    for const in code.co_consts:
        if isinstance(const, types.CodeType):
            consts.append(_code_parts(const))
        elif isinstance(const, frozenset):
            # Set iteration order follows the per-process hash seed.
            consts.append(sorted(repr(item) for item in const))
        else:
            consts.append(repr(const))
    return [code.co_code.hex(), consts, list(code.co_names), list(code.co_varnames)]


def _code_digest(func: Callable[..., Any], unit_id: str) -> str:
    code = getattr(func, "__code__", None)
    if code is None:
        return _name_digest(func, unit_id)
    return sha256_hex(b"code:" + canonical_json(_code_parts(code)))


def _name_digest(obj: Any, unit_id: str) -> str:
    # Builtins and C callables: the qualified name is all there is.
    module = getattr(obj, "__module__", None)
    qualname = getattr(obj, "__qualname__", None)
    if not isinstance(module, str) or not isinstance(qualname, str):
        raise MalformedUnitError(
            unit_id, f"cannot fingerprint body of type {type(obj).__name__}: it has no stable name or source"
        )
    return sha256_hex(f"name:{module}.{qualname}".encode("utf-8"))


def _partial_digest(body: functools.partial, unit_id: str) -> str:
    try:
        bound = canonical_json({"args": list(body.args), "keywords": body.keywords})
    except (TypeError, ValueError) as e:
        raise MalformedUnitError(unit_id, f"partial arguments are not JSON serializable: {e}", cause=e) from e
    return sha256_hex(b"partial:" + hash_body(body.func, unit_id=unit_id).encode("ascii") + b":" + bound)


def hash_body(body: Callable[..., Any] | str, *, unit_id: str = "<body>") -> str:
    """
    Hash a unit body.

    - expression string: its stripped text
    - function, method or lambda: its normalized source AST (name,
      decorators, annotations and docstring removed), falling back to the
      code object when the source cannot be read or isolated
    - ``functools.partial``: the wrapped body plus its bound arguments,
      which must be JSON serializable
    - class: its source, else its qualified name
    - callable instance: its class name plus the hash of ``__call__``
      (instance state is not hashed; pass it through ``params``)
    - builtin: its qualified name

    Raises:
        MalformedUnitError: If body is neither a string nor callable, or a
            callable with no stable identity.
    """
    if isinstance(body, str):
        return sha256_hex(("expr:" + body.strip()).encode("utf-8"))
    if not callable(body):
        raise MalformedUnitError(unit_id, f"body must be callable or str, got {type(body).__name__}")

    if isinstance(body, functools.partial):
        return _partial_digest(body, unit_id)
    if inspect.isfunction(body) or inspect.ismethod(body):
        target = inspect.unwrap(body)
        return _source_digest(target) or _code_digest(target, unit_id)
    if inspect.isclass(body):
        return _source_digest(body) or _name_digest(body, unit_id)

    call = getattr(type(body), "__call__", None)
    if inspect.isfunction(call):
        cls = type(body)
        ident = f"call:{cls.__module__}.{cls.__qualname__}:{hash_body(call, unit_id=unit_id)}"
        return sha256_hex(ident.encode("utf-8"))
    return _name_digest(body, unit_id)


# =============================================================================
# Unit fingerprint
# =============================================================================


def fingerprint(unit: ComputationUnit, upstream_fingerprints: Mapping[str, str]) -> str:
    """
    Compute the fingerprint of a unit. Pure and deterministic.

    Args:
        unit: The computation unit
        upstream_fingerprints: Fingerprints of (at least) every upstream unit

    Returns:
        64-char hex SHA-256 digest

    Raises:
        MalformedUnitError: If an upstream id has no fingerprint, or params
            are not JSON serializable.
    """
    missing = sorted(dep for dep in unit.upstream if dep not in upstream_fingerprints)
    if missing:
        raise MalformedUnitError(unit.unit_id, f"references unknown upstream units: {', '.join(missing)}")

    payload = {
        "format": FINGERPRINT_FORMAT,
        "body": hash_body(unit.body, unit_id=unit.unit_id),
        "params": dict(unit.params),
        "upstream": [[dep, upstream_fingerprints[dep]] for dep in sorted(unit.upstream)],
    }
    try:
        encoded = canonical_json(payload)
    except (TypeError, ValueError) as e:
        raise MalformedUnitError(unit.unit_id, f"params are not JSON serializable: {e}", cause=e) from e
    return sha256_hex(encoded)


def fingerprint_all(units: Iterable[ComputationUnit]) -> dict[str, str]:
    """
    Fingerprint units given in topological order.

    Each unit sees the fingerprints of the units before it, so an upstream
    unit that is missing (or listed after its dependent) raises
    ``MalformedUnitError``.
    """
    result: dict[str, str] = {}
    for unit in units:
        result[unit.unit_id] = fingerprint(unit, result)
    return result


__all__ = [
    "FINGERPRINT_FORMAT",
    "canonical_json",
    "compute_hash",
    "fingerprint",
    "fingerprint_all",
    "hash_body",
    "sha256_hex",
]
