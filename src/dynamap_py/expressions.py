from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .errors import ValidationError
from .serializer import (
    AddValue,
    DeleteAttribute,
    RemoveValue,
    SetValue,
    UpdateOp,
    to_wire_value,
)

UPDATE_CLAUSES = ("SET", "REMOVE", "ADD", "DELETE")

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")
_PLACEHOLDER = re.compile(r"[#:][A-Za-z0-9_]+")
_NAME_REF = re.compile(r"#[A-Za-z0-9_]+")
_CLAUSE = re.compile(r"(?<![#:\w.])(SET|REMOVE|ADD|DELETE)\b", re.IGNORECASE)


def _sanitize(name: str) -> str:
    return _UNSAFE.sub("_", name) or "_"


class ExpressionAttributes:
    """Placeholder allocation for one request.

    Names become ``#<name>`` and values ``:<name>``; a second value for the same
    name becomes ``:<name>_2``, then ``:<name>_3``. Existing placeholders are never
    overwritten.
    """

    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, Any] = {}

    def _unique(self, taken: Mapping[str, Any], base: str) -> str:
        ref = base
        n = 1
        while ref in taken:
            n += 1
            ref = f"{base}_{n}"
        return ref

    def name(self, attribute: str) -> str:
        base = "#" + _sanitize(attribute)
        ref = base
        n = 1
        while ref in self.names and self.names[ref] != attribute:
            n += 1
            ref = f"{base}_{n}"
        self.names[ref] = attribute
        return ref

    def path(self, path: str) -> str:
        return ".".join(self.name(part) for part in path.split("."))

    def value(self, attribute: str, value: Any) -> str:
        ref = self._unique(self.values, ":" + _sanitize(attribute.split(".")[-1]))
        self.values[ref] = value
        return ref

    def merge_fragment(
        self,
        expression: str,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> str:
        """Adopt a caller-supplied expression fragment, renaming colliding placeholders."""

        merged = self.merge_fragments([expression], names, values)[0]
        return merged or ""

    def merge_fragments(
        self,
        expressions: Sequence[str | None],
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> list[str | None]:
        """Like ``merge_fragment`` for several expressions sharing one names/values pair."""

        renames: dict[str, str] = {}
        for ref, attribute in (names or {}).items():
            if ref in self.names and self.names[ref] != attribute:
                new_ref = self._unique(self.names, ref)
                renames[ref] = new_ref
                self.names[new_ref] = attribute
            else:
                self.names[ref] = attribute

        for ref, value in (values or {}).items():
            if ref in self.values:
                new_ref = self._unique(self.values, ref)
                renames[ref] = new_ref
                self.values[new_ref] = value
            else:
                self.values[ref] = value

        if not renames:
            return list(expressions)
        return [
            _PLACEHOLDER.sub(lambda m: renames.get(m.group(0), m.group(0)), expr) if expr else expr
            for expr in expressions
        ]

    def prune(self, *expressions: str | None) -> None:
        """Drop placeholders no expression references (replaced update actions leave some)."""

        used = {m.group(0) for expr in expressions if expr for m in _PLACEHOLDER.finditer(expr)}
        self.names = {ref: name for ref, name in self.names.items() if ref in used}
        self.values = {ref: value for ref, value in self.values.items() if ref in used}

    def apply(self, request: dict[str, Any]) -> dict[str, Any]:
        if self.names:
            request["ExpressionAttributeNames"] = dict(self.names)
        if self.values:
            request["ExpressionAttributeValues"] = {ref: to_wire_value(v) for ref, v in self.values.items()}
        return request


def build_condition_term(
    attrs: ExpressionAttributes,
    path: str,
    operator: str,
    values: Sequence[Any] = (),
    *,
    value_of: Callable[[Any], Any] | None = None,
) -> str:
    op = str(operator or "").strip().upper()
    ref = attrs.path(path)
    convert = value_of or (lambda v: v)

    def value_ref(value: Any) -> str:
        return attrs.value(path, convert(value))

    def require_one() -> Any:
        if len(values) != 1 or values[0] is None:
            raise ValidationError(f"{operator} requires one value")
        return values[0]

    if op in {"ATTRIBUTE_EXISTS", "EXISTS"}:
        if values:
            raise ValidationError("EXISTS does not take a value")
        return f"attribute_exists({ref})"

    if op in {"ATTRIBUTE_NOT_EXISTS", "NOT_EXISTS"}:
        if values:
            raise ValidationError("NOT_EXISTS does not take a value")
        return f"attribute_not_exists({ref})"

    if op in {"=", "EQ"}:
        return f"{ref} = {value_ref(require_one())}"
    if op in {"!=", "<>", "NE"}:
        return f"{ref} <> {value_ref(require_one())}"
    if op in {"<", "LT"}:
        return f"{ref} < {value_ref(require_one())}"
    if op in {"<=", "LE"}:
        return f"{ref} <= {value_ref(require_one())}"
    if op in {">", "GT"}:
        return f"{ref} > {value_ref(require_one())}"
    if op in {">=", "GE"}:
        return f"{ref} >= {value_ref(require_one())}"
    if op == "BETWEEN":
        if len(values) != 2:
            raise ValidationError("BETWEEN requires two values")
        left = value_ref(values[0])
        right = value_ref(values[1])
        return f"{ref} BETWEEN {left} AND {right}"
    if op == "IN":
        if not values:
            raise ValidationError("IN requires a sequence of values")
        if len(values) > 100:
            raise ValidationError("IN supports maximum 100 values")
        refs = [value_ref(v) for v in values]
        return f"{ref} IN (" + ", ".join(refs) + ")"
    if op == "BEGINS_WITH":
        return f"begins_with({ref}, {value_ref(require_one())})"
    if op == "CONTAINS":
        return f"contains({ref}, {value_ref(require_one())})"
    if op == "NOT_CONTAINS":
        return f"NOT contains({ref}, {value_ref(require_one())})"

    raise ValidationError(f"unsupported condition operator: {operator}")


def join_conditions(terms: Sequence[str]) -> str | None:
    if not terms:
        return None
    return " AND ".join(f"({term})" for term in terms)


def build_expected_conditions(attrs: ExpressionAttributes, expected: Mapping[str, Any]) -> list[str]:
    """Compile serialized ``expected`` entries (``{"Value": v}`` / ``{"Exists": bool}``)."""

    terms: list[str] = []
    for attribute, spec in expected.items():
        if "Value" in spec:
            terms.append(build_condition_term(attrs, attribute, "=", (spec["Value"],)))
        elif spec.get("Exists") is False:
            terms.append(build_condition_term(attrs, attribute, "NOT_EXISTS"))
        elif spec.get("Exists") is True:
            terms.append(build_condition_term(attrs, attribute, "EXISTS"))
    return terms


class UpdateActions:
    """Update-expression actions grouped by clause and keyed by document path.

    ``add`` replaces an action on the same path. ``discard`` drops every action whose
    path equals or overlaps the given one (one nested inside the other).
    """

    def __init__(self) -> None:
        self._clauses: dict[str, list[tuple[str, str]]] = {clause: [] for clause in UPDATE_CLAUSES}

    def _clause(self, clause: str) -> str:
        clause = clause.upper()
        if clause not in self._clauses:
            raise ValidationError(f"unsupported update clause: {clause}")
        return clause

    def add(self, clause: str, target: str, action: str) -> None:
        clause = self._clause(clause)
        for name in UPDATE_CLAUSES:
            self._clauses[name] = [(t, a) for t, a in self._clauses[name] if t != target]
        self._clauses[clause].append((target, action))

    def append(self, clause: str, target: str, action: str) -> None:
        self._clauses[self._clause(clause)].append((target, action))

    def discard(self, target: str) -> None:
        for name in UPDATE_CLAUSES:
            self._clauses[name] = [(t, a) for t, a in self._clauses[name] if not paths_overlap(t, target)]

    def targets(self) -> list[str]:
        return [t for clause in UPDATE_CLAUSES for t, _ in self._clauses[clause]]

    def render(self) -> str | None:
        parts = [
            f"{clause} " + ", ".join(action for _, action in self._clauses[clause])
            for clause in UPDATE_CLAUSES
            if self._clauses[clause]
        ]
        if not parts:
            return None
        return " ".join(parts)


def paths_overlap(a: str, b: str) -> bool:
    if a == b:
        return True
    short, long = (a, b) if len(a) < len(b) else (b, a)
    return long.startswith(short) and long[len(short)] in ".["


def compile_update(ops: Mapping[str, UpdateOp], attrs: ExpressionAttributes) -> UpdateActions:
    actions = UpdateActions()
    for attribute, op in ops.items():
        ref = attrs.name(attribute)
        if isinstance(op, SetValue):
            actions.add("SET", attribute, f"{ref} = {attrs.value(attribute, op.value)}")
        elif isinstance(op, AddValue) and isinstance(op.value, (list, tuple)):
            # ADD only covers numbers and sets; lists append instead
            values_ref = attrs.value(attribute, list(op.value))
            empty_ref = attrs.value(attribute, [])
            actions.add("SET", attribute, f"{ref} = list_append(if_not_exists({ref}, {empty_ref}), {values_ref})")
        elif isinstance(op, AddValue):
            actions.add("ADD", attribute, f"{ref} {attrs.value(attribute, op.value)}")
        elif isinstance(op, RemoveValue):
            actions.add("DELETE", attribute, f"{ref} {attrs.value(attribute, op.value)}")
        elif isinstance(op, DeleteAttribute):
            actions.add("REMOVE", attribute, ref)
        else:
            raise ValidationError(f"unsupported update operation: {op!r}")
    return actions


def _split_actions(body: str) -> list[str]:
    out: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(body):
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif ch == "," and depth == 0:
            out.append(body[start:i].strip())
            start = i + 1
    tail = body[start:].strip()
    if tail:
        out.append(tail)
    return [a for a in out if a]


def _action_target(clause: str, action: str, names: Mapping[str, str]) -> str:
    if clause == "SET":
        path = action.split("=", 1)[0]
    else:
        path = action.split(None, 1)[0]
    path = re.sub(r"\s+", "", path)
    return _NAME_REF.sub(lambda m: names.get(m.group(0), m.group(0)), path)


def merge_update_fragment(actions: UpdateActions, expression: str, names: Mapping[str, str]) -> None:
    """Fold a caller UpdateExpression (already placeholder-merged) into ``actions``.

    Generated actions on a path the fragment also touches (the same path, or one
    nested inside the other) are dropped; every action of the fragment is kept.
    """

    matches = list(_CLAUSE.finditer(expression))
    if not matches or expression[: matches[0].start()].strip():
        raise ValidationError(f"invalid update expression: {expression}")

    parsed: list[tuple[str, str, str]] = []
    for i, match in enumerate(matches):
        clause = match.group(1).upper()
        end = matches[i + 1].start() if i + 1 < len(matches) else len(expression)
        for action in _split_actions(expression[match.end() : end]):
            parsed.append((clause, _action_target(clause, action, names), action))

    for _, target, _ in parsed:
        actions.discard(target)
    for clause, target, action in parsed:
        actions.append(clause, target, action)
