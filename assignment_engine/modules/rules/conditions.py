"""Rule condition predicates.

``rule_conditions`` is stored as a JSON map of ``field -> predicate``:

* scalar value            -> :class:`FieldEquals`
* object without ``op``  -> :class:`FieldEquals` on the whole object
* list value              -> :class:`FieldIn`
* ``{"op": ..., "value": ...}`` with a numeric op -> :class:`NumericThreshold`
* ``{"op": "in" | "not_in" | "eq" | "ne" | "exists", ...}`` -> the matching class

Anything else is rejected with :class:`RuleEvaluationError`; the rule engine
logs it and skips the rule.
"""

from dataclasses import dataclass
from typing import Any

from assignment_engine.core.errors import RuleEvaluationError

_MISSING = object()


def _norm(value: Any) -> Any:
    # enums arrive as strings from JSON; compare case-insensitively
    if isinstance(value, dict):
        return {k: _norm(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_norm(v) for v in value]
    return value.upper() if isinstance(value, str) else value


def _lookup(attributes: dict, field: str) -> Any:
    cur: Any = attributes
    for part in field.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: Any

    def evaluate(self, attributes: dict) -> bool:
        actual = _lookup(attributes, self.field)
        return actual is not _MISSING and _norm(actual) == _norm(self.value)


@dataclass(frozen=True)
class FieldNotEquals:
    field: str
    value: Any

    def evaluate(self, attributes: dict) -> bool:
        actual = _lookup(attributes, self.field)
        return actual is _MISSING or _norm(actual) != _norm(self.value)


@dataclass(frozen=True)
class FieldIn:
    field: str
    values: tuple

    def evaluate(self, attributes: dict) -> bool:
        actual = _lookup(attributes, self.field)
        return actual is not _MISSING and _norm(actual) in [_norm(v) for v in self.values]


@dataclass(frozen=True)
class FieldNotIn:
    field: str
    values: tuple

    def evaluate(self, attributes: dict) -> bool:
        actual = _lookup(attributes, self.field)
        return actual is _MISSING or _norm(actual) not in [_norm(v) for v in self.values]


@dataclass(frozen=True)
class FieldExists:
    field: str
    expected: bool = True

    def evaluate(self, attributes: dict) -> bool:
        actual = _lookup(attributes, self.field)
        return (actual is not _MISSING and actual is not None) == self.expected


_NUMERIC_OPS = {
    "gt": lambda a, b: a > b,
    "gte": lambda a, b: a >= b,
    "lt": lambda a, b: a < b,
    "lte": lambda a, b: a <= b,
}


@dataclass(frozen=True)
class NumericThreshold:
    field: str
    op: str
    threshold: float

    def evaluate(self, attributes: dict) -> bool:
        actual = _lookup(attributes, self.field)
        if actual is _MISSING or actual is None or isinstance(actual, bool):
            return False
        try:
            return _NUMERIC_OPS[self.op](float(actual), self.threshold)
        except (TypeError, ValueError):
            # non-numeric case data never satisfies a threshold
            return False


Condition = FieldEquals | FieldNotEquals | FieldIn | FieldNotIn | FieldExists | NumericThreshold


def _parse_one(field: str, spec: Any) -> Condition:
    if not isinstance(field, str) or not field:
        raise RuleEvaluationError("Condition field names must be non-empty strings", {"field": repr(field)})
    if isinstance(spec, list):
        return FieldIn(field, tuple(spec))
    if not isinstance(spec, dict) or "op" not in spec:
        return FieldEquals(field, spec)

    op = str(spec["op"]).lower()
    if op in _NUMERIC_OPS:
        try:
            threshold = float(spec["value"])
        except (KeyError, TypeError, ValueError):
            raise RuleEvaluationError(f"Condition on '{field}' needs a numeric 'value'", {"field": field, "op": op})
        return NumericThreshold(field, op, threshold)
    if op in ("in", "not_in"):
        values = spec.get("value", spec.get("values"))
        if not isinstance(values, list):
            raise RuleEvaluationError(f"Condition on '{field}' needs a list for '{op}'", {"field": field, "op": op})
        return FieldIn(field, tuple(values)) if op == "in" else FieldNotIn(field, tuple(values))
    if op in ("eq", "ne"):
        if "value" not in spec:
            raise RuleEvaluationError(f"Condition on '{field}' needs a 'value'", {"field": field, "op": op})
        return FieldEquals(field, spec["value"]) if op == "eq" else FieldNotEquals(field, spec["value"])
    if op == "exists":
        return FieldExists(field, bool(spec.get("value", True)))
    raise RuleEvaluationError(f"Unknown operator '{op}' on '{field}'", {"field": field, "op": op})


def parse_conditions(raw: Any) -> list[Condition]:
    if raw is None:
        return []
    if not isinstance(raw, dict):
        raise RuleEvaluationError("rule_conditions must be a JSON object", {"type": type(raw).__name__})
    return [_parse_one(field, spec) for field, spec in raw.items()]


def all_match(conditions: list[Condition], attributes: dict) -> bool:
    return all(c.evaluate(attributes) for c in conditions)
