"""Search conditions evaluated against plain entity records.

A condition tree is a ``GroupCondition`` of ``SimpleCondition`` leaves (or
nested groups). JSON paths use the ``$.field.subfield`` form.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Sequence, Union


class Operation(str, Enum):
    EQUALS = "EQUALS"
    NOT_EQUAL = "NOT_EQUAL"
    CONTAINS = "CONTAINS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"


class GroupOperator(str, Enum):
    AND = "AND"
    OR = "OR"


_MISSING = object()


def resolve_json_path(record: Any, json_path: str) -> Any:
    """Follow ``$.a.b`` into nested dicts; returns a sentinel when absent."""
    path = json_path[2:] if json_path.startswith("$.") else json_path.lstrip("$")
    current = record
    for part in [p for p in path.split(".") if p]:
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _as_number(value: Any):
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _compare(actual: Any, expected: Any) -> int:
    left, right = _as_number(actual), _as_number(expected)
    if left is not None and right is not None:
        return (left > right) - (left < right)
    left_s, right_s = str(actual), str(expected)
    return (left_s > right_s) - (left_s < right_s)


@dataclass(frozen=True)
class SimpleCondition:
    json_path: str
    operation: Operation
    value: Any

    def matches(self, record: dict) -> bool:
        actual = resolve_json_path(record, self.json_path)
        if actual is _MISSING or actual is None:
            return self.operation is Operation.NOT_EQUAL and self.value is not None
        if self.operation is Operation.EQUALS:
            return actual == self.value or str(actual) == str(self.value)
        if self.operation is Operation.NOT_EQUAL:
            return not (actual == self.value or str(actual) == str(self.value))
        if self.operation is Operation.CONTAINS:
            return str(self.value).lower() in str(actual).lower()
        if self.operation is Operation.GREATER_THAN:
            return _compare(actual, self.value) > 0
        if self.operation is Operation.LESS_THAN:
            return _compare(actual, self.value) < 0
        raise ValueError(f"Unsupported operation: {self.operation}")


@dataclass(frozen=True)
class GroupCondition:
    operator: GroupOperator = GroupOperator.AND
    conditions: Sequence[Condition] = field(default_factory=tuple)

    def matches(self, record: dict) -> bool:
        if self.operator is GroupOperator.AND:
            return all(condition.matches(record) for condition in self.conditions)
        return any(condition.matches(record) for condition in self.conditions)


Condition = Union[SimpleCondition, GroupCondition]


def match_all() -> GroupCondition:
    """Empty AND group: logically matches every entity."""
    return GroupCondition(GroupOperator.AND, ())


def equals(field_name: str, value: Any) -> SimpleCondition:
    return SimpleCondition(f"$.{field_name}", Operation.EQUALS, value)


def all_of(conditions: Sequence[Condition]) -> GroupCondition:
    return GroupCondition(GroupOperator.AND, tuple(conditions))
