"""Condition trees and their evaluation against collected responses.

A condition is a tree of groups and leaves::

    {"operator": "and", "conditions": [
        {"questionId": 1, "operator": "equals", "value": "yes"},
        {"operator": "not", "conditions": [
            {"questionId": 2, "operator": "empty"}
        ]}
    ]}

A node with a ``conditions`` key is a group; anything else is a leaf.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, Any, Iterable, Mapping, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, ValidationError

from surveyflow.core.errors import ConditionParseError

DEFAULT_MAX_DEPTH = 10

_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")
_EMPTY_VALUES = (None, "", "0")


class GroupOperator(str, Enum):
    """Boolean operators of a condition group."""
    AND = "and"
    OR = "or"
    NOT = "not"


class ComparisonOperator(str, Enum):
    """Operators of a leaf condition."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    IN = "in"
    NOT_IN = "not_in"
    EMPTY = "empty"
    NOT_EMPTY = "not_empty"


GROUP_OPERATORS = frozenset(op.value for op in GroupOperator)
COMPARISON_OPERATORS = frozenset(op.value for op in ComparisonOperator)


class ConditionLeaf(BaseModel):
    """Compares the stored response of one question with a value.

    Operators are kept as plain strings: an unknown operator is not a parse
    error, it simply never matches.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    question_id: int | None = Field(default=None, alias="questionId")
    operator: str = ComparisonOperator.EQUALS.value
    value: Any = None


def _node_kind(node: Any) -> str:
    if isinstance(node, Mapping):
        return "group" if "conditions" in node else "leaf"
    return "group" if isinstance(node, ConditionGroup) else "leaf"


ConditionNode = Annotated[
    Union[
        Annotated["ConditionGroup", Tag("group")],
        Annotated[ConditionLeaf, Tag("leaf")],
    ],
    Discriminator(_node_kind),
]


class ConditionGroup(BaseModel):
    """Combines child nodes with ``and``, ``or`` or ``not``."""

    model_config = ConfigDict(frozen=True)

    operator: str = GroupOperator.AND.value
    conditions: list[ConditionNode] = Field(default_factory=list)


ConditionGroup.model_rebuild()


def condition_depth(node: Any, limit: int | None = None, _level: int = 1) -> int:
    """Nesting depth of a raw condition tree (a flat group has depth 1).

    With ``limit`` set, descent stops one level past it, so a pathological
    tree cannot exhaust the stack here either.
    """
    if not isinstance(node, Mapping) or "conditions" not in node:
        return _level - 1
    children = node.get("conditions")
    if not isinstance(children, list) or not children:
        return _level
    if limit is not None and _level > limit:
        return _level
    return max(
        [_level] + [condition_depth(child, limit, _level + 1) for child in children]
    )


def parse_condition(raw: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> ConditionGroup:
    """Parse persisted condition JSON into a typed tree.

    Raises:
        ConditionParseError: if the JSON is not a group, is malformed, or
            nests groups deeper than ``max_depth``.
    """
    if not isinstance(raw, Mapping):
        raise ConditionParseError("Condition must be an object")
    if condition_depth(raw, limit=max_depth) > max_depth:
        raise ConditionParseError(
            f"Condition nesting exceeds the maximum depth of {max_depth}"
        )
    try:
        return ConditionGroup.model_validate(dict(raw, conditions=raw.get("conditions") or []))
    except ValidationError as e:
        raise ConditionParseError(f"Malformed condition: {e.errors()[0]['msg']}") from e


# =============================================================================
# Evaluation
# =============================================================================


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMERIC_RE.match(value):
        return float(value)
    return None


def _compare_numbers(actual: Any, expected: Any, op: str) -> bool:
    left = _to_number(actual)
    right = _to_number(expected)
    if left is None or right is None:
        return False
    if op == ComparisonOperator.GREATER_THAN:
        return left > right
    if op == ComparisonOperator.LESS_THAN:
        return left < right
    if op == ComparisonOperator.GREATER_EQUAL:
        return left >= right
    return left <= right


def evaluate_leaf(leaf: ConditionLeaf, responses: Mapping[int, str | None]) -> bool:
    """Evaluate a single comparison. Unanswered questions never match."""
    if leaf.question_id is None or leaf.question_id not in responses:
        return False

    actual = responses[leaf.question_id]
    expected = leaf.value
    op = leaf.operator

    if op == ComparisonOperator.EQUALS:
        return actual == expected
    if op == ComparisonOperator.NOT_EQUALS:
        return actual != expected
    if op in (ComparisonOperator.CONTAINS, ComparisonOperator.NOT_CONTAINS):
        needle = "" if expected is None else str(expected)
        found = needle in (actual or "")
        return found if op == ComparisonOperator.CONTAINS else not found
    if op in (
        ComparisonOperator.GREATER_THAN,
        ComparisonOperator.LESS_THAN,
        ComparisonOperator.GREATER_EQUAL,
        ComparisonOperator.LESS_EQUAL,
    ):
        return _compare_numbers(actual, expected, op)
    if op == ComparisonOperator.IN:
        return isinstance(expected, list) and actual in expected
    if op == ComparisonOperator.NOT_IN:
        return isinstance(expected, list) and actual not in expected
    if op == ComparisonOperator.EMPTY:
        return actual in _EMPTY_VALUES
    if op == ComparisonOperator.NOT_EMPTY:
        return actual not in _EMPTY_VALUES

    return False


def evaluate_condition(group: ConditionGroup, responses: Mapping[int, str | None]) -> bool:
    """Evaluate a condition group (recursively).

    Every child is evaluated, then combined:
    - and: no child is false
    - or: at least one child is true
    - not: negation of the first child only; further children are ignored
    An empty group, or an unknown operator, is false.
    """
    if not group.conditions:
        return False

    results = []
    for node in group.conditions:
        if isinstance(node, ConditionGroup):
            results.append(evaluate_condition(node, responses))
        else:
            results.append(evaluate_leaf(node, responses))

    if group.operator == GroupOperator.AND:
        return False not in results
    if group.operator == GroupOperator.OR:
        return True in results
    if group.operator == GroupOperator.NOT:
        return not results[0]
    return False


def responses_by_question(responses: Iterable[Any]) -> dict[int, str | None]:
    """Map question id -> stored value for response rows.

    The first response seen for a question wins.
    """
    values: dict[int, str | None] = {}
    for response in responses:
        values.setdefault(response.question_id, response.value)
    return values


def iter_leaves(group: ConditionGroup) -> Iterable[ConditionLeaf]:
    """Yield every leaf of a tree, depth first."""
    for node in group.conditions:
        if isinstance(node, ConditionGroup):
            yield from iter_leaves(node)
        else:
            yield node
