"""Workflow activation conditions.

Conditions are stored as JSON on each workflow and parsed into a small
tree of dataclasses:

    {"field": "amount", "operator": "gte", "value": 10000}
    {"all": [<condition>, ...]}
    {"any": [<condition>, ...]}
    {"not": <condition>}

An empty or missing condition (``None`` / ``{}``) matches every entity of
the workflow's type. The older rule format
(``{"logic": "AND", "conditions": [{"type": "amount", ...}]}``) is also
accepted and translated into the same tree.

Evaluation is three-valued internally: a comparison whose attribute is
absent from the snapshot is *unknown*, and unknown propagates through
``not``/``all``/``any``. ``matches`` only returns True for a definite
True, so a missing attribute can never activate a workflow.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from approvalflow.core.errors import InvalidConditionError


class ConditionOperator(str, Enum):
    """Operators for attribute comparisons."""

    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


# Spellings used by the older rule format
_OPERATOR_ALIASES = {
    "neq": ConditionOperator.NOT_EQUALS,
    "==": ConditionOperator.EQUALS,
    "!=": ConditionOperator.NOT_EQUALS,
    ">": ConditionOperator.GREATER_THAN,
    ">=": ConditionOperator.GREATER_THAN_OR_EQUAL,
    "<": ConditionOperator.LESS_THAN,
    "<=": ConditionOperator.LESS_THAN_OR_EQUAL,
}

_ORDERING_OPERATORS = frozenset([
    ConditionOperator.GREATER_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.LESS_THAN,
    ConditionOperator.LESS_THAN_OR_EQUAL,
])

_MISSING = object()


@dataclass(frozen=True)
class Comparison:
    """Compare one snapshot attribute against a constant."""
    field: str
    operator: ConditionOperator
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"field": self.field, "operator": self.operator.value}
        if self.operator not in (ConditionOperator.EXISTS, ConditionOperator.NOT_EXISTS):
            data["value"] = _json_safe(self.value)
        return data


@dataclass(frozen=True)
class AllOf:
    conditions: List["Condition"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"all": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class AnyOf:
    conditions: List["Condition"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"any": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class Not:
    condition: "Condition"

    def to_dict(self) -> Dict[str, Any]:
        return {"not": self.condition.to_dict()}


@dataclass(frozen=True)
class Always:
    """Matches every snapshot (workflow without activation conditions)."""

    def to_dict(self) -> Dict[str, Any]:
        return {}


Condition = Union[Comparison, AllOf, AnyOf, Not, Always]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_conditions(data: Any) -> Condition:
    """Parse stored JSON conditions into a condition tree.

    Raises:
        InvalidConditionError: If the structure is not a recognised shape
    """
    if data is None:
        return Always()
    if isinstance(data, list):
        return AllOf([parse_conditions(item) for item in data])
    if not isinstance(data, Mapping):
        raise InvalidConditionError(f"Condition must be an object, got {type(data).__name__}")
    if not data:
        return Always()

    if "all" in data:
        return AllOf([parse_conditions(item) for item in _as_list(data["all"], "all")])
    if "any" in data:
        return AnyOf([parse_conditions(item) for item in _as_list(data["any"], "any")])
    if "not" in data:
        return Not(parse_conditions(data["not"]))
    if "logic" in data or ("conditions" in data and "field" not in data):
        return _parse_legacy_rule(data)
    if "type" in data:
        return _parse_legacy_condition(data)
    if "field" in data:
        return Comparison(
            field=str(data["field"]),
            operator=_parse_operator(data.get("operator", "eq")),
            value=data.get("value"),
        )

    raise InvalidConditionError(f"Unrecognised condition: {dict(data)!r}")


def _as_list(value: Any, key: str) -> list:
    if not isinstance(value, list):
        raise InvalidConditionError(f"'{key}' must be a list of conditions")
    return value


def _parse_operator(raw: Any) -> ConditionOperator:
    if isinstance(raw, ConditionOperator):
        return raw
    try:
        return ConditionOperator(raw)
    except ValueError:
        if raw in _OPERATOR_ALIASES:
            return _OPERATOR_ALIASES[raw]
        raise InvalidConditionError(f"Unknown operator: {raw!r}")


def _parse_legacy_rule(data: Mapping) -> Condition:
    logic = str(data.get("logic", "AND")).upper()
    children = [_parse_legacy_condition(c) for c in _as_list(data.get("conditions", []), "conditions")]
    if logic == "OR":
        return AnyOf(children)
    if logic == "AND":
        return AllOf(children)
    raise InvalidConditionError(f"Unknown rule logic: {logic!r}")


def _parse_legacy_condition(data: Any) -> Condition:
    if not isinstance(data, Mapping):
        raise InvalidConditionError("Rule condition must be an object")
    kind = data.get("type")
    if kind == "amount":
        return Comparison("amount", _parse_operator(data.get("operator", "eq")), data.get("value"))
    if kind == "field":
        if not data.get("field"):
            raise InvalidConditionError("Field condition missing field name")
        return Comparison(str(data["field"]), _parse_operator(data.get("operator", "eq")), data.get("value"))
    if kind == "entityType":
        return Comparison("entity_type", ConditionOperator.EQUALS, data.get("value"))
    if kind == "manual":
        return Always()
    if kind == "userRole":
        raise InvalidConditionError("userRole rule conditions are not supported; use a field condition")
    if kind is None:
        return parse_conditions(data)
    raise InvalidConditionError(f"Unknown rule condition type: {kind!r}")


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def matches(conditions: Union[Condition, Any], snapshot: Mapping[str, Any]) -> bool:
    """Check whether an entity snapshot satisfies a workflow's conditions.

    ``conditions`` may be a parsed condition tree or its stored JSON form.
    Never raises for missing attributes or mismatched types; those
    evaluate to False.
    """
    if not isinstance(conditions, (Comparison, AllOf, AnyOf, Not, Always)):
        conditions = parse_conditions(conditions)
    return evaluate(conditions, snapshot) is True


def evaluate(condition: Condition, snapshot: Mapping[str, Any]) -> Optional[bool]:
    """Evaluate a condition tree. Returns None when the outcome is unknown."""
    if isinstance(condition, Always):
        return True

    if isinstance(condition, Comparison):
        return _evaluate_comparison(condition, snapshot)

    if isinstance(condition, Not):
        inner = evaluate(condition.condition, snapshot)
        return None if inner is None else not inner

    if isinstance(condition, AllOf):
        # An empty conjunction never activates a workflow
        if not condition.conditions:
            return False
        unknown = False
        for child in condition.conditions:
            result = evaluate(child, snapshot)
            if result is False:
                return False
            if result is None:
                unknown = True
        return None if unknown else True

    if isinstance(condition, AnyOf):
        if not condition.conditions:
            return False
        unknown = False
        for child in condition.conditions:
            result = evaluate(child, snapshot)
            if result is True:
                return True
            if result is None:
                unknown = True
        return None if unknown else False

    return False


def _evaluate_comparison(condition: Comparison, snapshot: Mapping[str, Any]) -> Optional[bool]:
    actual = snapshot.get(condition.field, _MISSING)
    operator = condition.operator

    if operator == ConditionOperator.EXISTS:
        return actual is not _MISSING and actual is not None
    if operator == ConditionOperator.NOT_EXISTS:
        return actual is _MISSING or actual is None

    if actual is _MISSING or actual is None:
        return None

    return _compare_values(actual, operator, condition.value)


def _compare_values(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    """Compare values using the specified operator."""
    try:
        if operator in _ORDERING_OPERATORS:
            left, right = to_decimal(actual), to_decimal(expected)
            if left is None or right is None:
                return False
            if operator == ConditionOperator.GREATER_THAN:
                return left > right
            if operator == ConditionOperator.GREATER_THAN_OR_EQUAL:
                return left >= right
            if operator == ConditionOperator.LESS_THAN:
                return left < right
            return left <= right

        if operator == ConditionOperator.EQUALS:
            return _equals(actual, expected)
        if operator == ConditionOperator.NOT_EQUALS:
            return not _equals(actual, expected)
        if operator == ConditionOperator.IN:
            return any(_equals(actual, item) for item in _as_collection(expected))
        if operator == ConditionOperator.NOT_IN:
            return not any(_equals(actual, item) for item in _as_collection(expected))
        if operator == ConditionOperator.CONTAINS:
            return _contains(actual, expected)
        if operator == ConditionOperator.NOT_CONTAINS:
            return not _contains(actual, expected)
    except TypeError:
        return False

    return False


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    if _is_number(actual) and _is_number(expected):
        return to_decimal(actual) == to_decimal(expected)
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return isinstance(expected, str) and expected in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(_equals(item, expected) for item in actual)
    return False


def _as_collection(value: Any) -> list:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a snapshot value to an exact Decimal.

    Integers (including minor-unit amounts), Decimals and numeric strings
    convert exactly. Floats go through their shortest repr so that 0.1
    stays 0.1. Booleans and non-numeric values return None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        value = repr(value)
    if isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value
