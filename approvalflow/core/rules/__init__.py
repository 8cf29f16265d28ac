"""Rule evaluation and workflow matching.

Evaluates entity snapshots against workflow activation conditions and
selects the workflow that governs a submission.
"""

from .conditions import (
    AllOf,
    Always,
    AnyOf,
    Comparison,
    ConditionOperator,
    Not,
    evaluate,
    matches,
    parse_conditions,
    to_decimal,
)
from .matcher import MatchResult, WorkflowMatcher

__all__ = [
    "AllOf",
    "Always",
    "AnyOf",
    "Comparison",
    "ConditionOperator",
    "Not",
    "evaluate",
    "matches",
    "parse_conditions",
    "to_decimal",
    "MatchResult",
    "WorkflowMatcher",
]
