"""Rules domain - condition evaluation, rule store, validation and engine."""

from .actions import (
    ACTION_TYPES,
    ActionExecutor,
    ActionType,
    EndSurveyAction,
    RuleAction,
    ShowQuestionAction,
    ShowSectionAction,
    SkipToQuestionAction,
    UnknownAction,
    parse_action,
)
from .conditions import (
    COMPARISON_OPERATORS,
    GROUP_OPERATORS,
    ComparisonOperator,
    ConditionGroup,
    ConditionLeaf,
    GroupOperator,
    condition_depth,
    evaluate_condition,
    evaluate_leaf,
    parse_condition,
    responses_by_question,
)
from .dependencies import DependencyGraph, DependencyValidator
from .engine import (
    BranchDecision,
    ConditionSummary,
    DecisionState,
    RuleEngine,
    RuleEvaluation,
)
from .store import RuleSnapshot, RuleStore, cache_key, get_rule_store
from .validation import RuleValidator

__all__ = [
    # Conditions
    "GroupOperator",
    "ComparisonOperator",
    "GROUP_OPERATORS",
    "COMPARISON_OPERATORS",
    "ConditionGroup",
    "ConditionLeaf",
    "condition_depth",
    "parse_condition",
    "evaluate_condition",
    "evaluate_leaf",
    "responses_by_question",
    # Actions
    "ActionType",
    "ACTION_TYPES",
    "RuleAction",
    "ShowQuestionAction",
    "SkipToQuestionAction",
    "ShowSectionAction",
    "EndSurveyAction",
    "UnknownAction",
    "parse_action",
    "ActionExecutor",
    # Store
    "RuleSnapshot",
    "RuleStore",
    "cache_key",
    "get_rule_store",
    # Validation
    "DependencyGraph",
    "DependencyValidator",
    "RuleValidator",
    # Engine
    "DecisionState",
    "ConditionSummary",
    "RuleEvaluation",
    "BranchDecision",
    "RuleEngine",
]
