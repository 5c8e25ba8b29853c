"""Structural validation of branching rules.

Problems are collected rather than raised one at a time, so an author sees
everything wrong with a rule in a single pass.
"""

from __future__ import annotations

from typing import Any, Mapping

from sqlmodel import Session

from surveyflow.core.errors import ConditionParseError
from surveyflow.surveys.models import Question, SurveyRule

from .actions import ACTION_TYPES, ActionType, parse_action
from .conditions import DEFAULT_MAX_DEPTH, GROUP_OPERATORS, parse_condition
from .dependencies import DependencyValidator


class RuleValidator:
    """Validates a rule's condition tree, action and dependency cycles."""

    def __init__(self, db: Session, max_depth: int = DEFAULT_MAX_DEPTH):
        self.db = db
        self.max_depth = max_depth

    def validate(self, rule: SurveyRule) -> list[str]:
        """Return every problem found with ``rule`` (empty = valid)."""
        errors: list[str] = []
        condition = rule.condition_json
        action = rule.action_json

        if not condition:
            errors.append("Rule condition cannot be empty")
        else:
            errors.extend(self.validate_condition(condition, rule.survey_id))

        if not action:
            errors.append("Rule action cannot be empty")
        else:
            errors.extend(self.validate_action(action, rule.survey_id))

        if DependencyValidator(self.db).circular_dependencies(rule):
            errors.append("Rule creates circular dependencies")

        return errors

    def validate_condition(self, condition: Any, survey_id: int) -> list[str]:
        errors: list[str] = []
        if not isinstance(condition, Mapping):
            return ["Rule condition must be an object"]

        self._check_group(condition, survey_id, errors, level=1)
        if not errors:
            # Shape problems the walk above does not look for (value types etc.)
            try:
                parse_condition(condition, self.max_depth)
            except ConditionParseError as e:
                errors.append(str(e))
        return errors

    def _check_group(self, group: Mapping, survey_id: int, errors: list[str], level: int) -> None:
        if level > self.max_depth:
            errors.append(f"Condition nesting exceeds the maximum depth of {self.max_depth}")
            return

        operator = group.get("operator")
        if not isinstance(operator, str) or operator not in GROUP_OPERATORS:
            errors.append(f"Invalid condition operator: {operator}")

        conditions = group.get("conditions")
        if not isinstance(conditions, list) or not conditions:
            errors.append("Condition must have at least one sub-condition")
            return

        for node in conditions:
            if not isinstance(node, Mapping):
                errors.append(f"Malformed condition node: {node!r}")
            elif "conditions" in node:
                self._check_group(node, survey_id, errors, level + 1)
            elif "questionId" in node or "question_id" in node:
                question_id = node.get("questionId", node.get("question_id"))
                if not self._question_in_survey(question_id, survey_id):
                    errors.append(f"Invalid question ID in condition: {question_id}")
            else:
                errors.append("Condition is missing a question ID")

    def validate_action(self, action: Any, survey_id: int) -> list[str]:
        if not isinstance(action, Mapping):
            return ["Rule action must be an object"]

        errors: list[str] = []
        action_type = action.get("type")
        if not isinstance(action_type, str) or action_type not in ACTION_TYPES:
            errors.append(f"Invalid action type: {action_type}")
            return errors

        if action_type in (ActionType.SHOW_QUESTION, ActionType.SKIP_TO_QUESTION):
            question_id = action.get("questionId", action.get("question_id"))
            if question_id is None:
                errors.append(f"Action {action_type} requires a question ID")
            elif not self._question_in_survey(question_id, survey_id):
                errors.append(f"Invalid question ID in action: {question_id}")
        elif action_type == ActionType.SHOW_SECTION:
            question_ids = action.get("questionIds", action.get("question_ids"))
            if not isinstance(question_ids, list) or not question_ids:
                errors.append("Action show_section requires a non-empty list of question IDs")
            else:
                for question_id in question_ids:
                    if not self._question_in_survey(question_id, survey_id):
                        errors.append(f"Invalid question ID in action: {question_id}")

        if not errors:
            try:
                parse_action(action)
            except ConditionParseError as e:
                errors.append(str(e))
        return errors

    def _question_in_survey(self, question_id: Any, survey_id: int) -> bool:
        if isinstance(question_id, bool):
            return False
        try:
            question = self.db.get(Question, int(question_id))
        except (TypeError, ValueError):
            return False
        return question is not None and question.survey_id == survey_id
