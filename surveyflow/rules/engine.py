"""Branching rule engine with audit trail.

Decides which question a respondent sees next. Per decision::

    BRANCHING_DISABLED -> SEQUENTIAL
    BRANCHING_ENABLED -> EVALUATING_RULES -> MATCHED -> ACTION_EXECUTED
                                          -> EXHAUSTED -> SEQUENTIAL
    any branching state -> ERROR -> SEQUENTIAL
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from pydantic import BaseModel
from sqlmodel import Session, col, select

from surveyflow.core.config import Settings, get_settings
from surveyflow.core.logging import get_logger
from surveyflow.surveys.models import (
    Question,
    Response,
    ResponseAudit,
    Survey,
    SurveyRule,
    SurveySession,
)

from .actions import ActionExecutor, UnknownAction, parse_action
from .conditions import evaluate_condition, parse_condition, responses_by_question
from .store import RuleSnapshot, RuleStore, get_rule_store
from .validation import RuleValidator

logger = get_logger(__name__)


class DecisionState(str, Enum):
    """States a single next-question decision passes through."""
    BRANCHING_DISABLED = "branching_disabled"
    BRANCHING_ENABLED = "branching_enabled"
    EVALUATING_RULES = "evaluating_rules"
    MATCHED = "matched"
    ACTION_EXECUTED = "action_executed"
    EXHAUSTED = "exhausted"
    ERROR = "error"
    SEQUENTIAL = "sequential"


class ConditionSummary(BaseModel):
    """Shape of the condition that was evaluated."""

    condition_type: str
    conditions_count: int
    responses_available: int


class RuleEvaluation(BaseModel):
    """Outcome of evaluating one rule's condition."""

    rule_id: int
    matched: bool = False
    reason: str = ""
    evaluated_conditions: ConditionSummary | None = None

    def to_audit(self) -> dict[str, Any]:
        """JSON stored in ``ResponseAudit.evaluation_result``."""
        return self.model_dump(exclude={"rule_id"})


@dataclass
class BranchDecision:
    """Complete result of one decision, including how it was reached."""

    question: Question | None = None
    matched_rule_id: int | None = None
    states: list[DecisionState] = field(default_factory=list)
    evaluations: list[RuleEvaluation] = field(default_factory=list)

    @property
    def state(self) -> DecisionState | None:
        return self.states[-1] if self.states else None

    def enter(self, state: DecisionState) -> None:
        self.states.append(state)


class RuleEngine:
    """Evaluates a survey's rules against a session's responses.

    Args:
        db: Unit-of-work session; audit rows are added to it, never committed
        store: Rule store; defaults to the process-wide ``get_rule_store()``
        settings: Application settings (depth limit, cache TTL)
    """

    def __init__(
        self,
        db: Session,
        store: RuleStore | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.store = store if store is not None else get_rule_store()
        self.executor = ActionExecutor(db)

    # =========================================================================
    # Decision
    # =========================================================================

    def decide(self, session: SurveySession, current_question: Question) -> Question | None:
        """Next question after ``current_question``, or None when there is none."""
        return self.run(session, current_question).question

    def run(self, session: SurveySession, current_question: Question) -> BranchDecision:
        """Make a decision and return it with its state trail and evaluations."""
        decision = BranchDecision()
        survey = self.db.get(Survey, session.survey_id)

        if survey is None or not survey.branching_enabled:
            decision.enter(DecisionState.BRANCHING_DISABLED)
            return self._sequential(decision, current_question)

        decision.enter(DecisionState.BRANCHING_ENABLED)
        try:
            rules = self.store.get_active_rules(self.db, session.survey_id)
            responses = self.session_responses(session)
            values = responses_by_question(responses)
            latest = self._latest_response(responses)

            decision.enter(DecisionState.EVALUATING_RULES)
            for rule in rules:
                evaluation = self.evaluate_rule(rule, values)
                decision.evaluations.append(evaluation)
                self._audit(session, latest, evaluation)

                if not evaluation.matched:
                    continue

                decision.enter(DecisionState.MATCHED)
                decision.matched_rule_id = rule.id
                action = parse_action(rule.action_json)
                if isinstance(action, UnknownAction):
                    logger.warning(
                        "Unknown rule action type, using sequential order",
                        extra={"rule_id": rule.id, "action_type": action.type},
                    )
                    return self._sequential(decision, current_question)

                decision.question = self.executor.execute(action, session)
                decision.enter(DecisionState.ACTION_EXECUTED)
                return decision

            decision.enter(DecisionState.EXHAUSTED)

        except Exception as e:
            logger.error(
                "Rule evaluation failed",
                exc_info=True,
                extra={
                    "session_id": session.id,
                    "current_question_id": current_question.id,
                    "error": str(e),
                },
            )
            decision.enter(DecisionState.ERROR)

        return self._sequential(decision, current_question)

    def evaluate_rule(
        self,
        rule: RuleSnapshot | SurveyRule,
        responses: Mapping[int, str | None],
    ) -> RuleEvaluation:
        """Evaluate one rule's condition. Never raises."""
        raw = rule.condition_json
        try:
            condition = parse_condition(raw, self.settings.max_condition_depth)
            matched = evaluate_condition(condition, responses)
            return RuleEvaluation(
                rule_id=rule.id,
                matched=matched,
                reason="Rule conditions satisfied" if matched else "Rule conditions not met",
                evaluated_conditions=self._summarize(raw, responses),
            )
        except Exception as e:
            logger.warning(
                "Rule condition evaluation failed",
                extra={"rule_id": rule.id, "error": str(e), "condition": raw},
            )
            return RuleEvaluation(
                rule_id=rule.id,
                matched=False,
                reason=f"Evaluation error: {e}",
            )

    def next_in_order(self, current_question: Question) -> Question | None:
        """The question with the next higher ``order_index`` in the same survey."""
        statement = (
            select(Question)
            .where(Question.survey_id == current_question.survey_id)
            .where(Question.order_index > current_question.order_index)
            .order_by(Question.order_index)
            .limit(1)
        )
        return self.db.exec(statement).first()

    # =========================================================================
    # Rule management hooks
    # =========================================================================

    def validate_rule(self, rule: SurveyRule) -> list[str]:
        """Every structural or dependency problem with ``rule`` (empty = valid)."""
        return RuleValidator(self.db, self.settings.max_condition_depth).validate(rule)

    def invalidate_rule_cache(self, survey: Survey) -> None:
        self.store.invalidate(survey.id)

    # =========================================================================
    # Helpers
    # =========================================================================

    def session_responses(self, session: SurveySession) -> list[Response]:
        """Responses of a session in submission order."""
        statement = (
            select(Response)
            .where(Response.session_id == session.id)
            .order_by(col(Response.created_at), col(Response.id))
        )
        return list(self.db.exec(statement).all())

    @staticmethod
    def _latest_response(responses: Sequence[Response]) -> Response | None:
        if not responses:
            return None
        return max(responses, key=lambda r: (r.updated_at or r.created_at, r.id))

    def _audit(
        self,
        session: SurveySession,
        response: Response | None,
        evaluation: RuleEvaluation,
    ) -> None:
        if response is None:
            logger.debug(
                "No response to attach rule audit to",
                extra={"session_id": session.id, "rule_id": evaluation.rule_id},
            )
            return
        self.db.add(
            ResponseAudit(
                response_id=response.id,
                rule_id=evaluation.rule_id,
                evaluation_result=evaluation.to_audit(),
            )
        )

    def _sequential(self, decision: BranchDecision, current_question: Question) -> BranchDecision:
        decision.enter(DecisionState.SEQUENTIAL)
        decision.question = self.next_in_order(current_question)
        return decision

    @staticmethod
    def _summarize(raw: Any, responses: Mapping[int, Any]) -> ConditionSummary:
        conditions = raw.get("conditions") if isinstance(raw, Mapping) else None
        return ConditionSummary(
            condition_type=str(raw.get("operator", "unknown")) if isinstance(raw, Mapping) else "unknown",
            conditions_count=len(conditions) if isinstance(conditions, list) else 0,
            responses_available=len(responses),
        )
