"""Survey authoring: surveys, questions, branching rules and rule dependencies.

Every rule mutation invalidates the survey's cached rule set after it is
committed, so the next branching decision sees the change.
"""

from typing import Optional

from sqlalchemy import delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from surveyflow.core.config import Settings, get_settings
from surveyflow.core.errors import RuleValidationError
from surveyflow.core.logging import get_logger
from surveyflow.rules.dependencies import DependencyValidator
from surveyflow.rules.engine import RuleEngine
from surveyflow.rules.store import RuleStore

from .models import (
    Question,
    RuleDependency,
    Survey,
    SurveyRule,
    SurveySession,
    utcnow,
)
from .schemas import (
    QuestionCreate,
    QuestionUpdate,
    RuleCreate,
    RuleUpdate,
    SurveyCreate,
    SurveyStats,
    SurveyUpdate,
)

logger = get_logger(__name__)


class SurveyManager:
    """Service for survey authoring operations."""

    def __init__(
        self,
        db: Session,
        store: Optional[RuleStore] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the service.

        Args:
            db: SQLModel database session
            store: Rule store whose cache is invalidated on rule changes
            settings: Application settings (rule limit, depth limit)
        """
        self.db = db
        self.settings = settings or get_settings()
        self.engine = RuleEngine(db, store, self.settings)

    # =========================================================================
    # Surveys
    # =========================================================================

    def create_survey(self, data: SurveyCreate) -> Survey:
        survey = Survey(
            title=data.title,
            description=data.description,
            branching_enabled=data.branching_enabled,
        )
        self.db.add(survey)
        self.db.commit()
        self.db.refresh(survey)
        return survey

    def get_survey(self, survey_id: int) -> Optional[Survey]:
        return self.db.get(Survey, survey_id)

    def update_survey(self, survey: Survey, data: SurveyUpdate) -> Survey:
        if data.title is not None:
            survey.title = data.title
        if data.description is not None:
            survey.description = data.description
        if data.branching_enabled is not None:
            survey.branching_enabled = data.branching_enabled

        survey.updated_at = utcnow()
        self.db.add(survey)
        self.db.commit()
        self.db.refresh(survey)
        return survey

    def delete_survey(self, survey: Survey) -> None:
        """Delete a survey with its questions, rules, sessions, responses and audits."""
        survey_id = survey.id
        rule_ids = select(SurveyRule.id).where(SurveyRule.survey_id == survey_id)
        self.db.exec(
            delete(RuleDependency).where(
                or_(
                    col(RuleDependency.parent_rule_id).in_(rule_ids),
                    col(RuleDependency.child_rule_id).in_(rule_ids),
                )
            )
        )
        self.db.delete(survey)
        self.db.commit()
        self.engine.store.invalidate(survey_id)

    # =========================================================================
    # Questions
    # =========================================================================

    def get_questions(self, survey: Survey) -> list[Question]:
        statement = (
            select(Question)
            .where(Question.survey_id == survey.id)
            .order_by(Question.order_index)
        )
        return list(self.db.exec(statement).all())

    def add_question(self, survey: Survey, data: QuestionCreate) -> Question:
        """Append a question at the end of the survey."""
        max_order = self.db.exec(
            select(func.max(Question.order_index)).where(Question.survey_id == survey.id)
        ).one()

        question = Question(
            survey_id=survey.id,
            type=data.type,
            content=data.content,
            options=data.options,
            required=data.required,
            rule_target=data.rule_target,
            order_index=(max_order or 0) + 1,
        )
        self.db.add(question)
        self.db.commit()
        self.db.refresh(question)
        return question

    def update_question(self, question: Question, data: QuestionUpdate) -> Question:
        for field_name, value in data.model_dump(exclude_none=True).items():
            setattr(question, field_name, value)
        self.db.add(question)
        self.db.commit()
        self.db.refresh(question)
        return question

    def reorder_questions(self, survey: Survey, question_ids: list[int]) -> list[Question]:
        """Renumber questions 1..n in the given order.

        Ids of other surveys are ignored; questions left out keep their
        relative order after the listed ones.
        """
        questions = self.get_questions(survey)
        by_id = {q.id: q for q in questions}

        ordered = [by_id[qid] for qid in dict.fromkeys(question_ids) if qid in by_id]
        listed = {q.id for q in ordered}
        ordered.extend(q for q in questions if q.id not in listed)

        for index, question in enumerate(ordered, start=1):
            question.order_index = index
            self.db.add(question)
        self.db.commit()
        return self.get_questions(survey)

    def delete_question(self, question: Question) -> None:
        """Delete a question and close the gap it leaves in the order.

        Sessions parked on the question move to the question that takes its
        place (or to none when it was the last one).
        """
        later = list(
            self.db.exec(
                select(Question)
                .where(Question.survey_id == question.survey_id)
                .where(Question.order_index > question.order_index)
                .order_by(Question.order_index)
            ).all()
        )
        for sibling in later:
            sibling.order_index -= 1
            self.db.add(sibling)

        successor_id = later[0].id if later else None
        parked = self.db.exec(
            select(SurveySession).where(SurveySession.current_question_id == question.id)
        ).all()
        for session in parked:
            session.current_question_id = successor_id
            self.db.add(session)

        self.db.delete(question)
        self.db.commit()

    # =========================================================================
    # Rules
    # =========================================================================

    def get_rules(self, survey: Survey) -> list[SurveyRule]:
        statement = (
            select(SurveyRule)
            .where(SurveyRule.survey_id == survey.id)
            .order_by(SurveyRule.priority, SurveyRule.id)
        )
        return list(self.db.exec(statement).all())

    def count_rules(self, survey: Survey) -> int:
        return self.db.exec(
            select(func.count(SurveyRule.id)).where(SurveyRule.survey_id == survey.id)
        ).one()

    def can_add_rule(self, survey: Survey) -> bool:
        return self.count_rules(survey) < self.settings.max_rules_per_survey

    def add_rule(self, survey: Survey, data: RuleCreate) -> SurveyRule:
        """Validate and persist a new rule.

        Raises:
            RuleValidationError: branching is disabled, the rule limit is
                reached, or the rule is structurally invalid.
        """
        if not survey.branching_enabled:
            raise RuleValidationError(["Cannot add rules to a survey with branching disabled"])
        if not self.can_add_rule(survey):
            raise RuleValidationError(
                [f"Survey already has the maximum of {self.settings.max_rules_per_survey} rules"]
            )

        rule = SurveyRule(
            survey_id=survey.id,
            condition_json=data.condition,
            action_json=data.action,
            priority=data.priority,
            active=data.active,
        )
        errors = self.engine.validate_rule(rule)
        if errors:
            raise RuleValidationError(errors)

        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        self.engine.invalidate_rule_cache(survey)
        logger.info("Rule added", extra={"survey_id": survey.id, "rule_id": rule.id})
        return rule

    def update_rule(self, rule: SurveyRule, data: RuleUpdate) -> SurveyRule:
        """Apply changes to a rule once the changed rule validates."""
        candidate = SurveyRule(
            id=rule.id,
            survey_id=rule.survey_id,
            condition_json=data.condition if data.condition is not None else rule.condition_json,
            action_json=data.action if data.action is not None else rule.action_json,
            priority=data.priority if data.priority is not None else rule.priority,
            active=data.active if data.active is not None else rule.active,
        )
        errors = self.engine.validate_rule(candidate)
        if errors:
            raise RuleValidationError(errors)

        rule.condition_json = candidate.condition_json
        rule.action_json = candidate.action_json
        rule.priority = candidate.priority
        rule.active = candidate.active
        rule.updated_at = utcnow()
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        self.engine.store.invalidate(rule.survey_id)
        return rule

    def set_rule_active(self, rule: SurveyRule, active: bool) -> SurveyRule:
        """Activate (after validation) or deactivate a rule."""
        if active:
            errors = self.engine.validate_rule(rule)
            if errors:
                raise RuleValidationError(errors)

        rule.active = active
        rule.updated_at = utcnow()
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        self.engine.store.invalidate(rule.survey_id)
        return rule

    def delete_rule(self, rule: SurveyRule) -> None:
        survey_id = rule.survey_id
        self.db.exec(
            delete(RuleDependency).where(
                or_(
                    RuleDependency.parent_rule_id == rule.id,
                    RuleDependency.child_rule_id == rule.id,
                )
            )
        )
        self.db.delete(rule)
        self.db.commit()
        self.engine.store.invalidate(survey_id)

    # =========================================================================
    # Rule dependencies
    # =========================================================================

    def add_dependency(
        self,
        parent: SurveyRule,
        child: SurveyRule,
        dependency_type: str = "requires",
    ) -> RuleDependency:
        """Add a ``parent -> child`` edge.

        Raises:
            RuleValidationError: the edge is invalid or would close a cycle;
                nothing is persisted.
        """
        errors = DependencyValidator(self.db).check_new_edge(parent.id, child.id)
        if errors:
            raise RuleValidationError(errors)

        dependency = RuleDependency(
            parent_rule_id=parent.id,
            child_rule_id=child.id,
            dependency_type=dependency_type,
        )
        self.db.add(dependency)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise RuleValidationError(
                [f"Dependency already exists: rule {parent.id} -> rule {child.id}"]
            ) from e
        self.db.refresh(dependency)
        return dependency

    def remove_dependency(self, parent: SurveyRule, child: SurveyRule) -> bool:
        dependency = self.db.exec(
            select(RuleDependency)
            .where(RuleDependency.parent_rule_id == parent.id)
            .where(RuleDependency.child_rule_id == child.id)
        ).first()
        if dependency is None:
            return False
        self.db.delete(dependency)
        self.db.commit()
        return True

    def get_dependencies(self, survey: Survey) -> list[RuleDependency]:
        statement = (
            select(RuleDependency)
            .join(SurveyRule, SurveyRule.id == RuleDependency.parent_rule_id)
            .where(SurveyRule.survey_id == survey.id)
            .order_by(RuleDependency.id)
        )
        return list(self.db.exec(statement).all())

    # =========================================================================
    # Stats
    # =========================================================================

    def survey_stats(self, survey: Survey) -> SurveyStats:
        question_count = self.db.exec(
            select(func.count(Question.id)).where(Question.survey_id == survey.id)
        ).one()
        active_rule_count = self.db.exec(
            select(func.count(SurveyRule.id))
            .where(SurveyRule.survey_id == survey.id)
            .where(SurveyRule.active == True)  # noqa: E712
        ).one()
        session_count = self.db.exec(
            select(func.count(SurveySession.id)).where(SurveySession.survey_id == survey.id)
        ).one()
        completed_count = self.db.exec(
            select(func.count(SurveySession.id))
            .where(SurveySession.survey_id == survey.id)
            .where(SurveySession.completed == True)  # noqa: E712
        ).one()
        rule_count = self.count_rules(survey)

        return SurveyStats(
            question_count=question_count,
            rule_count=rule_count,
            active_rule_count=active_rule_count,
            session_count=session_count,
            completed_session_count=completed_count,
            branching_enabled=survey.branching_enabled,
            can_add_rules=rule_count < self.settings.max_rules_per_survey,
        )
