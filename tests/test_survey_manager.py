"""Tests for survey authoring operations."""

import pytest
from sqlmodel import select

from conftest import equals_condition, skip_to
from surveyflow.core.config import Settings
from surveyflow.core.errors import RuleValidationError
from surveyflow.surveys import (
    Question,
    QuestionCreate,
    QuestionType,
    QuestionUpdate,
    Response,
    ResponseAudit,
    RuleCreate,
    RuleDependency,
    RuleUpdate,
    SurveyCreate,
    SurveyRule,
    SurveySession,
    SurveyUpdate,
)
from surveyflow.surveys.service import SurveyManager


def valid_rule(questions, value="yes", priority=1) -> RuleCreate:
    return RuleCreate(
        condition=equals_condition(questions[0].id, value),
        action=skip_to(questions[2].id),
        priority=priority,
    )


class TestSurveys:
    def test_create_and_get(self, manager):
        survey = manager.create_survey(SurveyCreate(title="Onboarding", description="First week"))

        assert survey.id is not None
        assert survey.branching_enabled is False
        assert manager.get_survey(survey.id).title == "Onboarding"
        assert manager.get_survey(99999) is None

    def test_update(self, manager):
        survey = manager.create_survey(SurveyCreate(title="Draft"))
        updated = manager.update_survey(survey, SurveyUpdate(title="Final", branching_enabled=True))

        assert updated.title == "Final"
        assert updated.branching_enabled is True
        assert updated.updated_at is not None

    def test_delete_cascades(self, db, manager, sessions, survey_with_questions):
        survey, questions = survey_with_questions
        first = manager.add_rule(survey, valid_rule(questions, "yes"))
        second = manager.add_rule(survey, valid_rule(questions, "no"))
        manager.add_dependency(first, second)
        session = sessions.create_session(survey)
        sessions.submit_response(session, questions[0], "yes")

        manager.delete_survey(survey)

        for table in (Question, SurveyRule, RuleDependency, SurveySession, Response, ResponseAudit):
            assert db.exec(select(table)).all() == [], table.__name__


class TestQuestions:
    def test_questions_are_appended(self, manager, survey_with_questions):
        survey, questions = survey_with_questions

        assert [q.order_index for q in questions] == [1, 2, 3]
        added = manager.add_question(
            survey,
            QuestionCreate(type=QuestionType.RADIO, content="Pick one", options=["a", "b"]),
        )
        assert added.order_index == 4
        assert added.options == ["a", "b"]

    def test_update_question(self, manager, survey_with_questions):
        _, questions = survey_with_questions
        updated = manager.update_question(questions[0], QuestionUpdate(content="Reworded", required=False))

        assert updated.content == "Reworded"
        assert updated.required is False
        assert updated.order_index == 1

    def test_reorder(self, manager, make_survey, survey_with_questions):
        survey, (q1, q2, q3) = survey_with_questions
        _, foreign = make_survey(title="Other survey")

        ordered = manager.reorder_questions(survey, [q3.id, foreign[0].id, q1.id])

        assert [q.id for q in ordered] == [q3.id, q1.id, q2.id]
        assert [q.order_index for q in ordered] == [1, 2, 3]
        assert foreign[0].order_index == 1

    def test_delete_question_closes_gap(self, db, manager, sessions, survey_with_questions):
        survey, (q1, q2, q3) = survey_with_questions
        session = sessions.create_session(survey)
        sessions.submit_response(session, q1, "yes")
        assert session.current_question_id == q2.id
        sessions.go_back(session)
        sessions.submit_response(session, q1, "no")

        manager.delete_question(q1)

        assert [q.id for q in manager.get_questions(survey)] == [q2.id, q3.id]
        assert [q.order_index for q in manager.get_questions(survey)] == [1, 2]
        assert db.exec(select(Response)).all() == []

    def test_delete_question_moves_parked_sessions(self, manager, sessions, survey_with_questions):
        survey, (q1, q2, q3) = survey_with_questions
        on_q1 = sessions.create_session(survey)
        on_q3 = sessions.create_session(survey)
        sessions.submit_response(on_q3, q1, "a")
        sessions.submit_response(on_q3, q2, "b")
        assert on_q3.current_question_id == q3.id

        manager.delete_question(q1)
        manager.delete_question(q3)

        assert on_q1.current_question_id == q2.id
        assert on_q3.current_question_id is None


class TestRules:
    def test_add_rule(self, manager, survey_with_questions):
        survey, questions = survey_with_questions
        rule = manager.add_rule(survey, valid_rule(questions, priority=3))

        assert rule.id is not None
        assert rule.priority == 3
        assert rule.active is True
        assert [r.id for r in manager.get_rules(survey)] == [rule.id]

    def test_branching_disabled_rejects_rules(self, manager, make_survey):
        survey, questions = make_survey(branching=False)

        with pytest.raises(RuleValidationError) as exc_info:
            manager.add_rule(survey, valid_rule(questions))
        assert exc_info.value.errors == ["Cannot add rules to a survey with branching disabled"]

    def test_rule_limit(self, db, rule_store, make_survey):
        limited = SurveyManager(db, rule_store, Settings(_env_file=None, max_rules_per_survey=2))
        survey, questions = make_survey()
        limited.add_rule(survey, valid_rule(questions, "a"))
        limited.add_rule(survey, valid_rule(questions, "b"))

        with pytest.raises(RuleValidationError) as exc_info:
            limited.add_rule(survey, valid_rule(questions, "c"))

        assert exc_info.value.errors == ["Survey already has the maximum of 2 rules"]
        assert limited.count_rules(survey) == 2
        assert limited.survey_stats(survey).can_add_rules is False

    def test_default_rule_limit_is_fifty(self, manager, survey_with_questions):
        survey, questions = survey_with_questions
        for i in range(50):
            manager.add_rule(survey, valid_rule(questions, f"answer {i}"))

        assert manager.can_add_rule(survey) is False
        with pytest.raises(RuleValidationError):
            manager.add_rule(survey, valid_rule(questions, "one too many"))
        assert manager.count_rules(survey) == 50

    def test_invalid_rule_is_not_persisted(self, manager, survey_with_questions):
        survey, questions = survey_with_questions

        with pytest.raises(RuleValidationError) as exc_info:
            manager.add_rule(
                survey,
                RuleCreate(condition={"operator": "xor", "conditions": []}, action={"type": "jump"}),
            )

        assert exc_info.value.errors == [
            "Invalid condition operator: xor",
            "Condition must have at least one sub-condition",
            "Invalid action type: jump",
        ]
        assert manager.count_rules(survey) == 0

    def test_update_rule(self, db, manager, rule_store, survey_with_questions):
        survey, questions = survey_with_questions
        rule = manager.add_rule(survey, valid_rule(questions))
        rule_store.get_active_rules(db, survey.id)

        manager.update_rule(rule, RuleUpdate(priority=5, action=skip_to(questions[1].id)))

        (cached,) = rule_store.get_active_rules(db, survey.id)
        assert cached.priority == 5
        assert cached.action_json == skip_to(questions[1].id)
        assert rule.updated_at is not None

    def test_invalid_update_leaves_rule_unchanged(self, manager, survey_with_questions):
        survey, questions = survey_with_questions
        rule = manager.add_rule(survey, valid_rule(questions))

        with pytest.raises(RuleValidationError):
            manager.update_rule(rule, RuleUpdate(action={"type": "jump"}))

        assert rule.action_json == skip_to(questions[2].id)

    def test_set_rule_active(self, db, manager, rule_store, survey_with_questions):
        survey, questions = survey_with_questions
        rule = manager.add_rule(survey, valid_rule(questions))

        manager.set_rule_active(rule, False)
        assert rule_store.get_active_rules(db, survey.id) == []
        assert manager.survey_stats(survey).active_rule_count == 0

        manager.set_rule_active(rule, True)
        assert len(rule_store.get_active_rules(db, survey.id)) == 1

    def test_delete_rule_removes_dependencies(self, db, manager, rule_store, survey_with_questions):
        survey, questions = survey_with_questions
        first = manager.add_rule(survey, valid_rule(questions, "a"))
        second = manager.add_rule(survey, valid_rule(questions, "b"))
        manager.add_dependency(first, second)
        rule_store.get_active_rules(db, survey.id)

        manager.delete_rule(first)

        assert db.exec(select(RuleDependency)).all() == []
        assert [r.id for r in rule_store.get_active_rules(db, survey.id)] == [second.id]


class TestStats:
    def test_survey_stats(self, manager, sessions, survey_with_questions):
        survey, questions = survey_with_questions
        manager.add_rule(survey, valid_rule(questions))
        sessions.create_session(survey)
        finished = sessions.create_session(survey)
        sessions.submit_response(finished, questions[0], "no")
        sessions.submit_response(finished, questions[1], "because")
        sessions.submit_response(finished, questions[2], "done")

        stats = manager.survey_stats(survey)

        assert stats.question_count == 3
        assert stats.rule_count == 1
        assert stats.active_rule_count == 1
        assert stats.session_count == 2
        assert stats.completed_session_count == 1
        assert stats.branching_enabled is True
        assert stats.can_add_rules is True
