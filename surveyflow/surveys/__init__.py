"""Surveys domain - questionnaire, rule and session tables plus authoring schemas.

The authoring service lives in ``surveyflow.surveys.service``; it is not
re-exported here because it depends on the rules package, which itself
imports these models.
"""

from .models import (
    Question,
    QuestionType,
    Response,
    ResponseAudit,
    RuleDependency,
    Survey,
    SurveyRule,
    SurveySession,
    generate_session_token,
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

__all__ = [
    # Tables
    "Survey",
    "Question",
    "QuestionType",
    "SurveyRule",
    "RuleDependency",
    "SurveySession",
    "Response",
    "ResponseAudit",
    "generate_session_token",
    "utcnow",
    # Schemas
    "SurveyCreate",
    "SurveyUpdate",
    "QuestionCreate",
    "QuestionUpdate",
    "RuleCreate",
    "RuleUpdate",
    "SurveyStats",
]
