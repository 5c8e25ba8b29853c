"""SQLModel table definitions for surveys, branching rules and sessions.

Tables:
- surveys / questions: the authored questionnaire
- survey_rules / rule_dependencies: branching rules and their dependency graph
- survey_sessions / responses: one respondent's pass through a survey
- response_audits: why a branching decision picked the next question
"""

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """``DateTime(timezone=True)`` that always hands back aware UTC values.

    SQLite drops the offset on storage; values read back are re-tagged as
    UTC, and values written are converted to UTC first.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _timestamp(nullable: bool = False, index: bool = False) -> Column:
    return Column(UTCDateTime(), nullable=nullable, index=index)


def generate_session_token(nbytes: int = 32) -> str:
    """Opaque, unguessable session token (hex of ``nbytes`` random bytes)."""
    return secrets.token_hex(nbytes)


class QuestionType(str, Enum):
    """Supported question input types."""
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    NUMBER = "number"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    DATE = "date"
    RATING = "rating"


class Survey(SQLModel, table=True):
    """A questionnaire with optional rule-based branching."""

    __tablename__ = "surveys"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(..., max_length=255, description="Survey title")
    description: Optional[str] = Field(default=None, description="Survey description")
    branching_enabled: bool = Field(default=False, description="Whether rules drive the question order")
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp(), description="Creation timestamp")
    updated_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(nullable=True), description="Last update timestamp")

    questions: list["Question"] = Relationship(
        back_populates="survey",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "Question.order_index"},
    )
    rules: list["SurveyRule"] = Relationship(
        back_populates="survey",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    sessions: list["SurveySession"] = Relationship(
        back_populates="survey",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class Question(SQLModel, table=True):
    """A question; ``order_index`` defines the sequential fallback order."""

    __tablename__ = "questions"

    id: Optional[int] = Field(default=None, primary_key=True)
    survey_id: int = Field(foreign_key="surveys.id", index=True, ondelete="CASCADE")
    type: QuestionType = Field(default=QuestionType.TEXT, description="Input type")
    content: str = Field(..., description="Question text")
    options: Optional[list[Any]] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
        description="Ordered answer options for choice questions",
    )
    order_index: int = Field(..., index=True, description="1-based position within the survey")
    rule_target: bool = Field(default=False, description="Eligible as a branching destination")
    required: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())

    survey: Optional["Survey"] = Relationship(back_populates="questions")
    responses: list["Response"] = Relationship(
        back_populates="question",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class SurveyRule(SQLModel, table=True):
    """A (condition, action, priority) branching rule.

    ``condition_json`` holds a condition tree
    (``{"operator": "and", "conditions": [...]}``) and ``action_json`` an
    action descriptor (``{"type": "skip_to_question", "questionId": 3}``).
    Rules are evaluated by ascending ``(priority, id)``.
    """

    __tablename__ = "survey_rules"

    id: Optional[int] = Field(default=None, primary_key=True)
    survey_id: int = Field(foreign_key="surveys.id", index=True, ondelete="CASCADE")
    condition_json: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    action_json: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    priority: int = Field(default=1, index=True, description="Lower runs first")
    active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    updated_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(nullable=True))

    survey: Optional["Survey"] = Relationship(back_populates="rules")
    audits: list["ResponseAudit"] = Relationship(
        back_populates="rule",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class RuleDependency(SQLModel, table=True):
    """Directed parent -> child edge between two rules of one survey."""

    __tablename__ = "rule_dependencies"
    __table_args__ = (UniqueConstraint("parent_rule_id", "child_rule_id", name="uniq_parent_child"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    parent_rule_id: int = Field(foreign_key="survey_rules.id", index=True, ondelete="CASCADE")
    child_rule_id: int = Field(foreign_key="survey_rules.id", index=True, ondelete="CASCADE")
    dependency_type: str = Field(default="requires", max_length=50)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())


class SurveySession(SQLModel, table=True):
    """One respondent's in-progress or completed pass through a survey."""

    __tablename__ = "survey_sessions"

    id: Optional[int] = Field(default=None, primary_key=True)
    survey_id: int = Field(foreign_key="surveys.id", index=True, ondelete="CASCADE")
    session_token: str = Field(
        default_factory=generate_session_token,
        max_length=64,
        unique=True,
        index=True,
    )
    current_question_id: Optional[int] = Field(
        default=None, foreign_key="questions.id", ondelete="SET NULL"
    )
    progress_data: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    last_activity: datetime = Field(default_factory=utcnow, sa_column=_timestamp(index=True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(nullable=True))

    survey: Optional["Survey"] = Relationship(back_populates="sessions")
    current_question: Optional["Question"] = Relationship()
    responses: list["Response"] = Relationship(
        back_populates="session",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )

    def mark_completed(self) -> None:
        """Complete the session. ``completed_at`` is only ever set once."""
        self.completed = True
        if self.completed_at is None:
            self.completed_at = utcnow()

    def touch(self) -> None:
        self.last_activity = utcnow()


class Response(SQLModel, table=True):
    """A respondent's answer; values of every question type are stored as text."""

    __tablename__ = "responses"
    __table_args__ = (UniqueConstraint("session_id", "question_id", name="uniq_session_question"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="survey_sessions.id", index=True, ondelete="CASCADE")
    question_id: int = Field(foreign_key="questions.id", index=True, ondelete="CASCADE")
    value: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    updated_at: Optional[datetime] = Field(default=None, sa_column=_timestamp(nullable=True))

    session: Optional["SurveySession"] = Relationship(back_populates="responses")
    question: Optional["Question"] = Relationship(back_populates="responses")
    audits: list["ResponseAudit"] = Relationship(
        back_populates="response",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class ResponseAudit(SQLModel, table=True):
    """Outcome of one rule evaluation during one branching decision."""

    __tablename__ = "response_audits"

    id: Optional[int] = Field(default=None, primary_key=True)
    response_id: int = Field(foreign_key="responses.id", index=True, ondelete="CASCADE")
    rule_id: int = Field(foreign_key="survey_rules.id", index=True, ondelete="CASCADE")
    evaluation_result: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    timestamp: datetime = Field(default_factory=utcnow, sa_column=_timestamp(index=True))

    response: Optional["Response"] = Relationship(back_populates="audits")
    rule: Optional["SurveyRule"] = Relationship(back_populates="audits")


Survey.model_rebuild()
Question.model_rebuild()
SurveyRule.model_rebuild()
RuleDependency.model_rebuild()
SurveySession.model_rebuild()
Response.model_rebuild()
ResponseAudit.model_rebuild()
