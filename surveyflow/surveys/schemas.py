"""Pydantic schemas for survey authoring."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from .models import QuestionType


class SurveyCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    branching_enabled: bool = False


class SurveyUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    branching_enabled: Optional[bool] = None


class QuestionCreate(BaseModel):
    type: QuestionType = QuestionType.TEXT
    content: str = Field(min_length=1)
    options: Optional[list[Any]] = None
    required: bool = True
    rule_target: bool = False


class QuestionUpdate(BaseModel):
    type: Optional[QuestionType] = None
    content: Optional[str] = Field(default=None, min_length=1)
    options: Optional[list[Any]] = None
    required: Optional[bool] = None
    rule_target: Optional[bool] = None


class RuleCreate(BaseModel):
    """A new branching rule; JSON trees use the persisted camelCase keys."""
    condition: dict[str, Any] = Field(description="Condition tree")
    action: dict[str, Any] = Field(description="Action descriptor")
    priority: int = Field(default=1, description="Lower is evaluated first")
    active: bool = True


class RuleUpdate(BaseModel):
    condition: Optional[dict[str, Any]] = None
    action: Optional[dict[str, Any]] = None
    priority: Optional[int] = None
    active: Optional[bool] = None


class SurveyStats(BaseModel):
    """Authoring overview of a survey."""
    question_count: int
    rule_count: int
    active_rule_count: int
    session_count: int
    completed_session_count: int
    branching_enabled: bool
    can_add_rules: bool
