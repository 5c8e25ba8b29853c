"""Rule actions and their execution.

An action descriptor says where a matched rule sends the respondent::

    {"type": "skip_to_question", "questionId": 7}
    {"type": "show_section", "questionIds": [7, 8, 9]}
    {"type": "end_survey"}
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, ValidationError
from sqlmodel import Session

from surveyflow.core.errors import ConditionParseError
from surveyflow.surveys.models import Question, SurveySession


class ActionType(str, Enum):
    """Supported rule action types."""
    SHOW_QUESTION = "show_question"
    SKIP_TO_QUESTION = "skip_to_question"
    SHOW_SECTION = "show_section"
    END_SURVEY = "end_survey"


ACTION_TYPES = frozenset(t.value for t in ActionType)


class _Action(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ShowQuestionAction(_Action):
    type: Literal["show_question"] = "show_question"
    question_id: int | None = Field(default=None, alias="questionId")


class SkipToQuestionAction(_Action):
    type: Literal["skip_to_question"] = "skip_to_question"
    question_id: int | None = Field(default=None, alias="questionId")


class ShowSectionAction(_Action):
    """Targets the first question of an ordered section."""
    type: Literal["show_section"] = "show_section"
    question_ids: list[int] = Field(default_factory=list, alias="questionIds")


class EndSurveyAction(_Action):
    type: Literal["end_survey"] = "end_survey"


class UnknownAction(_Action):
    """Any action type this engine does not implement."""
    type: str


def _action_kind(action: Any) -> str:
    if isinstance(action, Mapping):
        kind = action.get("type", ActionType.SHOW_QUESTION.value)
    else:
        kind = getattr(action, "type", None)
    return kind if isinstance(kind, str) and kind in ACTION_TYPES else "unknown"


RuleAction = Annotated[
    Union[
        Annotated[ShowQuestionAction, Tag("show_question")],
        Annotated[SkipToQuestionAction, Tag("skip_to_question")],
        Annotated[ShowSectionAction, Tag("show_section")],
        Annotated[EndSurveyAction, Tag("end_survey")],
        Annotated[UnknownAction, Tag("unknown")],
    ],
    Discriminator(_action_kind),
]


_ACTION_ADAPTER: TypeAdapter[RuleAction] = TypeAdapter(RuleAction)


def parse_action(raw: Any) -> RuleAction:
    """Parse persisted action JSON. A missing ``type`` means ``show_question``.

    Raises:
        ConditionParseError: if the descriptor is not an object or a field
            has the wrong shape.
    """
    if not isinstance(raw, Mapping):
        raise ConditionParseError("Action must be an object")
    data = dict(raw)
    data.setdefault("type", ActionType.SHOW_QUESTION.value)
    if not isinstance(data["type"], str):
        raise ConditionParseError("Action type must be a string")
    try:
        return _ACTION_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise ConditionParseError(f"Malformed action: {e.errors()[0]['msg']}") from e


class ActionExecutor:
    """Resolves a matched rule's action to the next question."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, action: RuleAction, session: SurveySession) -> Question | None:
        """Run ``action`` for ``session``.

        Returns the destination question, or None when there is none: the
        survey was ended, the reference dangles or the type is unknown.
        """
        if isinstance(action, (ShowQuestionAction, SkipToQuestionAction)):
            return self._find_in_survey(action.question_id, session)
        if isinstance(action, ShowSectionAction):
            if not action.question_ids:
                return None
            return self._find_in_survey(action.question_ids[0], session)
        if isinstance(action, EndSurveyAction):
            session.mark_completed()
            return None
        return None

    def _find_in_survey(self, question_id: int | None, session: SurveySession) -> Question | None:
        if question_id is None:
            return None
        question = self.db.get(Question, question_id)
        if question is not None and question.survey_id == session.survey_id:
            return question
        return None
