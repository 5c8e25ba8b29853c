"""Sessions domain - respondent sessions, responses and progress."""

from .schemas import SessionProgress
from .service import SurveySessionManager, response_value

__all__ = [
    "SessionProgress",
    "SurveySessionManager",
    "response_value",
]
