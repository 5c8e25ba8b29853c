"""Pydantic schemas for survey sessions."""

from typing import Optional

from pydantic import BaseModel, Field


class SessionProgress(BaseModel):
    """Progress snapshot of a session, also stored as ``progress_data``."""

    total_questions: int = Field(ge=0)
    answered_questions: int = Field(ge=0)
    progress_percentage: float = Field(ge=0.0, le=100.0, description="Rounded to 2 places")
    is_completed: bool
    current_question_id: Optional[int] = None
    session_token: str
