"""Survey session state machine.

A session moves a respondent through a survey one question at a time::

    NEW -> IN_PROGRESS(current question) -> ... -> COMPLETED
                     ^        |
                     +--------+  submit_response / go_back

Submitting a response upserts the answer, lets the rule engine (or the
question order) pick the next question and stores a progress snapshot, all
in a single commit.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session, col, select

from surveyflow.core.config import Settings, get_settings
from surveyflow.core.errors import (
    QuestionMismatchError,
    SessionCompletedError,
    SessionNotFoundError,
)
from surveyflow.core.logging import clear_session_token, get_logger, set_session_token
from surveyflow.rules.engine import RuleEngine
from surveyflow.surveys.models import (
    Question,
    Response,
    Survey,
    SurveySession,
    generate_session_token,
    utcnow,
)

from .schemas import SessionProgress

logger = get_logger(__name__)

# Dialects whose insert construct supports ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def response_value(value: Any) -> Optional[str]:
    """Normalize an answer to the text form responses are stored in.

    Multiple-choice answers (lists) are stored comma separated.
    """
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


class SurveySessionManager:
    """Creates sessions, records responses and advances the current question."""

    def __init__(
        self,
        db: Session,
        engine: Optional[RuleEngine] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the manager.

        Args:
            db: SQLModel database session (one unit of work)
            engine: Rule engine deciding the next question; built on ``db``
                when not given
            settings: Application settings (session timeout, token size)
        """
        self.db = db
        self.settings = settings or get_settings()
        self.engine = engine or RuleEngine(db, settings=self.settings)

    # =========================================================================
    # Lookup and creation
    # =========================================================================

    def create_session(self, survey: Survey) -> SurveySession:
        """Start a session on the survey's first question (none if it has none)."""
        first = self.db.exec(
            select(Question)
            .where(Question.survey_id == survey.id)
            .order_by(Question.order_index)
            .limit(1)
        ).first()

        session = SurveySession(
            survey_id=survey.id,
            session_token=generate_session_token(self.settings.session_token_bytes),
            current_question_id=first.id if first else None,
        )
        self.db.add(session)
        self.db.flush()
        session.progress_data = self.progress(session).model_dump()
        self.db.commit()
        self.db.refresh(session)

        logger.info(
            "Survey session created",
            extra={"survey_id": survey.id, "session_id": session.id},
        )
        return session

    def get_session(self, token: str) -> Optional[SurveySession]:
        """The session for ``token``, or None if it is unknown or expired."""
        session = self.db.exec(
            select(SurveySession).where(SurveySession.session_token == token)
        ).first()
        if session is None or self.is_session_expired(session):
            return None
        return session

    def require_session(self, token: str) -> SurveySession:
        session = self.get_session(token)
        if session is None:
            raise SessionNotFoundError("Session not found or expired")
        return session

    def get_or_create_session(self, survey: Survey, token: Optional[str] = None) -> SurveySession:
        """Resume the live session of this survey for ``token``, else start a new one."""
        if token:
            session = self.get_session(token)
            if session is not None and session.survey_id == survey.id:
                session.touch()
                self.db.add(session)
                self.db.commit()
                self.db.refresh(session)
                return session

        return self.create_session(survey)

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit_response(self, session: SurveySession, question: Question, value: Any) -> Response:
        """Record an answer and advance the session.

        Raises:
            SessionCompletedError: the session is already completed
            SessionNotFoundError: the session has expired
            QuestionMismatchError: the question belongs to another survey
        """
        if session.completed:
            raise SessionCompletedError("Cannot submit response to completed session")
        if self.is_session_expired(session):
            raise SessionNotFoundError("Session has expired")
        if question.survey_id != session.survey_id:
            raise QuestionMismatchError(
                f"Question {question.id} does not belong to survey {session.survey_id}"
            )

        set_session_token(session.session_token)
        try:
            response = self._upsert_response(session, question, response_value(value))
            session.touch()

            next_question = self.engine.decide(session, question)
            session.current_question_id = next_question.id if next_question else None
            if next_question is None:
                session.mark_completed()

            self.db.add(session)
            self.db.flush()
            session.progress_data = self.progress(session).model_dump()
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(
                "Response submission failed",
                extra={"session_id": session.id, "question_id": question.id},
            )
            raise
        finally:
            clear_session_token()

        self.db.refresh(response)
        if session.completed:
            logger.info("Survey session completed", extra={"session_id": session.id})
        return response

    def go_back(self, session: SurveySession) -> Optional[Question]:
        """Move the session back to the previously answered question.

        Returns None (and changes nothing) when the session is completed or
        there is no earlier answer to return to.
        """
        previous = self._previous_response(session)
        if previous is None:
            return None

        question = self.db.get(Question, previous.question_id)
        session.current_question_id = question.id
        session.touch()
        self.db.add(session)
        self.db.flush()
        session.progress_data = self.progress(session).model_dump()
        self.db.commit()
        self.db.refresh(session)
        return question

    def can_go_back(self, session: SurveySession) -> bool:
        return self._previous_response(session) is not None

    def complete_session(self, session: SurveySession) -> SurveySession:
        """Complete a session explicitly (e.g. a survey without questions)."""
        if session.completed:
            return session

        session.current_question_id = None
        session.mark_completed()
        session.touch()
        self.db.add(session)
        self.db.flush()
        session.progress_data = self.progress(session).model_dump()
        self.db.commit()
        self.db.refresh(session)
        logger.info("Survey session completed", extra={"session_id": session.id})
        return session

    # =========================================================================
    # Queries
    # =========================================================================

    def get_session_responses(self, session: SurveySession) -> list[Response]:
        return self.engine.session_responses(session)

    def progress(self, session: SurveySession) -> SessionProgress:
        total = self.db.exec(
            select(func.count(Question.id)).where(Question.survey_id == session.survey_id)
        ).one()
        answered = self.db.exec(
            select(func.count(func.distinct(Response.question_id))).where(
                Response.session_id == session.id
            )
        ).one()
        percentage = round(answered / total * 100, 2) if total else 0.0

        return SessionProgress(
            total_questions=total,
            answered_questions=answered,
            progress_percentage=percentage,
            is_completed=session.completed,
            current_question_id=session.current_question_id,
            session_token=session.session_token,
        )

    def is_session_expired(self, session: SurveySession) -> bool:
        timeout = timedelta(hours=self.settings.session_timeout_hours)
        return utcnow() > session.last_activity + timeout

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_expired_sessions(self) -> int:
        """Delete expired, unfinished sessions with their responses and audits.

        Returns:
            Number of sessions deleted
        """
        cutoff = utcnow() - timedelta(hours=self.settings.session_timeout_hours)
        expired = self.db.exec(
            select(SurveySession)
            .where(SurveySession.last_activity < cutoff)
            .where(SurveySession.completed == False)  # noqa: E712
        ).all()

        for session in expired:
            self.db.delete(session)
        self.db.commit()

        if expired:
            logger.info("Expired sessions removed", extra={"count": len(expired)})
        return len(expired)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _upsert_response(
        self,
        session: SurveySession,
        question: Question,
        value: Optional[str],
    ) -> Response:
        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Response upsert is not supported on {dialect}")

        now = utcnow()
        statement = insert(Response).values(
            session_id=session.id,
            question_id=question.id,
            value=value,
            created_at=now,
        )
        statement = statement.on_conflict_do_update(
            index_elements=["session_id", "question_id"],
            set_={"value": value, "updated_at": now},
        )
        self.db.exec(statement)

        return self.db.exec(
            select(Response)
            .where(Response.session_id == session.id)
            .where(Response.question_id == question.id)
            .execution_options(populate_existing=True)
        ).one()

    def _previous_response(self, session: SurveySession) -> Optional[Response]:
        """The answer ``go_back`` returns to.

        That is the latest answer, unless it belongs to the current question
        (the respondent already went back to it); then it is the answer
        submitted just before.
        """
        if session.completed:
            return None

        responses = self.db.exec(
            select(Response)
            .where(Response.session_id == session.id)
            .order_by(col(Response.created_at), col(Response.id))
        ).all()
        if not responses:
            return None

        latest = responses[-1]
        if latest.question_id != session.current_question_id:
            return latest
        return responses[-2] if len(responses) > 1 else None
