"""Core package - Shared configuration, database, logging and errors."""

from .config import Settings, get_settings
from .database import (
    create_db_engine,
    get_engine,
    get_session,
    init_db,
    set_database_url,
)
from .errors import (
    ConditionParseError,
    QuestionMismatchError,
    RuleValidationError,
    SessionCompletedError,
    SessionNotFoundError,
    SessionStateError,
    SurveyFlowError,
)
from .logging import get_logger, setup_logging

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "create_db_engine",
    "get_engine",
    "get_session",
    "init_db",
    "set_database_url",
    # Logging
    "get_logger",
    "setup_logging",
    # Errors
    "SurveyFlowError",
    "RuleValidationError",
    "ConditionParseError",
    "SessionStateError",
    "SessionCompletedError",
    "SessionNotFoundError",
    "QuestionMismatchError",
]
