"""Tests for configuration, database setup, logging and errors."""

import json
import logging

from sqlmodel import select

from surveyflow.core.config import Settings
from surveyflow.core.database import get_engine, get_session, init_db, set_database_url
from surveyflow.core.errors import (
    ConditionParseError,
    RuleValidationError,
    SessionCompletedError,
    SessionStateError,
    SurveyFlowError,
)
from surveyflow.core.logging import (
    JsonFormatter,
    SessionTokenFilter,
    clear_session_token,
    set_session_token,
    setup_logging,
)
from surveyflow.surveys import Survey


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.rule_cache_ttl_seconds == 300
        assert settings.max_rules_per_survey == 50
        assert settings.max_condition_depth == 10
        assert settings.session_timeout_hours == 24
        assert settings.session_token_bytes == 32

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("SURVEYFLOW_MAX_RULES_PER_SURVEY", "5")
        monkeypatch.setenv("SURVEYFLOW_SESSION_TIMEOUT_HOURS", "1")

        settings = Settings(_env_file=None)
        assert settings.max_rules_per_survey == 5
        assert settings.session_timeout_hours == 1


class TestDatabase:
    def test_file_database_is_created_on_demand(self, tmp_path):
        path = tmp_path / "nested" / "surveys.db"
        set_database_url(f"sqlite:///{path}")
        sessions = get_session()
        db = next(sessions)
        try:
            init_db()
            survey = Survey(title="Stored")
            db.add(survey)
            db.commit()

            assert path.exists()
            assert db.exec(select(Survey)).one().title == "Stored"
        finally:
            sessions.close()
            get_engine().dispose()

    def test_sqlite_foreign_keys_enabled(self, engine):
        with engine.connect() as connection:
            assert connection.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1


class TestLogging:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            name="surveyflow.rules.engine",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Rule condition evaluation failed",
            args=(),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_keeps_extra_fields(self):
        record = self._record(rule_id=7, condition={"operator": "and"})
        payload = json.loads(JsonFormatter().format(record))

        assert payload["level"] == "WARNING"
        assert payload["msg"] == "Rule condition evaluation failed"
        assert payload["rule_id"] == 7
        assert payload["condition"] == {"operator": "and"}

    def test_unserializable_extra_is_stringified(self):
        record = self._record(value=object())
        payload = json.loads(JsonFormatter().format(record))
        assert payload["value"].startswith("<object object")

    def test_session_token_filter(self):
        record = self._record()
        set_session_token("abc123")
        try:
            SessionTokenFilter().filter(record)
        finally:
            clear_session_token()

        assert json.loads(JsonFormatter().format(record))["session_token"] == "abc123"
        SessionTokenFilter().filter(record)
        assert record.session_token is None

    def test_setup_logging(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging("debug", json_logs=True)

            assert root.level == logging.DEBUG
            (handler,) = root.handlers
            assert isinstance(handler.formatter, JsonFormatter)
            assert any(isinstance(f, SessionTokenFilter) for f in handler.filters)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestErrors:
    def test_rule_validation_error_lists_problems(self):
        error = RuleValidationError(["first", "second"])

        assert error.errors == ["first", "second"]
        assert str(error) == "first; second"
        assert isinstance(error, SurveyFlowError)

    def test_condition_parse_error_is_value_error(self):
        assert issubclass(ConditionParseError, ValueError)

    def test_session_errors(self):
        assert issubclass(SessionCompletedError, SessionStateError)
        assert issubclass(SessionStateError, SurveyFlowError)
