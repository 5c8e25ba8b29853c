"""Pytest fixtures for test suite."""

from typing import Any

import pytest
from sqlmodel import Session
from sqlmodel.pool import StaticPool

from surveyflow.core import Settings, create_db_engine, init_db
from surveyflow.rules import RuleEngine, RuleStore, get_rule_store
from surveyflow.sessions import SurveySessionManager
from surveyflow.surveys import QuestionCreate, SurveyCreate
from surveyflow.surveys.service import SurveyManager


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def equals_condition(question_id: int, value: Any, operator: str = "and") -> dict:
    """A one-leaf condition tree: ``question == value``."""
    return {
        "operator": operator,
        "conditions": [{"questionId": question_id, "operator": "equals", "value": value}],
    }


def skip_to(question_id: int) -> dict:
    return {"type": "skip_to_question", "questionId": question_id}


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    return engine


@pytest.fixture(name="db")
def db_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the environment's .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rule_store(settings: Settings, clock: FakeClock) -> RuleStore:
    """Rule store whose cache runs on the fake clock."""
    return RuleStore(ttl=settings.rule_cache_ttl_seconds, timer=clock)


@pytest.fixture(autouse=True)
def reset_shared_rule_store():
    """Each test gets a fresh process-wide rule store."""
    get_rule_store.cache_clear()
    yield
    get_rule_store.cache_clear()


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def manager(db: Session, rule_store: RuleStore, settings: Settings) -> SurveyManager:
    return SurveyManager(db, rule_store, settings)


@pytest.fixture
def rule_engine(db: Session, rule_store: RuleStore, settings: Settings) -> RuleEngine:
    return RuleEngine(db, rule_store, settings)


@pytest.fixture
def sessions(db: Session, rule_engine: RuleEngine, settings: Settings) -> SurveySessionManager:
    return SurveySessionManager(db, rule_engine, settings)


@pytest.fixture
def make_survey(manager: SurveyManager):
    """Factory: a survey with one text question per entry of ``questions``."""

    def _make(
        questions: tuple[str, ...] = ("Do you like it?", "Why not?", "Anything else?"),
        branching: bool = True,
        title: str = "Customer feedback",
    ):
        survey = manager.create_survey(SurveyCreate(title=title, branching_enabled=branching))
        created = [manager.add_question(survey, QuestionCreate(content=c)) for c in questions]
        return survey, created

    return _make


@pytest.fixture
def survey_with_questions(make_survey):
    """Branching survey with three questions."""
    return make_survey()
