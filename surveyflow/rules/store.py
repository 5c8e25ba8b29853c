"""Cached, priority-ordered access to a survey's active rules."""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable

from cachetools import TTLCache
from sqlmodel import Session, select

from surveyflow.core.config import get_settings
from surveyflow.core.logging import get_logger
from surveyflow.surveys.models import SurveyRule

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "survey_rules_"


@dataclass(frozen=True)
class RuleSnapshot:
    """Detached, read-only copy of an active rule as it was when cached."""

    id: int
    survey_id: int
    priority: int
    condition_json: dict[str, Any] = field(default_factory=dict)
    action_json: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_rule(cls, rule: SurveyRule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            survey_id=rule.survey_id,
            priority=rule.priority,
            condition_json=copy.deepcopy(rule.condition_json or {}),
            action_json=copy.deepcopy(rule.action_json or {}),
        )

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.priority, self.id)


def cache_key(survey_id: int) -> str:
    return f"{CACHE_KEY_PREFIX}{survey_id}"


class RuleStore:
    """Reads active rules through a TTL cache shared across units of work.

    Anything that mutates a survey's rules must call ``invalidate`` once the
    change is committed. Each invalidation bumps a per-survey generation; a
    load that started before the bump is returned to its caller but never
    written back, so a stale rule set cannot outlive the invalidation.

    Args:
        ttl: Seconds a cached rule set stays valid (settings default)
        maxsize: Number of surveys kept before least recently used eviction
        timer: Monotonic clock driving expiry
    """

    def __init__(
        self,
        ttl: float | None = None,
        maxsize: int = 1024,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.ttl = get_settings().rule_cache_ttl_seconds if ttl is None else ttl
        self.cache: TTLCache = TTLCache(maxsize=maxsize, ttl=self.ttl, timer=timer)
        self._generations: dict[int, int] = {}
        self._lock = threading.RLock()

    def get_active_rules(self, db: Session, survey_id: int) -> list[RuleSnapshot]:
        """Active rules of a survey, ascending by ``(priority, id)``."""
        key = cache_key(survey_id)
        with self._lock:
            rules = self.cache.get(key)
            if rules is not None:
                return list(rules)
            generation = self._generations.get(survey_id, 0)

        rules = self._load(db, survey_id)

        with self._lock:
            if self._generations.get(survey_id, 0) == generation:
                self.cache[key] = rules
            else:
                logger.debug("Discarded rules loaded before invalidation", extra={"survey_id": survey_id})
        return list(rules)

    def invalidate(self, survey_id: int) -> None:
        with self._lock:
            self._generations[survey_id] = self._generations.get(survey_id, 0) + 1
            removed = self.cache.pop(cache_key(survey_id), None)
        if removed is not None:
            logger.debug("Rule cache invalidated", extra={"survey_id": survey_id})

    def _load(self, db: Session, survey_id: int) -> tuple[RuleSnapshot, ...]:
        statement = (
            select(SurveyRule)
            .where(SurveyRule.survey_id == survey_id)
            .where(SurveyRule.active == True)  # noqa: E712
            .order_by(SurveyRule.priority, SurveyRule.id)
        )
        rules = db.exec(statement).all()
        return tuple(sorted((RuleSnapshot.from_rule(r) for r in rules), key=lambda r: r.sort_key))


@lru_cache
def get_rule_store() -> RuleStore:
    """Process-wide rule store used by services that are not handed one."""
    return RuleStore()
