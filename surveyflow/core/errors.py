"""Domain errors.

Validation problems and session misuse are raised to the caller. Branching
evaluation failures never are: the rule engine logs them and degrades to
sequential order.
"""

from __future__ import annotations


class SurveyFlowError(Exception):
    """Base class for domain errors."""


class RuleValidationError(SurveyFlowError):
    """A rule, rule dependency or rule limit check failed.

    Carries every problem found so an author can fix them in one pass.
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Rule validation failed")


class ConditionParseError(SurveyFlowError, ValueError):
    """Raised when persisted condition or action JSON is malformed."""


class SessionStateError(SurveyFlowError):
    """Raised when an operation is not allowed in the session's current state."""


class SessionCompletedError(SessionStateError):
    # Completed sessions are terminal.
    pass


class SessionNotFoundError(SessionStateError):
    # Unknown or expired session token.
    pass


class QuestionMismatchError(SessionStateError):
    # Question does not belong to the session's survey.
    pass
