"""SurveyFlow - survey branching rule engine and respondent session core."""

__version__ = "0.1.0"
