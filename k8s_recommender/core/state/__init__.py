from .base import (
    Intent,
    SolutionResource,
    OpenQuestion,
    Solution,
    QuestionCategory,
    QuestionStatus,
    AnswerType,
    AnswerCondition,
    Question,
    QuestionSet,
    WorkflowState,
    TRANSITIONS,
    can_transition,
    ManifestSet,
    Session,
    SessionView
)

__all__ = [
    "Intent",
    "SolutionResource",
    "OpenQuestion",
    "Solution",
    "QuestionCategory",
    "QuestionStatus",
    "AnswerType",
    "AnswerCondition",
    "Question",
    "QuestionSet",
    "WorkflowState",
    "TRANSITIONS",
    "can_transition",
    "ManifestSet",
    "Session",
    "SessionView",
]
