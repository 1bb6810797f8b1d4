from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from k8s_recommender.core.discovery.models import FieldType, ResourceIdentity
from k8s_recommender.utils.exceptions import InvalidStateTransition
from k8s_recommender.utils.fingerprint import digest

# ============================================================================
# Intent
# ============================================================================

class Intent(BaseModel):
    """Operator's free-form deployment intent."""
    model_config = ConfigDict(frozen=True)

    raw: str = Field(..., description="Text as submitted")
    normalized: str = Field("", description="Lower-cased, whitespace-collapsed text")
    tokens: List[str] = Field(default_factory=list, description="Meaningful (non-stopword) tokens")
    valid: bool = False


# ============================================================================
# Solutions
# ============================================================================

class SolutionResource(BaseModel):
    """One resource of a solution with the field values decided so far."""
    model_config = ConfigDict(frozen=True)

    identity: ResourceIdentity
    assignments: Dict[str, Any] = Field(
        default_factory=dict,
        description="Concrete field path (e.g. spec.template.spec.containers[0].image) to value",
    )


class OpenQuestion(BaseModel):
    """A field the operator still has to decide."""
    model_config = ConfigDict(frozen=True)

    resource_index: int
    field_path: str
    reason: str = ""


class Solution(BaseModel):
    """
    A ranked combination of resources satisfying an intent.

    Immutable: enhancement produces a new version whose ``parent_version``
    points at the version it was derived from.
    """
    model_config = ConfigDict(frozen=True)

    solution_id: str
    version: int = 1
    parent_version: Optional[int] = None
    resources: List[SolutionResource] = Field(default_factory=list)
    rationale: str = ""
    score: float = Field(0.0, ge=0.0, le=1.0)
    open_questions: List[OpenQuestion] = Field(default_factory=list)
    applied_requirements: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def primary_kind(self) -> str:
        return self.resources[0].identity.kind if self.resources else ""

    @property
    def resource_keys(self) -> List[str]:
        return [r.identity.key for r in self.resources]

    def content(self) -> Dict[str, Any]:
        """Everything except identity and lineage fields."""
        return self.model_dump(mode="json", exclude={"solution_id", "version", "parent_version"})

    def content_fingerprint(self) -> str:
        return digest(self.content())

    def summary(self) -> Dict[str, Any]:
        return {
            "solution_id": self.solution_id,
            "version": self.version,
            "score": self.score,
            "resources": self.resource_keys,
            "rationale": self.rationale,
            "open_questions": [f"r{q.resource_index}.{q.field_path}" for q in self.open_questions],
        }


# ============================================================================
# Questions
# ============================================================================

class QuestionCategory(str, Enum):
    REQUIRED = "required"
    BASIC = "basic"
    ADVANCED = "advanced"
    OPEN = "open"


class QuestionStatus(str, Enum):
    PENDING = "pending"
    ANSWERED = "answered"
    SKIPPED = "skipped"


class AnswerType(BaseModel):
    """Semantic type (and enum options) an answer is validated against."""
    model_config = ConfigDict(frozen=True)

    type: FieldType = FieldType.STRING
    options: List[Any] = Field(default_factory=list)


class AnswerCondition(BaseModel):
    """The question applies only when ``question_id`` was answered with ``equals``."""
    model_config = ConfigDict(frozen=True)

    question_id: str
    equals: Any

    def holds(self, answer: Any) -> bool:
        return _condition_text(answer) == _condition_text(self.equals)


def _condition_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip().lower()


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    resource_index: int
    field_path: str
    prompt: str
    answer_type: AnswerType = Field(default_factory=AnswerType)
    category: QuestionCategory = QuestionCategory.BASIC
    depends_on: List[str] = Field(default_factory=list)
    applies_when: Optional[AnswerCondition] = None
    status: QuestionStatus = QuestionStatus.PENDING
    answer: Any = None
    default: Any = None

    @property
    def resolved(self) -> bool:
        return self.status in (QuestionStatus.ANSWERED, QuestionStatus.SKIPPED)

    @property
    def mandatory(self) -> bool:
        return self.category in (QuestionCategory.REQUIRED, QuestionCategory.OPEN)


class QuestionSet(BaseModel):
    """Ordered questions for one solution version, plus derivation anomalies."""
    model_config = ConfigDict(frozen=True)

    solution_id: str
    solution_version: int = 1
    questions: List[Question] = Field(default_factory=list)
    anomalies: List[str] = Field(default_factory=list)

    def get(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)

    def ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def unresolved_dependencies(self, question: Question) -> List[str]:
        unresolved = []
        for dep_id in question.depends_on:
            dep = self.get(dep_id)
            if dep is not None and not dep.resolved:
                unresolved.append(dep_id)
        return unresolved

    def is_eligible(self, question: Question) -> bool:
        return question.status != QuestionStatus.SKIPPED and not self.unresolved_dependencies(question)

    def pending(self) -> List[Question]:
        """Questions that can be answered now."""
        return [q for q in self.questions if q.status == QuestionStatus.PENDING and self.is_eligible(q)]

    def unanswered_mandatory(self) -> List[str]:
        return [q.id for q in self.questions if q.mandatory and q.status == QuestionStatus.PENDING]

    def answered(self) -> List[Question]:
        return [q for q in self.questions if q.status == QuestionStatus.ANSWERED]

    def answers(self) -> Dict[str, Any]:
        return {q.id: q.answer for q in self.answered()}

    def replace(self, questions: List[Question]) -> "QuestionSet":
        return self.model_copy(update={"questions": questions})


# ============================================================================
# Workflow state machine
# ============================================================================

class WorkflowState(str, Enum):
    CREATED = "created"
    INTENT_VALIDATED = "intent_validated"
    CANDIDATES_SELECTED = "candidates_selected"
    RANKED = "ranked"
    AWAITING_ANSWERS = "awaiting_answers"
    ENHANCED = "enhanced"
    FINALIZED = "finalized"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[WorkflowState] = frozenset({WorkflowState.FINALIZED, WorkflowState.FAILED})

TRANSITIONS: Dict[WorkflowState, FrozenSet[WorkflowState]] = {
    WorkflowState.CREATED: frozenset({WorkflowState.INTENT_VALIDATED}),
    WorkflowState.INTENT_VALIDATED: frozenset({WorkflowState.CANDIDATES_SELECTED}),
    WorkflowState.CANDIDATES_SELECTED: frozenset({WorkflowState.RANKED}),
    WorkflowState.RANKED: frozenset({WorkflowState.AWAITING_ANSWERS}),
    WorkflowState.AWAITING_ANSWERS: frozenset({WorkflowState.AWAITING_ANSWERS, WorkflowState.ENHANCED}),
    WorkflowState.ENHANCED: frozenset({
        WorkflowState.ENHANCED,
        WorkflowState.AWAITING_ANSWERS,
        WorkflowState.FINALIZED,
    }),
    WorkflowState.FINALIZED: frozenset(),
    WorkflowState.FAILED: frozenset(),
}


def can_transition(current: WorkflowState, target: WorkflowState) -> bool:
    """Every non-terminal state may fail; everything else follows ``TRANSITIONS``."""
    if target == WorkflowState.FAILED:
        return current not in TERMINAL_STATES
    return target in TRANSITIONS.get(current, frozenset())


# ============================================================================
# Session
# ============================================================================

class ManifestSet(BaseModel):
    """Final manifests of a session, one document per solution resource."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    solution_id: str
    solution_version: int
    documents: List[Dict[str, Any]] = Field(default_factory=list)
    yaml: str = ""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    """
    One recommendation workflow.

    ``revision`` counts committed writes; stores reject a commit based on a
    stale revision. ``solution_history`` holds every version of the selected
    solution, newest last.
    """
    session_id: str
    intent: Intent
    index_id: str
    state: WorkflowState = WorkflowState.CREATED

    candidates: List[ResourceIdentity] = Field(default_factory=list)
    dropped_candidates: List[str] = Field(default_factory=list)
    solutions: List[Solution] = Field(default_factory=list)
    selected_solution_id: Optional[str] = None
    solution_history: List[Solution] = Field(default_factory=list)
    question_set: Optional[QuestionSet] = None
    requirements: List[str] = Field(default_factory=list)
    enhancement_cache: Dict[str, List[Dict[str, Any]]] = Field(
        default_factory=dict,
        description="Oracle enhancement proposals keyed by input fingerprint",
    )
    manifests: Optional[ManifestSet] = None
    warnings: List[str] = Field(default_factory=list)

    revision: int = 0
    oracle_failures: int = 0
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None

    @classmethod
    def new(cls, session_id: str, intent: Intent, index_id: str, ttl_seconds: Optional[int] = None) -> "Session":
        now = _utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        return cls(
            session_id=session_id,
            intent=intent,
            index_id=index_id,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) >= self.expires_at

    def solution(self, solution_id: str) -> Optional[Solution]:
        return next((s for s in self.solutions if s.solution_id == solution_id), None)

    @property
    def current_solution(self) -> Optional[Solution]:
        if self.solution_history:
            return self.solution_history[-1]
        if self.selected_solution_id:
            return self.solution(self.selected_solution_id)
        return None

    def advance(self, target: WorkflowState, **updates: Any) -> "Session":
        """
        Copy of the session moved to ``target`` with ``updates`` applied.

        Raises:
            InvalidStateTransition: If the transition table forbids the move
        """
        if not can_transition(self.state, target):
            raise InvalidStateTransition(self.session_id, self.state.value, target.value)
        changes: Dict[str, Any] = {"state": target, "updated_at": _utcnow()}
        if target != WorkflowState.FAILED:
            changes["oracle_failures"] = 0
        changes.update(updates)
        return self.model_copy(update=changes)

    def touch(self, **updates: Any) -> "Session":
        """Copy with ``updates`` applied and no state change."""
        return self.model_copy(update={"updated_at": _utcnow(), **updates})


class SessionView(BaseModel):
    """Client-facing snapshot of a session."""
    session_id: str
    state: WorkflowState
    intent: str
    index_id: str
    revision: int
    candidates: List[str] = Field(default_factory=list)
    solutions: List[Dict[str, Any]] = Field(default_factory=list)
    selected_solution: Optional[Dict[str, Any]] = None
    pending_questions: List[Dict[str, Any]] = Field(default_factory=list)
    unanswered_required: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    failure_reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionView":
        current = session.current_solution
        selected = None
        if current is not None:
            selected = current.summary()
            selected["assignments"] = [r.assignments for r in current.resources]
            selected["warnings"] = list(current.warnings)
        pending: List[Dict[str, Any]] = []
        unanswered: List[str] = []
        if session.question_set is not None:
            pending = [
                {
                    "id": q.id,
                    "prompt": q.prompt,
                    "category": q.category.value,
                    "type": q.answer_type.type.value,
                    "options": q.answer_type.options,
                    "default": q.default,
                }
                for q in session.question_set.pending()
            ]
            unanswered = session.question_set.unanswered_mandatory()
        return cls(
            session_id=session.session_id,
            state=session.state,
            intent=session.intent.raw,
            index_id=session.index_id,
            revision=session.revision,
            candidates=[c.key for c in session.candidates],
            solutions=[s.summary() for s in session.solutions],
            selected_solution=selected,
            pending_questions=pending,
            unanswered_required=unanswered,
            warnings=list(session.warnings),
            failure_reason=session.failure_reason,
            expires_at=session.expires_at,
        )
