"""Custom exceptions for the K8s Recommender."""

from typing import Any, Dict, List, Optional


class K8sRecommenderError(Exception):
    """Base exception for all K8s Recommender errors."""
    pass


class ConfigError(K8sRecommenderError):
    """Raised for configuration-related errors."""
    pass


class LLMConfigurationError(K8sRecommenderError):
    """Raised when LLM configuration is invalid."""
    pass


class UnsupportedProviderError(K8sRecommenderError):
    """Raised when an unsupported LLM provider is requested."""
    pass


# ---------------------------------------------------------------------------
# Cluster discovery
# ---------------------------------------------------------------------------

class ClusterUnreachable(K8sRecommenderError):
    """Raised when the cluster connection cannot be established. Fatal for discovery."""
    def __init__(self, message: str, endpoint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint


class RecoverableError(K8sRecommenderError):
    """
    Base class for conditions the caller can act on without restarting.

    ``context`` names what needs correcting (kind, field path, question id...).
    """
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "context": self.context,
        }


class SchemaFetchFailed(RecoverableError):
    """Raised by a cluster connection when one kind's schema cannot be fetched."""
    def __init__(self, message: str, kind: str, reason: Optional[str] = None) -> None:
        super().__init__(message, {"kind": kind, "reason": reason or message})
        self.kind = kind
        self.reason = reason or message


class IndexNotAvailable(RecoverableError):
    """Raised when no capability index has been built yet (run discovery first)."""
    pass


class ResourceKindNotFound(RecoverableError):
    """Raised when a resource kind is not present in the capability index."""
    def __init__(self, kind: str) -> None:
        super().__init__(f"Resource kind '{kind}' is not present in the capability index", {"kind": kind})
        self.kind = kind


# ---------------------------------------------------------------------------
# Recommendation pipeline
# ---------------------------------------------------------------------------

class IntentTooVague(RecoverableError):
    """Raised when an intent is not specific enough to act on."""
    def __init__(self, intent: str, reason: str) -> None:
        super().__init__(
            f"Intent is too vague: {reason}. Please describe what you want to deploy in more detail.",
            {"intent": intent, "reason": reason},
        )
        self.intent = intent
        self.reason = reason


class NoCandidatesFound(RecoverableError):
    """Raised when no proposed resource kind survives validation against the index."""
    def __init__(self, intent: str, dropped: Optional[List[str]] = None) -> None:
        super().__init__(
            "No resource kinds in this cluster match the intent",
            {"intent": intent, "dropped_proposals": dropped or []},
        )
        self.dropped = dropped or []


class NoSolutionsFound(RecoverableError):
    """Raised when every proposed solution is discarded during ranking."""
    def __init__(self, intent: str, discarded: int = 0) -> None:
        super().__init__(
            "No complete solution could be assembled from the candidate resource kinds",
            {"intent": intent, "discarded_solutions": discarded},
        )
        self.discarded = discarded


class InvalidFieldPath(RecoverableError):
    """Recorded when a field path does not exist in a resource's capability descriptor."""
    def __init__(self, kind: str, field_path: str, reason: str = "field path not found") -> None:
        super().__init__(
            f"Invalid field path '{field_path}' for {kind}: {reason}",
            {"kind": kind, "field_path": field_path, "reason": reason},
        )
        self.kind = kind
        self.field_path = field_path


class InvalidFieldValue(RecoverableError):
    """Recorded when a proposed value does not fit the type of its field."""
    def __init__(self, kind: str, field_path: str, reason: str) -> None:
        super().__init__(
            f"Invalid value for '{field_path}' of {kind}: {reason}",
            {"kind": kind, "field_path": field_path, "reason": reason},
        )
        self.kind = kind
        self.field_path = field_path


class QuestionNotFound(RecoverableError):
    """Raised when answering a question id that does not exist."""
    def __init__(self, question_id: str) -> None:
        super().__init__(f"Question '{question_id}' does not exist", {"question_id": question_id})
        self.question_id = question_id


class QuestionNotEligible(RecoverableError):
    """Raised when a question is answered before its dependencies."""
    def __init__(self, question_id: str, unresolved: List[str]) -> None:
        super().__init__(
            f"Question '{question_id}' cannot be answered before: {', '.join(unresolved)}",
            {"question_id": question_id, "unresolved_dependencies": unresolved},
        )
        self.question_id = question_id
        self.unresolved = unresolved


class InvalidAnswer(RecoverableError):
    """Raised when an answer does not match the question's answer type."""
    def __init__(self, question_id: str, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid answer for question '{question_id}': {reason}",
            {"question_id": question_id, "value": value, "reason": reason},
        )
        self.question_id = question_id
        self.value = value


class UnansweredQuestions(RecoverableError):
    """Raised when finalizing while required questions are still open."""
    def __init__(self, question_ids: List[str]) -> None:
        super().__init__(
            f"Required questions are still unanswered: {', '.join(question_ids)}",
            {"question_ids": question_ids},
        )
        self.question_ids = question_ids


# ---------------------------------------------------------------------------
# Decision oracle
# ---------------------------------------------------------------------------

class OracleError(K8sRecommenderError):
    """Base class for transient decision oracle failures (retried)."""
    def __init__(self, message: str, template_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.template_id = template_id


class OracleTimeout(OracleError):
    """Raised when an oracle call exceeds its timeout."""
    pass


class OracleMalformedOutput(OracleError):
    """Raised when an oracle response cannot be decoded into the expected shape."""
    def __init__(self, message: str, template_id: Optional[str] = None, raw: Any = None) -> None:
        super().__init__(message, template_id)
        self.raw = raw


class OracleUnavailable(OracleError):
    """Raised when the oracle backend rejects or fails a call."""
    pass


class OracleRetryExhausted(RecoverableError):
    """Raised when an oracle call site runs out of retry budget."""
    def __init__(self, template_id: str, attempts: int, last_error: Optional[BaseException] = None) -> None:
        super().__init__(
            f"Decision oracle '{template_id}' failed after {attempts} attempt(s): {last_error}",
            {
                "template_id": template_id,
                "attempts": attempts,
                "last_error": type(last_error).__name__ if last_error else None,
            },
        )
        self.template_id = template_id
        self.attempts = attempts
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class SessionNotFound(RecoverableError):
    """Raised when a session id is unknown."""
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' not found", {"session_id": session_id})
        self.session_id = session_id


class SessionExpired(RecoverableError):
    """Raised when a session outlived its TTL."""
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' has expired", {"session_id": session_id})
        self.session_id = session_id


class SessionConflict(RecoverableError):
    """Raised when a session commit is based on a stale revision."""
    def __init__(self, session_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Session '{session_id}' was modified concurrently (expected revision {expected}, found {actual})",
            {"session_id": session_id, "expected_revision": expected, "actual_revision": actual},
        )
        self.session_id = session_id


class InvalidStateTransition(RecoverableError):
    """Raised when a session operation is not allowed in the current workflow state."""
    def __init__(self, session_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Session '{session_id}' cannot move from '{current}' to '{target}'",
            {"session_id": session_id, "current_state": current, "target_state": target},
        )
        self.current = current
        self.target = target
