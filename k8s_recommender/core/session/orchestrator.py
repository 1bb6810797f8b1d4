"""
Session orchestrator.

Drives a session through the recommendation workflow:

    created -> intent_validated -> candidates_selected -> ranked
      -> awaiting_answers <-> enhanced -> finalized

with ``failed`` reachable from every non-terminal state. A stage result is
committed only when it is valid and non-empty; otherwise the session keeps
its state and the caller receives the recoverable error. Consecutive
oracle retry exhaustion is counted per session and fails the session once
``max_oracle_failures`` is reached.
"""

import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from k8s_recommender.config.config import Config
from k8s_recommender.core.discovery.index_store import IndexStore
from k8s_recommender.core.discovery.models import CapabilityIndex
from k8s_recommender.core.recommendation.candidate_selector import CandidateSelector
from k8s_recommender.core.recommendation.manifest import render_manifests
from k8s_recommender.core.recommendation.question_engine import QuestionEngine
from k8s_recommender.core.recommendation.solution_enhancer import SolutionEnhancer, normalize_requirements
from k8s_recommender.core.recommendation.solution_ranker import SolutionRanker
from k8s_recommender.core.oracle.decision_oracle import DecisionOracle
from k8s_recommender.core.state.base import (
    Intent,
    ManifestSet,
    Session,
    Solution,
    WorkflowState,
    can_transition,
)
from k8s_recommender.utils.exceptions import (
    ClusterUnreachable,
    InvalidStateTransition,
    OracleRetryExhausted,
    RecoverableError,
    SessionConflict,
    UnansweredQuestions,
)

from .recommend_graph import RecommendGraph, entry_stage, orchestrator_logger
from .session_store import SessionStore


class SolutionNotFound(RecoverableError):
    """Raised when choosing a solution id the session did not rank."""
    def __init__(self, session_id: str, solution_id: str) -> None:
        super().__init__(
            f"Solution '{solution_id}' is not among the ranked solutions of session '{session_id}'",
            {"session_id": session_id, "solution_id": solution_id},
        )


class SessionOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        index_store: IndexStore,
        selector: CandidateSelector,
        ranker: SolutionRanker,
        question_engine: QuestionEngine,
        enhancer: SolutionEnhancer,
        session_ttl_seconds: Optional[int] = 3600,
        max_oracle_failures: int = 3,
        min_meaningful_words: int = 2,
    ) -> None:
        self.store = store
        self.index_store = index_store
        self.selector = selector
        self.ranker = ranker
        self.question_engine = question_engine
        self.enhancer = enhancer
        self.session_ttl_seconds = session_ttl_seconds
        self.max_oracle_failures = max(1, max_oracle_failures)
        self.pipeline = RecommendGraph(store, selector, ranker, question_engine, min_meaningful_words)

    @classmethod
    def from_config(
        cls,
        store: SessionStore,
        index_store: IndexStore,
        oracle: DecisionOracle,
        config: Optional[Config] = None,
    ) -> "SessionOrchestrator":
        config = config or Config()
        return cls(
            store,
            index_store,
            selector=CandidateSelector.from_config(oracle, config),
            ranker=SolutionRanker.from_config(oracle, config),
            question_engine=QuestionEngine.from_config(oracle, config),
            enhancer=SolutionEnhancer.from_config(oracle, config),
            session_ttl_seconds=config.SESSION_TTL_SECONDS,
            max_oracle_failures=config.SESSION_MAX_ORACLE_FAILURES,
            min_meaningful_words=config.INTENT_MIN_MEANINGFUL_WORDS,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _index_for(self, session: Session) -> CapabilityIndex:
        return await self.index_store.load(session.index_id)

    @staticmethod
    def _require(session: Session, target: WorkflowState) -> None:
        if not can_transition(session.state, target):
            raise InvalidStateTransition(session.session_id, session.state.value, target.value)

    async def _fail(self, session_id: str, reason: str) -> Optional[Session]:
        session = await self.store.get(session_id)
        if session.is_terminal:
            return None
        stored = await self.store.commit(session.advance(WorkflowState.FAILED, failure_reason=reason))
        orchestrator_logger.log_structured(
            level="ERROR",
            message="Session failed",
            session_id=session_id,
            extra={"reason": reason},
        )
        return stored

    async def _record_oracle_failure(self, session_id: str, error: OracleRetryExhausted) -> None:
        session = await self.store.get(session_id)
        if session.is_terminal:
            return
        failures = session.oracle_failures + 1
        if failures >= self.max_oracle_failures:
            await self._fail(session_id, f"decision oracle unavailable: {error.message}")
            return
        await self.store.commit(session.touch(oracle_failures=failures))
        orchestrator_logger.log_structured(
            level="WARNING",
            message="Oracle retry budget exhausted, session kept in its current state",
            session_id=session_id,
            extra={
                "state": session.state.value,
                "oracle_failures": failures,
                "max_oracle_failures": self.max_oracle_failures,
            },
        )

    async def _guarded(self, session_id: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run a session operation and apply failure accounting to its errors."""
        try:
            return await operation()
        except OracleRetryExhausted as e:
            e.context.setdefault("session_id", session_id)
            await self._record_oracle_failure(session_id, e)
            raise
        except RecoverableError as e:
            # Callers need the id to resume a session created by this call
            e.context.setdefault("session_id", session_id)
            raise
        except ClusterUnreachable as e:
            await self._fail(session_id, f"cluster unreachable: {e.message}")
            raise

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self, intent_text: str) -> Session:
        """Create a session for ``intent_text`` and run the recommend pipeline."""
        index = await self.index_store.current()
        session = Session.new(
            session_id=str(uuid.uuid4()),
            intent=Intent(raw=intent_text or ""),
            index_id=index.index_id,
            ttl_seconds=self.session_ttl_seconds,
        )
        session = await self.store.create(session)
        orchestrator_logger.log_structured(
            level="INFO",
            message="Session created",
            session_id=session.session_id,
            extra={"index_id": index.index_id},
        )
        return await self._guarded(session.session_id, lambda: self.pipeline.run(session, index))

    async def resume(self, session_id: str, intent_text: Optional[str] = None) -> Session:
        """
        Continue the recommend pipeline of an existing session.

        A new intent may only replace the old one before it was validated.
        """
        session = await self.store.get(session_id)
        if intent_text is not None and intent_text != session.intent.raw:
            if session.state != WorkflowState.CREATED:
                raise InvalidStateTransition(session_id, session.state.value, WorkflowState.CREATED.value)
            session = await self.store.commit(session.touch(intent=Intent(raw=intent_text)))
        stage = entry_stage(session)
        if stage is None:
            return session
        orchestrator_logger.log_structured(
            level="INFO",
            message="Resuming recommend pipeline",
            session_id=session_id,
            extra={"stage": stage},
        )
        index = await self._index_for(session)
        return await self._guarded(session_id, lambda: self.pipeline.run(session, index))

    async def choose(self, session_id: str, solution_id: str) -> Session:
        """Select another ranked solution and derive its questions."""
        session = await self.store.get(session_id)
        self._require(session, WorkflowState.AWAITING_ANSWERS)
        solution = session.solution(solution_id)
        if solution is None:
            raise SolutionNotFound(session_id, solution_id)
        if session.state != WorkflowState.RANKED and session.selected_solution_id == solution_id:
            return session
        index = await self._index_for(session)

        async def derive() -> Session:
            question_set = await self.question_engine.derive_questions(solution, index)
            return await self.store.commit(session.advance(
                WorkflowState.AWAITING_ANSWERS,
                selected_solution_id=solution_id,
                solution_history=[solution],
                question_set=question_set,
                requirements=[],
                enhancement_cache={},
                manifests=None,
            ))

        return await self._guarded(session_id, derive)

    async def answer(self, session_id: str, answers: Mapping[str, Any]) -> Session:
        session = await self.store.get(session_id)
        self._require(session, WorkflowState.AWAITING_ANSWERS)
        if session.question_set is None:
            raise InvalidStateTransition(session_id, session.state.value, WorkflowState.AWAITING_ANSWERS.value)
        question_set = self.question_engine.answer(session.question_set, answers)
        stored = await self.store.commit(session.advance(WorkflowState.AWAITING_ANSWERS, question_set=question_set))
        orchestrator_logger.log_structured(
            level="INFO",
            message="Answers recorded",
            session_id=session_id,
            extra={
                "answered": sorted(answers),
                "unanswered_required": len(question_set.unanswered_mandatory()),
            },
        )
        return stored

    async def _enhanced(self, session: Session, new_requirements: Sequence[str]) -> Session:
        """Session copy in ``enhanced`` state with answers and requirements applied."""
        base = session.solution(session.selected_solution_id or "")
        latest = session.current_solution
        if base is None or latest is None:
            raise InvalidStateTransition(session.session_id, session.state.value, WorkflowState.ENHANCED.value)
        requirements = normalize_requirements(list(session.requirements) + list(new_requirements))
        cache: Dict[str, List[Dict[str, Any]]] = dict(session.enhancement_cache)
        index = await self._index_for(session)

        result = await self.enhancer.enhance(base, session.question_set, requirements, index, cache)
        history: List[Solution] = list(session.solution_history) or [base]
        if result.content_fingerprint() != latest.content_fingerprint():
            history.append(result.model_copy(update={
                "version": latest.version + 1,
                "parent_version": latest.version,
            }))
        return session.advance(
            WorkflowState.ENHANCED,
            requirements=requirements,
            enhancement_cache=cache,
            solution_history=history,
        )

    async def enhance(self, session_id: str, requirements: Optional[Sequence[str]] = None) -> Session:
        session = await self.store.get(session_id)
        self._require(session, WorkflowState.ENHANCED)

        async def run() -> Session:
            updated = await self._enhanced(session, requirements or [])
            stored = await self.store.commit(updated, expected_revision=session.revision)
            orchestrator_logger.log_structured(
                level="INFO",
                message="Solution enhanced",
                session_id=session_id,
                extra={"version": stored.current_solution.version if stored.current_solution else None},
            )
            return stored

        return await self._guarded(session_id, run)

    async def finalize(self, session_id: str) -> ManifestSet:
        """
        Render the final manifests.

        Raises:
            UnansweredQuestions: If required or open questions are still pending
        """
        session = await self.store.get(session_id)
        if session.state == WorkflowState.FINALIZED and session.manifests is not None:
            return session.manifests
        if session.state == WorkflowState.AWAITING_ANSWERS:
            self._require(session, WorkflowState.ENHANCED)
        else:
            self._require(session, WorkflowState.FINALIZED)
        if session.question_set is not None:
            unanswered = session.question_set.unanswered_mandatory()
            if unanswered:
                raise UnansweredQuestions(unanswered)

        async def run() -> ManifestSet:
            enhanced = await self._enhanced(session, [])
            solution = enhanced.current_solution
            manifests = render_manifests(session_id, solution)
            stored = await self.store.commit(
                enhanced.advance(WorkflowState.FINALIZED, manifests=manifests),
                expected_revision=session.revision,
            )
            orchestrator_logger.log_structured(
                level="INFO",
                message="Session finalized",
                session_id=session_id,
                extra={"solution_id": solution.solution_id, "version": solution.version},
            )
            return stored.manifests

        return await self._guarded(session_id, run)

    async def get(self, session_id: str) -> Session:
        return await self.store.get(session_id)

    async def cancel(self, session_id: str) -> Session:
        session = await self.store.get(session_id)
        self._require(session, WorkflowState.FAILED)
        try:
            return await self.store.commit(session.advance(WorkflowState.FAILED, failure_reason="cancelled"))
        except SessionConflict:
            # A stage committed in between; cancel against the newer revision
            latest = await self.store.get(session_id)
            self._require(latest, WorkflowState.FAILED)
            return await self.store.commit(latest.advance(WorkflowState.FAILED, failure_reason="cancelled"))
