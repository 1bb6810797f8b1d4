"""
LangGraph pipeline behind ``recommend``.

validate_intent -> select_candidates -> rank_solutions -> derive_questions

Each node advances the session one state and commits it before the next
node runs, so a client can resume after any stage. The entry point is
routed on the stored session state: a resumed session skips the stages it
already completed. A failing node raises and leaves the last committed
state in place.
"""

from typing import Any, Dict, Optional, TypedDict

from langgraph.graph import END, START, StateGraph

from k8s_recommender.core.discovery.models import CapabilityIndex
from k8s_recommender.core.recommendation.candidate_selector import CandidateSelector
from k8s_recommender.core.recommendation.intent import parse_intent
from k8s_recommender.core.recommendation.question_engine import QuestionEngine
from k8s_recommender.core.recommendation.solution_ranker import SolutionRanker
from k8s_recommender.core.state.base import Session, WorkflowState
from k8s_recommender.utils.logger import AgentLogger

from .session_store import SessionStore

orchestrator_logger = AgentLogger("K8S_RECOMMENDER_ORCHESTRATOR")


class RecommendState(TypedDict):
    session: Session
    index: CapabilityIndex


_ENTRY_BY_STATE: Dict[WorkflowState, str] = {
    WorkflowState.CREATED: "validate_intent",
    WorkflowState.INTENT_VALIDATED: "select_candidates",
    WorkflowState.CANDIDATES_SELECTED: "rank_solutions",
    WorkflowState.RANKED: "derive_questions",
}


class RecommendGraph:
    def __init__(
        self,
        store: SessionStore,
        selector: CandidateSelector,
        ranker: SolutionRanker,
        question_engine: QuestionEngine,
        min_meaningful_words: int = 2,
    ) -> None:
        self.store = store
        self.selector = selector
        self.ranker = ranker
        self.question_engine = question_engine
        self.min_meaningful_words = min_meaningful_words
        self.graph = self.build_graph()

    def build_graph(self):
        graph = StateGraph(RecommendState)

        # ============================================================
        # NODES
        # ============================================================
        graph.add_node("validate_intent", self.validate_intent_node)
        graph.add_node("select_candidates", self.select_candidates_node)
        graph.add_node("rank_solutions", self.rank_solutions_node)
        graph.add_node("derive_questions", self.derive_questions_node)

        # ============================================================
        # EDGES
        # ============================================================
        graph.add_conditional_edges(
            START,
            self.route_from_start,
            {
                "validate_intent": "validate_intent",
                "select_candidates": "select_candidates",
                "rank_solutions": "rank_solutions",
                "derive_questions": "derive_questions",
                END: END,
            },
        )
        graph.add_edge("validate_intent", "select_candidates")
        graph.add_edge("select_candidates", "rank_solutions")
        graph.add_edge("rank_solutions", "derive_questions")
        graph.add_edge("derive_questions", END)
        return graph.compile()

    def route_from_start(self, state: RecommendState) -> str:
        return _ENTRY_BY_STATE.get(state["session"].state, END)

    async def _commit(self, previous: Session, updated: Session, stage: str) -> Dict[str, Any]:
        stored = await self.store.commit(updated, expected_revision=previous.revision)
        orchestrator_logger.log_structured(
            level="INFO",
            message=f"Stage '{stage}' committed",
            session_id=stored.session_id,
            extra={"state": stored.state.value, "revision": stored.revision},
        )
        return {"session": stored}

    # ============================================================
    # NODE IMPLEMENTATIONS
    # ============================================================

    async def validate_intent_node(self, state: RecommendState) -> Dict[str, Any]:
        session = state["session"]
        intent = parse_intent(session.intent.raw, self.min_meaningful_words)
        return await self._commit(
            session,
            session.advance(WorkflowState.INTENT_VALIDATED, intent=intent),
            "validate_intent",
        )

    async def select_candidates_node(self, state: RecommendState) -> Dict[str, Any]:
        session = state["session"]
        selection = await self.selector.select_with_report(session.intent, state["index"])
        return await self._commit(
            session,
            session.advance(
                WorkflowState.CANDIDATES_SELECTED,
                candidates=selection.candidates,
                dropped_candidates=selection.dropped,
            ),
            "select_candidates",
        )

    async def rank_solutions_node(self, state: RecommendState) -> Dict[str, Any]:
        session = state["session"]
        solutions = await self.ranker.rank(session.candidates, session.intent, state["index"])
        warnings = list(session.warnings)
        for solution in solutions:
            warnings.extend(w for w in solution.warnings if w not in warnings)
        return await self._commit(
            session,
            session.advance(
                WorkflowState.RANKED,
                solutions=solutions,
                selected_solution_id=solutions[0].solution_id,
                warnings=warnings,
            ),
            "rank_solutions",
        )

    async def derive_questions_node(self, state: RecommendState) -> Dict[str, Any]:
        session = state["session"]
        solution = session.solution(session.selected_solution_id or "") or session.solutions[0]
        question_set = await self.question_engine.derive_questions(solution, state["index"])
        return await self._commit(
            session,
            session.advance(
                WorkflowState.AWAITING_ANSWERS,
                selected_solution_id=solution.solution_id,
                solution_history=[solution],
                question_set=question_set,
            ),
            "derive_questions",
        )

    async def run(self, session: Session, index: CapabilityIndex) -> Session:
        """Run the remaining stages for ``session`` and return the last committed copy."""
        result = await self.graph.ainvoke({"session": session, "index": index})
        return result["session"]


def entry_stage(session: Session) -> Optional[str]:
    return _ENTRY_BY_STATE.get(session.state)
