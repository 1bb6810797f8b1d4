"""
Command surface of the recommender.

``RecommenderService`` is the one object clients talk to: every command is
a request/response coroutine, keyed by session id where applicable, and
returns plain models (``SessionView``, ``ManifestSet``, dictionaries).
"""

from typing import Any, Dict, List, Optional, Sequence

from k8s_recommender.config.config import Config
from k8s_recommender.core.discovery.capability_index import DiscoveryOptions, discover
from k8s_recommender.core.discovery.cluster_connection import ClusterConnection, KubernetesClusterConnection
from k8s_recommender.core.discovery.index_store import IndexStore, create_index_store
from k8s_recommender.core.discovery.models import CapabilityIndex
from k8s_recommender.core.oracle.decision_oracle import DecisionOracle, LLMDecisionOracle
from k8s_recommender.core.session.orchestrator import SessionOrchestrator
from k8s_recommender.core.session.session_store import SessionStore, create_session_store
from k8s_recommender.core.state.base import ManifestSet, SessionView
from k8s_recommender.utils.exceptions import ResourceKindNotFound
from k8s_recommender.utils.logger import AgentLogger

service_logger = AgentLogger("K8S_RECOMMENDER_SERVICE")


class RecommenderService:
    def __init__(
        self,
        connection: ClusterConnection,
        oracle: DecisionOracle,
        session_store: SessionStore,
        index_store: IndexStore,
        config: Optional[Config] = None,
    ) -> None:
        self.config = config or Config()
        self.connection = connection
        self.oracle = oracle
        self.session_store = session_store
        self.index_store = index_store
        self.discovery_options = DiscoveryOptions.from_config(self.config)
        self.orchestrator = SessionOrchestrator.from_config(session_store, index_store, oracle, self.config)

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        connection: Optional[ClusterConnection] = None,
        oracle: Optional[DecisionOracle] = None,
    ) -> "RecommenderService":
        """Wire the service from configuration (stores per SESSION_STORE)."""
        config = config or Config()
        store_type = config.SESSION_STORE
        return cls(
            connection=connection or KubernetesClusterConnection.from_config(config),
            oracle=oracle or LLMDecisionOracle(config),
            session_store=create_session_store(store_type, config),
            index_store=create_index_store(store_type, config),
            config=config,
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover(self) -> CapabilityIndex:
        """Build a fresh capability index and make it current."""
        index = await discover(self.connection, self.discovery_options)
        await self.index_store.save(index, make_current=True)
        return index

    async def current_index(self) -> CapabilityIndex:
        return await self.index_store.current()

    async def explain(self, kind: str, api_version: Optional[str] = None, max_depth: int = 6) -> Dict[str, Any]:
        """
        Describe a resource kind of the current index.

        Raises:
            IndexNotAvailable: If discovery has not run yet
            ResourceKindNotFound: If the kind is not in the index
        """
        index = await self.current_index()
        descriptor = index.resolve(kind, api_version=api_version)
        if descriptor is None:
            raise ResourceKindNotFound(kind)
        explanation = descriptor.summary()
        explanation["verbs"] = list(descriptor.verbs)
        explanation["fields"] = descriptor.field_listing(max_depth=max_depth, with_descriptions=True)
        alternatives = [r.key for r in index.find_by_kind(kind) if r.key != descriptor.key]
        if alternatives:
            explanation["alternatives"] = alternatives
        return explanation

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def recommend(self, intent: str, session_id: Optional[str] = None) -> SessionView:
        if session_id:
            session = await self.orchestrator.resume(session_id, intent)
        else:
            session = await self.orchestrator.start(intent)
        return SessionView.from_session(session)

    async def choose(self, session_id: str, solution_id: str) -> SessionView:
        return SessionView.from_session(await self.orchestrator.choose(session_id, solution_id))

    async def answer(self, session_id: str, question_id: str, value: Any) -> SessionView:
        return SessionView.from_session(await self.orchestrator.answer(session_id, {question_id: value}))

    async def answer_many(self, session_id: str, answers: Dict[str, Any]) -> SessionView:
        return SessionView.from_session(await self.orchestrator.answer(session_id, answers))

    async def enhance(self, session_id: str, requirements: Optional[Sequence[str]] = None) -> SessionView:
        if isinstance(requirements, str):
            requirements = [requirements]
        return SessionView.from_session(await self.orchestrator.enhance(session_id, requirements))

    async def finalize(self, session_id: str) -> ManifestSet:
        return await self.orchestrator.finalize(session_id)

    async def get_session(self, session_id: str) -> SessionView:
        return SessionView.from_session(await self.orchestrator.get(session_id))

    async def cancel(self, session_id: str) -> SessionView:
        return SessionView.from_session(await self.orchestrator.cancel(session_id))

    async def purge_expired(self) -> List[str]:
        return await self.session_store.purge_expired()
