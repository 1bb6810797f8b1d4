"""
Candidate selection: narrow the capability index to the resource kinds
relevant to an intent.

The oracle proposes kinds from a catalog summary of the index; only kinds
that resolve in the index survive.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from k8s_recommender.config.config import Config
from k8s_recommender.core.discovery.models import CapabilityIndex, ResourceDescriptor, ResourceIdentity
from k8s_recommender.core.oracle.decision_oracle import DecisionOracle
from k8s_recommender.core.oracle.decoding import decode_items
from k8s_recommender.core.oracle.proposals import CandidateProposal
from k8s_recommender.core.oracle.retry import RetryPolicy, ask_with_retry
from k8s_recommender.core.oracle.templates import CANDIDATE_SELECTION
from k8s_recommender.core.state.base import Intent
from k8s_recommender.utils.exceptions import NoCandidatesFound
from k8s_recommender.utils.logger import AgentLogger

from .intent import parse_intent

selector_logger = AgentLogger("K8S_RECOMMENDER_SELECTOR")


@dataclass
class CandidateSelection:
    candidates: List[ResourceIdentity] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


def resolve_reference(index: CapabilityIndex, kind: str, api_version: Optional[str]) -> Optional[ResourceDescriptor]:
    """
    Resolve a kind (and optional apiVersion) proposed by the oracle.

    An unknown version falls back to another served version of the same
    group. A reference to a group the index does not hold resolves to None.
    """
    if not api_version:
        return index.resolve(kind)
    descriptor = index.resolve(kind, api_version=api_version)
    if descriptor is not None:
        return descriptor
    group = api_version.split("/", 1)[0] if "/" in api_version else ""
    return index.resolve(kind, group=group)


class CandidateSelector:
    def __init__(
        self,
        oracle: DecisionOracle,
        retry_policy: Optional[RetryPolicy] = None,
        min_meaningful_words: int = 2,
        catalog_limit: Optional[int] = None,
    ) -> None:
        self.oracle = oracle
        self.retry_policy = retry_policy or RetryPolicy()
        self.min_meaningful_words = min_meaningful_words
        self.catalog_limit = catalog_limit

    @classmethod
    def from_config(cls, oracle: DecisionOracle, config: Optional[Config] = None) -> "CandidateSelector":
        config = config or Config()
        return cls(
            oracle,
            retry_policy=RetryPolicy.from_config(config),
            min_meaningful_words=config.INTENT_MIN_MEANINGFUL_WORDS,
            catalog_limit=config.ORACLE_CATALOG_LIMIT,
        )

    def build_context(self, intent: Intent, index: CapabilityIndex) -> Dict[str, Any]:
        return {
            "intent": intent.normalized,
            "catalog": index.catalog(self.catalog_limit),
        }

    async def select_with_report(self, intent: Union[Intent, str], index: CapabilityIndex) -> CandidateSelection:
        """
        Select candidate kinds and report which proposals were dropped.

        Raises:
            IntentTooVague: Before any oracle call, if the intent is too vague
            NoCandidatesFound: If no proposal resolves in the index
            OracleRetryExhausted: If the oracle keeps failing
        """
        if not isinstance(intent, Intent) or not intent.valid:
            raw = intent.raw if isinstance(intent, Intent) else intent
            intent = parse_intent(raw, self.min_meaningful_words)

        decoded = await ask_with_retry(
            self.oracle,
            CANDIDATE_SELECTION,
            self.build_context(intent, index),
            self.retry_policy,
            lambda raw: decode_items(raw, "candidates", CandidateProposal, CANDIDATE_SELECTION),
            selector_logger,
        )

        selection = CandidateSelection(dropped=list(decoded.rejected))
        seen = set()
        for proposal in decoded.items:
            descriptor = resolve_reference(index, proposal.kind, proposal.api_version)
            if descriptor is None:
                label = f"{proposal.api_version}/{proposal.kind}" if proposal.api_version else proposal.kind
                selection.dropped.append(label)
                selector_logger.log_structured(
                    level="WARNING",
                    message="Dropping proposed kind not present in the capability index",
                    extra={"kind": label, "index_id": index.index_id},
                )
                continue
            if descriptor.key in seen:
                continue
            seen.add(descriptor.key)
            selection.candidates.append(descriptor.identity)

        if not selection.candidates:
            raise NoCandidatesFound(intent.raw, selection.dropped)

        selector_logger.log_structured(
            level="INFO",
            message="Candidate selection completed",
            extra={
                "candidates": [c.key for c in selection.candidates],
                "dropped": len(selection.dropped),
            },
        )
        return selection

    async def select(self, intent: Union[Intent, str], index: CapabilityIndex) -> List[ResourceIdentity]:
        return (await self.select_with_report(intent, index)).candidates
