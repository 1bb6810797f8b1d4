"""
Solution ranking.

The oracle assembles candidate kinds into complete solutions and scores
them. Every proposal is checked against the capability index before it
becomes a ``Solution``:

- a solution referencing a kind the index cannot resolve is discarded
- open questions and initial assignments on unknown field paths, and
  assignments whose value does not fit the field type, are dropped and
  recorded as warnings
- scores go through the ``ScoringPolicy`` and are clamped to [0, 1]
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from k8s_recommender.config.config import Config
from k8s_recommender.core.discovery.models import (
    CapabilityIndex,
    ResourceDescriptor,
    ResourceIdentity,
    ResourceOrigin,
    concrete_field_path,
)
from k8s_recommender.core.oracle.decision_oracle import DecisionOracle
from k8s_recommender.core.oracle.decoding import decode_items
from k8s_recommender.core.oracle.proposals import ProposedSolution
from k8s_recommender.core.oracle.retry import RetryPolicy, ask_with_retry
from k8s_recommender.core.oracle.templates import SOLUTION_RANKING
from k8s_recommender.core.state.base import Intent, OpenQuestion, Solution, SolutionResource
from k8s_recommender.utils.exceptions import InvalidFieldPath, InvalidFieldValue, NoSolutionsFound
from k8s_recommender.utils.fingerprint import digest
from k8s_recommender.utils.logger import AgentLogger

from .candidate_selector import resolve_reference
from .question_engine import coerce_proposed_value

ranker_logger = AgentLogger("K8S_RECOMMENDER_RANKER")


@dataclass(frozen=True)
class ScoringPolicy:
    """Weights applied to the oracle's score before ordering."""
    oracle_weight: float = 1.0
    builtin_bonus: float = 0.0
    custom_resource_bonus: float = 0.0
    extra_resource_penalty: float = 0.0
    min_score: float = 0.0

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "ScoringPolicy":
        return cls(**{k: float(v) for k, v in (config or Config()).ranking_config.items()})

    def score(self, oracle_score: float, descriptors: Sequence[ResourceDescriptor]) -> float:
        value = self.oracle_weight * oracle_score
        if descriptors:
            if descriptors[0].origin == ResourceOrigin.BUILT_IN:
                value += self.builtin_bonus
            else:
                value += self.custom_resource_bonus
        value -= self.extra_resource_penalty * max(0, len(descriptors) - 1)
        return round(min(1.0, max(0.0, value)), 6)


def solution_id_for(identities: Sequence[ResourceIdentity]) -> str:
    return "sol-" + digest([i.key for i in identities], length=12)


def field_path_error(descriptor: ResourceDescriptor, field_path: str) -> Optional[InvalidFieldPath]:
    if descriptor.capabilities.has_field(field_path):
        return None
    return InvalidFieldPath(descriptor.identity.kind, field_path)


class SolutionRanker:
    def __init__(
        self,
        oracle: DecisionOracle,
        retry_policy: Optional[RetryPolicy] = None,
        policy: Optional[ScoringPolicy] = None,
        max_solutions: int = 5,
    ) -> None:
        self.oracle = oracle
        self.retry_policy = retry_policy or RetryPolicy()
        self.policy = policy or ScoringPolicy()
        self.max_solutions = max_solutions

    @classmethod
    def from_config(cls, oracle: DecisionOracle, config: Optional[Config] = None) -> "SolutionRanker":
        config = config or Config()
        return cls(
            oracle,
            retry_policy=RetryPolicy.from_config(config),
            policy=ScoringPolicy.from_config(config),
            max_solutions=int(config.RANKING_MAX_SOLUTIONS),
        )

    def build_context(
        self, candidates: Sequence[ResourceIdentity], intent: Intent, index: CapabilityIndex
    ) -> Dict[str, Any]:
        entries = []
        for identity in candidates:
            descriptor = index.get(identity)
            if descriptor is None:
                continue
            entry = descriptor.summary()
            entry["fields"] = descriptor.field_listing(max_depth=6, limit=80)
            entries.append(entry)
        return {"intent": intent.normalized, "candidates": entries}

    def _build_solution(
        self, proposal: ProposedSolution, index: CapabilityIndex
    ) -> Tuple[Optional[Solution], Optional[str]]:
        descriptors: List[ResourceDescriptor] = []
        for reference in proposal.resources:
            descriptor = resolve_reference(index, reference.kind, reference.api_version)
            if descriptor is None:
                label = f"{reference.api_version}/{reference.kind}" if reference.api_version else reference.kind
                return None, f"unresolved resource reference {label}"
            descriptors.append(descriptor)

        warnings: List[str] = []
        assignments: List[Dict[str, Any]] = [{} for _ in descriptors]
        for assignment in proposal.assignments:
            if assignment.resource_index >= len(descriptors):
                warnings.append(f"assignment to unknown resource index {assignment.resource_index} dropped")
                continue
            error = field_path_error(descriptors[assignment.resource_index], assignment.field_path)
            if error is not None:
                warnings.append(error.message)
                continue
            try:
                value = coerce_proposed_value(descriptors[assignment.resource_index], assignment.field_path, assignment.value)
            except InvalidFieldValue as e:
                warnings.append(e.message)
                continue
            assignments[assignment.resource_index][concrete_field_path(assignment.field_path)] = value

        open_questions: List[OpenQuestion] = []
        seen = set()
        for question in proposal.open_questions:
            if question.resource_index >= len(descriptors):
                warnings.append(f"open question on unknown resource index {question.resource_index} dropped")
                continue
            error = field_path_error(descriptors[question.resource_index], question.field_path)
            if error is not None:
                warnings.append(error.message)
                continue
            path = concrete_field_path(question.field_path)
            key = (question.resource_index, path)
            if key in seen or path in assignments[question.resource_index]:
                continue
            seen.add(key)
            open_questions.append(OpenQuestion(
                resource_index=question.resource_index,
                field_path=path,
                reason=question.reason,
            ))

        identities = [d.identity for d in descriptors]
        solution = Solution(
            solution_id=solution_id_for(identities),
            resources=[
                SolutionResource(identity=identity, assignments=dict(sorted(values.items())))
                for identity, values in zip(identities, assignments)
            ],
            rationale=proposal.rationale,
            score=self.policy.score(proposal.score, descriptors),
            open_questions=open_questions,
            warnings=warnings,
        )
        return solution, None

    async def rank(
        self,
        candidates: Sequence[ResourceIdentity],
        intent: Union[Intent, str],
        index: CapabilityIndex,
    ) -> List[Solution]:
        """
        Rank complete solutions for ``intent`` built from ``candidates``.

        Raises:
            NoSolutionsFound: If every proposed solution is discarded
            OracleRetryExhausted: If the oracle keeps failing
        """
        if not isinstance(intent, Intent):
            intent = Intent(raw=intent, normalized=" ".join(intent.lower().split()), valid=True)

        decoded = await ask_with_retry(
            self.oracle,
            SOLUTION_RANKING,
            self.build_context(candidates, intent, index),
            self.retry_policy,
            lambda raw: decode_items(raw, "solutions", ProposedSolution, SOLUTION_RANKING),
            ranker_logger,
        )
        discarded = len(decoded.rejected)
        for rejection in decoded.rejected:
            ranker_logger.log_structured(
                level="WARNING",
                message="Dropping malformed solution proposal",
                extra={"detail": rejection},
            )

        best: Dict[str, Solution] = {}
        for proposal in decoded.items:
            solution, reason = self._build_solution(proposal, index)
            if solution is None:
                discarded += 1
                ranker_logger.log_structured(
                    level="WARNING",
                    message="Discarding solution with dangling resource reference",
                    extra={"reason": reason},
                )
                continue
            if solution.score < self.policy.min_score:
                discarded += 1
                continue
            for warning in solution.warnings:
                ranker_logger.log_structured(
                    level="WARNING",
                    message="Dropped invalid field reference from solution",
                    extra={"solution_id": solution.solution_id, "detail": warning},
                )
            current = best.get(solution.solution_id)
            if current is None or solution.score > current.score:
                best[solution.solution_id] = solution

        ranked = sorted(best.values(), key=lambda s: (-s.score, s.primary_kind, s.solution_id))
        ranked = ranked[: self.max_solutions]
        if not ranked:
            raise NoSolutionsFound(intent.raw, discarded)

        ranker_logger.log_structured(
            level="INFO",
            message="Solution ranking completed",
            extra={
                "solutions": [s.solution_id for s in ranked],
                "discarded": discarded,
            },
        )
        return ranked
