"""
Solution enhancement.

Applies answered questions to a solution and turns free-form requirement
text into field assignments through the oracle. Oracle proposals are
cached by a fingerprint of (solution content, answers, requirement), so
re-running enhancement on unchanged inputs is byte-for-byte identical and
never calls the oracle twice for the same input.
"""

from typing import Any, Dict, List, MutableMapping, Optional, Sequence

from k8s_recommender.config.config import Config
from k8s_recommender.core.discovery.models import CapabilityIndex, ResourceDescriptor, concrete_field_path
from k8s_recommender.core.oracle.decision_oracle import DecisionOracle
from k8s_recommender.core.oracle.decoding import decode_items
from k8s_recommender.core.oracle.proposals import ProposedAssignment
from k8s_recommender.core.oracle.retry import RetryPolicy, ask_with_retry
from k8s_recommender.core.oracle.templates import SOLUTION_ENHANCEMENT
from k8s_recommender.core.state.base import OpenQuestion, QuestionSet, Solution, SolutionResource
from k8s_recommender.utils.exceptions import InvalidFieldPath, InvalidFieldValue, ResourceKindNotFound
from k8s_recommender.utils.fingerprint import digest
from k8s_recommender.utils.logger import AgentLogger

from .question_engine import coerce_proposed_value

enhancer_logger = AgentLogger("K8S_RECOMMENDER_ENHANCER")


def normalize_requirements(requirements: Sequence[str]) -> List[str]:
    """Strip, drop empty and de-duplicate requirement texts, keeping order."""
    seen = []
    for text in requirements or []:
        cleaned = " ".join(str(text).split())
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


class SolutionEnhancer:
    def __init__(self, oracle: DecisionOracle, retry_policy: Optional[RetryPolicy] = None) -> None:
        self.oracle = oracle
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_config(cls, oracle: DecisionOracle, config: Optional[Config] = None) -> "SolutionEnhancer":
        return cls(oracle, retry_policy=RetryPolicy.from_config(config or Config()))

    @staticmethod
    def cache_key(content: Dict[str, Any], answers: Dict[str, Any], requirement: str) -> str:
        return digest({"solution": content, "answers": answers, "requirement": requirement})

    def _context(
        self,
        assignments: List[Dict[str, Any]],
        descriptors: List[ResourceDescriptor],
        answers: Dict[str, Any],
        requirement: str,
    ) -> Dict[str, Any]:
        return {
            "solution": [
                {
                    "resource_index": i,
                    "kind": d.identity.kind,
                    "apiVersion": d.identity.api_version,
                    "assigned": values,
                    "fields": d.field_listing(max_depth=6, limit=80),
                }
                for i, (values, d) in enumerate(zip(assignments, descriptors))
            ],
            "answered": answers,
            "requirement": requirement,
        }

    async def _proposals(
        self,
        key: str,
        context: Dict[str, Any],
        cache: MutableMapping[str, List[Dict[str, Any]]],
    ) -> List[ProposedAssignment]:
        if key in cache:
            enhancer_logger.log_structured(
                level="DEBUG",
                message="Reusing cached enhancement proposals",
                extra={"cache_key": key[:16]},
            )
            return [ProposedAssignment.model_validate(item) for item in cache[key]]
        decoded = await ask_with_retry(
            self.oracle,
            SOLUTION_ENHANCEMENT,
            context,
            self.retry_policy,
            lambda raw: decode_items(raw, "assignments", ProposedAssignment, SOLUTION_ENHANCEMENT),
            enhancer_logger,
        )
        cache[key] = [item.model_dump(mode="json") for item in decoded.items]
        return decoded.items

    async def enhance(
        self,
        solution: Solution,
        question_set: Optional[QuestionSet],
        requirements: Sequence[str],
        index: CapabilityIndex,
        cache: Optional[MutableMapping[str, List[Dict[str, Any]]]] = None,
    ) -> Solution:
        """
        Apply answers and requirements to ``solution``.

        Returns the input solution itself when nothing changes, otherwise a
        new version whose ``parent_version`` is the input version.

        Raises:
            ResourceKindNotFound: If a solution resource is missing from the index
            OracleRetryExhausted: If the oracle keeps failing
        """
        cache = {} if cache is None else cache
        descriptors: List[ResourceDescriptor] = []
        for resource in solution.resources:
            descriptor = index.get(resource.identity)
            if descriptor is None:
                raise ResourceKindNotFound(resource.identity.key)
            descriptors.append(descriptor)

        assignments = [dict(r.assignments) for r in solution.resources]
        answered_paths = set()
        answers: Dict[str, Any] = {}
        if question_set is not None:
            for question in question_set.answered():
                if question.resource_index >= len(assignments):
                    continue
                assignments[question.resource_index][question.field_path] = question.answer
                answered_paths.add((question.resource_index, question.field_path))
                answers[question.id] = question.answer

        warnings = list(solution.warnings)
        applied = list(solution.applied_requirements)
        for requirement in normalize_requirements(requirements):
            if requirement in applied:
                continue
            working = {"assignments": [dict(sorted(a.items())) for a in assignments], "applied": applied}
            key = self.cache_key(working, answers, requirement)
            context = self._context(assignments, descriptors, answers, requirement)
            for proposal in await self._proposals(key, context, cache):
                if proposal.resource_index >= len(descriptors):
                    warnings.append(f"assignment to unknown resource index {proposal.resource_index} dropped")
                    continue
                descriptor = descriptors[proposal.resource_index]
                if not descriptor.capabilities.has_field(proposal.field_path):
                    error = InvalidFieldPath(descriptor.identity.kind, proposal.field_path)
                    warnings.append(error.message)
                    enhancer_logger.log_structured(
                        level="WARNING",
                        message="Dropping enhancement on unknown field path",
                        extra=error.context,
                    )
                    continue
                path = concrete_field_path(proposal.field_path)
                if (proposal.resource_index, path) in answered_paths:
                    continue
                try:
                    value = coerce_proposed_value(descriptor, proposal.field_path, proposal.value)
                except InvalidFieldValue as e:
                    warnings.append(e.message)
                    enhancer_logger.log_structured(
                        level="WARNING",
                        message="Dropping enhancement with a value of the wrong type",
                        extra=e.context,
                    )
                    continue
                assignments[proposal.resource_index][path] = value
            applied.append(requirement)

        open_questions: List[OpenQuestion] = [
            q for q in solution.open_questions
            if q.field_path not in assignments[q.resource_index]
        ] if assignments else list(solution.open_questions)

        candidate = Solution(
            solution_id=solution.solution_id,
            version=solution.version,
            parent_version=solution.parent_version,
            resources=[
                SolutionResource(identity=r.identity, assignments=dict(sorted(values.items())))
                for r, values in zip(solution.resources, assignments)
            ],
            rationale=solution.rationale,
            score=solution.score,
            open_questions=open_questions,
            applied_requirements=applied,
            warnings=list(dict.fromkeys(warnings)),
        )
        if candidate.content_fingerprint() == solution.content_fingerprint():
            return solution

        enhanced = candidate.model_copy(update={
            "version": solution.version + 1,
            "parent_version": solution.version,
        })
        enhancer_logger.log_structured(
            level="INFO",
            message="Solution enhanced",
            extra={
                "solution_id": solution.solution_id,
                "version": enhanced.version,
                "requirements_applied": len(applied) - len(solution.applied_requirements),
            },
        )
        return enhanced
