"""
Question derivation and answering.

The minimal set of questions comes from the capability descriptors: every
required field of a solution resource that has no value yet, plus the
solution's open questions. The oracle only words those questions, links
them with dependencies and may add optional basic/advanced ones; answer
types always come from the descriptors.

The dependency relation is kept acyclic at derivation time. Edges are
added in a fixed order and an edge that would close a cycle is dropped and
recorded as an anomaly. Answering never adds edges.
"""

import json
from collections import deque
from typing import Any, Dict, List, Mapping, Optional, Set

from k8s_recommender.config.config import Config
from k8s_recommender.core.discovery.models import (
    CapabilityIndex,
    FieldType,
    ResourceDescriptor,
    concrete_field_path,
    normalize_field_path,
)
from k8s_recommender.core.oracle.decision_oracle import DecisionOracle
from k8s_recommender.core.oracle.decoding import decode_items
from k8s_recommender.core.oracle.proposals import ProposedQuestion
from k8s_recommender.core.oracle.retry import RetryPolicy, ask_with_retry
from k8s_recommender.core.oracle.templates import QUESTION_DERIVATION
from k8s_recommender.core.state.base import (
    AnswerCondition,
    AnswerType,
    Question,
    QuestionCategory,
    QuestionSet,
    QuestionStatus,
    Solution,
)
from k8s_recommender.utils.exceptions import (
    InvalidAnswer,
    InvalidFieldValue,
    QuestionNotEligible,
    QuestionNotFound,
    ResourceKindNotFound,
)
from k8s_recommender.utils.logger import AgentLogger

questions_logger = AgentLogger("K8S_RECOMMENDER_QUESTIONS")

_CATEGORY_ORDER = {
    QuestionCategory.REQUIRED: 0,
    QuestionCategory.OPEN: 1,
    QuestionCategory.BASIC: 2,
    QuestionCategory.ADVANCED: 3,
}

_TRUE_WORDS = {"true", "yes", "y", "1", "on"}
_FALSE_WORDS = {"false", "no", "n", "0", "off"}


def question_id(resource_index: int, field_path: str) -> str:
    return f"r{resource_index}.{concrete_field_path(field_path)}"


def answer_type_for(descriptor: ResourceDescriptor, field_path: str) -> AnswerType:
    capabilities = descriptor.capabilities
    field_type = capabilities.field_type(field_path)
    node = capabilities.lookup(field_path)
    options: List[Any] = []
    if node is not None and node.id == normalize_field_path(field_path):
        options = list(node.enum)
    return AnswerType(type=field_type, options=options)


# ============================================================================
# Answer coercion
# ============================================================================

def _as_json(question_id_: str, value: str, expected: type) -> Any:
    try:
        parsed = json.loads(value)
    except ValueError:
        raise InvalidAnswer(question_id_, value, f"expected a JSON {expected.__name__}")
    if not isinstance(parsed, expected):
        raise InvalidAnswer(question_id_, value, f"expected a JSON {expected.__name__}")
    return parsed


def coerce_answer(question: Question, value: Any) -> Any:
    """
    Validate ``value`` against the question's answer type.

    Returns the value converted to its semantic type.

    Raises:
        InvalidAnswer: If the value cannot represent the answer type
    """
    qid = question.id
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidAnswer(qid, value, "a value is required")

    options = question.answer_type.options
    if options:
        wanted = AnswerCondition(question_id=qid, equals=value)
        for option in options:
            if wanted.holds(option):
                return option
        raise InvalidAnswer(qid, value, f"must be one of: {', '.join(str(o) for o in options)}")

    field_type = question.answer_type.type
    if field_type == FieldType.STRING:
        if isinstance(value, (dict, list)):
            raise InvalidAnswer(qid, value, "expected a string")
        if isinstance(value, bool):
            return "true" if value else "false"
        return value.strip() if isinstance(value, str) else str(value)

    if field_type == FieldType.NUMBER:
        if isinstance(value, bool):
            raise InvalidAnswer(qid, value, "expected a number")
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text)
            except ValueError:
                pass
            try:
                return float(text)
            except ValueError:
                pass
        raise InvalidAnswer(qid, value, "expected a number")

    if field_type == FieldType.BOOL:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_WORDS:
            return True
        if text in _FALSE_WORDS:
            return False
        raise InvalidAnswer(qid, value, "expected true or false")

    if field_type == FieldType.ARRAY:
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                return _as_json(qid, text, list)
            return [part.strip() for part in text.split(",") if part.strip()]
        raise InvalidAnswer(qid, value, "expected a list or comma-separated values")

    if field_type == FieldType.OBJECT:
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            return _as_json(qid, value.strip(), dict)
        raise InvalidAnswer(qid, value, "expected an object")

    # Truncated references: structure unknown, accept JSON or plain text
    if isinstance(value, str) and value.strip()[:1] in ("{", "["):
        try:
            return json.loads(value)
        except ValueError:
            return value.strip()
    return value


def coerce_proposed_value(descriptor: ResourceDescriptor, field_path: str, value: Any) -> Any:
    """
    Validate a value the oracle proposed for ``field_path``.

    Follows the answer rules, except that plain string fields keep numbers
    and booleans as given (int-or-string fields). Values below an
    open-ended object are not checked.

    Raises:
        InvalidFieldValue: If the value does not fit the field's type
    """
    node = descriptor.capabilities.lookup(field_path)
    if node is not None and node.id != normalize_field_path(field_path):
        return value
    answer_type = answer_type_for(descriptor, field_path)
    if answer_type.type == FieldType.STRING and not answer_type.options:
        if value is None or isinstance(value, (dict, list)):
            raise InvalidFieldValue(descriptor.identity.kind, field_path, "expected a scalar value")
        return value
    question = Question(
        id=field_path,
        resource_index=0,
        field_path=field_path,
        prompt=field_path,
        answer_type=answer_type,
    )
    try:
        return coerce_answer(question, value)
    except InvalidAnswer as e:
        raise InvalidFieldValue(descriptor.identity.kind, field_path, e.context["reason"]) from e


# ============================================================================
# Engine
# ============================================================================

class QuestionEngine:
    def __init__(
        self,
        oracle: DecisionOracle,
        retry_policy: Optional[RetryPolicy] = None,
        max_required_depth: int = 6,
    ) -> None:
        self.oracle = oracle
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_required_depth = max_required_depth

    @classmethod
    def from_config(cls, oracle: DecisionOracle, config: Optional[Config] = None) -> "QuestionEngine":
        config = config or Config()
        return cls(
            oracle,
            retry_policy=RetryPolicy.from_config(config),
            max_required_depth=int(config.QUESTION_MAX_REQUIRED_DEPTH),
        )

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    @staticmethod
    def _descriptors(solution: Solution, index: CapabilityIndex) -> List[ResourceDescriptor]:
        descriptors = []
        for resource in solution.resources:
            descriptor = index.get(resource.identity)
            if descriptor is None:
                raise ResourceKindNotFound(resource.identity.key)
            descriptors.append(descriptor)
        return descriptors

    def required_questions(self, solution: Solution, descriptors: List[ResourceDescriptor]) -> List[Question]:
        """Questions for values the solution cannot be rendered without."""
        questions: Dict[str, Question] = {}

        def add(index_: int, path: str, category: QuestionCategory, reason: str, default: Any = None) -> None:
            path = concrete_field_path(path)
            if path in solution.resources[index_].assignments:
                return
            qid = question_id(index_, path)
            if qid in questions:
                return
            descriptor = descriptors[index_]
            node = descriptor.capabilities.lookup(path)
            description = node.description if node is not None and node.id == normalize_field_path(path) else ""
            prompt = f"{descriptor.identity.kind} {path}: {reason or description or 'value required'}"
            questions[qid] = Question(
                id=qid,
                resource_index=index_,
                field_path=path,
                prompt=prompt,
                answer_type=answer_type_for(descriptor, path),
                category=category,
                default=default,
            )

        for index_, descriptor in enumerate(descriptors):
            add(index_, "metadata.name", QuestionCategory.REQUIRED, "name of the resource")
            for path in descriptor.capabilities.required_leaf_paths("spec", self.max_required_depth):
                add(index_, path, QuestionCategory.REQUIRED, "")
            if descriptor.namespaced:
                add(index_, "metadata.namespace", QuestionCategory.BASIC, "namespace to deploy into", default="default")

        for open_question in solution.open_questions:
            if open_question.resource_index < len(descriptors):
                add(open_question.resource_index, open_question.field_path, QuestionCategory.OPEN, open_question.reason)
        return list(questions.values())

    def build_context(
        self, solution: Solution, descriptors: List[ResourceDescriptor], required: List[Question]
    ) -> Dict[str, Any]:
        return {
            "solution": [
                {
                    "resource_index": i,
                    "kind": d.identity.kind,
                    "apiVersion": d.identity.api_version,
                    "assigned": r.assignments,
                    "fields": d.field_listing(max_depth=6, limit=60),
                }
                for i, (r, d) in enumerate(zip(solution.resources, descriptors))
            ],
            "required_fields": [
                {
                    "id": q.id,
                    "resource_index": q.resource_index,
                    "field_path": q.field_path,
                    "type": q.answer_type.type.value,
                    "prompt": q.prompt,
                }
                for q in required
            ],
        }

    async def derive_questions(self, solution: Solution, index: CapabilityIndex) -> QuestionSet:
        """
        Derive the question set for a solution.

        Raises:
            ResourceKindNotFound: If a solution resource is missing from the index
            OracleRetryExhausted: If the oracle keeps failing
        """
        descriptors = self._descriptors(solution, index)
        base = self.required_questions(solution, descriptors)
        decoded = await ask_with_retry(
            self.oracle,
            QUESTION_DERIVATION,
            self.build_context(solution, descriptors, base),
            self.retry_policy,
            lambda raw: decode_items(raw, "questions", ProposedQuestion, QUESTION_DERIVATION),
            questions_logger,
        )
        anomalies = [f"dropped malformed question proposal {r}" for r in decoded.rejected]
        question_set = self._merge(solution, descriptors, base, decoded.items, anomalies)
        for anomaly in question_set.anomalies:
            questions_logger.log_structured(
                level="WARNING",
                message="Question derivation anomaly",
                extra={"solution_id": solution.solution_id, "detail": anomaly},
            )
        questions_logger.log_structured(
            level="INFO",
            message="Question derivation completed",
            extra={
                "solution_id": solution.solution_id,
                "questions": len(question_set.questions),
                "required": len(question_set.unanswered_mandatory()),
            },
        )
        return question_set

    def _merge(
        self,
        solution: Solution,
        descriptors: List[ResourceDescriptor],
        base: List[Question],
        proposals: List[ProposedQuestion],
        anomalies: List[str],
    ) -> QuestionSet:
        questions: Dict[str, Question] = {q.id: q for q in base}
        dependencies: Dict[str, List[str]] = {q.id: [] for q in base}
        conditions: Dict[str, Optional[AnswerCondition]] = {q.id: None for q in base}

        for proposal in proposals:
            if proposal.resource_index >= len(descriptors):
                anomalies.append(f"question on unknown resource index {proposal.resource_index} dropped")
                continue
            descriptor = descriptors[proposal.resource_index]
            if not descriptor.capabilities.has_field(proposal.field_path):
                anomalies.append(f"question on unknown field {descriptor.identity.kind} {proposal.field_path} dropped")
                continue
            path = concrete_field_path(normalize_field_path(proposal.field_path))
            qid = question_id(proposal.resource_index, path)
            if qid in questions:
                questions[qid] = questions[qid].model_copy(update={"prompt": proposal.prompt})
            else:
                if path in solution.resources[proposal.resource_index].assignments:
                    continue
                category = QuestionCategory(proposal.category)
                if category == QuestionCategory.REQUIRED:
                    category = QuestionCategory.BASIC
                questions[qid] = Question(
                    id=qid,
                    resource_index=proposal.resource_index,
                    field_path=path,
                    prompt=proposal.prompt,
                    answer_type=answer_type_for(descriptor, path),
                    category=category,
                )
                dependencies[qid] = []
            dependencies[qid] = list(dict.fromkeys(dependencies[qid] + list(proposal.depends_on)))
            if proposal.applies_when is not None:
                conditions[qid] = AnswerCondition(
                    question_id=proposal.applies_when.question_id,
                    equals=proposal.applies_when.equals,
                )

        ordered_ids = [
            q.id for q in sorted(
                questions.values(),
                key=lambda q: _CATEGORY_ORDER[q.category],
            )
        ]
        accepted: Dict[str, List[str]] = {qid: [] for qid in ordered_ids}

        def reaches(start: str, target: str) -> bool:
            stack, seen = [start], set()
            while stack:
                current = stack.pop()
                if current == target:
                    return True
                if current in seen:
                    continue
                seen.add(current)
                stack.extend(accepted.get(current, []))
            return False

        def add_edge(qid: str, dep_id: str) -> bool:
            if dep_id not in questions:
                anomalies.append(f"dependency of {qid} on unknown question {dep_id} dropped")
                return False
            if dep_id in accepted[qid]:
                return True
            if dep_id == qid or reaches(dep_id, qid):
                anomalies.append(f"dependency of {qid} on {dep_id} would create a cycle and was dropped")
                return False
            accepted[qid].append(dep_id)
            return True

        for qid in ordered_ids:
            for dep_id in dependencies.get(qid, []):
                add_edge(qid, dep_id)

        final: List[Question] = []
        for qid in ordered_ids:
            question = questions[qid]
            condition = conditions.get(qid)
            if condition is not None:
                if question.mandatory:
                    anomalies.append(f"condition on mandatory question {qid} ignored")
                    condition = None
                elif not add_edge(qid, condition.question_id):
                    anomalies.append(f"condition of {qid} on {condition.question_id} dropped")
                    condition = None
            final.append(question.model_copy(update={
                "depends_on": list(accepted[qid]),
                "applies_when": condition,
            }))

        return QuestionSet(
            solution_id=solution.solution_id,
            solution_version=solution.version,
            questions=final,
            anomalies=anomalies,
        )

    # ------------------------------------------------------------------
    # Answering
    # ------------------------------------------------------------------

    def answer(self, question_set: QuestionSet, answers: Mapping[str, Any]) -> QuestionSet:
        """
        Record answers, in the order given, and re-evaluate dependents.

        Raises:
            QuestionNotFound, QuestionNotEligible, InvalidAnswer
        """
        current = question_set
        for qid, value in answers.items():
            current = self._answer_one(current, qid, value)
        return current

    def _answer_one(self, question_set: QuestionSet, qid: str, value: Any) -> QuestionSet:
        question = question_set.get(qid)
        if question is None:
            raise QuestionNotFound(qid)
        if question.status == QuestionStatus.SKIPPED:
            blocking = [question.applies_when.question_id] if question.applies_when else []
            raise QuestionNotEligible(qid, blocking)
        unresolved = question_set.unresolved_dependencies(question)
        if unresolved:
            raise QuestionNotEligible(qid, unresolved)

        coerced = coerce_answer(question, value)
        changed = question.status != QuestionStatus.ANSWERED or question.answer != coerced
        by_id = {q.id: q for q in question_set.questions}
        by_id[qid] = question.model_copy(update={"status": QuestionStatus.ANSWERED, "answer": coerced})
        if changed:
            self._propagate(by_id, qid)
        questions_logger.log_structured(
            level="DEBUG",
            message="Question answered",
            extra={"question_id": qid, "changed": changed},
        )
        return question_set.replace([by_id[q.id] for q in question_set.questions])

    @staticmethod
    def _condition_status(question: Question, by_id: Dict[str, Question]) -> QuestionStatus:
        condition = question.applies_when
        if condition is None:
            return QuestionStatus.PENDING
        anchor = by_id.get(condition.question_id)
        if anchor is None or anchor.status == QuestionStatus.PENDING:
            return QuestionStatus.PENDING
        if anchor.status == QuestionStatus.SKIPPED:
            return QuestionStatus.SKIPPED
        return QuestionStatus.PENDING if condition.holds(anchor.answer) else QuestionStatus.SKIPPED

    @classmethod
    def _propagate(cls, by_id: Dict[str, Question], changed_id: str) -> None:
        """Clear every answer downstream of ``changed_id`` and re-evaluate conditions."""
        dependents: Dict[str, List[str]] = {}
        for question in by_id.values():
            for dep_id in question.depends_on:
                dependents.setdefault(dep_id, []).append(question.id)

        downstream: List[str] = []
        queue = deque([changed_id])
        visited: Set[str] = {changed_id}
        while queue:
            for dependent_id in dependents.get(queue.popleft(), []):
                if dependent_id not in visited:
                    visited.add(dependent_id)
                    downstream.append(dependent_id)
                    queue.append(dependent_id)

        for qid in downstream:
            by_id[qid] = by_id[qid].model_copy(update={"status": QuestionStatus.PENDING, "answer": None})

        # The graph is acyclic, so statuses settle after at most len(downstream) passes
        settled = False
        while not settled:
            settled = True
            for qid in downstream:
                status = cls._condition_status(by_id[qid], by_id)
                if status != by_id[qid].status:
                    by_id[qid] = by_id[qid].model_copy(update={"status": status})
                    settled = False
