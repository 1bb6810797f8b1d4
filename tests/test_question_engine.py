"""Tests for question derivation, answer coercion and dependency handling."""

import pytest

from k8s_recommender.core.discovery.models import FieldType
from k8s_recommender.core.oracle.templates import QUESTION_DERIVATION
from k8s_recommender.core.recommendation.question_engine import QuestionEngine, coerce_answer, question_id
from k8s_recommender.core.state.base import (
    AnswerType,
    OpenQuestion,
    Question,
    QuestionCategory,
    QuestionStatus,
    Solution,
    SolutionResource,
)
from k8s_recommender.utils.exceptions import (
    InvalidAnswer,
    OracleRetryExhausted,
    QuestionNotEligible,
    QuestionNotFound,
    ResourceKindNotFound,
)

from conftest import DEPLOYMENT, IMAGE_PATH, QUESTIONS_RESPONSE, SERVICE, FakeOracle

NAME = "r0.metadata.name"
CONTAINER_NAME = "r0.spec.template.spec.containers[0].name"
IMAGE = f"r0.{IMAGE_PATH}"
NAMESPACE = "r0.metadata.namespace"
STRATEGY = "r0.spec.strategy.type"
REPLICAS = "r0.spec.replicas"
RESTART = "r0.spec.template.spec.restartPolicy"


def web_solution(assignments=None, open_questions=True) -> Solution:
    return Solution(
        solution_id="sol-web",
        resources=[SolutionResource(identity=DEPLOYMENT, assignments=assignments or {})],
        score=0.9,
        open_questions=[OpenQuestion(resource_index=0, field_path=IMAGE_PATH, reason="container image to run")]
        if open_questions else [],
    )


def question(answer_type: FieldType, options=None) -> Question:
    return Question(
        id="r0.x",
        resource_index=0,
        field_path="x",
        prompt="x?",
        answer_type=AnswerType(type=answer_type, options=options or []),
    )


class TestCoerceAnswer:
    def test_string(self):
        assert coerce_answer(question(FieldType.STRING), "  nginx:1.27 ") == "nginx:1.27"
        assert coerce_answer(question(FieldType.STRING), 8080) == "8080"
        with pytest.raises(InvalidAnswer):
            coerce_answer(question(FieldType.STRING), {"a": 1})

    def test_number(self):
        assert coerce_answer(question(FieldType.NUMBER), "3") == 3
        assert coerce_answer(question(FieldType.NUMBER), "0.5") == 0.5
        with pytest.raises(InvalidAnswer):
            coerce_answer(question(FieldType.NUMBER), "three")
        with pytest.raises(InvalidAnswer):
            coerce_answer(question(FieldType.NUMBER), True)

    def test_bool(self):
        assert coerce_answer(question(FieldType.BOOL), "yes") is True
        assert coerce_answer(question(FieldType.BOOL), "off") is False
        with pytest.raises(InvalidAnswer):
            coerce_answer(question(FieldType.BOOL), "maybe")

    def test_array(self):
        assert coerce_answer(question(FieldType.ARRAY), "a, b,") == ["a", "b"]
        assert coerce_answer(question(FieldType.ARRAY), '[1, 2]') == [1, 2]
        with pytest.raises(InvalidAnswer):
            coerce_answer(question(FieldType.ARRAY), "[1, 2")

    def test_object(self):
        assert coerce_answer(question(FieldType.OBJECT), '{"app": "web"}') == {"app": "web"}
        with pytest.raises(InvalidAnswer):
            coerce_answer(question(FieldType.OBJECT), "app=web")

    def test_enum_matches_case_insensitively(self):
        q = question(FieldType.STRING, ["Recreate", "RollingUpdate"])
        assert coerce_answer(q, "rollingupdate") == "RollingUpdate"
        with pytest.raises(InvalidAnswer):
            coerce_answer(q, "BlueGreen")

    def test_empty_value(self):
        with pytest.raises(InvalidAnswer):
            coerce_answer(question(FieldType.STRING), "   ")

    def test_question_id(self):
        assert question_id(1, "spec.ports[].port") == "r1.spec.ports[0].port"


class TestDeriveQuestions:
    async def test_required_fields_and_open_questions(self, sample_index, no_wait_retry):
        oracle = FakeOracle({QUESTION_DERIVATION: QUESTIONS_RESPONSE})
        engine = QuestionEngine(oracle, no_wait_retry)
        question_set = await engine.derive_questions(web_solution({"spec.replicas": 1}), sample_index)

        assert question_set.ids() == [NAME, CONTAINER_NAME, IMAGE, NAMESPACE, STRATEGY]
        assert question_set.get(IMAGE).category == QuestionCategory.OPEN
        assert question_set.get(IMAGE).prompt == "Which container image should run?"
        assert question_set.get(NAMESPACE).default == "default"
        assert question_set.get(STRATEGY).category == QuestionCategory.ADVANCED
        assert question_set.get(STRATEGY).answer_type.options == ["Recreate", "RollingUpdate"]
        assert question_set.unanswered_mandatory() == [NAME, CONTAINER_NAME, IMAGE]
        assert question_set.solution_id == "sol-web"

    async def test_assigned_fields_are_not_asked(self, sample_index, no_wait_retry):
        oracle = FakeOracle({QUESTION_DERIVATION: {"questions": [
            {"resource_index": 0, "field_path": "spec.replicas", "prompt": "How many replicas?"},
        ]}})
        engine = QuestionEngine(oracle, no_wait_retry)
        solution = web_solution({"spec.replicas": 2, "metadata.name": "web"})
        question_set = await engine.derive_questions(solution, sample_index)
        assert REPLICAS not in question_set.ids()
        assert NAME not in question_set.ids()

    async def test_oracle_cannot_add_required_questions(self, sample_index, no_wait_retry):
        oracle = FakeOracle({QUESTION_DERIVATION: {"questions": [
            {"resource_index": 0, "field_path": "spec.replicas", "prompt": "Replicas?", "category": "required"},
        ]}})
        question_set = await QuestionEngine(oracle, no_wait_retry).derive_questions(web_solution(), sample_index)
        assert question_set.get(REPLICAS).category == QuestionCategory.BASIC

    async def test_invalid_proposals_are_anomalies(self, sample_index, no_wait_retry):
        oracle = FakeOracle({QUESTION_DERIVATION: {"questions": [
            {"resource_index": 0, "field_path": "spec.replicaCount", "prompt": "Replicas?"},
            {"resource_index": 4, "field_path": "spec.replicas", "prompt": "Replicas?"},
            {"resource_index": 0, "field_path": "spec.replicas", "prompt": "Replicas?", "depends_on": ["r0.nope"]},
            {"resource_index": 0, "field_path": "spec.replicas", "prompt": ""},
        ]}})
        question_set = await QuestionEngine(oracle, no_wait_retry).derive_questions(web_solution(), sample_index)
        assert len(question_set.anomalies) == 4
        assert question_set.get(REPLICAS).depends_on == []

    async def test_cycles_are_broken(self, sample_index, no_wait_retry):
        oracle = FakeOracle({QUESTION_DERIVATION: {"questions": [
            {"resource_index": 0, "field_path": "spec.strategy.type", "prompt": "Strategy?", "depends_on": [REPLICAS]},
            {"resource_index": 0, "field_path": "spec.replicas", "prompt": "Replicas?", "category": "advanced",
             "depends_on": [STRATEGY]},
        ]}})
        question_set = await QuestionEngine(oracle, no_wait_retry).derive_questions(web_solution(), sample_index)
        assert question_set.get(STRATEGY).depends_on == [REPLICAS]
        assert question_set.get(REPLICAS).depends_on == []
        assert any("cycle" in a for a in question_set.anomalies)

    async def test_condition_on_mandatory_question_is_ignored(self, sample_index, no_wait_retry):
        oracle = FakeOracle({QUESTION_DERIVATION: {"questions": [
            {"resource_index": 0, "field_path": "metadata.name", "prompt": "Name?",
             "applies_when": {"question_id": NAMESPACE, "equals": "prod"}},
        ]}})
        question_set = await QuestionEngine(oracle, no_wait_retry).derive_questions(web_solution(), sample_index)
        assert question_set.get(NAME).applies_when is None
        assert any("mandatory" in a for a in question_set.anomalies)

    async def test_derivation_is_deterministic(self, sample_index, no_wait_retry):
        engine = QuestionEngine(FakeOracle({QUESTION_DERIVATION: QUESTIONS_RESPONSE}), no_wait_retry)
        first = await engine.derive_questions(web_solution(), sample_index)
        second = await engine.derive_questions(web_solution(), sample_index)
        assert first == second

    async def test_oracle_exhaustion(self, sample_index, no_wait_retry):
        engine = QuestionEngine(FakeOracle({QUESTION_DERIVATION: "garbage"}), no_wait_retry)
        with pytest.raises(OracleRetryExhausted):
            await engine.derive_questions(web_solution(), sample_index)

    async def test_missing_kind(self, sample_index, no_wait_retry):
        solution = Solution(
            solution_id="sol-gone",
            resources=[SolutionResource(identity=SERVICE.model_copy(update={"kind": "Gone"}))],
        )
        engine = QuestionEngine(FakeOracle({QUESTION_DERIVATION: QUESTIONS_RESPONSE}), no_wait_retry)
        with pytest.raises(ResourceKindNotFound):
            await engine.derive_questions(solution, sample_index)


class TestAnswering:
    @pytest.fixture
    async def conditional_set(self, sample_index, no_wait_retry):
        oracle = FakeOracle({QUESTION_DERIVATION: {"questions": [
            {"resource_index": 0, "field_path": "spec.strategy.type", "prompt": "Strategy?"},
            {"resource_index": 0, "field_path": "spec.replicas", "prompt": "Replicas?", "category": "advanced",
             "depends_on": [STRATEGY], "applies_when": {"question_id": STRATEGY, "equals": "RollingUpdate"}},
            {"resource_index": 0, "field_path": "spec.template.spec.restartPolicy", "prompt": "Restart policy?",
             "category": "advanced", "depends_on": [REPLICAS]},
        ]}})
        engine = QuestionEngine(oracle, no_wait_retry)
        return engine, await engine.derive_questions(web_solution(), sample_index)

    async def test_dependencies_gate_answers(self, conditional_set):
        engine, question_set = conditional_set
        with pytest.raises(QuestionNotEligible) as excinfo:
            engine.answer(question_set, {REPLICAS: 3})
        assert excinfo.value.unresolved == [STRATEGY]
        assert REPLICAS not in [q.id for q in question_set.pending()]

    async def test_unknown_question(self, conditional_set):
        engine, question_set = conditional_set
        with pytest.raises(QuestionNotFound):
            engine.answer(question_set, {"r9.spec.nothing": "x"})

    async def test_answers_in_order(self, conditional_set):
        engine, question_set = conditional_set
        answered = engine.answer(question_set, {STRATEGY: "rollingupdate", REPLICAS: "3", RESTART: "Always"})
        assert answered.get(STRATEGY).answer == "RollingUpdate"
        assert answered.get(REPLICAS).answer == 3
        assert answered.get(RESTART).status == QuestionStatus.ANSWERED
        assert question_set.get(STRATEGY).status == QuestionStatus.PENDING

    async def test_changed_answer_reasks_dependents(self, conditional_set):
        engine, question_set = conditional_set
        answered = engine.answer(question_set, {STRATEGY: "RollingUpdate", REPLICAS: 3, RESTART: "Always"})
        changed = engine.answer(answered, {STRATEGY: "Recreate"})

        assert changed.get(REPLICAS).status == QuestionStatus.SKIPPED
        assert changed.get(REPLICAS).answer is None
        assert changed.get(RESTART).status == QuestionStatus.PENDING
        assert changed.get(RESTART).answer is None
        with pytest.raises(QuestionNotEligible):
            engine.answer(changed, {REPLICAS: 2})

        restored = engine.answer(changed, {STRATEGY: "RollingUpdate"})
        assert restored.get(REPLICAS).status == QuestionStatus.PENDING

    async def test_same_answer_is_idempotent(self, conditional_set):
        engine, question_set = conditional_set
        answered = engine.answer(question_set, {STRATEGY: "RollingUpdate", REPLICAS: 3})
        assert engine.answer(answered, {STRATEGY: "rollingupdate"}) == answered

    async def test_invalid_answer_leaves_set_unchanged(self, conditional_set):
        engine, question_set = conditional_set
        with pytest.raises(InvalidAnswer):
            engine.answer(question_set, {STRATEGY: "BlueGreen"})
        assert question_set.answered() == []
