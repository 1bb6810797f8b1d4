"""Tests for the decision oracle boundary: decoding, retry and the LLM adapter."""

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from k8s_recommender.config.config import Config
from k8s_recommender.core.oracle.decision_oracle import LLMDecisionOracle, escape_json_for_template
from k8s_recommender.core.oracle.decoding import decode_items
from k8s_recommender.core.oracle.proposals import CandidateProposal, ProposedSolution
from k8s_recommender.core.oracle.retry import RetryPolicy, ask_with_retry
from k8s_recommender.core.oracle.templates import (
    CANDIDATE_SELECTION,
    SOLUTION_RANKING,
    TEMPLATES,
    get_template,
)
from k8s_recommender.utils.exceptions import (
    OracleMalformedOutput,
    OracleRetryExhausted,
    OracleTimeout,
    OracleUnavailable,
)
from k8s_recommender.utils.logger import AgentLogger

from conftest import FakeOracle

test_logger = AgentLogger("K8S_RECOMMENDER_ORACLE")


class TestDecodeItems:
    def test_filters_invalid_items(self):
        decoded = decode_items(
            {"candidates": [{"kind": "Deployment"}, {"kind": ""}, "Service"]},
            "candidates",
            CandidateProposal,
            CANDIDATE_SELECTION,
        )
        assert [c.kind for c in decoded.items] == ["Deployment"]
        assert len(decoded.rejected) == 2

    def test_missing_key_is_empty(self):
        decoded = decode_items({}, "candidates", CandidateProposal, CANDIDATE_SELECTION)
        assert decoded.items == []

    def test_not_an_object(self):
        with pytest.raises(OracleMalformedOutput):
            decode_items(["Deployment"], "candidates", CandidateProposal, CANDIDATE_SELECTION)

    def test_not_a_list(self):
        with pytest.raises(OracleMalformedOutput):
            decode_items({"candidates": "Deployment"}, "candidates", CandidateProposal, CANDIDATE_SELECTION)

    def test_all_items_rejected(self):
        raw = {"solutions": [{"resources": [{"kind": "Deployment"}], "score": 1.7}]}
        with pytest.raises(OracleMalformedOutput):
            decode_items(raw, "solutions", ProposedSolution, SOLUTION_RANKING)


class TestRetry:
    def test_delay_is_capped(self):
        policy = RetryPolicy(max_attempts=5, backoff_base_seconds=1.0, backoff_max_seconds=3.0)
        assert [policy.delay(n) for n in range(1, 5)] == [1.0, 2.0, 3.0, 3.0]

    def test_from_config(self):
        policy = RetryPolicy.from_config(Config({"ORACLE_MAX_ATTEMPTS": 0}))
        assert policy.max_attempts == 1

    async def test_retries_then_succeeds(self):
        oracle = FakeOracle({CANDIDATE_SELECTION: [
            OracleTimeout("slow", CANDIDATE_SELECTION),
            {"candidates": "not a list"},
            {"candidates": [{"kind": "Deployment"}]},
        ]})
        delays = []

        async def record(seconds):
            delays.append(seconds)

        decoded = await ask_with_retry(
            oracle,
            CANDIDATE_SELECTION,
            {"intent": "run a web app"},
            RetryPolicy(max_attempts=3, backoff_base_seconds=0.5, backoff_max_seconds=4.0),
            lambda raw: decode_items(raw, "candidates", CandidateProposal, CANDIDATE_SELECTION),
            test_logger,
            sleep=record,
        )
        assert [c.kind for c in decoded.items] == ["Deployment"]
        assert delays == [0.5, 1.0]
        assert len(oracle.calls) == 3

    async def test_exhaustion(self, no_wait_retry):
        oracle = FakeOracle({CANDIDATE_SELECTION: OracleUnavailable("down", CANDIDATE_SELECTION)})
        with pytest.raises(OracleRetryExhausted) as excinfo:
            await ask_with_retry(
                oracle, CANDIDATE_SELECTION, {}, no_wait_retry, lambda raw: raw, test_logger
            )
        assert excinfo.value.attempts == 3
        assert excinfo.value.context["last_error"] == "OracleUnavailable"
        assert len(oracle.calls) == 3


class TestTemplates:
    def test_registered_templates(self):
        assert set(TEMPLATES) == {
            "candidate-selection@v1",
            "solution-ranking@v1",
            "question-derivation@v1",
            "solution-enhancement@v1",
        }
        template = get_template(SOLUTION_RANKING)
        assert template.name == "solution-ranking"
        assert template.version == "v1"
        assert template.model_tier == "higher"
        for spec in TEMPLATES.values():
            assert "{context}" in spec.human_prompt

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            get_template("nope@v1")

    def test_escape(self):
        assert escape_json_for_template('{"a": 1}') == '{{"a": 1}}'
        assert escape_json_for_template("") == ""


class TestLLMDecisionOracle:
    def _oracle(self, *responses):
        oracle = LLMDecisionOracle(Config(), timeout_seconds=5)
        oracle._models["standard"] = FakeListChatModel(responses=list(responses))
        return oracle

    async def test_returns_json_object(self):
        oracle = self._oracle('{"candidates": [{"kind": "Deployment", "reason": "runs pods"}]}')
        context = {"intent": "run a web app", "catalog": [{"kind": "Deployment", "apiVersion": "apps/v1"}]}
        response = await oracle.ask(CANDIDATE_SELECTION, context)
        assert response["candidates"][0]["kind"] == "Deployment"

    async def test_invalid_json_is_malformed(self):
        oracle = self._oracle("I would pick a Deployment")
        with pytest.raises(OracleMalformedOutput):
            await oracle.ask(CANDIDATE_SELECTION, {"intent": "run a web app"})

    async def test_non_object_is_malformed(self):
        oracle = self._oracle('["Deployment"]')
        with pytest.raises(OracleMalformedOutput):
            await oracle.ask(CANDIDATE_SELECTION, {"intent": "run a web app"})

    async def test_missing_credentials(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        oracle = LLMDecisionOracle(Config({"LLM_PROVIDER": "openai"}), timeout_seconds=5)
        with pytest.raises(OracleUnavailable):
            await oracle.ask(CANDIDATE_SELECTION, {"intent": "run a web app"})
