"""
Decision oracle: the external judgment service behind selection, ranking,
question derivation and enhancement.

The pipeline depends only on ``DecisionOracle``. ``LLMDecisionOracle``
implements it with a LangChain chain per template; every failure mode is
mapped onto the ``OracleError`` family so call sites can retry uniformly.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.runnables import Runnable
from toon import encode

from k8s_recommender.config.config import Config
from k8s_recommender.core.llm.llm_provider import LLMProvider
from k8s_recommender.utils.exceptions import (
    LLMConfigurationError,
    OracleMalformedOutput,
    OracleTimeout,
    OracleUnavailable,
    UnsupportedProviderError,
)
from k8s_recommender.utils.logger import AgentLogger

from .templates import PromptTemplateSpec, get_template

oracle_logger = AgentLogger("K8S_RECOMMENDER_ORACLE")


class DecisionOracle(ABC):
    """Stateless request/response judgment service."""

    @abstractmethod
    async def ask(self, template_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Render ``template_id`` with ``context`` and return the decoded response.

        Raises:
            OracleTimeout, OracleMalformedOutput, OracleUnavailable
        """
        pass


def escape_json_for_template(text: str) -> str:
    """Escape curly braces so rendered context is literal inside a prompt template."""
    if not text:
        return ''
    return text.replace('{', '{{').replace('}', '}}')


class LLMDecisionOracle(DecisionOracle):
    """
    ``DecisionOracle`` backed by a LangChain chat model.

    Each call builds ``ChatPromptTemplate | model | JsonOutputParser`` from the
    registered template. Context is TOON-encoded to keep catalog-sized
    prompts compact. Templates marked ``higher`` use the higher-tier model.
    """

    def __init__(self, config: Optional[Config] = None, timeout_seconds: Optional[float] = None) -> None:
        self.config = config or Config()
        self.timeout_seconds = float(timeout_seconds or self.config.ORACLE_TIMEOUT_SECONDS)
        self._models: Dict[str, Runnable] = {}

    def _model(self, tier: str) -> Runnable:
        if tier not in self._models:
            llm_config = self.config.get_llm_higher_config() if tier == "higher" else self.config.get_llm_config()
            oracle_logger.log_structured(
                level="INFO",
                message="Using LLM configuration for decision oracle",
                extra={
                    "model_tier": tier,
                    "llm_provider": llm_config.get('provider'),
                    "llm_model": llm_config.get('model'),
                    "llm_temperature": llm_config.get('temperature'),
                    "llm_max_tokens": llm_config.get('max_tokens'),
                },
            )
            self._models[tier] = LLMProvider.create_from_config(llm_config, timeout=int(self.timeout_seconds))
        return self._models[tier]

    def build_chain(self, template: PromptTemplateSpec, context: Dict[str, Any]) -> Runnable:
        parser = JsonOutputParser(pydantic_object=template.output_model)
        formatted_user_query = template.human_prompt.format(
            context=escape_json_for_template(encode(context))
        )
        prompt = ChatPromptTemplate.from_messages([
            ("system", escape_json_for_template(template.system_prompt)),
            ("user", formatted_user_query),
            ("user", "Respond with a single JSON object only:\n{format_instructions}"),
        ]).partial(format_instructions=parser.get_format_instructions())
        return prompt | self._model(template.model_tier) | parser

    async def ask(self, template_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        template = get_template(template_id)
        try:
            chain = self.build_chain(template, context)
        except (LLMConfigurationError, UnsupportedProviderError) as e:
            raise OracleUnavailable(f"LLM is not configured: {e}", template_id) from e

        oracle_logger.log_structured(
            level="DEBUG",
            message="Asking decision oracle",
            extra={"template_id": template_id, "model_tier": template.model_tier},
        )
        try:
            response = await asyncio.wait_for(chain.ainvoke({}), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise OracleTimeout(f"No response within {self.timeout_seconds}s", template_id) from e
        except OutputParserException as e:
            raise OracleMalformedOutput(f"Response is not valid JSON: {e}", template_id, getattr(e, "llm_output", None)) from e
        except Exception as e:
            raise OracleUnavailable(f"{type(e).__name__}: {e}", template_id) from e

        if not isinstance(response, dict):
            raise OracleMalformedOutput("Response is not a JSON object", template_id, response)
        oracle_logger.log_structured(
            level="DEBUG",
            message="Decision oracle responded",
            extra={"template_id": template_id, "keys": sorted(response)},
        )
        return response
