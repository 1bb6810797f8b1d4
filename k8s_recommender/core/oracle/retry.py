"""Retry with exponential backoff around decision oracle calls."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from k8s_recommender.config.config import Config
from k8s_recommender.utils.exceptions import OracleError, OracleRetryExhausted
from k8s_recommender.utils.logger import AgentLogger

from .decision_oracle import DecisionOracle

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 8.0

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "RetryPolicy":
        retry = (config or Config()).oracle_retry_config
        return cls(
            max_attempts=max(1, int(retry["max_attempts"])),
            backoff_base_seconds=float(retry["backoff_base_seconds"]),
            backoff_max_seconds=float(retry["backoff_max_seconds"]),
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.backoff_base_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)


async def ask_with_retry(
    oracle: DecisionOracle,
    template_id: str,
    context: Dict[str, Any],
    policy: RetryPolicy,
    decode: Callable[[Any], T],
    logger: AgentLogger,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Ask the oracle and decode its answer, retrying transient failures.

    Decoding runs inside the retry loop so a malformed response is retried
    like a timeout.

    Raises:
        OracleRetryExhausted: After ``policy.max_attempts`` failed attempts
    """
    last_error: Optional[OracleError] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            raw = await oracle.ask(template_id, context)
            return decode(raw)
        except OracleError as e:
            last_error = e
            logger.log_structured(
                level="WARNING",
                message=f"Oracle attempt {attempt}/{policy.max_attempts} failed: {e.message}",
                extra={"template_id": template_id, "error_type": type(e).__name__},
            )
            if attempt < policy.max_attempts:
                await sleep(policy.delay(attempt))

    logger.log_structured(
        level="ERROR",
        message="Oracle retry budget exhausted",
        extra={"template_id": template_id, "attempts": policy.max_attempts},
    )
    raise OracleRetryExhausted(template_id, policy.max_attempts, last_error)
