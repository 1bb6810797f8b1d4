from .decision_oracle import DecisionOracle, LLMDecisionOracle
from .decoding import DecodedProposal, decode_items
from .retry import RetryPolicy, ask_with_retry
from .templates import (
    CANDIDATE_SELECTION,
    SOLUTION_RANKING,
    QUESTION_DERIVATION,
    SOLUTION_ENHANCEMENT,
    TEMPLATES,
    get_template
)

__all__ = [
    "DecisionOracle",
    "LLMDecisionOracle",
    "DecodedProposal",
    "decode_items",
    "RetryPolicy",
    "ask_with_retry",
    "CANDIDATE_SELECTION",
    "SOLUTION_RANKING",
    "QUESTION_DERIVATION",
    "SOLUTION_ENHANCEMENT",
    "TEMPLATES",
    "get_template",
]
