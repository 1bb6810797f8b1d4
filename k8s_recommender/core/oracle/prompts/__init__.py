from .candidate_selection_prompts import (
    CANDIDATE_SELECTION_SYSTEM_PROMPT,
    CANDIDATE_SELECTION_HUMAN_PROMPT
)
from .solution_ranking_prompts import (
    SOLUTION_RANKING_SYSTEM_PROMPT,
    SOLUTION_RANKING_HUMAN_PROMPT
)
from .question_derivation_prompts import (
    QUESTION_DERIVATION_SYSTEM_PROMPT,
    QUESTION_DERIVATION_HUMAN_PROMPT
)
from .solution_enhancement_prompts import (
    SOLUTION_ENHANCEMENT_SYSTEM_PROMPT,
    SOLUTION_ENHANCEMENT_HUMAN_PROMPT
)

__all__ = [
    "CANDIDATE_SELECTION_SYSTEM_PROMPT",
    "CANDIDATE_SELECTION_HUMAN_PROMPT",
    "SOLUTION_RANKING_SYSTEM_PROMPT",
    "SOLUTION_RANKING_HUMAN_PROMPT",
    "QUESTION_DERIVATION_SYSTEM_PROMPT",
    "QUESTION_DERIVATION_HUMAN_PROMPT",
    "SOLUTION_ENHANCEMENT_SYSTEM_PROMPT",
    "SOLUTION_ENHANCEMENT_HUMAN_PROMPT",
]
