"""
Versioned prompt templates of the decision oracle.

A template id (``name@vN``) pins the prompts and the output model of one
oracle call site. Changing a prompt in a way that changes its output
contract means registering a new version.
"""

from dataclasses import dataclass
from typing import Dict, Literal, Type

from pydantic import BaseModel

from .prompts import (
    CANDIDATE_SELECTION_HUMAN_PROMPT,
    CANDIDATE_SELECTION_SYSTEM_PROMPT,
    QUESTION_DERIVATION_HUMAN_PROMPT,
    QUESTION_DERIVATION_SYSTEM_PROMPT,
    SOLUTION_ENHANCEMENT_HUMAN_PROMPT,
    SOLUTION_ENHANCEMENT_SYSTEM_PROMPT,
    SOLUTION_RANKING_HUMAN_PROMPT,
    SOLUTION_RANKING_SYSTEM_PROMPT,
)
from .proposals import (
    CandidateSelectionOutput,
    QuestionDerivationOutput,
    SolutionEnhancementOutput,
    SolutionRankingOutput,
)

CANDIDATE_SELECTION = "candidate-selection@v1"
SOLUTION_RANKING = "solution-ranking@v1"
QUESTION_DERIVATION = "question-derivation@v1"
SOLUTION_ENHANCEMENT = "solution-enhancement@v1"


@dataclass(frozen=True)
class PromptTemplateSpec:
    template_id: str
    system_prompt: str
    human_prompt: str
    output_model: Type[BaseModel]
    model_tier: Literal["standard", "higher"] = "standard"

    @property
    def name(self) -> str:
        return self.template_id.split("@", 1)[0]

    @property
    def version(self) -> str:
        return self.template_id.split("@", 1)[1] if "@" in self.template_id else "v1"


TEMPLATES: Dict[str, PromptTemplateSpec] = {
    spec.template_id: spec
    for spec in (
        PromptTemplateSpec(
            CANDIDATE_SELECTION,
            CANDIDATE_SELECTION_SYSTEM_PROMPT,
            CANDIDATE_SELECTION_HUMAN_PROMPT,
            CandidateSelectionOutput,
        ),
        PromptTemplateSpec(
            SOLUTION_RANKING,
            SOLUTION_RANKING_SYSTEM_PROMPT,
            SOLUTION_RANKING_HUMAN_PROMPT,
            SolutionRankingOutput,
            model_tier="higher",
        ),
        PromptTemplateSpec(
            QUESTION_DERIVATION,
            QUESTION_DERIVATION_SYSTEM_PROMPT,
            QUESTION_DERIVATION_HUMAN_PROMPT,
            QuestionDerivationOutput,
        ),
        PromptTemplateSpec(
            SOLUTION_ENHANCEMENT,
            SOLUTION_ENHANCEMENT_SYSTEM_PROMPT,
            SOLUTION_ENHANCEMENT_HUMAN_PROMPT,
            SolutionEnhancementOutput,
            model_tier="higher",
        ),
    )
}


def get_template(template_id: str) -> PromptTemplateSpec:
    try:
        return TEMPLATES[template_id]
    except KeyError:
        raise KeyError(f"Unknown oracle template: {template_id}") from None
