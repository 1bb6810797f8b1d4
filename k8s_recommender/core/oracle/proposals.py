"""
Shapes the decision oracle is asked to produce.

These models describe the oracle's raw proposals. They are validated one
item at a time at the decoding boundary and never reach a Session as-is:
every stage re-checks them against the capability index.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

# ============================================================================
# Candidate selection
# ============================================================================

class CandidateProposal(BaseModel):
    """A resource kind the oracle considers relevant to the intent."""
    kind: str = Field(..., min_length=1, description="Resource kind exactly as listed in the catalog, e.g. Deployment")
    api_version: Optional[str] = Field(
        None,
        description="apiVersion from the catalog (e.g. apps/v1) when several kinds share the name",
    )
    reason: str = Field("", description="One sentence on why this kind is relevant")


class CandidateSelectionOutput(BaseModel):
    candidates: List[CandidateProposal] = Field(
        default_factory=list,
        description="Relevant resource kinds, most relevant first",
    )


# ============================================================================
# Solution ranking
# ============================================================================

class ResourceReference(BaseModel):
    kind: str = Field(..., min_length=1, description="Resource kind from the candidate list")
    api_version: Optional[str] = Field(None, description="apiVersion from the candidate list")


class ProposedOpenQuestion(BaseModel):
    resource_index: int = Field(..., ge=0, description="Position of the resource within the solution")
    field_path: str = Field(..., min_length=1, description="Dotted field path, e.g. spec.template.spec.containers[0].image")
    reason: str = Field("", description="Why the user must decide this value")


class ProposedAssignment(BaseModel):
    resource_index: int = Field(..., ge=0, description="Position of the resource within the solution")
    field_path: str = Field(..., min_length=1, description="Dotted field path to set")
    value: Any = Field(..., description="Value to assign (string, number, boolean, list or object)")


class ProposedSolution(BaseModel):
    resources: List[ResourceReference] = Field(..., min_length=1, description="Resources that together satisfy the intent, primary first")
    rationale: str = Field("", description="Why this combination satisfies the intent")
    score: float = Field(..., description="Fitness for the intent between 0 and 1")
    open_questions: List[ProposedOpenQuestion] = Field(default_factory=list)
    assignments: List[ProposedAssignment] = Field(default_factory=list)

    @field_validator("score")
    @classmethod
    def score_in_unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("score must be between 0 and 1")
        return value


class SolutionRankingOutput(BaseModel):
    solutions: List[ProposedSolution] = Field(default_factory=list)


# ============================================================================
# Question derivation
# ============================================================================

class ProposedCondition(BaseModel):
    question_id: str = Field(..., min_length=1, description="Id of the question this one depends on")
    equals: Any = Field(..., description="Answer value of that question for which this question applies")


class ProposedQuestion(BaseModel):
    resource_index: int = Field(..., ge=0)
    field_path: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1, description="Question text shown to the user")
    category: Literal["required", "basic", "advanced"] = Field("basic")
    depends_on: List[str] = Field(default_factory=list, description="Ids of questions that must be answered first")
    applies_when: Optional[ProposedCondition] = Field(None, description="Ask only when a dependency has this answer")


class QuestionDerivationOutput(BaseModel):
    questions: List[ProposedQuestion] = Field(default_factory=list)


# ============================================================================
# Solution enhancement
# ============================================================================

class SolutionEnhancementOutput(BaseModel):
    assignments: List[ProposedAssignment] = Field(default_factory=list)
