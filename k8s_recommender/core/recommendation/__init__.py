from .intent import parse_intent
from .candidate_selector import CandidateSelector, CandidateSelection
from .solution_ranker import SolutionRanker, ScoringPolicy
from .question_engine import QuestionEngine, coerce_answer
from .solution_enhancer import SolutionEnhancer
from .manifest import render_manifests, set_path

__all__ = [
    "parse_intent",
    "CandidateSelector",
    "CandidateSelection",
    "SolutionRanker",
    "ScoringPolicy",
    "QuestionEngine",
    "coerce_answer",
    "SolutionEnhancer",
    "render_manifests",
    "set_path",
]
