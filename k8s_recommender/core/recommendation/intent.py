import re
from typing import List

from k8s_recommender.core.state.base import Intent
from k8s_recommender.utils.exceptions import IntentTooVague

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9._/-]*")

STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "can", "could", "do", "for",
    "from", "get", "give", "have", "help", "i", "if", "in", "into", "is", "it", "its",
    "just", "let", "like", "make", "me", "my", "need", "of", "on", "or", "our", "please",
    "set", "so", "some", "something", "that", "the", "their", "them", "then", "there",
    "this", "to", "up", "us", "use", "want", "we", "what", "with", "would", "you", "your",
    "stuff", "thing", "things", "anything",
})


def normalize_intent(text: str) -> str:
    return " ".join((text or "").lower().split())


def meaningful_tokens(normalized: str) -> List[str]:
    return [t for t in _TOKEN_RE.findall(normalized) if t not in STOPWORDS]


def parse_intent(text: str, min_meaningful_words: int = 2) -> Intent:
    """
    Validate an operator intent.

    Raises:
        IntentTooVague: If the intent is empty or has fewer than
            ``min_meaningful_words`` non-stopword tokens
    """
    normalized = normalize_intent(text)
    if not normalized:
        raise IntentTooVague(text or "", "the intent is empty")
    tokens = meaningful_tokens(normalized)
    if len(tokens) < min_meaningful_words:
        raise IntentTooVague(
            text,
            f"found {len(tokens)} meaningful word(s), at least {min_meaningful_words} required",
        )
    return Intent(raw=text, normalized=normalized, tokens=tokens, valid=True)
