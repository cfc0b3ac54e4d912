"""Confidence scoring for generated answers.

Two operations:

1. **calculate_answer_confidence** -- the weighted blend applied to every
   grounded RAG answer (base, source relevance, intent confidence, and two
   well-formedness bonuses), clamped to ``[0.1, 0.95]``.
2. **confidence_to_level** -- maps a numeric score to a human-readable tier
   for API responses and logs.
"""

from enum import Enum

BASE_CONFIDENCE = 0.5
RELEVANCE_WEIGHT = 0.3
INTENT_WEIGHT = 0.2
LENGTH_BONUS = 0.1
CITATION_BONUS = 0.1
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95

# Response lengths (exclusive) considered well formed.
WELL_FORMED_LENGTH = (100, 2000)

CITATION_MARKERS = ("[SOURCE", "[FONTE")


class ConfidenceLevel(Enum):
    """Human-readable confidence tiers."""

    VERY_LOW = "very_low"    # < 0.2
    LOW = "low"              # 0.2 - 0.4
    MEDIUM = "medium"        # 0.4 - 0.6
    HIGH = "high"            # 0.6 - 0.8
    VERY_HIGH = "very_high"  # >= 0.8


def clamp_confidence(score: float) -> float:
    """Clamp *score* into the answer confidence range."""
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, score))


def cites_source(content: str) -> bool:
    """Return ``True`` when *content* carries at least one source marker."""
    return any(marker in content for marker in CITATION_MARKERS)


def calculate_answer_confidence(
    relevance_scores: list[float],
    intent_confidence: float,
    content: str,
) -> float:
    """Blend retrieval, intent and response-shape signals into one score.

    Args:
        relevance_scores: Relevance of every source used for the answer.
            An empty list contributes nothing.
        intent_confidence: Confidence of the intent classification, in [0, 1].
        content: The generated answer text.

    Returns:
        Confidence clamped to ``[0.1, 0.95]``.
    """
    score = BASE_CONFIDENCE

    if relevance_scores:
        avg_relevance = sum(relevance_scores) / len(relevance_scores)
        score += avg_relevance * RELEVANCE_WEIGHT

    score += intent_confidence * INTENT_WEIGHT

    low, high = WELL_FORMED_LENGTH
    if low < len(content) < high:
        score += LENGTH_BONUS

    if cites_source(content):
        score += CITATION_BONUS

    return clamp_confidence(score)


def confidence_to_level(score: float) -> ConfidenceLevel:
    """Map a numeric confidence score to a human-readable level.

    Args:
        score: Confidence score in [0.0, 1.0].

    Returns:
        Corresponding ConfidenceLevel enum member.
    """
    if score < 0.2:
        return ConfidenceLevel.VERY_LOW
    if score < 0.4:
        return ConfidenceLevel.LOW
    if score < 0.6:
        return ConfidenceLevel.MEDIUM
    if score < 0.8:
        return ConfidenceLevel.HIGH
    return ConfidenceLevel.VERY_HIGH
