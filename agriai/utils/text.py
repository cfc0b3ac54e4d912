"""Lexical helpers shared by chunking, semantic search and the RAG service.

Three concerns live here:

1. **Tokenising** -- a single word regex used for word counts, token counts
   and lexical overlap, so every stage agrees on what a "word" is.
2. **Overlap scoring** -- Jaccard set similarity over significant words,
   the relevance measure used by query-time retrieval.
3. **Relevant spans** -- picking the best sentence(s) or character window of
   a longer text for a query, and the short context window shown next to a
   search hit.
"""

from __future__ import annotations

import re

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


def tokenize_words(text: str) -> list[str]:
    """Return the word tokens of *text* in order."""
    return _WORD_RE.findall(text)


def count_words(text: str) -> int:
    return len(tokenize_words(text))


def significant_words(text: str, min_length: int = 3) -> set[str]:
    """Lowercased words of at least *min_length* characters."""
    return {w.lower() for w in tokenize_words(text) if len(w) >= min_length}


def jaccard_similarity(a: str, b: str) -> float:
    """Jaccard overlap of the significant-word sets of *a* and *b*."""
    words_a = significant_words(a)
    words_b = significant_words(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def split_sentences(text: str) -> list[str]:
    """Naive sentence split on terminal punctuation; empty pieces dropped."""
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def sliding_windows(text: str, size: int = 1000, overlap: int = 200) -> list[str]:
    """Cut *text* into character windows of *size* sharing *overlap* characters."""
    if len(text) <= size:
        return [text]
    step = max(1, size - overlap)
    windows: list[str] = []
    for start in range(0, len(text), step):
        windows.append(text[start:start + size])
        if start + size >= len(text):
            break
    return windows


def best_window(query: str, text: str, size: int = 1000, overlap: int = 200,
                max_chars: int = 500) -> str:
    """Return the window of *text* with the highest overlap to *query*.

    The winning window is truncated to *max_chars* characters with a
    trailing ``...`` when it is longer.
    """
    if not text:
        return ""
    windows = sliding_windows(text, size, overlap)
    best = max(windows, key=lambda w: jaccard_similarity(query, w))
    if len(best) > max_chars:
        return best[:max_chars] + "..."
    return best


def most_relevant_section(text: str, query: str) -> str:
    """Return the sentence, or adjacent sentence pair, overlapping *query* most.

    Falls back to the first sentence when nothing overlaps.
    """
    sentences = split_sentences(text)
    if not sentences:
        return text.strip()

    candidates = list(sentences)
    candidates.extend(
        f"{sentences[i]} {sentences[i + 1]}" for i in range(len(sentences) - 1)
    )
    query_words = significant_words(query)

    def _score(candidate: str) -> tuple[int, float]:
        words = significant_words(candidate)
        return len(words & query_words), jaccard_similarity(query, candidate)

    best = max(candidates, key=_score)
    if _score(best)[0] == 0:
        return sentences[0]
    return best


def context_window(text: str, query: str, radius: int = 20) -> str:
    """Return ``radius`` words either side of the first query-word hit.

    Without a hit, the first 200 characters followed by ``...``.
    """
    words = text.split()
    query_words = significant_words(query)
    for index, word in enumerate(words):
        if significant_words(word) & query_words:
            start = max(0, index - radius)
            end = min(len(words), index + radius + 1)
            return " ".join(words[start:end])
    return text[:200] + "..."
