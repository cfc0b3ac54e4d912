"""Heuristic content analysis.

Keyword-list and pattern based analysis of Italian/English agricultural
text.  These heuristics are intentionally simple placeholders behind
:class:`~agriai.interfaces.content_analyzer.IContentAnalyzer`; a model-backed
analyzer can replace this class without any change to the processor.

All methods are synchronous, deterministic and CPU-bound.
"""

from __future__ import annotations

import re
from collections import Counter

import structlog

from agriai.interfaces.content_analyzer import IContentAnalyzer
from agriai.models.analysis import DocumentAnalysis, ExtractedEntity, Sentiment, Topic
from agriai.utils.text import split_sentences, tokenize_words

logger = structlog.get_logger(logger_name=__name__)

# Stopword vocabularies compared for language detection.
_LANGUAGE_MARKERS: dict[str, frozenset[str]] = {
    "it": frozenset({"il", "la", "di", "che", "e", "un", "a", "per", "non", "con"}),
    "en": frozenset({"the", "be", "to", "of", "and", "a", "in", "that", "have", "for"}),
}

# Dropped before keyword counting, in addition to short words.
_STOPWORDS = frozenset(
    {
        # it
        "alla", "alle", "allo", "anche", "come", "con", "degli", "dalla", "dalle",
        "della", "delle", "dello", "dopo", "essere", "loro", "nella", "nelle",
        "nello", "ogni", "perché", "questa", "queste", "questi", "questo",
        "sono", "sulla", "sulle", "tutti", "tutto", "ancora", "hanno", "quale",
        "quali", "quando", "molto", "fino", "senza", "presso", "secondo",
        # en
        "about", "after", "also", "been", "before", "being", "from", "have",
        "into", "more", "most", "only", "other", "over", "such", "than", "that",
        "their", "them", "then", "there", "these", "they", "this", "those",
        "under", "very", "were", "what", "when", "where", "which", "while",
        "will", "with", "would", "your",
    }
)

_POSITIVE_WORDS = frozenset(
    {"buono", "ottimo", "eccellente", "positivo", "successo",
     "good", "excellent", "positive", "success", "great"}
)
_NEGATIVE_WORDS = frozenset(
    {"cattivo", "pessimo", "negativo", "fallimento", "problema",
     "bad", "poor", "negative", "failure", "problem"}
)

_TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Agricoltura": ("agricoltura", "coltivazione", "campo"),
    "Politiche Agricole": ("pac", "politica", "europea"),
    "Sostenibilità": ("biologico", "sostenibile", "ambiente"),
    "Tecnologia": ("tecnologia", "digitale", "iot"),
}

_ENTITY_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("PERSON", re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b")),
    ("DATE", re.compile(r"\b\d{4}\b")),
    ("ORGANIZATION", re.compile(r"\b[A-Z]{2,}\b")),
)

_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_SENTENCE_RE = re.compile(r"[.!?]+")

_ENTITY_CONFIDENCE = 0.7
_MAX_ENTITIES = 10
_MAX_TOPICS = 5
_TOPIC_THRESHOLD = 0.1
_LANGUAGE_SAMPLE_WORDS = 100


class HeuristicContentAnalyzer(IContentAnalyzer):
    """Stopword, polarity-word, keyword-list and regex based analysis."""

    def analyze(self, text: str) -> DocumentAnalysis:
        analysis = DocumentAnalysis(
            language=self.detect_language(text),
            sentiment=self.analyze_sentiment(text),
            readability=self.readability(text),
            complexity=self.complexity(text),
            keywords=self.extract_keywords(text, limit=10),
            summary=self.summarize(text),
            topics=self.extract_topics(text),
            entities=self.extract_entities(text),
        )
        logger.debug(
            "content_analyzed",
            language=analysis.language,
            keywords=len(analysis.keywords),
            topics=len(analysis.topics),
        )
        return analysis

    def detect_language(self, text: str) -> str:
        """Compare stopword hits in the first 100 words; Italian must win outright."""
        words = [w.lower() for w in tokenize_words(text)[:_LANGUAGE_SAMPLE_WORDS]]
        it_hits = sum(1 for w in words if w in _LANGUAGE_MARKERS["it"])
        en_hits = sum(1 for w in words if w in _LANGUAGE_MARKERS["en"])
        return "it" if it_hits > en_hits else "en"

    def extract_keywords(self, text: str, limit: int = 10) -> list[str]:
        cleaned = _PUNCTUATION_RE.sub(" ", text.lower())
        words = [w for w in cleaned.split() if len(w) > 3 and w not in _STOPWORDS]
        return [word for word, _ in Counter(words).most_common(limit)]

    def analyze_sentiment(self, text: str) -> Sentiment:
        words = [w.lower() for w in tokenize_words(text)]
        if not words:
            return Sentiment()
        positive = sum(1 for w in words if w in _POSITIVE_WORDS)
        negative = sum(1 for w in words if w in _NEGATIVE_WORDS)
        score = (positive - negative) / len(words)
        if score > 0.1:
            label = "positive"
        elif score < -0.1:
            label = "negative"
        else:
            label = "neutral"
        return Sentiment(score=score, label=label)

    def readability(self, text: str) -> float:
        """Flesch-style reading ease clamped to [0, 100]."""
        sentences = [s for s in _SENTENCE_RE.split(text) if s.strip()]
        words = text.split()
        if not sentences or not words:
            return 0.0
        characters = len(re.sub(r"\s", "", text))
        words_per_sentence = len(words) / len(sentences)
        chars_per_word = characters / len(words)
        score = 206.835 - 1.015 * words_per_sentence - 84.6 * (chars_per_word / 5)
        return max(0.0, min(100.0, score))

    def complexity(self, text: str) -> float:
        words = [w.lower() for w in text.split()]
        if not words:
            return 0.0
        return min(10.0, len(set(words)) / len(words) * 10)

    def summarize(self, text: str, sentences: int = 3) -> str:
        picked = [s for s in split_sentences(text) if len(s) > 10][:sentences]
        return " ".join(picked)

    def extract_entities(self, text: str) -> list[ExtractedEntity]:
        entities: list[ExtractedEntity] = []
        for entity_type, pattern in _ENTITY_PATTERNS:
            for match in pattern.findall(text):
                entities.append(
                    ExtractedEntity(text=match, type=entity_type, confidence=_ENTITY_CONFIDENCE)
                )
        return entities[:_MAX_ENTITIES]

    def extract_topics(self, text: str) -> list[Topic]:
        lowered = text.lower()
        word_count = len(text.split())
        if word_count == 0:
            return []
        counts = Counter(tokenize_words(lowered))
        topics: list[Topic] = []
        for name, keywords in _TOPIC_KEYWORDS.items():
            hits = sum(counts[k] for k in keywords)
            confidence = min(1.0, hits / word_count * 100)
            if confidence > _TOPIC_THRESHOLD:
                topics.append(Topic(name=name, confidence=confidence))
        topics.sort(key=lambda t: t.confidence, reverse=True)
        return topics[:_MAX_TOPICS]
