"""Abstract base class for document content analysis.

The shipped implementation is keyword and pattern based.  A model-backed
analyzer can replace it without touching the document processor or the
chunker, which only see this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from agriai.models.analysis import DocumentAnalysis, Sentiment


# Concrete implementations:
#   HeuristicContentAnalyzer -- stopword/keyword/pattern heuristics
# Located in: agriai/services/ingestion/content_analyzer.py
class IContentAnalyzer(ABC):
    """Contract for language, sentiment, keyword and topic analysis."""

    @abstractmethod
    def analyze(self, text: str) -> DocumentAnalysis:
        """Run every analysis over *text*."""

    @abstractmethod
    def detect_language(self, text: str) -> str:
        """Return an ISO 639-1 code (``"it"`` or ``"en"`` for the heuristics)."""

    @abstractmethod
    def extract_keywords(self, text: str, limit: int = 10) -> list[str]:
        """Return up to *limit* keywords, most salient first."""

    @abstractmethod
    def analyze_sentiment(self, text: str) -> Sentiment:
        """Return a polarity score and label for *text*."""
