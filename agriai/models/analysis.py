"""Content-analysis models produced by :class:`IContentAnalyzer` implementations."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Sentiment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = 0.0
    label: str = Field(default="neutral", description="positive, negative or neutral.")


class Topic(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    confidence: float = Field(ge=0.0, le=1.0)


class ExtractedEntity(BaseModel):
    """A named entity found in text, by pattern or by the LLM."""

    model_config = ConfigDict(frozen=True)

    text: str
    type: str
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)


class DocumentAnalysis(BaseModel):
    """Heuristic analysis of a whole document."""

    model_config = ConfigDict(frozen=True)

    language: str = "it"
    sentiment: Sentiment = Field(default_factory=Sentiment)
    readability: float = Field(default=0.0, ge=0.0, le=100.0)
    complexity: float = Field(default=0.0, ge=0.0, le=10.0)
    keywords: list[str] = Field(default_factory=list)
    summary: str = ""
    topics: list[Topic] = Field(default_factory=list)
    entities: list[ExtractedEntity] = Field(default_factory=list)
    confidence_score: float = Field(default=0.8, ge=0.0, le=1.0)
    processing_model: str = "agriai-heuristic-v1"
