"""Retrieval-augmented answering for agricultural questions.

Architecture overview
---------------------
Every question goes through the same five steps:

  1. INTENT      -- One low-temperature LLM call classifies the question
                    into a fixed taxonomy (policy, certification, ...).
  2. ENTITIES    -- One LLM call extracts crops, diseases, regulations and
                    other domain entities as a JSON list.
  3. RETRIEVAL   -- Published documents visible to the caller's role are
                    scored by word overlap (Jaccard) with the question; the
                    best excerpt of each of the top matches becomes a source.
  4. GENERATION  -- The sources, the last few conversation turns and the
                    caller's context are assembled into a prompt that asks
                    for ``[SOURCE n]`` citations.
  5. CONFIDENCE  -- Source relevance, intent confidence and the shape of the
                    answer are blended into one score.

Degradation
-----------
Intent, entity and retrieval failures degrade (default intent, no entities,
no sources) and are listed in ``metadata["degraded_steps"]``.  When no
generation backend is configured, or generation itself fails, a templated
fallback answer is returned instead.  :meth:`RAGService.answer` never
raises.
"""

from __future__ import annotations

import asyncio
import json
import random
import re
from typing import Any

import structlog

from agriai.interfaces.content_analyzer import IContentAnalyzer
from agriai.interfaces.document_store import IDocumentStore
from agriai.interfaces.llm_provider import ILLMProvider
from agriai.models.analysis import ExtractedEntity
from agriai.models.document import access_levels_for_role
from agriai.models.rag import (
    ConversationTurn,
    IntentResult,
    QueryContext,
    RAGResponse,
    RetrievedSource,
)
from agriai.utils.confidence import calculate_answer_confidence, confidence_to_level
from agriai.utils.errors import GenerationUnavailableError, RetrievalDegradedError
from agriai.utils.logging import get_logger
from agriai.utils.text import best_window, jaccard_similarity
from agriai.utils.tokens import count_tokens

logger: structlog.BoundLogger = get_logger(__name__)

INTENT_CATEGORIES = (
    "policy",
    "certification",
    "technology",
    "funding",
    "cultivation",
    "weather",
    "general",
)

# Labels of the Italian taxonomy the classifier may still answer with.
_ITALIAN_INTENTS = {
    "normative_pac": "policy",
    "normative": "policy",
    "certificazioni": "certification",
    "tecnologie": "technology",
    "finanziamenti": "funding",
    "coltivazione": "cultivation",
    "meteo": "weather",
    "generale": "general",
}

ENTITY_TYPES = frozenset(
    {"CROP", "DISEASE", "REGULATION", "LOCATION", "TECHNOLOGY", "CERTIFICATION"}
)
_ITALIAN_ENTITY_TYPES = {
    "COLTURA": "CROP",
    "MALATTIA": "DISEASE",
    "NORMATIVA": "REGULATION",
    "TECNOLOGIA": "TECHNOLOGY",
    "CERTIFICAZIONE": "CERTIFICATION",
}

RECOGNISED_INTENT_CONFIDENCE = 0.8
DEFAULT_INTENT = IntentResult(category="general", confidence=0.3)

_CANDIDATE_LIMIT = 20
_WINDOW_SIZE = 1000
_WINDOW_OVERLAP = 200
_EXCERPT_CHARS = 500

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

_FALLBACK_TEMPLATES = (
    "Ciao! Sono AgriAI, il tuo assistente agricolo. Hai chiesto: \"{query}\".\n\n"
    "Al momento non riesco a consultare la base documentale, ma posso comunque "
    "darti indicazioni generali su agricoltura sostenibile, normative e buone pratiche.",
    "Grazie per la tua domanda: \"{query}\".\n\n"
    "Il sistema di generazione delle risposte non è disponibile in questo momento. "
    "Riprova tra poco per una risposta basata sui documenti della knowledge base.",
    "Hai chiesto: \"{query}\".\n\n"
    "Sono AgriAI. L'elaborazione avanzata non è attiva, quindi per ora posso "
    "offrirti solo informazioni generali su agricoltura, sostenibilità e normative.",
)


class RAGService:
    """Answers questions from the published document corpus.

    Parameters
    ----------
    store:
        Read access to published documents.
    llm:
        Chat-completion backend.  ``None`` (or an unavailable provider)
        means every answer is a fallback.
    analyzer:
        Supplies the question's language and sentiment.
    top_k:
        Maximum number of sources per answer.
    min_relevance:
        Sources must score strictly above this.
    history_turns:
        How many previous conversation turns go into the prompt.
    fallback_confidence:
        Confidence reported on fallback answers.
    request_timeout:
        Upper bound in seconds for each LLM call.
    """

    _SYSTEM_PROMPT = (
        "You are AgriAI, an assistant specialised in Italian agriculture, answering "
        "with retrieval-augmented generation.\n\n"
        "USER CONTEXT:\n"
        "- Role: {role}\n"
        "- Location: {location}\n"
        "- Farm type: {farm_type}\n"
        "- Expertise: {expertise}\n\n"
        "DETECTED INTENT: {intent}\n"
        "EXTRACTED ENTITIES: {entities}\n\n"
        "INSTRUCTIONS:\n"
        "- Answer ONLY from the retrieved context below.\n"
        "- If the context is not enough, say which information is missing.\n"
        "- Cite sources with the [SOURCE n] format.\n"
        "- Combine information from several sources when possible.\n"
        "- Give practical advice where you can and flag any uncertainty.\n"
        "- Answer in the language of the question."
    )

    _INTENT_PROMPT = (
        "You classify questions for an agricultural assistant. Reply with exactly one "
        "of these category names and nothing else:\n"
        "- policy: CAP/PAC rules, EU and national regulations\n"
        "- certification: organic, DOP, IGP certifications\n"
        "- technology: IoT, smart farming, machinery, innovation\n"
        "- funding: grants, PNRR, subsidies\n"
        "- cultivation: techniques, plant diseases, fertilisers\n"
        "- weather: forecasts, climate, irrigation\n"
        "- general: anything else"
    )

    _ENTITY_PROMPT = (
        "Extract the relevant entities from this agricultural text. Entity types: "
        "CROP, DISEASE, REGULATION, LOCATION, TECHNOLOGY, CERTIFICATION.\n"
        'Reply with JSON only: [{"text": "...", "type": "...", "confidence": 0.9}]'
    )

    def __init__(
        self,
        store: IDocumentStore,
        llm: ILLMProvider | None,
        analyzer: IContentAnalyzer,
        top_k: int = 5,
        min_relevance: float = 0.1,
        history_turns: int = 3,
        fallback_confidence: float = 0.3,
        request_timeout: float = 30.0,
    ) -> None:
        self._store = store
        self._llm = llm
        self._analyzer = analyzer
        self._top_k = top_k
        self._min_relevance = min_relevance
        self._history_turns = history_turns
        self._fallback_confidence = fallback_confidence
        self._timeout = request_timeout

    @property
    def generation_available(self) -> bool:
        return self._llm is not None and self._llm.is_available()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def answer(
        self,
        query: str,
        conversation_id: str | None = None,
        user_id: str | None = None,
        context: QueryContext | None = None,
        history: list[ConversationTurn] | None = None,
    ) -> RAGResponse:
        """Answer *query* for the caller described by *context*.

        Never raises: every failure yields either a degraded grounded answer
        or a fallback answer (``metadata["type"] == "fallback"``).
        """
        context = context or QueryContext()
        history = history or []
        log = logger.bind(conversation_id=conversation_id, user_id=user_id)

        if not self.generation_available:
            log.warning("rag_generation_not_configured")
            return self._fallback(query, "generation_backend_not_configured")

        try:
            return await self._answer(query, context, history, log)
        except GenerationUnavailableError as exc:
            log.warning("rag_generation_failed", error=str(exc))
            return self._fallback(query, "generation_failed")
        except Exception as exc:  # noqa: BLE001 - callers always get an answer
            log.error("rag_internal_error", error=str(exc), error_type=type(exc).__name__)
            return self._fallback(query, "internal_error")

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _answer(
        self,
        query: str,
        context: QueryContext,
        history: list[ConversationTurn],
        log: structlog.BoundLogger,
    ) -> RAGResponse:
        degraded: list[str] = []

        intent = await self.classify_intent(query)
        if intent == DEFAULT_INTENT:
            degraded.append("intent_extraction")

        entities = await self._extract_entities(query)
        if entities is None:
            degraded.append("entity_extraction")
            entities = []

        try:
            sources = await self.retrieve(query, context.user_type)
        except RetrievalDegradedError as exc:
            log.warning("rag_retrieval_degraded", error=str(exc))
            degraded.append("retrieval")
            sources = []

        system_prompt, user_prompt = self.build_prompt(
            query, sources, context, history, intent, entities
        )
        content = await self._generate(system_prompt, user_prompt)

        scores = [s.relevance_score for s in sources]
        confidence = calculate_answer_confidence(scores, intent.confidence, content)

        log.info(
            "rag_answer_generated",
            intent=intent.category,
            sources=len(sources),
            confidence=round(confidence, 3),
            degraded=degraded,
        )
        return RAGResponse(
            content=content,
            confidence=confidence,
            sources=sources,
            tokens=count_tokens(content),
            model=self._llm.get_model_name(),
            intent=intent,
            entities=entities,
            language=self._analyzer.detect_language(query),
            sentiment=self._analyzer.analyze_sentiment(query),
            metadata={
                "type": "rag",
                "retrieval_results": len(sources),
                "retrieval_scores": scores,
                "processing_steps": [
                    "intent_extraction",
                    "entity_extraction",
                    "retrieval",
                    "generation",
                ],
                "degraded_steps": degraded,
                "confidence_level": confidence_to_level(confidence).value,
            },
        )

    async def classify_intent(self, query: str) -> IntentResult:
        """Classify *query*; any failure or unknown label gives the default intent."""
        try:
            raw = await self._complete(self._INTENT_PROMPT, query, temperature=0.1, max_tokens=50)
        except Exception as exc:  # noqa: BLE001 - intent is best effort
            logger.warning("rag_intent_failed", error=str(exc))
            return DEFAULT_INTENT

        label = raw.strip().strip(".").lower()
        label = _ITALIAN_INTENTS.get(label, label)
        if label not in INTENT_CATEGORIES:
            logger.debug("rag_intent_unrecognised", label=raw[:50])
            return DEFAULT_INTENT
        return IntentResult(category=label, confidence=RECOGNISED_INTENT_CONFIDENCE)

    async def extract_entities(self, query: str) -> list[ExtractedEntity]:
        """Extract domain entities; malformed output gives an empty list."""
        return await self._extract_entities(query) or []

    async def _extract_entities(self, query: str) -> list[ExtractedEntity] | None:
        """Like :meth:`extract_entities`, but ``None`` when the step failed."""
        try:
            raw = await self._complete(self._ENTITY_PROMPT, query, temperature=0.1, max_tokens=200)
        except Exception as exc:  # noqa: BLE001 - entities are best effort
            logger.warning("rag_entities_failed", error=str(exc))
            return None
        return _parse_entities(raw)

    async def retrieve(self, query: str, user_type: str | None) -> list[RetrievedSource]:
        """Score the caller's visible documents against *query*.

        Raises
        ------
        RetrievalDegradedError
            If the document store cannot be read.
        """
        try:
            documents = await self._store.list_published(
                access_levels_for_role(user_type), limit=_CANDIDATE_LIMIT
            )
        except Exception as exc:
            raise RetrievalDegradedError(
                message=f"Could not load candidate documents: {exc}",
                provider_name="retrieval",
            ) from exc

        scored = []
        for document in documents:
            text = document.extracted_text or ""
            score = jaccard_similarity(query, text)
            if score > self._min_relevance:
                scored.append((score, document))
        scored.sort(key=lambda pair: pair[0], reverse=True)

        return [
            RetrievedSource(
                document_id=document.id,
                title=document.title,
                content=best_window(
                    query,
                    document.extracted_text or "",
                    size=_WINDOW_SIZE,
                    overlap=_WINDOW_OVERLAP,
                    max_chars=_EXCERPT_CHARS,
                ),
                relevance_score=score,
                rank=rank,
                category_id=document.category_id,
            )
            for rank, (score, document) in enumerate(scored[: self._top_k], start=1)
        ]

    def build_prompt(
        self,
        query: str,
        sources: list[RetrievedSource],
        context: QueryContext,
        history: list[ConversationTurn],
        intent: IntentResult,
        entities: list[ExtractedEntity],
    ) -> tuple[str, str]:
        """Return the ``(system, user)`` message pair for generation."""
        system_prompt = self._SYSTEM_PROMPT.format(
            role=context.user_type or "public",
            location=context.location or "not specified",
            farm_type=context.farm_type or "not specified",
            expertise=context.expertise or "not specified",
            intent=intent.category,
            entities=", ".join(f"{e.text} ({e.type})" for e in entities) or "none",
        )

        parts: list[str] = []
        recent = history[-self._history_turns:] if self._history_turns > 0 else []
        if recent:
            lines = [
                f"{'User' if turn.role.upper() == 'USER' else 'AgriAI'}: {turn.content}"
                for turn in recent
            ]
            parts.append("CONVERSATION HISTORY:\n" + "\n".join(lines))

        if sources:
            context_block = "\n".join(
                f"[SOURCE {s.rank}] {s.title}\n{s.content}\n[RELEVANCE: {s.relevance_score:.3f}]\n"
                for s in sources
            )
        else:
            context_block = "No specific context was retrieved from the knowledge base."
        parts.append("RETRIEVED CONTEXT:\n" + context_block)
        parts.append(f"QUESTION: {query}\n\nANSWER:")

        return system_prompt, "\n\n".join(parts)

    # ------------------------------------------------------------------
    # LLM calls
    # ------------------------------------------------------------------

    async def _complete(
        self, system_prompt: str, user_prompt: str, temperature: float, max_tokens: int
    ) -> str:
        return await asyncio.wait_for(
            self._llm.complete(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                temperature=temperature,
                max_tokens=max_tokens,
            ),
            timeout=self._timeout,
        )

    async def _generate(self, system_prompt: str, user_prompt: str) -> str:
        try:
            content = await self._complete(system_prompt, user_prompt, temperature=0.2, max_tokens=1000)
        except Exception as exc:
            raise GenerationUnavailableError(
                message=f"Answer generation failed: {exc}",
                provider_name=self._llm.get_provider_name(),
            ) from exc
        if not content or not content.strip():
            raise GenerationUnavailableError(
                message="Answer generation returned no content",
                provider_name=self._llm.get_provider_name(),
            )
        return content.strip()

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    def _fallback(self, query: str, reason: str) -> RAGResponse:
        content = random.choice(_FALLBACK_TEMPLATES).format(query=query)
        return RAGResponse(
            content=content,
            confidence=self._fallback_confidence,
            sources=[],
            tokens=count_tokens(content),
            model="fallback",
            intent=DEFAULT_INTENT,
            language=self._safe_language(query),
            metadata={"type": "fallback", "reason": reason},
        )

    def _safe_language(self, query: str) -> str:
        try:
            return self._analyzer.detect_language(query)
        except Exception:  # noqa: BLE001 - fallback answers must not fail
            return "it"


def _parse_entities(raw: str) -> list[ExtractedEntity] | None:
    """Parse the entity-extraction reply, tolerating a fenced JSON block.

    Returns ``None`` when the reply is not a JSON list.
    """
    cleaned = _FENCE_RE.sub("", raw.strip())
    try:
        payload: Any = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.debug("rag_entities_malformed", raw=raw[:100])
        return None
    if not isinstance(payload, list):
        logger.debug("rag_entities_malformed", raw=raw[:100])
        return None

    entities: list[ExtractedEntity] = []
    for item in payload:
        if not isinstance(item, dict) or not item.get("text"):
            continue
        entity_type = str(item.get("type", "")).upper()
        entity_type = _ITALIAN_ENTITY_TYPES.get(entity_type, entity_type)
        if entity_type not in ENTITY_TYPES:
            continue
        try:
            confidence = float(item.get("confidence", 0.7))
        except (TypeError, ValueError):
            confidence = 0.7
        entities.append(
            ExtractedEntity(
                text=str(item["text"]),
                type=entity_type,
                confidence=max(0.0, min(1.0, confidence)),
            )
        )
    return entities
