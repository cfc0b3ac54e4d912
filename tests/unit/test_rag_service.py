"""Unit tests for RAGService.

Documents are published straight into a real SQLite store; the LLM is a mock
that answers according to which prompt it receives.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from agriai.interfaces.content_analyzer import IContentAnalyzer
from agriai.interfaces.document_store import IDocumentStore
from agriai.models.document import AccessLevel, DocumentStatus, ProcessingStatus
from agriai.models.rag import ConversationTurn, IntentResult, QueryContext, RetrievedSource
from agriai.services.rag_service import DEFAULT_INTENT, RAGService
from agriai.utils.confidence import calculate_answer_confidence

ANSWER = (
    "La concimazione azotata del grano duro va frazionata in due interventi, "
    "in accestimento e in levata [SOURCE 1]. Evita eccessi di azoto per limitare l'allettamento."
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _scripted_llm(mock, intent: str = "cultivation", entities: str | None = None, answer: str = ANSWER):
    """Route each completion by the system prompt it was called with."""
    if entities is None:
        entities = json.dumps([{"text": "grano duro", "type": "CROP", "confidence": 0.9}])

    async def _complete(system_prompt: str, user_prompt: str, **kwargs) -> str:
        if system_prompt.startswith("You classify"):
            return intent
        if system_prompt.startswith("Extract"):
            return entities
        return answer

    mock.complete = AsyncMock(side_effect=_complete)
    return mock


async def _publish(store, make_document, document_id: str, text: str, **fields) -> None:
    await store.create_document(
        make_document(
            document_id,
            extracted_text=text,
            status=DocumentStatus.PUBLISHED,
            extraction_status=ProcessingStatus.COMPLETED,
            indexing_status=ProcessingStatus.COMPLETED,
            **fields,
        )
    )


def _service(store, llm, analyzer, **kwargs) -> RAGService:
    kwargs.setdefault("min_relevance", 0.05)
    return RAGService(store=store, llm=llm, analyzer=analyzer, **kwargs)


@pytest_asyncio.fixture
async def corpus(document_store, make_document):
    await _publish(
        document_store,
        make_document,
        "grano",
        "Concimazione azotata del grano duro: frazionare in accestimento e levata.",
        title="Grano duro",
    )
    await _publish(
        document_store,
        make_document,
        "olivo",
        "Potatura dell'olivo dopo la raccolta delle olive.",
        title="Olivo",
    )
    await _publish(
        document_store,
        make_document,
        "riservato",
        "Concimazione azotata riservata ai soci della cooperativa.",
        title="Riservato soci",
        access_level=AccessLevel.MEMBER,
    )
    return document_store


QUESTION = "Come fare la concimazione azotata del grano duro?"


# ---------------------------------------------------------------------------
# Grounded answers
# ---------------------------------------------------------------------------


class TestAnswer:
    @pytest.mark.asyncio
    async def test_grounded_answer(self, corpus, mock_llm_provider, analyzer) -> None:
        service = _service(corpus, _scripted_llm(mock_llm_provider), analyzer)

        response = await service.answer(QUESTION, conversation_id="c1", user_id="u1")

        assert response.is_fallback is False
        assert response.metadata["type"] == "rag"
        assert response.metadata["degraded_steps"] == []
        assert response.content == ANSWER
        assert response.model == "mock-model"
        assert response.intent == IntentResult(category="cultivation", confidence=0.8)
        assert [e.text for e in response.entities] == ["grano duro"]
        assert response.language == "it"
        assert response.sources[0].document_id == "grano"
        assert response.sources[0].rank == 1
        assert response.metadata["retrieval_results"] == len(response.sources)
        # Cited, well-formed answer with a recognised intent scores high.
        assert response.confidence > 0.8
        assert response.confidence <= 0.95

    @pytest.mark.asyncio
    async def test_public_caller_never_sees_member_documents(self, corpus, mock_llm_provider, analyzer) -> None:
        service = _service(corpus, _scripted_llm(mock_llm_provider), analyzer)

        public = await service.answer(QUESTION, context=QueryContext(user_type="public"))
        member = await service.answer(QUESTION, context=QueryContext(user_type="member"))

        assert "riservato" not in {s.document_id for s in public.sources}
        assert "riservato" in {s.document_id for s in member.sources}

    @pytest.mark.asyncio
    async def test_sources_ranked_and_capped(self, corpus, mock_llm_provider, analyzer) -> None:
        service = _service(corpus, _scripted_llm(mock_llm_provider), analyzer, top_k=1)

        response = await service.answer(QUESTION, context=QueryContext(user_type="admin"))

        assert len(response.sources) == 1
        assert response.sources[0].relevance_score > 0.05

    @pytest.mark.asyncio
    async def test_no_matching_documents(self, document_store, mock_llm_provider, analyzer) -> None:
        service = _service(document_store, _scripted_llm(mock_llm_provider), analyzer)

        response = await service.answer(QUESTION)

        assert response.sources == []
        assert response.metadata["type"] == "rag"
        prompt = mock_llm_provider.complete.await_args_list[-1].kwargs["user_prompt"]
        assert "No specific context was retrieved" in prompt
        assert response.confidence == pytest.approx(
            calculate_answer_confidence([], response.intent.confidence, response.content)
        )
        # base + recognised intent 0.8 * 0.2 + length bonus + citation bonus
        assert response.confidence == pytest.approx(0.5 + 0.8 * 0.2 + 0.1 + 0.1)
        assert response.metadata["confidence_level"] == "very_high"


class TestDegradation:
    @pytest.mark.asyncio
    async def test_intent_failure_uses_default(self, corpus, mock_llm_provider, analyzer) -> None:
        _scripted_llm(mock_llm_provider)
        scripted = mock_llm_provider.complete.side_effect

        async def _complete(system_prompt: str, user_prompt: str, **kwargs) -> str:
            if system_prompt.startswith("You classify"):
                raise RuntimeError("rate limited")
            return await scripted(system_prompt, user_prompt, **kwargs)

        mock_llm_provider.complete = AsyncMock(side_effect=_complete)
        service = _service(corpus, mock_llm_provider, analyzer)

        response = await service.answer(QUESTION)

        assert response.intent == DEFAULT_INTENT
        assert "intent_extraction" in response.metadata["degraded_steps"]
        assert response.metadata["type"] == "rag"

    @pytest.mark.asyncio
    async def test_retrieval_failure_answers_without_sources(self, mock_llm_provider, analyzer) -> None:
        store = MagicMock(spec=IDocumentStore)
        store.list_published = AsyncMock(side_effect=RuntimeError("database is locked"))
        service = _service(store, _scripted_llm(mock_llm_provider), analyzer)

        response = await service.answer(QUESTION)

        assert response.sources == []
        assert response.metadata["degraded_steps"] == ["retrieval"]

    @pytest.mark.asyncio
    async def test_malformed_entities_give_empty_list(self, corpus, mock_llm_provider, analyzer) -> None:
        service = _service(corpus, _scripted_llm(mock_llm_provider, entities="not json"), analyzer)
        response = await service.answer(QUESTION)
        assert response.entities == []
        assert response.metadata["degraded_steps"] == ["entity_extraction"]

    @pytest.mark.asyncio
    async def test_entity_failure_is_degraded(self, corpus, mock_llm_provider, analyzer) -> None:
        _scripted_llm(mock_llm_provider)
        scripted = mock_llm_provider.complete.side_effect

        async def _complete(system_prompt: str, user_prompt: str, **kwargs) -> str:
            if system_prompt.startswith("Extract"):
                raise RuntimeError("rate limited")
            return await scripted(system_prompt, user_prompt, **kwargs)

        mock_llm_provider.complete = AsyncMock(side_effect=_complete)
        service = _service(corpus, mock_llm_provider, analyzer)

        response = await service.answer(QUESTION)

        assert response.entities == []
        assert response.metadata["degraded_steps"] == ["entity_extraction"]
        assert response.metadata["type"] == "rag"
        assert response.sources

    @pytest.mark.asyncio
    async def test_no_entities_found_is_not_degraded(self, corpus, mock_llm_provider, analyzer) -> None:
        service = _service(corpus, _scripted_llm(mock_llm_provider, entities="[]"), analyzer)
        response = await service.answer(QUESTION)
        assert response.entities == []
        assert response.metadata["degraded_steps"] == []


class TestFallback:
    @pytest.mark.asyncio
    async def test_no_backend_configured(self, document_store, analyzer) -> None:
        service = _service(document_store, None, analyzer, fallback_confidence=0.3)

        response = await service.answer(QUESTION)

        assert response.is_fallback
        assert response.metadata == {"type": "fallback", "reason": "generation_backend_not_configured"}
        assert response.confidence == 0.3
        assert response.model == "fallback"
        assert QUESTION in response.content
        assert response.sources == []

    @pytest.mark.asyncio
    async def test_unavailable_backend(self, document_store, mock_llm_provider, analyzer) -> None:
        mock_llm_provider.is_available.return_value = False
        service = _service(document_store, mock_llm_provider, analyzer)

        response = await service.answer(QUESTION)

        assert response.metadata["reason"] == "generation_backend_not_configured"
        mock_llm_provider.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generation_error(self, corpus, mock_llm_provider, analyzer) -> None:
        _scripted_llm(mock_llm_provider)
        scripted = mock_llm_provider.complete.side_effect

        async def _complete(system_prompt: str, user_prompt: str, **kwargs) -> str:
            if system_prompt.startswith("You are AgriAI"):
                raise ConnectionError("backend unreachable")
            return await scripted(system_prompt, user_prompt, **kwargs)

        mock_llm_provider.complete = AsyncMock(side_effect=_complete)
        service = _service(corpus, mock_llm_provider, analyzer)

        response = await service.answer(QUESTION)

        assert response.metadata == {"type": "fallback", "reason": "generation_failed"}

    @pytest.mark.asyncio
    async def test_empty_generation(self, corpus, mock_llm_provider, analyzer) -> None:
        service = _service(corpus, _scripted_llm(mock_llm_provider, answer="   "), analyzer)
        response = await service.answer(QUESTION)
        assert response.metadata["reason"] == "generation_failed"

    @pytest.mark.asyncio
    async def test_timeouts_fall_back(self, document_store, mock_llm_provider, analyzer) -> None:
        async def _hang(**kwargs) -> str:
            await asyncio.sleep(5)
            return "late"

        mock_llm_provider.complete = AsyncMock(side_effect=_hang)
        service = _service(document_store, mock_llm_provider, analyzer, request_timeout=0.01)

        response = await service.answer(QUESTION)

        assert response.metadata["reason"] == "generation_failed"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, document_store, mock_llm_provider) -> None:
        broken = MagicMock(spec=IContentAnalyzer)
        broken.detect_language.side_effect = RuntimeError("analyzer crashed")
        service = _service(document_store, _scripted_llm(mock_llm_provider), broken)

        response = await service.answer(QUESTION)

        assert response.metadata == {"type": "fallback", "reason": "internal_error"}
        assert response.language == "it"


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


class TestClassifyIntent:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("reply", "expected"),
        [
            ("policy", "policy"),
            ("  Funding.\n", "funding"),
            ("coltivazione", "cultivation"),
            ("normative_pac", "policy"),
        ],
    )
    async def test_labels(self, document_store, mock_llm_provider, analyzer, reply, expected) -> None:
        mock_llm_provider.complete = AsyncMock(return_value=reply)
        service = _service(document_store, mock_llm_provider, analyzer)

        intent = await service.classify_intent("domanda")

        assert intent == IntentResult(category=expected, confidence=0.8)

    @pytest.mark.asyncio
    async def test_unknown_label(self, document_store, mock_llm_provider, analyzer) -> None:
        mock_llm_provider.complete = AsyncMock(return_value="astrology")
        service = _service(document_store, mock_llm_provider, analyzer)
        assert await service.classify_intent("domanda") == DEFAULT_INTENT


class TestExtractEntities:
    @pytest.mark.asyncio
    async def test_fenced_json_and_italian_types(self, document_store, mock_llm_provider, analyzer) -> None:
        reply = (
            "```json\n"
            '[{"text": "vite", "type": "COLTURA", "confidence": 0.95},'
            ' {"text": "peronospora", "type": "disease"},'
            ' {"text": "martedì", "type": "DATE"},'
            ' {"type": "CROP"}]\n'
            "```"
        )
        mock_llm_provider.complete = AsyncMock(return_value=reply)
        service = _service(document_store, mock_llm_provider, analyzer)

        entities = await service.extract_entities("peronospora della vite")

        assert [(e.text, e.type) for e in entities] == [("vite", "CROP"), ("peronospora", "DISEASE")]
        assert entities[1].confidence == 0.7

    @pytest.mark.asyncio
    async def test_non_list_payload(self, document_store, mock_llm_provider, analyzer) -> None:
        mock_llm_provider.complete = AsyncMock(return_value='{"text": "vite"}')
        service = _service(document_store, mock_llm_provider, analyzer)
        assert await service.extract_entities("vite") == []


class TestBuildPrompt:
    def _build(self, service: RAGService, history: list[ConversationTurn], sources: list[RetrievedSource]):
        return service.build_prompt(
            "Quando seminare?",
            sources,
            QueryContext(user_type="member", location="Puglia", farm_type="cerealicola"),
            history,
            IntentResult(category="cultivation", confidence=0.8),
            [],
        )

    def test_context_and_sources(self, document_store, mock_llm_provider, analyzer) -> None:
        service = _service(document_store, mock_llm_provider, analyzer)
        source = RetrievedSource(
            document_id="grano", title="Grano duro", content="Semina a novembre.", relevance_score=0.4, rank=1
        )

        system_prompt, user_prompt = self._build(service, [], [source])

        assert "Role: member" in system_prompt
        assert "Location: Puglia" in system_prompt
        assert "Expertise: not specified" in system_prompt
        assert "DETECTED INTENT: cultivation" in system_prompt
        assert "EXTRACTED ENTITIES: none" in system_prompt
        assert "[SOURCE 1] Grano duro\nSemina a novembre.\n[RELEVANCE: 0.400]" in user_prompt
        assert user_prompt.endswith("QUESTION: Quando seminare?\n\nANSWER:")
        assert "CONVERSATION HISTORY" not in user_prompt

    def test_history_keeps_last_turns(self, document_store, mock_llm_provider, analyzer) -> None:
        service = _service(document_store, mock_llm_provider, analyzer, history_turns=2)
        history = [
            ConversationTurn(role="USER", content="primo"),
            ConversationTurn(role="ASSISTANT", content="secondo"),
            ConversationTurn(role="USER", content="terzo"),
        ]

        _, user_prompt = self._build(service, history, [])

        assert "primo" not in user_prompt
        assert "AgriAI: secondo\nUser: terzo" in user_prompt
