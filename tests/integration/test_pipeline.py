"""Integration tests for the document pipeline.

Runs the real component graph from ``agriai.main.build_components``: SQLite
store, local object storage, worker pools, document processor and RAG
service.  Only the embedding and generation backends are replaced.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest
import pytest_asyncio

from agriai.main import build_components, start_components, stop_components
from agriai.models.document import AccessLevel, Document, DocumentStatus
from agriai.models.rag import QueryContext
from agriai.utils.confidence import calculate_answer_confidence

QUESTION = "Come fare la concimazione azotata del grano duro?"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RecordingTransport:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.messages.append(data)


async def _wait_for(predicate: Callable[[], Any], timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        value = predicate()
        if asyncio.iscoroutine(value):
            value = await value
        if value:
            return
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


def _scripted_llm(mock):
    async def _complete(system_prompt: str, user_prompt: str, **kwargs) -> str:
        if system_prompt.startswith("You classify"):
            return "cultivation"
        if system_prompt.startswith("Extract"):
            return json.dumps([{"text": "grano duro", "type": "CROP", "confidence": 0.9}])
        return "Frazionare l'azoto in accestimento e in levata [SOURCE 1]."

    mock.complete = AsyncMock(side_effect=_complete)
    return mock


async def _upload_text(components: dict[str, Any], document_id: str, text: str, **fields) -> None:
    key = f"documents/{document_id}/{document_id}.txt"
    await components["object_storage"].upload(key, text.encode("utf-8"))
    await components["document_store"].create_document(
        Document(
            id=document_id,
            title=fields.pop("title", "Grano duro"),
            source_key=key,
            mime_type="text/plain",
            access_level=fields.pop("access_level", AccessLevel.PUBLIC),
            **fields,
        )
    )


async def _events(components: dict[str, Any], document_id: str) -> list[str]:
    document = await components["document_store"].get_document(document_id)
    return [entry.event for entry in document.processing_logs]


async def _has_event(components: dict[str, Any], document_id: str, event: str) -> bool:
    return event in await _events(components, document_id)


@pytest.fixture
def pipeline_settings(app_settings):
    # Whole-document Jaccard scores are small for long texts.
    return app_settings.model_copy(update={"rag_min_relevance": 0.0})


@pytest_asyncio.fixture
async def components(pipeline_settings, mock_embedding_provider, mock_llm_provider):
    with (
        patch("agriai.main._build_embedding_provider", return_value=mock_embedding_provider),
        patch("agriai.main._build_llm_provider", return_value=_scripted_llm(mock_llm_provider)),
    ):
        built = build_components(pipeline_settings, config={"maintenance": {}})
    await start_components(built, schedule=False)
    yield built
    await stop_components(built)


# ======================================================================
# Ingest to answer
# ======================================================================


class TestIngestToAnswer:
    @pytest.mark.asyncio
    async def test_high_priority_text_is_published_and_answerable(self, components, sample_italian_text) -> None:
        transport = RecordingTransport()
        components["session_registry"].register("c1", transport, user_id="agronomo")
        await _upload_text(components, "grano", sample_italian_text)

        await components["queue_manager"].enqueue("grano", priority="high", user_id="agronomo")
        await _wait_for(lambda: components["queue_manager"].status("grano").status == "completed")
        await _wait_for(lambda: transport.messages)

        document = await components["document_store"].get_document("grano")
        assert document.status == DocumentStatus.PUBLISHED
        assert document.language == "it"
        assert document.word_count > 100
        assert await components["document_store"].get_chunks("grano")

        await _wait_for(lambda: _has_event(components, "grano", "notification_sent"))
        events = await _events(components, "grano")
        assert events[0] == "queued"
        assert events.index("processed") < events.index("completed") < events.index("notification_sent")

        message = transport.messages[0]
        assert message["type"] == "document_processed"
        assert message["data"]["document_id"] == "grano"
        assert message["data"]["chunks_created"] > 0

        hits = await components["document_processor"].semantic_search(
            "concimazione azotata", access_levels=[AccessLevel.PUBLIC], min_similarity=0.0
        )
        assert not hits.degraded
        assert hits.results[0].document_id == "grano"

        response = await components["rag_service"].answer(QUESTION)
        assert response.metadata["type"] == "rag"
        assert [s.document_id for s in response.sources] == ["grano"]
        assert "[SOURCE 1]" in response.content

    @pytest.mark.asyncio
    async def test_member_document_hidden_from_public(self, components, sample_italian_text) -> None:
        await _upload_text(components, "soci", sample_italian_text, access_level=AccessLevel.MEMBER)
        await components["queue_manager"].enqueue("soci", priority="critical")
        await _wait_for(lambda: components["queue_manager"].status("soci").status == "completed")

        public = await components["rag_service"].answer(QUESTION, context=QueryContext(user_type="public"))
        member = await components["rag_service"].answer(QUESTION, context=QueryContext(user_type="member"))

        assert public.sources == []
        assert [s.document_id for s in member.sources] == ["soci"]

    @pytest.mark.asyncio
    async def test_no_documents_still_answers(self, components) -> None:
        response = await components["rag_service"].answer(QUESTION)

        assert response.sources == []
        assert response.metadata["type"] == "rag"
        assert response.content
        assert response.metadata["degraded_steps"] == []
        assert response.confidence == pytest.approx(
            calculate_answer_confidence([], response.intent.confidence, response.content)
        )
        # Short cited answer: base + recognised intent 0.8 * 0.2 + citation bonus.
        assert response.confidence == pytest.approx(0.5 + 0.8 * 0.2 + 0.1)

    @pytest.mark.asyncio
    async def test_unsupported_format_fails_once(self, components) -> None:
        await components["object_storage"].upload("documents/img/foto.png", b"\x89PNG")
        await components["document_store"].create_document(
            Document(id="img", title="Foto", source_key="documents/img/foto.png", mime_type="image/png")
        )

        await components["queue_manager"].enqueue("img", priority="critical")
        await _wait_for(lambda: components["queue_manager"].status("img").status == "failed")

        await _wait_for(lambda: _has_event(components, "img", "failed"))

        report = components["queue_manager"].status("img")
        assert report.attempts_made == 1
        document = await components["document_store"].get_document("img")
        assert document.status == DocumentStatus.FAILED
        assert "processing_error" in [entry.event for entry in document.processing_logs]


# ======================================================================
# Generation backend failures
# ======================================================================


class TestUnreachableBackend:
    @pytest.mark.asyncio
    async def test_connection_errors_give_fallback(self, pipeline_settings, mock_embedding_provider) -> None:
        request = httpx.Request("POST", "http://127.0.0.1:9/v1/chat/completions")
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=openai.APIConnectionError(request=request))
        app_settings = pipeline_settings.model_copy(
            update={"openai_api_key": "sk-test", "openai_base_url": "http://127.0.0.1:9/v1"}
        )

        with (
            patch("agriai.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=client),
            patch("agriai.main._build_embedding_provider", return_value=mock_embedding_provider),
        ):
            built = build_components(app_settings, config={"maintenance": {}})
        await start_components(built, schedule=False)
        try:
            response = await built["rag_service"].answer(QUESTION)
        finally:
            await stop_components(built)

        assert response.metadata == {"type": "fallback", "reason": "generation_failed"}
        assert response.model == "fallback"
        assert QUESTION in response.content


# ======================================================================
# Stall detection
# ======================================================================


class TestStalledProcessing:
    @pytest.mark.asyncio
    async def test_stall_requeues_then_fails(self, app_settings, mock_embedding_provider, sample_italian_text) -> None:
        async def _hang(texts: list[str]) -> list[list[float]]:
            await asyncio.Event().wait()
            return []

        mock_embedding_provider.embed = AsyncMock(side_effect=_hang)
        stall_settings = app_settings.model_copy(
            update={
                "stall_timeout_seconds": 0.2,
                "stall_check_interval_seconds": 0.05,
                "max_stalled_count": 1,
            }
        )
        with patch("agriai.main._build_embedding_provider", return_value=mock_embedding_provider):
            built = build_components(stall_settings, config={"maintenance": {}})
        await start_components(built, schedule=False)
        try:
            await _upload_text(built, "lento", sample_italian_text)
            await built["queue_manager"].enqueue("lento", priority="critical")
            await _wait_for(lambda: built["queue_manager"].status("lento").status == "failed")
            await _wait_for(lambda: _has_event(built, "lento", "notification_sent"))

            report = built["queue_manager"].status("lento")
            document = await built["document_store"].get_document("lento")
        finally:
            await stop_components(built)

        assert report.last_error == "Job stalled more than allowable limit"
        assert document.status == DocumentStatus.FAILED
        events = [entry.event for entry in document.processing_logs]
        assert events.count("stalled") == 2
        failed = next(entry for entry in document.processing_logs if entry.event == "failed")
        assert failed.metadata["error_type"] == "QueueStalledError"
        assert failed.metadata["stalled_count"] == 2
