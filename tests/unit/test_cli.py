"""Unit tests for the operator CLI in agriai.cli.manage."""

from __future__ import annotations

from argparse import Namespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agriai.cli.manage import _build_parser, _handle_ask, _handle_status, main
from agriai.models.document import ProcessingLogEntry
from agriai.models.rag import IntentResult, RAGResponse, RetrievedSource
from agriai.services.rag_service import RAGService

# ======================================================================
# Argument parsing
# ======================================================================


class TestParser:
    def test_ingest_defaults(self) -> None:
        args = _build_parser().parse_args(["ingest", "manuale.pdf"])

        assert args.command == "ingest"
        assert args.file == "manuale.pdf"
        assert args.priority == "normal"
        assert args.access == "public"
        assert args.timeout == 300.0

    def test_invalid_priority_rejected(self) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["ingest", "f.txt", "--priority", "urgent"])

    def test_ingest_needs_file_or_url(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["ingest"])
        assert exc_info.value.code == 2

    def test_url_needs_title(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["ingest", "--url", "https://example.org/bando"])
        assert exc_info.value.code == 2

    def test_no_command_prints_help(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1
        assert "ingest" in capsys.readouterr().out


# ======================================================================
# Handlers
# ======================================================================


class TestAskHandler:
    @pytest.mark.asyncio
    async def test_prints_answer_and_sources(self, capsys) -> None:
        rag = MagicMock(spec=RAGService)
        rag.answer = AsyncMock(
            return_value=RAGResponse(
                content="Semina tra novembre e dicembre [SOURCE 1].",
                confidence=0.82,
                model="gpt-4-turbo-preview",
                intent=IntentResult(category="cultivation", confidence=0.8),
                sources=[
                    RetrievedSource(
                        document_id="d1", title="Grano duro", content="...", relevance_score=0.4, rank=1
                    )
                ],
                metadata={"type": "rag"},
            )
        )

        code = await _handle_ask(Namespace(question="Quando seminare?", role="member"), {"rag_service": rag})

        out = capsys.readouterr().out
        assert code == 0
        assert "Semina tra novembre" in out
        assert "Confidence: 0.82" in out
        assert "Intent: cultivation" in out
        assert "[1] Grano duro (relevance 0.400)" in out
        assert "fallback" not in out
        assert rag.answer.await_args.kwargs["context"].user_type == "member"

    @pytest.mark.asyncio
    async def test_prints_fallback_reason(self, capsys) -> None:
        rag = MagicMock(spec=RAGService)
        rag.answer = AsyncMock(
            return_value=RAGResponse(
                content="Hai chiesto...",
                confidence=0.3,
                model="fallback",
                metadata={"type": "fallback", "reason": "generation_backend_not_configured"},
            )
        )

        await _handle_ask(Namespace(question="?", role="public"), {"rag_service": rag})

        assert "(fallback: generation_backend_not_configured)" in capsys.readouterr().out


class TestStatusHandler:
    @pytest.mark.asyncio
    async def test_prints_state_and_log(self, document_store, make_document, capsys) -> None:
        await document_store.create_document(make_document())
        await document_store.append_processing_log(
            "doc-1", ProcessingLogEntry(event="queued", message="Queued for processing")
        )

        code = await _handle_status(Namespace(document_id="doc-1"), {"document_store": document_store})

        out = capsys.readouterr().out
        assert code == 0
        assert "Manuale grano duro (doc-1)" in out
        assert "Status:     DRAFT" in out
        assert "queued" in out

    @pytest.mark.asyncio
    async def test_missing_document(self, document_store, capsys) -> None:
        code = await _handle_status(Namespace(document_id="ghost"), {"document_store": document_store})
        assert code == 1
        assert "not found" in capsys.readouterr().err


# ======================================================================
# Full run against the real component graph
# ======================================================================


class TestIngestEndToEnd:
    def test_ingest_text_file(self, tmp_path, app_settings, mock_embedding_provider, sample_italian_text, capsys) -> None:
        source = tmp_path / "grano_duro.txt"
        source.write_text(sample_italian_text, encoding="utf-8")

        with (
            patch("agriai.cli.manage.Settings", return_value=app_settings),
            patch("agriai.main._build_embedding_provider", return_value=mock_embedding_provider),
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["ingest", str(source), "--priority", "critical", "--timeout", "20"])

        out = capsys.readouterr().out
        assert exc_info.value.code == 0
        assert "Processing complete" in out
        assert "Language:    it" in out
        assert (tmp_path / "objects" / "documents").is_dir()

    def test_missing_file(self, tmp_path, app_settings, mock_embedding_provider, capsys) -> None:
        with (
            patch("agriai.cli.manage.Settings", return_value=app_settings),
            patch("agriai.main._build_embedding_provider", return_value=mock_embedding_provider),
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["ingest", str(tmp_path / "nope.pdf")])

        assert exc_info.value.code == 1
        assert "file not found" in capsys.readouterr().err
