# =============================================================================
# agriai/cli/manage.py: Operator CLI (ingest, ask, status)
# =============================================================================
#
# Runs the same component graph as the API (agriai.main.build_components)
# inside one asyncio event loop, so a document ingested here goes through
# the real document queue: priority, retries, stall detection and the
# processing log all behave as they do behind the web server.
#
# Subcommands:
#
#   ingest   upload FILE (or register --url), queue it and wait for the job
#   ask      answer a question from the published corpus
#   status   print a document's state and its processing log
#
# Usage examples:
#   python -m agriai.cli ingest manuale_irrigazione.pdf --title "Irrigazione" \
#       --priority high --access public
#   python -m agriai.cli ingest --url https://example.org/bando --title "Bando PSR"
#   python -m agriai.cli ask "Quando seminare il grano duro?" --role member
#   python -m agriai.cli status 3f2c9e...
# =============================================================================

"""Operator CLI: ingest documents, ask questions, inspect document state.

Usage::

    python -m agriai.cli ingest FILE --title "..." [--priority high]
    python -m agriai.cli ask "..." [--role member]
    python -m agriai.cli status DOCUMENT_ID
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
import time
import uuid
from pathlib import Path
from typing import Any

from agriai.config.settings import Settings
from agriai.models.queue import JobPriority

_POLL_INTERVAL = 0.5
_TERMINAL_STATUSES = ("completed", "failed", "not_found")


def _guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "text/plain"


async def _with_components(app_settings: Settings, fn) -> int:  # noqa: ANN001
    """Build and start the component graph, run *fn(components)*, tear down."""
    from agriai.main import build_components, start_components, stop_components

    components = build_components(app_settings)
    await start_components(components, schedule=False)
    try:
        return await fn(components)
    finally:
        await stop_components(components)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, components: dict[str, Any]) -> int:
    from agriai.models.document import AccessLevel, Document

    app_settings: Settings = components["settings"]
    store = components["document_store"]
    queue = components["queue_manager"]
    document_id = uuid.uuid4().hex

    if args.url:
        document = Document(
            id=document_id,
            title=args.title,
            source_url=args.url,
            mime_type=args.mime or "text/html",
            category_id=args.category,
            access_level=AccessLevel(args.access.upper()),
            uploaded_by="cli",
        )
        print(f"Registering URL: {args.url}")
    else:
        path = Path(args.file)
        if not path.is_file():
            print(f"Error: file not found: {path}", file=sys.stderr)
            return 1
        key = f"{app_settings.storage_prefix}{document_id}/{path.name}"
        await components["object_storage"].upload(key, path.read_bytes())
        document = Document(
            id=document_id,
            title=args.title or path.stem,
            source_key=key,
            mime_type=args.mime or _guess_mime_type(path),
            category_id=args.category,
            access_level=AccessLevel(args.access.upper()),
            uploaded_by="cli",
        )
        print(f"Uploaded: {path} -> {key}")

    await store.create_document(document)
    handle = await queue.enqueue(document_id, priority=args.priority, user_id="cli")
    print(f"Queued job {handle.job_id} ({handle.priority.value}, max {handle.max_attempts} attempts)")

    deadline = time.monotonic() + args.timeout
    report = queue.status(document_id)
    while report.status not in _TERMINAL_STATUSES and time.monotonic() < deadline:
        await asyncio.sleep(_POLL_INTERVAL)
        report = queue.status(document_id)

    if report.status == "completed":
        stored = await store.get_document(document_id)
        chunks = await store.get_chunks(document_id)
        print("\nProcessing complete:")
        print(f"  Document ID: {document_id}")
        print(f"  Words:       {stored.word_count}")
        print(f"  Language:    {stored.language}")
        print(f"  Chunks:      {len(chunks)}")
        return 0

    if report.status == "failed":
        print(f"\nProcessing failed after {report.attempts_made} attempt(s): {report.last_error}", file=sys.stderr)
        return 1

    print(f"\nTimed out waiting for job (status: {report.status}, progress: {report.progress}%)", file=sys.stderr)
    return 2


async def _handle_ask(args: argparse.Namespace, components: dict[str, Any]) -> int:
    from agriai.models.rag import QueryContext

    rag = components["rag_service"]
    response = await rag.answer(args.question, context=QueryContext(user_type=args.role))

    print(response.content)
    print()
    print(f"Confidence: {response.confidence:.2f}  Model: {response.model}  Intent: {response.intent.category}")
    if response.metadata.get("type") == "fallback":
        print(f"(fallback: {response.metadata.get('reason')})")
    for source in response.sources:
        print(f"  [{source.rank}] {source.title} (relevance {source.relevance_score:.3f})")
    return 0


async def _handle_status(args: argparse.Namespace, components: dict[str, Any]) -> int:
    document = await components["document_store"].get_document(args.document_id)
    if document is None:
        print(f"Error: document not found: {args.document_id}", file=sys.stderr)
        return 1

    print(f"{document.title} ({document.id})")
    print(f"  Status:     {document.status.value}")
    print(f"  Extraction: {document.extraction_status.value}")
    print(f"  Indexing:   {document.indexing_status.value}")
    print(f"  Words:      {document.word_count}")
    if document.deleted_at:
        print(f"  Deleted:    {document.deleted_at.isoformat()}")
    print("\nProcessing log:")
    for entry in document.processing_logs:
        print(f"  {entry.timestamp.isoformat()} {entry.level:<7} {entry.event:<18} {entry.message}")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the operator CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m agriai.cli",
        description="Ingest documents and query the AgriAI knowledge base.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Upload and process a document")
    ingest_parser.add_argument("file", nargs="?", help="Path to the document file")
    ingest_parser.add_argument("--url", help="Fetch the document from a URL instead of a file")
    ingest_parser.add_argument("--title", help="Document title (default: file name)")
    ingest_parser.add_argument("--mime", help="MIME type (default: guessed from the file name)")
    ingest_parser.add_argument("--category", help="Category id")
    ingest_parser.add_argument(
        "--access",
        default="public",
        choices=["public", "member", "admin"],
        help="Access level (default: public)",
    )
    ingest_parser.add_argument(
        "--priority",
        default=JobPriority.NORMAL.value,
        choices=[p.value for p in JobPriority],
        help="Queue priority (default: normal)",
    )
    ingest_parser.add_argument(
        "--timeout", type=float, default=300.0, help="Seconds to wait for the job (default: 300)"
    )

    # -- ask --
    ask_parser = subparsers.add_parser("ask", help="Ask a question")
    ask_parser.add_argument("question", help="The question")
    ask_parser.add_argument(
        "--role",
        default="public",
        choices=["public", "member", "admin"],
        help="Caller role, decides which documents are visible (default: public)",
    )

    # -- status --
    status_parser = subparsers.add_parser("status", help="Show a document's processing state")
    status_parser.add_argument("document_id", help="Document id")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

_HANDLERS = {
    "ingest": _handle_ingest,
    "ask": _handle_ask,
    "status": _handle_status,
}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "ingest" and not (args.file or args.url):
        parser.error("ingest needs FILE or --url")
    if args.command == "ingest" and args.url and not args.title:
        parser.error("--title is required with --url")

    app_settings = Settings()
    handler = _HANDLERS[args.command]
    exit_code = asyncio.run(_with_components(app_settings, lambda c: handler(args, c)))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
