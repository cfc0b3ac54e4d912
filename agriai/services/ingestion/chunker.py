"""Sentence-group chunking with exact source offsets.

Splits extracted text into :class:`~agriai.models.rag.DocumentChunk` objects
sized for embedding models (up to ``chunk_size`` characters each).

The chunking strategy has three goals:

1. **Sentence-preserving** -- boundaries fall between sentences (or blank
   lines), so no chunk starts or ends mid-thought.  A sentence longer than
   the budget is split at word boundaries.

2. **Exact offsets** -- every chunk records the ``start_char``/``end_char``
   of its own span in the source text.  Spans never overlap and the text
   between two consecutive spans is whitespace only.

3. **Carried overlap** -- consecutive chunks share up to ``overlap``
   characters of context, but as a *prefix* of the later chunk's text
   (``overlap_chars`` long), never as overlapping spans.  A concept that
   straddles a boundary is therefore present in one chunk's text while the
   span arithmetic stays exact.
"""

from __future__ import annotations

import re

import structlog
import tiktoken

from agriai.interfaces.content_analyzer import IContentAnalyzer
from agriai.models.rag import DocumentChunk
from agriai.services.ingestion.content_analyzer import HeuristicContentAnalyzer
from agriai.utils.tokens import count_tokens, load_encoding

logger = structlog.get_logger(logger_name=__name__)

# Abbreviations whose trailing period must NOT end a sentence.
_ABBREVIATIONS = frozenset(
    {
        "Dr", "Mr", "Mrs", "Ms", "Prof", "Jr", "Sr", "St", "Vol", "No", "vs",
        "etc", "approx", "inc", "ltd", "co",
        "Art", "art", "ecc", "Sig", "sig", "Dott", "dott", "pag", "cfr", "Reg", "reg",
    }
)
_ABBREVIATION_RE = re.compile(
    r"\b(" + "|".join(sorted(_ABBREVIATIONS, key=len, reverse=True)) + r")\."
)
# Sentence terminators followed by whitespace / end of text, or a blank line.
_BOUNDARY_RE = re.compile(r"(?P<punct>[.!?]+)(?=\s|$)|(?P<blank>\n[ \t]*\n)")

_KEYWORDS_PER_CHUNK = 5


class TextChunker:
    """Splits text into ordered, offset-addressed chunks.

    Parameters
    ----------
    chunk_size:
        Maximum span length per chunk, in characters (default 1000).
    overlap:
        Maximum characters of the previous chunk carried as a prefix
        (default 200).
    min_chunk_size:
        A trailing chunk shorter than this takes sentences from the end of
        its predecessor, as long as both spans stay within ``chunk_size``
        (default 100).
    analyzer:
        Supplies per-chunk keywords and language.
    encoding:
        tiktoken encoding for ``token_count``; ``cl100k_base`` by default.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        overlap: int = 200,
        min_chunk_size: int = 100,
        analyzer: IContentAnalyzer | None = None,
        encoding: tiktoken.Encoding | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self._chunk_size = chunk_size
        self._overlap = overlap
        self._min_chunk_size = min_chunk_size
        self._analyzer = analyzer or HeuristicContentAnalyzer()
        self._encoding = encoding if encoding is not None else load_encoding()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[DocumentChunk]:
        """Split *text* into chunks.  Blank input returns an empty list."""
        if not text or not text.strip():
            return []

        sentences = self._sentence_spans(text)
        groups = self._group_sentences(sentences)

        chunks: list[DocumentChunk] = []
        previous_start: int | None = None
        for index, (start, end, sentence_count) in enumerate(groups):
            prefix_start = self._overlap_start(text, previous_start, start)
            chunk_text = text[prefix_start:end]
            span = text[start:end]
            chunks.append(
                DocumentChunk(
                    chunk_index=index,
                    text=chunk_text,
                    start_char=start,
                    end_char=end,
                    overlap_chars=start - prefix_start,
                    token_count=count_tokens(chunk_text, self._encoding),
                    metadata={
                        "keywords": self._analyzer.extract_keywords(span, _KEYWORDS_PER_CHUNK),
                        "sentence_count": sentence_count,
                        "language": self._analyzer.detect_language(span),
                        "length": len(span),
                    },
                )
            )
            previous_start = start

        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            avg_tokens=self._avg_tokens(chunks),
        )
        return chunks

    # ------------------------------------------------------------------
    # Sentence splitting
    # ------------------------------------------------------------------

    def _sentence_spans(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` of every sentence, whitespace trimmed.

        Periods after known abbreviations are masked with a same-length
        placeholder so indices stay aligned with *text*.
        """
        masked = _ABBREVIATION_RE.sub(lambda m: m.group(1) + "\x00", text)

        spans: list[tuple[int, int]] = []
        last = 0
        for match in _BOUNDARY_RE.finditer(masked):
            end = match.end() if match.group("punct") else match.start()
            self._append_trimmed(spans, text, last, end)
            last = match.end()
        self._append_trimmed(spans, text, last, len(text))

        result: list[tuple[int, int]] = []
        for start, end in spans:
            result.extend(self._split_long(text, start, end))
        return result

    @staticmethod
    def _append_trimmed(spans: list[tuple[int, int]], text: str, start: int, end: int) -> None:
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        if start < end:
            spans.append((start, end))

    def _split_long(self, text: str, start: int, end: int) -> list[tuple[int, int]]:
        """Cut a span longer than ``chunk_size`` at word boundaries."""
        pieces: list[tuple[int, int]] = []
        while end - start > self._chunk_size:
            limit = start + self._chunk_size
            cut = limit
            for pos in range(limit, start, -1):
                if text[pos].isspace():
                    cut = pos
                    break
            piece_end = cut
            while piece_end > start and text[piece_end - 1].isspace():
                piece_end -= 1
            pieces.append((start, piece_end))
            start = cut
            while start < end and text[start].isspace():
                start += 1
        if start < end:
            pieces.append((start, end))
        return pieces

    # ------------------------------------------------------------------
    # Grouping and overlap
    # ------------------------------------------------------------------

    def _group_sentences(self, sentences: list[tuple[int, int]]) -> list[tuple[int, int, int]]:
        """Greedily pack sentences into ``(start, end, sentence_count)`` groups."""
        groups: list[list[tuple[int, int]]] = []
        for span in sentences:
            if groups and span[1] - groups[-1][0][0] <= self._chunk_size:
                groups[-1].append(span)
            else:
                groups.append([span])

        if len(groups) > 1:
            self._rebalance_tail(groups[-2], groups[-1])

        return [(g[0][0], g[-1][1], len(g)) for g in groups]

    def _rebalance_tail(self, previous: list[tuple[int, int]], tail: list[tuple[int, int]]) -> None:
        """Grow a tail shorter than ``min_chunk_size`` with the predecessor's last sentences.

        Sentences move only while the predecessor keeps at least one and the
        tail span stays within ``chunk_size``.
        """
        while (
            tail[-1][1] - tail[0][0] < self._min_chunk_size
            and len(previous) > 1
            and tail[-1][1] - previous[-1][0] <= self._chunk_size
        ):
            tail.insert(0, previous.pop())

    def _overlap_start(self, text: str, previous_start: int | None, start: int) -> int:
        """Where the carried-over prefix of a chunk starting at *start* begins.

        At most ``overlap`` characters back, never before the previous
        chunk's span, snapped forward so no word is cut in half.
        """
        if previous_start is None or self._overlap == 0:
            return start
        pos = max(previous_start, start - self._overlap)
        if pos > previous_start and not text[pos - 1].isspace():
            while pos < start and not text[pos].isspace():
                pos += 1
        while pos < start and text[pos].isspace():
            pos += 1
        return pos

    @staticmethod
    def _avg_tokens(chunks: list[DocumentChunk]) -> int:
        if not chunks:
            return 0
        return sum(c.token_count for c in chunks) // len(chunks)
