"""Token counting with tiktoken.

``cl100k_base`` is the encoding used by the OpenAI embedding and chat
models, so chunk token counts match what the embedding backend is billed
for.  tiktoken fetches the encoding's BPE file on first use; when that
fails the counts fall back to the approximate ``len(text) // 4``.
"""

from __future__ import annotations

import functools

import structlog
import tiktoken

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_ENCODING = "cl100k_base"


@functools.lru_cache(maxsize=4)
def load_encoding(name: str = DEFAULT_ENCODING) -> tiktoken.Encoding | None:
    """Return the tiktoken encoding *name*, or ``None`` if it cannot be loaded."""
    try:
        return tiktoken.get_encoding(name)
    except Exception as exc:  # noqa: BLE001 - BPE file may be unreachable offline
        logger.warning(
            "tokenizer_unavailable",
            encoding=name,
            error=str(exc),
            msg="Falling back to approximate token counting (len // 4).",
        )
        return None


def count_tokens(text: str, encoding: tiktoken.Encoding | None = None) -> int:
    """Number of tokens in *text* under *encoding* (default ``cl100k_base``)."""
    if not text:
        return 0
    encoding = encoding if encoding is not None else load_encoding()
    if encoding is None:
        return len(text) // 4
    return len(encoding.encode(text, disallowed_special=()))
