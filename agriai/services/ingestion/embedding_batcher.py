"""Rate-limited embedding of chunk texts.

Embeddings are not optional: a document without them cannot be found by
semantic search.  So any batch failure fails the whole call with
:class:`EmbeddingBatchFailedError`, and the job queue's retry policy takes
it from there.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from agriai.interfaces.embedding_provider import IEmbeddingProvider
from agriai.utils.errors import EmbeddingBatchFailedError

logger = structlog.get_logger(logger_name=__name__)

BatchCallback = Callable[[int, int], Awaitable[None]]


class EmbeddingBatcher:
    """Embeds texts in fixed-size batches with a pause between batches.

    Parameters
    ----------
    provider:
        The embedding backend.
    batch_size:
        Texts per request (default 10).
    inter_batch_delay:
        Seconds to wait between consecutive requests (default 1.0).  No
        pause follows the last batch.
    request_timeout:
        Upper bound in seconds for each request.
    sleep:
        Injected for tests; defaults to :func:`asyncio.sleep`.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        batch_size: int = 10,
        inter_batch_delay: float = 1.0,
        request_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._provider = provider
        self._batch_size = batch_size
        self._delay = inter_batch_delay
        self._timeout = request_timeout
        self._sleep = sleep

    @property
    def model_name(self) -> str:
        return self._provider.get_model_name()

    async def embed_batch(
        self,
        texts: list[str],
        on_batch: BatchCallback | None = None,
    ) -> list[list[float]]:
        """Return one vector per text, in order.

        ``on_batch(done, total)`` is awaited after every successful batch.

        Raises
        ------
        EmbeddingBatchFailedError
            If any batch errors, times out, returns the wrong number of
            vectors, or returns vectors of inconsistent dimension.
        """
        if not texts:
            return []

        batches = [texts[i:i + self._batch_size] for i in range(0, len(texts), self._batch_size)]
        vectors: list[list[float]] = []
        dimension: int | None = None

        for batch_index, batch in enumerate(batches):
            if batch_index > 0 and self._delay > 0:
                await self._sleep(self._delay)

            try:
                result = await asyncio.wait_for(self._provider.embed(batch), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise EmbeddingBatchFailedError(
                    message=f"Embedding batch {batch_index} timed out after {self._timeout:g}s",
                    provider_name=self._provider.get_provider_name(),
                    batch_index=batch_index,
                ) from exc
            except EmbeddingBatchFailedError as exc:
                raise EmbeddingBatchFailedError(
                    message=f"Embedding batch {batch_index} failed: {exc.message}",
                    provider_name=exc.provider_name,
                    batch_index=batch_index,
                ) from exc
            except Exception as exc:
                raise EmbeddingBatchFailedError(
                    message=f"Embedding batch {batch_index} failed: {exc}",
                    provider_name=self._provider.get_provider_name(),
                    batch_index=batch_index,
                ) from exc

            if len(result) != len(batch):
                raise EmbeddingBatchFailedError(
                    message=(
                        f"Embedding batch {batch_index} returned {len(result)} vectors "
                        f"for {len(batch)} texts"
                    ),
                    provider_name=self._provider.get_provider_name(),
                    batch_index=batch_index,
                )
            for vector in result:
                if dimension is None:
                    dimension = len(vector)
                if not vector or len(vector) != dimension:
                    raise EmbeddingBatchFailedError(
                        message=f"Embedding batch {batch_index} returned inconsistent dimensions",
                        provider_name=self._provider.get_provider_name(),
                        batch_index=batch_index,
                    )
            vectors.extend(result)

            logger.debug(
                "embedding_batch_done",
                batch=batch_index + 1,
                total=len(batches),
                size=len(batch),
            )
            if on_batch is not None:
                await on_batch(batch_index + 1, len(batches))

        return vectors
