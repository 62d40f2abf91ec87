"""Embedding pipeline.

Embeds records chunk by chunk and hands every chunk's successful
(record, vector) pairs to the DualStoreWriter before moving on. Within a
chunk the embedding calls run concurrently and one failure never aborts its
siblings; chunks themselves run strictly in order.
"""

import asyncio
from typing import Awaitable, Callable, Sequence

from services.csv_ingest.DualStoreWriter import DualStoreWriter
from shared.clients.doc.models.Record import Record
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.errors import ConfigurationError, DimensionMismatch, RateLimited, StorageWriteFailure
from shared.helper.HelperBatch import chunk, pause
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingest import PipelineResult

ChunkCallback = Callable[[int, PipelineResult], Awaitable[None]]


class EmbeddingPipeline:
    """Chunked, rate-limit aware embedding with interleaved dual-store writes."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        writer: DualStoreWriter,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._writer = writer

        self.batch_size = helper_config.get_positive_int_val("INGEST_EMBED_BATCH_SIZE", default=20)
        self.batch_delay = helper_config.get_delay_seconds("INGEST_BATCH_DELAY_MS", default_ms=100)
        self.rate_limit_backoff = helper_config.get_delay_seconds("INGEST_RATE_LIMIT_BACKOFF_MS", default_ms=1000)
        self.rate_limit_retries = int(helper_config.get_number_val("INGEST_RATE_LIMIT_RETRIES", default=2))
        if self.rate_limit_retries < 0:
            raise ConfigurationError("Environment variable 'INGEST_RATE_LIMIT_RETRIES' must not be negative.")

    ##########################################
    ############### EMBEDDING ################
    ##########################################

    async def _embed_record(self, record: Record) -> list[float]:
        """Embed one record, retrying only on RateLimited with exponential backoff.

        Raises:
            EmbeddingFailure: When the provider fails or retries are exhausted.
            DimensionMismatch: When the provider returns a vector of the wrong length.
        """
        attempt = 0
        while True:
            try:
                vector = await self._embed_client.do_embed_text(record.embedding_text)
                break
            except RateLimited as exc:
                if attempt >= self.rate_limit_retries:
                    raise
                delay = self.rate_limit_backoff * (2 ** attempt)
                attempt += 1
                self.logging.warning(
                    "Rate limited while embedding '%s' (attempt %d of %d), retrying in %.2fs: %s",
                    record.code, attempt, self.rate_limit_retries, delay, exc,
                )
                await pause(delay)

        if len(vector) != self._writer.dimension:
            raise DimensionMismatch(code=record.code, expected=self._writer.dimension, actual=len(vector))
        return vector

    async def embed_chunk(self, group: Sequence[Record]) -> tuple[list[tuple[Record, list[float]]], list[tuple[Record, Exception]]]:
        """Embed one chunk concurrently; a failed record never aborts its siblings.

        Returns:
            The (record, vector) pairs and the (record, error) failures, both in chunk order.
        """
        outcomes = await asyncio.gather(
            *[self._embed_record(record) for record in group],
            return_exceptions=True,
        )

        pairs: list[tuple[Record, list[float]]] = []
        failures: list[tuple[Record, Exception]] = []
        for record, outcome in zip(group, outcomes):
            if isinstance(outcome, Exception):
                failures.append((record, outcome))
                self.logging.error("Embedding failed for '%s': %s", record.code, outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                pairs.append((record, outcome))
        return pairs, failures

    ##########################################
    ################## RUN ###################
    ##########################################

    async def run(
        self,
        records: Sequence[Record],
        on_chunk: ChunkCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Embed and write all records.

        Args:
            records (Sequence[Record]): Records of one file, in file order.
            on_chunk (ChunkCallback | None): Awaited after every chunk with its
                index and the running result.
            cancel_event (asyncio.Event | None): Checked before every chunk.

        Returns:
            PipelineResult: Aggregated counters; never raises for per-record
                or per-chunk failures.
        """
        result = PipelineResult()
        groups = chunk(list(records), self.batch_size)
        self.logging.info("Embedding %d record(s) in %d chunk(s) of up to %d.", len(records), len(groups), self.batch_size)

        for index, group in enumerate(groups):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                self.logging.warning("Embedding cancelled before chunk %d of %d.", index + 1, len(groups))
                break

            pairs, failures = await self.embed_chunk(group)
            result.failed += len(failures)

            if pairs:
                try:
                    rejected = await self._writer.write(pairs)
                    result.conflicting_codes.extend(rejected)
                    result.failed += len(rejected)
                    result.successful += len(pairs) - len(rejected)
                except StorageWriteFailure as exc:
                    if exc.store == "vector":
                        # documents of the failed sub-batches are in the store without vectors
                        result.vector_failure = True
                        result.dangling_codes.extend(exc.codes)
                        result.conflicting_codes.extend(exc.rejected)
                        result.failed += len(exc.codes) + len(exc.rejected)
                        result.successful += len(pairs) - len(exc.codes) - len(exc.rejected)
                    else:
                        result.failed += len(pairs)
                    self.logging.error("Chunk %d of %d failed to write: %s", index + 1, len(groups), exc)
                except Exception as exc:
                    result.failed += len(pairs)
                    self.logging.error("Chunk %d of %d failed: %s", index + 1, len(groups), exc)

            result.total_processed += len(group)
            self.logging.info(
                "Chunk %d of %d done: %d successful, %d failed so far.",
                index + 1, len(groups), result.successful, result.failed,
            )
            if on_chunk is not None:
                await on_chunk(index, result)

            if index < len(groups) - 1:
                await pause(self.batch_delay)

        return result
