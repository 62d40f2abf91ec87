"""Repair engine.

Brings a list of targets back into a consistent state in both stores: missing
vectors are re-embedded and upserted, vectors without fileName metadata get a
metadata-only update, and the document-store record is upserted. Work runs in
outer batches, each gated by a confirmation unless auto mode is on.
"""

import asyncio
import os
from typing import Awaitable, Callable, Sequence

from services.csv_ingest.CsvParser import CsvParser
from services.db_health.RepairLog import RepairLog
from shared.clients.doc.DocClientInterface import DocClientInterface
from shared.clients.doc.models.Record import Record
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorEntry import VectorEntry
from shared.errors import DimensionMismatch
from shared.helper.HelperBatch import chunk, pause
from shared.helper.HelperConfig import HelperConfig
from shared.models.health import RepairResult, RepairTarget

ConfirmCallback = Callable[[list[RepairTarget]], Awaitable[bool]]

CREATED = "created"
METADATA_UPDATED = "metadata_updated"
HEALTHY = "healthy"


class RepairService:
    """Re-embeds, patches and upserts targets across both stores."""

    def __init__(
        self,
        helper_config: HelperConfig,
        doc_client: DocClientInterface,
        rag_client: RAGClientInterface,
        embed_client: EmbedClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self._doc_client = doc_client
        self._rag_client = rag_client
        self._embed_client = embed_client
        self.dimension = embed_client.dimension
        self.batch_size = helper_config.get_positive_int_val("REPAIR_BATCH_SIZE", default=20)
        self.concurrency = helper_config.get_positive_int_val("REPAIR_CONCURRENCY", default=5)
        self.batch_delay = helper_config.get_delay_seconds("REPAIR_BATCH_DELAY_MS", default_ms=100)

    ##########################################
    ################# INPUTS #################
    ##########################################

    def load_targets_from_log(self, path: str) -> list[RepairTarget]:
        """Targets from a repair log; entries without code or fileName are skipped."""
        targets: list[RepairTarget] = []
        for document in RepairLog(self._helper_config).read(path):
            code = str(document.get("code") or "").strip()
            file_name = str(document.get("fileName") or "").strip()
            if not code or not file_name:
                self.logging.warning("Skipping repair log entry without code or fileName: %s", document)
                continue
            targets.append(RepairTarget(
                code=code,
                file_name=file_name,
                metadata_small=str(document.get("metadata_small") or ""),
                source=document.get("source"),
            ))
        return targets

    def load_targets_from_csv(self, path: str, file_name: str | None = None) -> list[RepairTarget]:
        """Targets from a CSV file; the file's base name is the fileName unless given."""
        file_name = file_name or os.path.basename(path)
        with open(path, "rb") as f:
            parsed = CsvParser(self._helper_config).parse(f.read(), file_name=file_name)
        return [
            RepairTarget(code=r.code, file_name=r.file_name, metadata_small=r.metadata_small, source=r.source)
            for r in parsed.records
        ]

    ##########################################
    ################# REPAIR #################
    ##########################################

    async def _repair_target(self, target: RepairTarget, namespace: str, sem: asyncio.Semaphore) -> str:
        """Repair one target.

        Returns:
            str: CREATED, METADATA_UPDATED or HEALTHY for the vector side.

        Raises:
            DimensionMismatch: If the stored or new vector has the wrong length.
            Exception: Propagated to gather() on any store or provider failure.
        """
        async with sem:
            metadata = {
                "code": target.code,
                "fileName": target.file_name,
                "metadata_small": target.metadata_small,
                "namespace": namespace,
            }
            fetched = await self._rag_client.do_fetch([target.code], namespace)
            existing = fetched.get(target.code)

            if existing is None:
                vector = await self._embed_client.do_embed_text(f"{target.code}\n{target.metadata_small}")
                entry = VectorEntry(id=target.code, values=vector, metadata=metadata)
                entry.validate_dimension(self.dimension)
                await self._rag_client.do_upsert_vectors([entry], namespace)
                outcome = CREATED
            else:
                if existing.values:
                    existing.validate_dimension(self.dimension)
                if existing.is_orphan:
                    await self._rag_client.do_update_metadata(target.code, metadata, namespace)
                    outcome = METADATA_UPDATED
                else:
                    outcome = HEALTHY

            await self._doc_client.do_upsert_record(Record(
                code=target.code,
                file_name=target.file_name,
                namespace=namespace,
                metadata_small=target.metadata_small,
                source=target.source,
            ))
            return outcome

    async def repair(
        self,
        targets: Sequence[RepairTarget],
        auto: bool = False,
        namespace: str = "default",
        confirm: ConfirmCallback | None = None,
    ) -> RepairResult:
        """Repair targets in confirmed outer batches.

        Args:
            targets (Sequence[RepairTarget]): Records that must exist in both stores.
            auto (bool): Skip the confirmation gate.
            namespace (str): Namespace of the targets.
            confirm (ConfirmCallback | None): Awaited with each batch unless auto;
                a batch is only mutated if it returns True. Without it and
                without auto nothing is mutated.

        Returns:
            RepairResult: Per-outcome counts.
        """
        result = RepairResult(total=len(targets))
        batches = chunk(list(targets), self.batch_size)
        self.logging.info("Repairing %d target(s) in %d batch(es), auto=%s.", len(targets), len(batches), auto)

        for index, batch in enumerate(batches):
            if not auto:
                approved = confirm is not None and await confirm(batch)
                if not approved:
                    result.skipped_batches += 1
                    self.logging.info("Batch %d of %d skipped (not confirmed).", index + 1, len(batches))
                    continue

            sem = asyncio.Semaphore(self.concurrency)
            outcomes = await asyncio.gather(
                *[self._repair_target(target, namespace, sem) for target in batch],
                return_exceptions=True,
            )
            for target, outcome in zip(batch, outcomes):
                if isinstance(outcome, DimensionMismatch):
                    result.dimension_mismatches += 1
                    result.failed_codes.append(target.code)
                    self.logging.error("Skipping '%s': %s", target.code, outcome)
                elif isinstance(outcome, Exception):
                    result.failed += 1
                    result.failed_codes.append(target.code)
                    self.logging.error("Repair failed for '%s': %s", target.code, outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.documents_upserted += 1
                    if outcome == CREATED:
                        result.vectors_created += 1
                    elif outcome == METADATA_UPDATED:
                        result.metadata_updated += 1
                    else:
                        result.already_healthy += 1

            self.logging.info(
                "Batch %d of %d repaired: %d vector(s) created, %d metadata update(s), %d failure(s) so far.",
                index + 1, len(batches), result.vectors_created, result.metadata_updated,
                result.failed + result.dimension_mismatches,
            )
            if index < len(batches) - 1:
                await pause(self.batch_delay)

        return result
