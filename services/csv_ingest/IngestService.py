"""Ingestion orchestrator.

Runs one job per uploaded file through CLEANING_UP, PARSING, EMBEDDING and
WRITING, detached from the caller. Jobs are kept in a bounded in-process
registry and can be queried, awaited and cancelled by id.
"""

import asyncio
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from services.csv_ingest.CsvParser import CsvParser
from services.csv_ingest.DualStoreWriter import DualStoreWriter
from services.csv_ingest.EmbeddingPipeline import EmbeddingPipeline
from shared.clients.doc.DocClientInterface import DocClientInterface
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.errors import JobNotFound, ParseError
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingest import DeleteResult, FileSummary, IngestJob, JobStatus, PipelineResult


class IngestService:
    """Owns ingestion jobs and the per-file locks that serialise them."""

    def __init__(
        self,
        helper_config: HelperConfig,
        doc_client: DocClientInterface,
        rag_client: RAGClientInterface,
        embed_client: EmbedClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._doc_client = doc_client
        self.parser = CsvParser(helper_config)
        self.writer = DualStoreWriter(helper_config, doc_client, rag_client, dimension=embed_client.dimension)
        self.pipeline = EmbeddingPipeline(helper_config, embed_client, self.writer)
        self.job_history = helper_config.get_positive_int_val("INGEST_JOB_HISTORY", default=100)

        self._jobs: OrderedDict[str, IngestJob] = OrderedDict()
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        # (file_name, namespace) -> lock and the number of holders plus waiters
        self._key_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._key_lock_users: dict[tuple[str, str], int] = {}

    ##########################################
    ############### JOB HANDLE ###############
    ##########################################

    async def start_ingest(self, data: bytes, file_name: str, namespace: str = "default") -> IngestJob:
        """Register a job and start it in the background.

        Args:
            data (bytes): Raw CSV content.
            file_name (str): Origin file name; re-ingesting the same name replaces its records.
            namespace (str): Target namespace.

        Returns:
            IngestJob: The new job in status RECEIVED.

        Raises:
            ValueError: If file_name or namespace is empty.
        """
        file_name = (file_name or "").strip()
        namespace = (namespace or "").strip() or "default"
        if not file_name:
            raise ValueError("A file name is required.")

        job = IngestJob(file_name=file_name, namespace=namespace)
        self._register(job)
        self._cancel_events[job.id] = asyncio.Event()
        self._tasks[job.id] = asyncio.create_task(self._run_job(job, data))
        self.logging.info("Ingestion job %s received for '%s' in namespace '%s'.", job.id, file_name, namespace)
        return job

    def get_job(self, job_id: str) -> IngestJob:
        """Raises JobNotFound for unknown or evicted ids."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Unknown ingestion job '{job_id}'.")
        return job

    def list_jobs(self) -> list[IngestJob]:
        """All retained jobs, newest first."""
        return list(reversed(self._jobs.values()))

    def cancel_job(self, job_id: str) -> IngestJob:
        """Request cancellation; honoured before the next chunk. Finished jobs are returned unchanged."""
        job = self.get_job(job_id)
        if not job.status.is_terminal:
            self._cancel_events[job_id].set()
            self.logging.info("Cancellation requested for ingestion job %s.", job_id)
        return job

    async def wait_for_job(self, job_id: str) -> IngestJob:
        """Wait until the job reaches a terminal status."""
        job = self.get_job(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            # shield: a cancelled waiter must not cancel the job
            await asyncio.shield(task)
        return job

    async def close(self) -> None:
        """Cancel and drain all running jobs (shutdown)."""
        for job_id, task in list(self._tasks.items()):
            if not task.done():
                self._cancel_events[job_id].set()
        pending = [task for task in self._tasks.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _register(self, job: IngestJob) -> None:
        self._jobs[job.id] = job
        while len(self._jobs) > self.job_history:
            evictable = next((jid for jid, j in self._jobs.items() if j.status.is_terminal), None)
            if evictable is None:
                break
            del self._jobs[evictable]
            self._tasks.pop(evictable, None)
            self._cancel_events.pop(evictable, None)

    @asynccontextmanager
    async def _key_lock(self, file_name: str, namespace: str) -> AsyncIterator[None]:
        """Serialise work on one (file_name, namespace); the lock is dropped once nobody holds or awaits it."""
        key = (file_name, namespace)
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._key_lock_users[key] = self._key_lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_lock_users[key] -= 1
            if self._key_lock_users[key] == 0:
                del self._key_lock_users[key]
                del self._key_locks[key]

    ##########################################
    ################ JOB RUN #################
    ##########################################

    async def _run_job(self, job: IngestJob, data: bytes) -> None:
        async with self._key_lock(job.file_name, job.namespace):
            try:
                await self._execute(job, data)
            except Exception as exc:
                self.logging.exception("Ingestion job %s crashed: %s", job.id, exc)
                job.error = str(exc)
                job.set_status(JobStatus.FAILED)

    async def _execute(self, job: IngestJob, data: bytes) -> None:
        cancel_event = self._cancel_events[job.id]
        if cancel_event.is_set():
            self._cancelled(job)
            return

        # 1. make re-ingestion idempotent
        job.set_status(JobStatus.CLEANING_UP)
        try:
            cleanup = await self.writer.delete_file(job.file_name, job.namespace)
        except Exception as exc:
            await self._fail(job, f"Cleanup failed: {exc}")
            return
        if cleanup.document_error or cleanup.vector_failures:
            await self._fail(job, f"Cleanup failed: {cleanup.document_error or f'{len(cleanup.vector_failures)} vector(s) not deleted'}")
            return

        # 2. parse
        job.set_status(JobStatus.PARSING)
        try:
            parsed = self.parser.parse(data, job.file_name, job.namespace)
        except ParseError as exc:
            await self._fail(job, f"Parse failed: {exc}")
            return
        job.total_records = len(parsed.records)
        job.skipped_rows = parsed.skipped_rows
        if not parsed.records:
            await self._fail(job, "No valid records found in file.")
            return
        if cancel_event.is_set():
            self._cancelled(job)
            return

        # 3. embed and write, chunk by chunk
        job.set_status(JobStatus.EMBEDDING)

        async def on_chunk(index: int, progress: PipelineResult) -> None:
            self._copy_counters(job, progress)
            if job.status == JobStatus.EMBEDDING:
                job.set_status(JobStatus.WRITING)

        result = await self.pipeline.run(parsed.records, on_chunk=on_chunk, cancel_event=cancel_event)
        self._copy_counters(job, result)
        if result.conflicting_codes:
            self.logging.warning(
                "Ingestion job %s rejected %d code(s) already stored for other files: %s",
                job.id, len(result.conflicting_codes), result.conflicting_codes,
            )

        if result.cancelled:
            self._cancelled(job)
            return
        if result.successful == 0:
            message = "No record was embedded and written successfully."
            if result.conflicting_codes and len(result.conflicting_codes) == result.total_processed:
                message = "Every code of the file is already stored for another file in this namespace."
            await self._fail(job, message, rollback=result.vector_failure)
            return

        job.set_status(JobStatus.DONE)
        if result.dangling_codes:
            self.logging.warning(
                "Ingestion job %s left %d document(s) without vectors: %s",
                job.id, len(result.dangling_codes), result.dangling_codes,
            )
        self.logging.info(
            "Ingestion job %s done for '%s': %d successful, %d failed, %d skipped row(s).",
            job.id, job.file_name, job.successful, job.failed, job.skipped_rows,
        )

    @staticmethod
    def _copy_counters(job: IngestJob, result: PipelineResult) -> None:
        job.processed = result.total_processed
        job.successful = result.successful
        job.failed = result.failed
        job.dangling_codes = list(result.dangling_codes)
        job.conflicting_codes = list(result.conflicting_codes)

    def _cancelled(self, job: IngestJob) -> None:
        job.set_status(JobStatus.CANCELLED)
        self.logging.warning("Ingestion job %s for '%s' cancelled.", job.id, job.file_name)

    async def _fail(self, job: IngestJob, message: str, rollback: bool = False) -> None:
        """Mark the job failed; with rollback, remove the records written for its file."""
        job.error = message
        if rollback:
            try:
                removed = await self._doc_client.do_delete_by_file(job.file_name, job.namespace)
                job.rolled_back = True
                self.logging.warning(
                    "Rolled back %d document(s) of '%s' after a vector store failure.", removed, job.file_name
                )
            except Exception as exc:
                self.logging.error("Rollback of '%s' failed: %s", job.file_name, exc)
        job.set_status(JobStatus.FAILED)
        self.logging.error("Ingestion job %s for '%s' failed: %s", job.id, job.file_name, message)

    ##########################################
    ################# FILES ##################
    ##########################################

    async def list_files(self, namespace: str | None = None) -> list[FileSummary]:
        """Document counts per file, optionally restricted to one namespace."""
        counts = await self._doc_client.do_count_by_file(namespace)
        return [FileSummary(file_name=c.file_name, namespace=c.namespace, document_count=c.count) for c in counts]

    async def delete_file(self, file_name: str, namespace: str = "default") -> DeleteResult:
        """Delete a file from both stores, serialised with ingestion of the same file."""
        async with self._key_lock(file_name, namespace):
            return await self.writer.delete_file(file_name, namespace)
