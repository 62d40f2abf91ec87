"""Vector mirror.

Copies the stored records of one file into a second vector store, e.g. a
Chroma server next to the Pinecone index. Records are read back from the
document store and re-embedded chunk by chunk with the ingestion pipeline;
the document store and the primary index are never written.
"""

from services.csv_ingest.EmbeddingPipeline import EmbeddingPipeline
from shared.clients.doc.DocClientInterface import DocClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorEntry import VectorEntry
from shared.helper.HelperBatch import chunk, pause
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingest import SyncError, SyncResult


class VectorMirrorService:
    def __init__(
        self,
        helper_config: HelperConfig,
        doc_client: DocClientInterface,
        mirror_client: RAGClientInterface,
        pipeline: EmbeddingPipeline,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._doc_client = doc_client
        self._mirror_client = mirror_client
        self._pipeline = pipeline

    async def sync_file(self, file_name: str, namespace: str = "default") -> SyncResult:
        """Embed every record of (file_name, namespace) and upsert it into the mirror.

        A failed upsert marks every record of its chunk as not synced; the
        remaining chunks still run.

        Raises:
            ValueError: If file_name is empty.
            BackendRequestError: If the document store cannot be read.
        """
        file_name = (file_name or "").strip()
        namespace = (namespace or "").strip() or "default"
        if not file_name:
            raise ValueError("A file name is required.")

        records = await self._doc_client.do_find_records(file_name=file_name, namespace=namespace)
        result = SyncResult(file_name=file_name, namespace=namespace, total=len(records))
        groups = chunk(records, self._pipeline.batch_size)
        self.logging.info(
            "Syncing %d record(s) of '%s' in namespace '%s' to %s.",
            len(records), file_name, namespace, self._mirror_client.get_engine_name(),
        )

        for index, group in enumerate(groups):
            pairs, failures = await self._pipeline.embed_chunk(group)
            result.errors += [SyncError(code=record.code, error=str(exc)) for record, exc in failures]

            entries = [
                VectorEntry.from_record(
                    code=record.code,
                    file_name=record.file_name,
                    metadata_small=record.metadata_small,
                    namespace=record.namespace,
                    values=vector,
                )
                for record, vector in pairs
            ]
            if entries:
                try:
                    await self._mirror_client.do_upsert_vectors(entries, namespace)
                    result.synced += len(entries)
                except Exception as exc:
                    self.logging.error("Mirror upsert failed for chunk %d of %d: %s", index + 1, len(groups), exc)
                    result.errors += [SyncError(code=entry.id, error=str(exc)) for entry in entries]

            if index < len(groups) - 1:
                await pause(self._pipeline.batch_delay)

        self.logging.info(
            "Synced '%s' to %s: %d of %d record(s), %d error(s).",
            file_name, self._mirror_client.get_engine_name(), result.synced, result.total, len(result.errors),
        )
        return result
