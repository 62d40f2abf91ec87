"""Dual-store writer.

Writes Records to the document store and their Vector Entries to the vector
store, and deletes from both. The two sides succeed or fail independently:
there is no cross-store transaction, so every failure is reported with its
store provenance and the affected codes.
"""

from typing import Sequence

from shared.clients.doc.DocClientInterface import DocClientInterface
from shared.clients.doc.models.Record import Record
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorEntry import VectorEntry
from shared.errors import DuplicateCodes, StorageWriteFailure
from shared.helper.HelperBatch import chunk
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingest import DeleteResult


class DualStoreWriter:
    """Keeps Records and Vector Entries in step across both stores."""

    def __init__(
        self,
        helper_config: HelperConfig,
        doc_client: DocClientInterface,
        rag_client: RAGClientInterface,
        dimension: int | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._doc_client = doc_client
        self._rag_client = rag_client
        self.dimension = dimension or helper_config.get_positive_int_val("EMBED_DIMENSION", default=1536)
        self.upsert_batch_size = helper_config.get_positive_int_val("RAG_UPSERT_BATCH_SIZE", default=100)
        self.delete_batch_size = helper_config.get_positive_int_val("RAG_DELETE_BATCH_SIZE", default=100)
        self.file_lookup_top_k = helper_config.get_positive_int_val("HEALTH_AUDIT_TOP_K", default=10000)

    ##########################################
    ################# WRITE ##################
    ##########################################

    async def _claim_codes(self, records: list[Record], namespace: str) -> list[str]:
        """Codes of the batch already owned by another record of the namespace.

        Codes are unique per namespace; the first file to store a code keeps it.
        """
        owners = await self._doc_client.do_find_records(namespace=namespace, codes=[r.code for r in records])
        for owner in owners:
            self.logging.warning(
                "Code '%s' already exists in namespace '%s' (file '%s'), row rejected.",
                owner.code, namespace, owner.file_name,
            )
        return [owner.code for owner in owners]

    async def write(self, batch: Sequence[tuple[Record, list[float]]]) -> list[str]:
        """Insert records, then upsert their vectors in sub-batches.

        All vectors are dimension-checked before anything is written. Records
        whose code another file already stores in the namespace are rejected
        and neither store is touched for them.

        Args:
            batch: (record, vector) pairs, all of the same namespace.

        Returns:
            list[str]: The rejected codes, empty when the whole batch was written.

        Raises:
            DimensionMismatch: If any vector has the wrong length (nothing written).
            StorageWriteFailure: store="document" if the insert failed (nothing
                written), store="vector" if an upsert failed after the insert
                (codes of the failed and remaining sub-batches are dangling).
        """
        if not batch:
            return []

        records = [record for record, _ in batch]
        entries = [
            VectorEntry.from_record(
                code=record.code,
                file_name=record.file_name,
                metadata_small=record.metadata_small,
                namespace=record.namespace,
                values=vector,
            )
            for record, vector in batch
        ]
        for entry in entries:
            entry.validate_dimension(self.dimension)

        codes = [record.code for record in records]
        namespace = records[0].namespace
        engine = self._doc_client.get_engine_name()
        try:
            rejected = await self._claim_codes(records, namespace)
        except Exception as exc:
            self.logging.error("Code lookup failed for %d record(s): %s", len(records), exc)
            raise StorageWriteFailure("document", codes, exc, engine=engine) from exc

        accepted = [record for record in records if record.code not in rejected]
        try:
            if accepted:
                await self._doc_client.do_insert_records(accepted)
        except DuplicateCodes as exc:
            # another writer stored some of the codes after the lookup
            self.logging.warning("%s", exc)
            rejected += exc.codes
        except Exception as exc:
            self.logging.error("Document insert failed for %d record(s): %s", len(records), exc)
            raise StorageWriteFailure("document", codes, exc, engine=engine) from exc

        entries = [entry for entry in entries if entry.id not in rejected]
        sub_batches = chunk(entries, self.upsert_batch_size)
        for index, sub_batch in enumerate(sub_batches):
            try:
                await self._rag_client.do_upsert_vectors(sub_batch, namespace)
            except Exception as exc:
                dangling = [entry.id for remaining in sub_batches[index:] for entry in remaining]
                self.logging.error(
                    "Vector upsert failed after document insert, %d record(s) left without vectors %s: %s",
                    len(dangling), dangling, exc,
                )
                raise StorageWriteFailure(
                    "vector", dangling, exc, engine=self._rag_client.get_engine_name(), rejected=rejected,
                ) from exc

        self.logging.debug(
            "Wrote %d record(s) to both stores in namespace '%s', %d rejected.", len(entries), namespace, len(rejected)
        )
        return rejected

    ##########################################
    ################# DELETE #################
    ##########################################

    async def _delete_vectors(self, ids: Sequence[str], namespace: str, result: DeleteResult) -> None:
        """Delete vectors batch by batch, counting only confirmed deletions."""
        for id_batch in chunk(list(ids), self.delete_batch_size):
            try:
                existing = await self._rag_client.do_fetch(id_batch, namespace)
                if existing:
                    await self._rag_client.do_delete_ids(list(existing), namespace)
                result.vectors_deleted += len(existing)
            except Exception as exc:
                self.logging.error(
                    "Vector delete failed for %d id(s) in namespace '%s': %s", len(id_batch), namespace, exc
                )
                result.vector_failures.extend(id_batch)

    async def delete(self, codes: Sequence[str], namespace: str) -> DeleteResult:
        """Remove records and vectors for the given codes.

        The two deletes are independent; either side may partially fail.

        Returns:
            DeleteResult: Counts confirmed by each store.
        """
        codes = list(dict.fromkeys(codes))
        result = DeleteResult()
        if not codes:
            return result
        try:
            result.documents_deleted = await self._doc_client.do_delete_by_codes(codes, namespace)
        except Exception as exc:
            self.logging.error("Document delete failed for %d code(s) in namespace '%s': %s", len(codes), namespace, exc)
            result.document_error = str(exc)
        await self._delete_vectors(codes, namespace, result)
        return result

    async def find_vector_ids_for_file(self, file_name: str, namespace: str) -> list[str]:
        """Ids of vectors whose metadata carries file_name (bounded by the lookup top-K)."""
        matches = await self._rag_client.do_query(
            vector=[0.0] * self.dimension,
            top_k=self.file_lookup_top_k,
            filter={"fileName": {"$eq": file_name}},
            namespace=namespace,
            include_metadata=False,
        )
        return [match.id for match in matches]

    async def delete_file(self, file_name: str, namespace: str) -> DeleteResult:
        """Remove everything stored for (file_name, namespace) from both stores.

        Vector ids are the union of the document-store codes of the file and
        the vector ids tagged with the file name.

        Raises:
            StorageWriteFailure: If either store cannot be read to collect the ids.
        """
        try:
            codes = await self._doc_client.do_find_codes(file_name, namespace)
        except Exception as exc:
            raise StorageWriteFailure("document", [], exc, engine=self._doc_client.get_engine_name()) from exc
        try:
            vector_ids = await self.find_vector_ids_for_file(file_name, namespace)
        except Exception as exc:
            raise StorageWriteFailure("vector", codes, exc, engine=self._rag_client.get_engine_name()) from exc

        result = DeleteResult()
        try:
            result.documents_deleted = await self._doc_client.do_delete_by_file(file_name, namespace)
        except Exception as exc:
            self.logging.error("Document delete failed for '%s' in namespace '%s': %s", file_name, namespace, exc)
            result.document_error = str(exc)

        ids = list(dict.fromkeys([*codes, *vector_ids]))
        await self._delete_vectors(ids, namespace, result)
        self.logging.info(
            "Deleted '%s' in namespace '%s': %d document(s), %d vector(s), %d vector delete failure(s).",
            file_name, namespace, result.documents_deleted, result.vectors_deleted, len(result.vector_failures),
        )
        return result
