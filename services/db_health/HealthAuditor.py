"""Health auditor.

Compares per-file record counts in the document store with per-file vector
counts in the vector store, and scans every namespace for orphan vectors
(entries whose metadata lacks a fileName).

Per-file vector counts come from a zero-vector similarity query filtered on
fileName and capped at HEALTH_AUDIT_TOP_K. A count equal to that cap is
reported as truncated, since the real count may be higher.
"""

from shared.clients.doc.DocClientInterface import DocClientInterface
from shared.clients.doc.models.Record import Record
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperBatch import chunk
from shared.helper.HelperConfig import HelperConfig
from shared.models.health import AuditReport, FileAudit


class HealthAuditor:
    """Read-only consistency check across both stores."""

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
        self.top_k = helper_config.get_positive_int_val("HEALTH_AUDIT_TOP_K", default=10000)
        self.fetch_batch_size = helper_config.get_positive_int_val("RAG_FETCH_BATCH_SIZE", default=100)

    ##########################################
    ################# AUDIT ##################
    ##########################################

    async def _count_vectors_for_file(self, file_name: str, namespace: str) -> int:
        matches = await self._rag_client.do_query(
            vector=[0.0] * self.dimension,
            top_k=self.top_k,
            filter={"fileName": {"$eq": file_name}},
            namespace=namespace,
            include_metadata=False,
        )
        return len(matches)

    async def _resolve_namespaces(self, namespaces: list[str] | None) -> tuple[list[str], int | None]:
        """Namespaces to audit (union of both stores unless given) and the index dimension."""
        index_dimension: int | None = None
        vector_namespaces: list[str] = []
        try:
            stats = await self._rag_client.do_describe_index_stats()
            index_dimension = stats.dimension or None
            vector_namespaces = list(stats.namespaces)
        except Exception as exc:
            self.logging.error("Could not read vector index stats: %s", exc)
        if namespaces:
            return list(dict.fromkeys(namespaces)), index_dimension
        doc_namespaces = await self._doc_client.do_distinct_namespaces()
        return sorted(set(doc_namespaces) | set(vector_namespaces)), index_dimension

    async def audit(self, namespaces: list[str] | None = None) -> AuditReport:
        """Build an Audit Report for the given namespaces (default: all).

        Per-file and per-namespace errors are logged and reported on the
        affected entries; the report is returned with the partial data.

        Returns:
            AuditReport: Per-file counts, totals, orphan ids and a healthy flag.
        """
        self.logging.info("Starting database health audit...")
        namespace_list, index_dimension = await self._resolve_namespaces(namespaces)
        if index_dimension is not None and index_dimension != self.dimension:
            self.logging.warning(
                "Vector index dimension %d differs from EMBED_DIMENSION %d.", index_dimension, self.dimension
            )

        document_counts = {
            (c.namespace, c.file_name): c.count
            for c in await self._doc_client.do_count_by_file()
            if c.namespace in namespace_list
        }

        report = AuditReport(index_dimension=index_dimension)
        scan_failed = False
        for namespace in namespace_list:
            vector_file_names: set[str] = set()
            try:
                entries = await self._rag_client.do_scan(namespace)
                report.total_vectors += len(entries)
                orphans = [entry.id for entry in entries if entry.is_orphan]
                vector_file_names = {entry.file_name for entry in entries if not entry.is_orphan}
                if orphans:
                    report.orphan_ids[namespace] = orphans
                    report.total_orphans += len(orphans)
                    self.logging.warning("Found %d orphan vector(s) in namespace '%s'.", len(orphans), namespace)
            except Exception as exc:
                scan_failed = True
                self.logging.error("Vector scan of namespace '%s' failed: %s", namespace, exc)

            doc_file_names = {file_name for ns, file_name in document_counts if ns == namespace}
            for file_name in sorted(doc_file_names | vector_file_names):
                file_audit = FileAudit(
                    namespace=namespace,
                    file_name=file_name,
                    document_count=document_counts.get((namespace, file_name), 0),
                )
                try:
                    file_audit.vector_count = await self._count_vectors_for_file(file_name, namespace)
                    file_audit.truncated = file_audit.vector_count >= self.top_k
                except Exception as exc:
                    file_audit.error = str(exc)
                    self.logging.error("Vector count for '%s' in namespace '%s' failed: %s", file_name, namespace, exc)
                file_audit.delta = file_audit.document_count - file_audit.vector_count
                report.files.append(file_audit)

        report.total_documents = sum(document_counts.values())
        report.total_dangling = sum(f.delta for f in report.files if f.delta > 0)
        report.healthy = (
            not scan_failed
            and report.total_orphans == 0
            and all(f.delta == 0 and f.error is None for f in report.files)
        )
        self.logging.info(
            "Audit complete: %d document(s), %d vector(s), %d orphan(s), %d dangling, healthy=%s.",
            report.total_documents, report.total_vectors, report.total_orphans, report.total_dangling, report.healthy,
        )
        return report

    ##########################################
    ################## DIFF ##################
    ##########################################

    async def find_dangling(self, file_name: str, namespace: str = "default") -> list[Record]:
        """Records of a file whose code has no vector.

        Returns:
            list[Record]: The dangling records, in document-store order.
        """
        records = await self._doc_client.do_find_records(file_name=file_name, namespace=namespace)
        dangling: list[Record] = []
        for batch in chunk(records, self.fetch_batch_size):
            fetched = await self._rag_client.do_fetch([r.code for r in batch], namespace)
            dangling.extend(r for r in batch if r.code not in fetched)
        self.logging.info(
            "Found %d dangling record(s) of %d for '%s' in namespace '%s'.",
            len(dangling), len(records), file_name, namespace,
        )
        return dangling
