from abc import abstractmethod
from datetime import datetime, timezone
from typing import Any

from shared.clients.ClientInterface import ClientInterface
from shared.clients.doc.models.FileCount import FileCount
from shared.clients.doc.models.Record import Record
from shared.helper.HelperConfig import HelperConfig


class DocClientInterface(ClientInterface):
    """Document store holding one Record per (code, namespace).

    Engines provide the raw collection operations; filters, pipelines and the
    mapping to Records live here.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.page_size = helper_config.get_positive_int_val(f"{self.get_client_type().upper()}_PAGE_SIZE", default=1000)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "doc"
        """
        return "doc"

    ##########################################
    ########### COLLECTION ACCESS ############
    ##########################################

    @abstractmethod
    async def ensure_indexes(self) -> None:
        """Create the unique (code, namespace) key and the (fileName, code) lookup index."""
        pass

    @abstractmethod
    async def _insert_documents(self, documents: list[dict]) -> int:
        """Insert documents unordered and return how many were stored.

        Raises:
            DuplicateCodes: If some documents hit the unique (code, namespace) key;
                the others are still inserted.
            BackendRequestError: On any other store failure.
        """
        pass

    @abstractmethod
    async def _delete_documents(self, filter: dict) -> int:
        """Delete every document matching the filter and return the count."""
        pass

    @abstractmethod
    async def _find_documents(self, filter: dict, projection: dict | None) -> list[dict]:
        """Read every document matching the filter in insertion order.

        Args:
            filter (dict): Query filter, e.g. {"fileName": "a.csv", "namespace": "default"}.
            projection (dict | None): Fields to include, None for the whole document.
        """
        pass

    @abstractmethod
    async def _aggregate_documents(self, pipeline: list[dict]) -> list[dict]:
        pass

    @abstractmethod
    async def _update_document(self, filter: dict, update: dict, upsert: bool) -> None:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_insert_records(self, records: list[Record]) -> int:
        """Bulk-insert records, stamping the insert time on those that have none.

        Args:
            records (list[Record]): The records to insert.

        Returns:
            int: Number of inserted documents.

        Raises:
            DuplicateCodes: If a code already exists in its namespace.
        """
        if not records:
            return 0
        now = datetime.now(timezone.utc)
        documents = [
            (r if r.timestamp is not None else r.model_copy(update={"timestamp": now})).to_document()
            for r in records
        ]
        return await self._insert_documents(documents)

    async def do_delete_many(self, filter: dict) -> int:
        """Delete all documents matching the filter.

        Returns:
            int: Number of deleted documents.
        """
        return await self._delete_documents(filter)

    async def do_delete_by_file(self, file_name: str, namespace: str) -> int:
        """Delete every record of (file_name, namespace)."""
        return await self.do_delete_many({"fileName": file_name, "namespace": namespace})

    async def do_delete_by_codes(self, codes: list[str], namespace: str) -> int:
        """Delete the records with the given codes in a namespace."""
        if not codes:
            return 0
        return await self.do_delete_many({"code": {"$in": list(codes)}, "namespace": namespace})

    async def do_find(self, filter: dict, projection: dict | None = None) -> list[dict]:
        """Read ALL documents matching the filter.

        Returns:
            list[dict]: The raw documents.
        """
        return await self._find_documents(filter, projection)

    async def do_find_records(self, file_name: str | None = None, namespace: str | None = None, codes: list[str] | None = None) -> list[Record]:
        """Read records by file, namespace and/or codes.

        Returns:
            list[Record]: The matching records.
        """
        filter: dict[str, Any] = {}
        if file_name is not None:
            filter["fileName"] = file_name
        if namespace is not None:
            filter["namespace"] = namespace
        if codes is not None:
            filter["code"] = {"$in": list(codes)}
        documents = await self.do_find(filter, projection={"_id": 0})
        return [Record.from_document(d) for d in documents]

    async def do_find_codes(self, file_name: str, namespace: str) -> list[str]:
        """Return the codes of every record of (file_name, namespace)."""
        documents = await self.do_find({"fileName": file_name, "namespace": namespace}, projection={"_id": 0, "code": 1})
        return [d["code"] for d in documents if d.get("code")]

    async def do_aggregate(self, pipeline: list[dict]) -> list[dict]:
        """Run an aggregation pipeline and return its result documents."""
        return await self._aggregate_documents(pipeline)

    async def do_count_by_file(self, namespace: str | None = None) -> list[FileCount]:
        """Count records grouped by (namespace, fileName).

        Args:
            namespace (str | None): Restrict to one namespace, None for all.

        Returns:
            list[FileCount]: One entry per key, sorted by namespace and file name.
        """
        pipeline: list[dict] = []
        if namespace is not None:
            pipeline.append({"$match": {"namespace": namespace}})
        pipeline += [
            {"$group": {
                "_id": {"namespace": {"$ifNull": ["$namespace", "default"]}, "fileName": "$fileName"},
                "count": {"$sum": 1},
            }},
            {"$sort": {"_id.namespace": 1, "_id.fileName": 1}},
        ]
        rows = await self.do_aggregate(pipeline)
        return [
            FileCount(namespace=row["_id"]["namespace"], file_name=row["_id"]["fileName"], count=row["count"])
            for row in rows
            if row["_id"].get("fileName")
        ]

    async def do_distinct_namespaces(self) -> list[str]:
        """Return every namespace that holds at least one record."""
        rows = await self.do_aggregate([
            {"$group": {"_id": {"$ifNull": ["$namespace", "default"]}}},
            {"$sort": {"_id": 1}},
        ])
        return [row["_id"] for row in rows]

    async def do_upsert_record(self, record: Record) -> None:
        """Insert or update the record keyed by (code, namespace).

        The insert timestamp is only set when the record is created.
        """
        fields = record.to_document()
        fields.pop("timestamp", None)
        update = {
            "$set": fields,
            "$setOnInsert": {"timestamp": record.timestamp or datetime.now(timezone.utc)},
        }
        await self._update_document({"code": record.code, "namespace": record.namespace}, update, upsert=True)
