"""Driver-level tests for the MongoDB document client."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from pymongo.errors import BulkWriteError, OperationFailure, ServerSelectionTimeoutError

from shared.clients.doc.models.Record import Record
from shared.clients.doc.mongo.DocClientMongo import DocClientMongo
from shared.errors import BackendRequestError, ConfigurationError, DuplicateCodes


class RecordingCursor:
    def __init__(self, documents):
        self.documents = documents
        self.sort_spec = None

    def sort(self, key, direction):
        self.sort_spec = (key, direction)
        return self

    async def to_list(self, length=None):
        return list(self.documents)


class RecordingCollection:
    """Collection stand-in that records every driver call."""

    def __init__(self):
        self.calls = []
        self.documents = []
        self.aggregate_rows = []
        self.insert_error = None
        self.index_error = None
        self.fail_with = None

    def _record(self, name, /, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    async def create_index(self, keys, **kwargs):
        self._record("create_index", keys, **kwargs)
        if kwargs.get("unique") and self.index_error is not None:
            raise self.index_error
        return kwargs.get("name")

    async def insert_many(self, documents, ordered=True):
        self._record("insert_many", documents, ordered=ordered)
        if self.insert_error is not None:
            raise self.insert_error
        return SimpleNamespace(inserted_ids=[object() for _ in documents])

    async def delete_many(self, filter):
        self._record("delete_many", filter)
        return SimpleNamespace(deleted_count=3)

    def find(self, filter, projection=None, batch_size=0):
        self._record("find", filter, projection, batch_size=batch_size)
        return RecordingCursor(self.documents)

    async def aggregate(self, pipeline):
        self._record("aggregate", pipeline)
        return RecordingCursor(self.aggregate_rows)

    async def update_one(self, filter, update, upsert=False):
        self._record("update_one", filter, update, upsert=upsert)


class RecordingMongoClient:
    def __init__(self, collection):
        self.collection = collection
        self.paths = []
        self.closed = False
        self.admin = SimpleNamespace(command=self._command)
        self.commands = []

    async def _command(self, name):
        self.commands.append(name)
        return {"ok": 1}

    def __getitem__(self, database):
        client = self

        class Database:
            def __getitem__(self, collection_name):
                client.paths.append((database, collection_name))
                return client.collection

        return Database()

    async def close(self):
        self.closed = True


@pytest.fixture
def mongo_env(monkeypatch):
    monkeypatch.setenv("DOC_MONGO_URI", "mongodb://localhost:27017")
    monkeypatch.setenv("DOC_MONGO_DATABASE", "rag")
    monkeypatch.setenv("DOC_PAGE_SIZE", "2")
    monkeypatch.delenv("DOC_MONGO_COLLECTION", raising=False)


@pytest.fixture
def collection():
    return RecordingCollection()


@pytest_asyncio.fixture
async def client(helper_config, mongo_env, collection):
    client = DocClientMongo(helper_config)
    mongo = RecordingMongoClient(collection)
    await client.boot(mongo_client=mongo)
    collection.calls.clear()
    yield client
    await client.close()
    assert mongo.closed is True


def test_uri_and_database_are_required(helper_config, mongo_env, monkeypatch):
    monkeypatch.delenv("DOC_MONGO_DATABASE")
    with pytest.raises(ConfigurationError):
        DocClientMongo(helper_config)
    monkeypatch.setenv("DOC_MONGO_DATABASE", "rag")
    monkeypatch.delenv("DOC_MONGO_URI")
    with pytest.raises(ConfigurationError):
        DocClientMongo(helper_config)


@pytest.mark.asyncio
async def test_boot_creates_unique_code_index(helper_config, mongo_env, collection):
    client = DocClientMongo(helper_config)
    mongo = RecordingMongoClient(collection)
    await client.boot(mongo_client=mongo)

    indexes = [(args[0], kwargs) for name, args, kwargs in collection.calls if name == "create_index"]
    assert indexes == [
        ([("code", 1), ("namespace", 1)], {"unique": True, "name": "code_namespace_unique"}),
        ([("fileName", 1), ("code", 1)], {"name": "fileName_code"}),
    ]
    assert mongo.paths[0] == ("rag", "records")
    await client.check_health()
    assert mongo.commands == ["ping"]


@pytest.mark.asyncio
async def test_boot_survives_existing_duplicates(helper_config, mongo_env, collection):
    collection.index_error = OperationFailure("E11000 duplicate key error", code=11000)
    client = DocClientMongo(helper_config)
    await client.boot(mongo_client=RecordingMongoClient(collection))

    assert [name for name, _, _ in collection.calls] == ["create_index", "create_index"]


@pytest.mark.asyncio
async def test_insert_records_is_unordered_and_stamped(client, collection):
    records = [
        Record(code="A", file_name="f.csv", metadata_small="a", metadata_big_1={"k": 1}),
        Record(code="B", file_name="f.csv", metadata_small="b"),
    ]
    assert await client.do_insert_records(records) == 2

    name, args, kwargs = collection.calls[0]
    assert name == "insert_many"
    assert kwargs == {"ordered": False}
    first = args[0][0]
    assert first["fileName"] == "f.csv"
    assert first["metadata_big_1"] == {"k": 1}
    assert isinstance(first["timestamp"], datetime)
    assert first["timestamp"].tzinfo is not None
    assert "metadata_big_2" not in first


@pytest.mark.asyncio
async def test_duplicate_key_errors_become_duplicate_codes(client, collection):
    collection.insert_error = BulkWriteError({
        "writeErrors": [{"index": 1, "code": 11000, "errmsg": "E11000 duplicate key error"}],
        "nInserted": 1,
    })
    records = [
        Record(code="A", file_name="f.csv", namespace="shop", metadata_small="a"),
        Record(code="B", file_name="f.csv", namespace="shop", metadata_small="b"),
    ]
    with pytest.raises(DuplicateCodes) as info:
        await client.do_insert_records(records)

    assert info.value.codes == ["B"]
    assert info.value.inserted == 1
    assert info.value.namespace == "shop"


@pytest.mark.asyncio
async def test_other_write_errors_become_backend_errors(client, collection):
    collection.insert_error = BulkWriteError({
        "writeErrors": [{"index": 0, "code": 121, "errmsg": "Document failed validation"}],
        "nInserted": 0,
    })
    with pytest.raises(BackendRequestError):
        await client.do_insert_records([Record(code="A", file_name="f.csv")])


@pytest.mark.asyncio
async def test_find_records_filters_and_sorts(client, collection):
    stamp = datetime(2023, 11, 14, tzinfo=timezone.utc)
    collection.documents = [{"code": "A", "fileName": "f.csv", "namespace": "shop", "metadata_small": "a", "timestamp": stamp}]

    records = await client.do_find_records(namespace="shop", codes=["A"])

    name, args, kwargs = collection.calls[0]
    assert args == ({"namespace": "shop", "code": {"$in": ["A"]}}, {"_id": 0})
    assert kwargs == {"batch_size": 2}
    assert records[0].timestamp == stamp
    assert records[0].file_name == "f.csv"


@pytest.mark.asyncio
async def test_count_by_file_groups_on_namespace_and_file(client, collection):
    collection.aggregate_rows = [
        {"_id": {"namespace": "default", "fileName": "a.csv"}, "count": 3},
        {"_id": {"namespace": "default", "fileName": None}, "count": 1},
    ]

    counts = await client.do_count_by_file("default")

    assert [(c.namespace, c.file_name, c.count) for c in counts] == [("default", "a.csv", 3)]
    pipeline = collection.calls[0][1][0]
    assert pipeline[0] == {"$match": {"namespace": "default"}}


@pytest.mark.asyncio
async def test_upsert_record_sets_fields_and_insert_timestamp(client, collection):
    await client.do_upsert_record(Record(code="A", file_name="f.csv", metadata_small="a", source="repair"))

    name, (filter, update), kwargs = collection.calls[0]
    assert filter == {"code": "A", "namespace": "default"}
    assert kwargs == {"upsert": True}
    assert update["$set"]["source"] == "repair"
    assert "timestamp" not in update["$set"]
    assert isinstance(update["$setOnInsert"]["timestamp"], datetime)


@pytest.mark.asyncio
async def test_delete_by_codes_skips_empty_list_and_raises_on_error(client, collection):
    assert await client.do_delete_by_codes([], "default") == 0
    assert collection.calls == []
    assert await client.do_delete_by_codes(["A"], "default") == 3

    collection.fail_with = ServerSelectionTimeoutError("no servers")
    with pytest.raises(BackendRequestError):
        await client.do_delete_by_codes(["A"], "default")
