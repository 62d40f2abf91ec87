"""Wire-level tests for the Chroma vector store client."""

import json

import httpx
import pytest
import pytest_asyncio

from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.rag.chroma.RAGClientChroma import RAGClientChroma
from shared.clients.rag.models.VectorEntry import VectorEntry
from shared.errors import BackendRequestError

COLLECTIONS = "/api/v2/tenants/default_tenant/databases/default_database/collections"


@pytest.fixture
def chroma_env(monkeypatch):
    monkeypatch.setenv("RAG_CHROMA_BASE_URL", "http://chroma.test:8000")
    monkeypatch.setenv("RAG_LIST_PAGE_SIZE", "2")
    for key in ("RAG_CHROMA_API_KEY", "RAG_CHROMA_TENANT", "RAG_CHROMA_DATABASE"):
        monkeypatch.delenv(key, raising=False)


@pytest_asyncio.fixture
async def make_client(helper_config, chroma_env):
    clients = []

    async def factory(handler):
        def with_collections(request: httpx.Request) -> httpx.Response:
            # every namespace resolves to the collection id "col-<namespace>"
            if request.method == "POST" and request.url.path == COLLECTIONS:
                name = json.loads(request.content)["name"]
                return httpx.Response(200, json={"id": f"col-{name}", "name": name})
            return handler(request)

        client = RAGClientChroma(helper_config)
        await client.boot(transport=httpx.MockTransport(with_collections))
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.close()


@pytest.mark.asyncio
async def test_upsert_resolves_the_namespace_collection_once(make_client):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={})

    client = await make_client(handler)
    entry = VectorEntry.from_record("C1", "f.csv", "small", "shop", [0.1, 0.2])
    await client.do_upsert_vectors([entry], "shop")
    await client.do_upsert_vectors([entry], "shop")

    assert client._collection_ids == {"shop": "col-shop"}
    assert [path for path, _ in seen] == [f"{COLLECTIONS}/col-shop/upsert"] * 2
    assert seen[0][1] == {
        "ids": ["C1"],
        "embeddings": [[0.1, 0.2]],
        "metadatas": [{"code": "C1", "fileName": "f.csv", "metadata_small": "small", "namespace": "shop"}],
        "documents": ["C1"],
    }


@pytest.mark.asyncio
async def test_collection_is_created_with_cosine_space(helper_config, chroma_env):
    created = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == COLLECTIONS:
            created.update(json.loads(request.content))
            return httpx.Response(200, json={"id": "col-1", "name": "default"})
        return httpx.Response(200, json={})

    client = RAGClientChroma(helper_config)
    await client.boot(transport=httpx.MockTransport(handler))
    await client.do_delete_ids(["A"], "default")
    await client.close()

    assert created == {"name": "default", "get_or_create": True, "configuration": {"hnsw": {"space": "cosine"}}}


@pytest.mark.asyncio
async def test_query_turns_distances_into_scores(make_client):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "ids": [["C1", "C2"]],
            "distances": [[0.25, 0.5]],
            "metadatas": [[{"fileName": "f.csv"}, None]],
        })

    client = await make_client(handler)
    matches = await client.do_query([0.0, 1.0], top_k=5, filter={"fileName": {"$eq": "f.csv"}}, namespace="default")

    assert [(m.id, m.score) for m in matches] == [("C1", 0.75), ("C2", 0.5)]
    assert matches[1].metadata == {}
    assert seen["path"] == f"{COLLECTIONS}/col-default/query"
    assert seen["body"] == {
        "query_embeddings": [[0.0, 1.0]],
        "n_results": 5,
        "include": ["metadatas", "distances"],
        "where": {"fileName": {"$eq": "f.csv"}},
    }


@pytest.mark.asyncio
async def test_fetch_posts_ids_and_skips_missing(make_client):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ids": ["A"], "embeddings": [[1.0, 0.0]], "metadatas": [None]})

    client = await make_client(handler)
    fetched = await client.do_fetch(["A", "B"], "default")

    assert seen == {"method": "POST", "body": {"ids": ["A", "B"], "include": ["embeddings", "metadatas"]}}
    assert list(fetched) == ["A"]
    assert fetched["A"].values == [1.0, 0.0]
    assert fetched["A"].is_orphan


@pytest.mark.asyncio
async def test_list_all_ids_pages_by_offset(make_client):
    offsets = []
    ids = ["A", "B", "C"]

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        offsets.append(body["offset"])
        assert body["limit"] == 2
        return httpx.Response(200, json={"ids": ids[body["offset"]:body["offset"] + body["limit"]]})

    client = await make_client(handler)

    assert await client.do_list_all_ids("default") == ["A", "B", "C"]
    assert offsets == [0, 2]


@pytest.mark.asyncio
async def test_describe_index_stats_counts_every_collection(make_client):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == COLLECTIONS:
            if request.url.params["offset"] != "0":
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[
                {"id": "c1", "name": "default", "dimension": 4},
                {"id": "c2", "name": "shop", "dimension": None},
            ])
        counts = {f"{COLLECTIONS}/c1/count": 5, f"{COLLECTIONS}/c2/count": 2}
        return httpx.Response(200, json=counts[request.url.path])

    client = await make_client(handler)
    stats = await client.do_describe_index_stats()

    assert stats.namespaces == {"default": 5, "shop": 2}
    assert stats.total_vector_count == 7
    assert stats.dimension == 4


@pytest.mark.asyncio
async def test_token_header_and_error_status(helper_config, chroma_env, monkeypatch):
    monkeypatch.setenv("RAG_CHROMA_API_KEY", "secret")
    headers = {}

    def handler(request: httpx.Request) -> httpx.Response:
        headers.update(request.headers)
        return httpx.Response(500, text="boom")

    client = RAGClientChroma(helper_config)
    await client.boot(transport=httpx.MockTransport(handler))
    with pytest.raises(BackendRequestError) as info:
        await client.do_delete_ids(["A"], "default")
    await client.close()

    assert info.value.status_code == 500
    assert headers["x-chroma-token"] == "secret"


def test_mirror_engine_key_selects_chroma(helper_config, chroma_env, monkeypatch):
    monkeypatch.setenv("RAG_ENGINE", "pinecone")
    monkeypatch.setenv("RAG_MIRROR_ENGINE", "chroma")

    client = RAGClientManager(helper_config=helper_config, engine_key="RAG_MIRROR_ENGINE").get_client()

    assert isinstance(client, RAGClientChroma)
