from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.IndexStats import IndexStats
from shared.clients.rag.models.ListPage import ListPage
from shared.clients.rag.models.VectorEntry import QueryMatch, VectorEntry
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class RAGClientChroma(RAGClientInterface):
    """Chroma server over its v2 REST API, one collection per namespace."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        # e.g. http://localhost:8000
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._tenant = self.get_config_val("TENANT", default="default_tenant", val_type="string")
        self._database = self.get_config_val("DATABASE", default="default_database", val_type="string")
        # namespace -> collection id
        self._collection_ids: dict[str, str] = {}

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Chroma"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="TENANT", val_type="string", default="default_tenant"),
            EnvConfig(env_key="DATABASE", val_type="string", default="default_database"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"x-chroma-token": self._api_key} if self._api_key else {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/api/v2/heartbeat"

    def _get_endpoint_collections(self) -> str:
        return f"/api/v2/tenants/{self._tenant}/databases/{self._database}/collections"

    def _get_endpoint_collection(self, namespace: str) -> str:
        return f"{self._get_endpoint_collections()}/{self._collection_ids[namespace]}"

    def _get_endpoint_upsert(self, namespace: str) -> str:
        return f"{self._get_endpoint_collection(namespace)}/upsert"

    def _get_endpoint_query(self, namespace: str) -> str:
        return f"{self._get_endpoint_collection(namespace)}/query"

    def _get_endpoint_fetch(self, namespace: str) -> str:
        return f"{self._get_endpoint_collection(namespace)}/get"

    def _get_endpoint_delete(self, namespace: str) -> str:
        return f"{self._get_endpoint_collection(namespace)}/delete"

    def _get_endpoint_update(self, namespace: str) -> str:
        return f"{self._get_endpoint_collection(namespace)}/update"

    def _get_endpoint_list(self, namespace: str) -> str:
        return f"{self._get_endpoint_collection(namespace)}/get"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_upsert_payload(self, entries: list[VectorEntry], namespace: str) -> dict:
        return {
            "ids": [e.id for e in entries],
            "embeddings": [e.values for e in entries],
            "metadatas": [e.metadata for e in entries],
            "documents": [e.id for e in entries],
        }

    def get_query_payload(self, vector: list[float], top_k: int, filter: dict | None, namespace: str, include_metadata: bool) -> dict:
        payload = {
            "query_embeddings": [vector],
            "n_results": top_k,
            "include": ["metadatas", "distances"] if include_metadata else ["distances"],
        }
        if filter:
            payload["where"] = filter
        return payload

    def get_fetch_request(self, ids: list[str], namespace: str) -> dict:
        return {"method": "POST", "json": {"ids": ids, "include": ["embeddings", "metadatas"]}}

    def get_delete_payload(self, ids: list[str], namespace: str) -> dict:
        return {"ids": ids}

    def get_update_payload(self, id: str, metadata: dict, namespace: str) -> dict:
        return {"ids": [id], "metadatas": [metadata]}

    def get_list_request(self, namespace: str, limit: int, pagination_token: str | None) -> dict:
        # the token is the offset of the next page
        return {
            "method": "POST",
            "json": {"limit": limit, "offset": int(pagination_token or 0), "include": []},
        }

    ##########################################
    ########## RESPONSE EXTRACTORS ###########
    ##########################################

    def extract_query_matches(self, raw_response: dict) -> list[QueryMatch]:
        # one result row per query embedding, only one is sent
        ids = (raw_response.get("ids") or [[]])[0]
        distances = (raw_response.get("distances") or [[]])[0] or []
        metadatas = (raw_response.get("metadatas") or [[]])[0] or []
        return [
            QueryMatch(
                id=id,
                score=1.0 - distances[i] if i < len(distances) and distances[i] is not None else 0.0,
                metadata=(metadatas[i] if i < len(metadatas) else None) or {},
            )
            for i, id in enumerate(ids)
        ]

    def extract_fetched_vectors(self, raw_response: dict) -> dict[str, VectorEntry]:
        ids = raw_response.get("ids") or []
        embeddings = raw_response.get("embeddings") or []
        metadatas = raw_response.get("metadatas") or []
        return {
            id: VectorEntry(
                id=id,
                values=(embeddings[i] if i < len(embeddings) else None) or [],
                metadata=(metadatas[i] if i < len(metadatas) else None) or {},
            )
            for i, id in enumerate(ids)
        }

    def extract_list_page(self, raw_response: dict) -> ListPage:
        # the offset of this page is not echoed back, do_list_ids() completes the token
        return ListPage(ids=raw_response.get("ids") or [])

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def _resolve_namespace(self, namespace: str) -> None:
        """Look up (or create) the collection of a namespace once and cache its id."""
        if namespace in self._collection_ids:
            return
        resp = await self.do_request(
            method="POST",
            json={"name": namespace, "get_or_create": True, "configuration": {"hnsw": {"space": "cosine"}}},
            endpoint=self._get_endpoint_collections(),
            raise_on_error=True,
        )
        self._collection_ids[namespace] = resp.json()["id"]
        self.logging.debug("Chroma collection '%s' resolved to %s", namespace, self._collection_ids[namespace])

    async def do_list_ids(self, namespace: str, limit: int | None = None, pagination_token: str | None = None) -> ListPage:
        limit = limit or self.list_page_size
        page = await super().do_list_ids(namespace, limit=limit, pagination_token=pagination_token)
        if len(page.ids) == limit:
            page.next_page_token = str(int(pagination_token or 0) + limit)
        return page

    async def do_describe_index_stats(self) -> IndexStats:
        """Vector counts of every collection; the dimension is the largest one reported."""
        stats = IndexStats()
        offset = 0
        while True:
            resp = await self.do_request(
                method="GET",
                params={"limit": self.list_page_size, "offset": offset},
                endpoint=self._get_endpoint_collections(),
                raise_on_error=True,
            )
            collections = resp.json() or []
            for collection in collections:
                self._collection_ids[collection["name"]] = collection["id"]
                count = await self.do_request(
                    method="GET",
                    endpoint=f"{self._get_endpoint_collection(collection['name'])}/count",
                    raise_on_error=True,
                )
                stats.namespaces[collection["name"]] = int(count.json())
                stats.dimension = max(stats.dimension, collection.get("dimension") or 0)
            if len(collections) < self.list_page_size:
                break
            offset += len(collections)
        stats.total_vector_count = sum(stats.namespaces.values())
        return stats
