from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.IndexStats import IndexStats
from shared.clients.rag.models.ListPage import ListPage
from shared.clients.rag.models.VectorEntry import QueryMatch, VectorEntry
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class RAGClientPinecone(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        # index host, e.g. https://my-index-abc123.svc.us-east-1.pinecone.io
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        self._api_version = self.get_config_val("API_VERSION", default="2024-07", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Pinecone"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="API_VERSION", val_type="string", default="2024-07"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Api-Key": self._api_key, "X-Pinecone-API-Version": self._api_version}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/describe_index_stats"

    def _get_endpoint_upsert(self, namespace: str) -> str:
        return "/vectors/upsert"

    def _get_endpoint_query(self, namespace: str) -> str:
        return "/query"

    def _get_endpoint_fetch(self, namespace: str) -> str:
        return "/vectors/fetch"

    def _get_endpoint_delete(self, namespace: str) -> str:
        return "/vectors/delete"

    def _get_endpoint_update(self, namespace: str) -> str:
        return "/vectors/update"

    def _get_endpoint_list(self, namespace: str) -> str:
        return "/vectors/list"

    def _get_endpoint_stats(self) -> str:
        return "/describe_index_stats"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_upsert_payload(self, entries: list[VectorEntry], namespace: str) -> dict:
        return {
            "vectors": [{"id": e.id, "values": e.values, "metadata": e.metadata} for e in entries],
            "namespace": namespace,
        }

    def get_query_payload(self, vector: list[float], top_k: int, filter: dict | None, namespace: str, include_metadata: bool) -> dict:
        payload = {
            "vector": vector,
            "topK": top_k,
            "namespace": namespace,
            "includeMetadata": include_metadata,
            "includeValues": False,
        }
        if filter:
            payload["filter"] = filter
        return payload

    def get_fetch_request(self, ids: list[str], namespace: str) -> dict:
        # repeated ids= parameters
        return {"method": "GET", "params": [("ids", id) for id in ids] + [("namespace", namespace)]}

    def get_delete_payload(self, ids: list[str], namespace: str) -> dict:
        return {"ids": ids, "namespace": namespace}

    def get_update_payload(self, id: str, metadata: dict, namespace: str) -> dict:
        return {"id": id, "setMetadata": metadata, "namespace": namespace}

    def get_list_request(self, namespace: str, limit: int, pagination_token: str | None) -> dict:
        params = {"namespace": namespace, "limit": limit}
        if pagination_token:
            params["paginationToken"] = pagination_token
        return {"method": "GET", "params": params}

    ##########################################
    ########## RESPONSE EXTRACTORS ###########
    ##########################################

    def extract_query_matches(self, raw_response: dict) -> list[QueryMatch]:
        return [
            QueryMatch(id=m["id"], score=m.get("score", 0.0), metadata=m.get("metadata") or {})
            for m in raw_response.get("matches", [])
        ]

    def extract_fetched_vectors(self, raw_response: dict) -> dict[str, VectorEntry]:
        vectors = raw_response.get("vectors") or {}
        return {
            id: VectorEntry(id=id, values=v.get("values") or [], metadata=v.get("metadata") or {})
            for id, v in vectors.items()
        }

    def extract_list_page(self, raw_response: dict) -> ListPage:
        ids = [v["id"] for v in raw_response.get("vectors", [])]
        next_token = (raw_response.get("pagination") or {}).get("next")
        return ListPage(ids=ids, next_page_token=next_token or None)

    def extract_index_stats(self, raw_response: dict) -> IndexStats:
        namespaces = {
            name: info.get("vectorCount", 0)
            for name, info in (raw_response.get("namespaces") or {}).items()
        }
        return IndexStats(
            dimension=raw_response.get("dimension", 0),
            total_vector_count=raw_response.get("totalVectorCount", 0),
            namespaces=namespaces,
        )

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_describe_index_stats(self) -> IndexStats:
        resp = await self.do_request(
            method="POST",
            json={},
            endpoint=self._get_endpoint_stats(),
            raise_on_error=True,
        )
        return self.extract_index_stats(resp.json())
