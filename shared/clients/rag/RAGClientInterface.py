from abc import abstractmethod
from typing import Any

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.IndexStats import IndexStats
from shared.clients.rag.models.ListPage import ListPage
from shared.clients.rag.models.VectorEntry import QueryMatch, VectorEntry
from shared.helper.HelperBatch import chunk
from shared.helper.HelperConfig import HelperConfig


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.list_page_size = helper_config.get_positive_int_val(f"{self.get_client_type().upper()}_LIST_PAGE_SIZE", default=100)
        self.fetch_batch_size = helper_config.get_positive_int_val(f"{self.get_client_type().upper()}_FETCH_BATCH_SIZE", default=100)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_upsert(self, namespace: str) -> str:
        """
        Returns the endpoint path for vector upsert requests (e.g. "/vectors/upsert").
        """
        pass

    @abstractmethod
    def _get_endpoint_query(self, namespace: str) -> str:
        """
        Returns the endpoint path for similarity queries (e.g. "/query").
        """
        pass

    @abstractmethod
    def _get_endpoint_fetch(self, namespace: str) -> str:
        """
        Returns the endpoint path for fetching vectors by id (e.g. "/vectors/fetch").
        """
        pass

    @abstractmethod
    def _get_endpoint_delete(self, namespace: str) -> str:
        """
        Returns the endpoint path for deleting vectors by id (e.g. "/vectors/delete").
        """
        pass

    @abstractmethod
    def _get_endpoint_update(self, namespace: str) -> str:
        """
        Returns the endpoint path for metadata-only updates (e.g. "/vectors/update").
        """
        pass

    @abstractmethod
    def _get_endpoint_list(self, namespace: str) -> str:
        """
        Returns the endpoint path for paginated id listing (e.g. "/vectors/list").
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_upsert_payload(self, entries: list[VectorEntry], namespace: str) -> dict:
        """Builds the backend-specific request body for an upsert.

        Args:
            entries (list[VectorEntry]): The entries to insert or replace.
            namespace (str): Target namespace.

        Returns:
            dict: The payload for the upsert request.
        """
        pass

    @abstractmethod
    def get_query_payload(self, vector: list[float], top_k: int, filter: dict | None, namespace: str, include_metadata: bool) -> dict:
        """Builds the backend-specific request body for a similarity query.

        Args:
            vector (list[float]): Query vector.
            top_k (int): Maximum number of matches.
            filter (dict | None): Metadata filter, e.g. {"fileName": {"$eq": "a.csv"}}.
            namespace (str): Namespace to search.
            include_metadata (bool): Whether matches carry their metadata.

        Returns:
            dict: The payload for the query request.
        """
        pass

    @abstractmethod
    def get_fetch_request(self, ids: list[str], namespace: str) -> dict:
        """Builds the do_request() arguments (method plus params or json) of a fetch-by-id."""
        pass

    @abstractmethod
    def get_delete_payload(self, ids: list[str], namespace: str) -> dict:
        """Builds the backend-specific request body for an id-based delete."""
        pass

    @abstractmethod
    def get_update_payload(self, id: str, metadata: dict, namespace: str) -> dict:
        """Builds the backend-specific request body for a metadata-only update."""
        pass

    @abstractmethod
    def get_list_request(self, namespace: str, limit: int, pagination_token: str | None) -> dict:
        """Builds the do_request() arguments (method plus params or json) of one id listing page."""
        pass

    ################ RESPONSE EXTRACTORS ##################
    @abstractmethod
    def extract_query_matches(self, raw_response: dict) -> list[QueryMatch]:
        """Extracts the matches from a raw query response."""
        pass

    @abstractmethod
    def extract_fetched_vectors(self, raw_response: dict) -> dict[str, VectorEntry]:
        """Extracts the fetched vectors, keyed by id, from a raw fetch response.

        Ids that do not exist are simply absent from the result.
        """
        pass

    @abstractmethod
    def extract_list_page(self, raw_response: dict) -> ListPage:
        """Extracts ids and the next pagination token from a raw list response."""
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def _resolve_namespace(self, namespace: str) -> None:
        """Prepare per-namespace state the endpoints depend on. Nothing to do by default."""
        return None

    async def do_upsert_vectors(self, entries: list[VectorEntry], namespace: str) -> httpx.Response:
        """Upsert vectors into a namespace.
        Inserts new vectors or replaces existing ones with the same id.

        Args:
            entries (list[VectorEntry]): The vectors to upsert. Callers batch them.
            namespace (str): Target namespace.

        Returns:
            httpx.Response: The response from the upsert request.
        """
        await self._resolve_namespace(namespace)
        return await self.do_request(
            method="POST",
            json=self.get_upsert_payload(entries, namespace),
            endpoint=self._get_endpoint_upsert(namespace),
            raise_on_error=True,
        )

    async def do_query(self, vector: list[float], top_k: int, filter: dict | None = None, namespace: str = "default", include_metadata: bool = True) -> list[QueryMatch]:
        """Run a similarity query.

        Returns:
            list[QueryMatch]: Matches ordered by descending score.
        """
        await self._resolve_namespace(namespace)
        resp = await self.do_request(
            method="POST",
            json=self.get_query_payload(vector, top_k, filter, namespace, include_metadata),
            endpoint=self._get_endpoint_query(namespace),
            raise_on_error=True,
        )
        return self.extract_query_matches(resp.json())

    async def do_fetch(self, ids: list[str], namespace: str) -> dict[str, VectorEntry]:
        """Fetch vectors by id.

        Args:
            ids (list[str]): Ids to fetch. Callers keep this list small (one fetch batch).
            namespace (str): Namespace to read from.

        Returns:
            dict[str, VectorEntry]: The entries that exist, keyed by id.
        """
        if not ids:
            return {}
        await self._resolve_namespace(namespace)
        resp = await self.do_request(
            **self.get_fetch_request(ids, namespace),
            endpoint=self._get_endpoint_fetch(namespace),
            raise_on_error=True,
        )
        return self.extract_fetched_vectors(resp.json())

    async def do_delete_ids(self, ids: list[str], namespace: str) -> None:
        """Delete vectors by id. Unknown ids are ignored by the backend."""
        await self._resolve_namespace(namespace)
        await self.do_request(
            method="POST",
            json=self.get_delete_payload(ids, namespace),
            endpoint=self._get_endpoint_delete(namespace),
            raise_on_error=True,
        )

    async def do_update_metadata(self, id: str, metadata: dict[str, Any], namespace: str) -> None:
        """Set metadata fields on an existing vector without touching its values."""
        await self._resolve_namespace(namespace)
        await self.do_request(
            method="POST",
            json=self.get_update_payload(id, metadata, namespace),
            endpoint=self._get_endpoint_update(namespace),
            raise_on_error=True,
        )

    @abstractmethod
    async def do_describe_index_stats(self) -> IndexStats:
        """Fetch the dimension and the vector count of every namespace."""
        pass

    async def do_list_ids(self, namespace: str, limit: int | None = None, pagination_token: str | None = None) -> ListPage:
        """List a single page of vector ids in a namespace.

        To retrieve all ids across an arbitrary number of pages use
        do_list_all_ids() instead.
        """
        await self._resolve_namespace(namespace)
        resp = await self.do_request(
            **self.get_list_request(namespace, limit or self.list_page_size, pagination_token),
            endpoint=self._get_endpoint_list(namespace),
            raise_on_error=True,
        )
        return self.extract_list_page(resp.json())

    async def do_list_all_ids(self, namespace: str) -> list[str]:
        """List ALL vector ids of a namespace, paginating automatically.

        Returns:
            list[str]: Every id in the namespace, in listing order.
        """
        all_ids: list[str] = []
        token: str | None = None
        page = 1
        while True:
            page_result = await self.do_list_ids(namespace=namespace, pagination_token=token)
            all_ids.extend(page_result.ids)
            self.logging.debug(
                "Listed vector ids page %d from %s namespace '%s', total ids so far: %d",
                page, self.get_engine_name(), namespace, len(all_ids),
            )
            token = page_result.next_page_token
            if not token:
                break
            page += 1
        return all_ids

    async def do_scan(self, namespace: str) -> list[VectorEntry]:
        """Read every vector of a namespace (ids via listing, entries via batched fetch).

        Returns:
            list[VectorEntry]: All entries of the namespace.
        """
        ids = await self.do_list_all_ids(namespace)
        entries: list[VectorEntry] = []
        for id_batch in chunk(ids, self.fetch_batch_size):
            fetched = await self.do_fetch(id_batch, namespace)
            entries.extend(fetched[id] for id in id_batch if id in fetched)
        self.logging.info("Scanned %d vectors in namespace '%s' of %s", len(entries), namespace, self.get_engine_name())
        return entries
