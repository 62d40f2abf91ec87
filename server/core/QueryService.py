import json

from shared.clients.doc.DocClientInterface import DocClientInterface
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.errors import RateLimited
from shared.helper.HelperBatch import pause
from shared.helper.HelperConfig import HelperConfig
from server.models.requests import QueryRequest
from server.models.responses import QueryResponse, QuerySource

DEFAULT_SYSTEM_PROMPT = (
    "You answer questions using only the provided context records. "
    "If the context does not contain the answer, say so."
)


class QueryService:
    """Answers questions: embed -> vector query -> load records -> chat."""

    def __init__(
        self,
        helper_config: HelperConfig,
        doc_client: DocClientInterface,
        rag_client: RAGClientInterface,
        embed_client: EmbedClientInterface,
        llm_client: LLMClientInterface | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._doc_client = doc_client
        self._rag_client = rag_client
        self._embed_client = embed_client
        self._llm_client = llm_client
        self.system_prompt = helper_config.get_string_val("LLM_SYSTEM_PROMPT", default=DEFAULT_SYSTEM_PROMPT)
        self.rate_limit_backoff = helper_config.get_delay_seconds("QUERY_RATE_LIMIT_BACKOFF_MS", default_ms=1000)

    @property
    def has_llm(self) -> bool:
        return self._llm_client is not None

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _embed_query(self, query: str) -> list[float]:
        try:
            return await self._embed_client.do_embed_text(query)
        except RateLimited as exc:
            self.logging.warning("Query embedding rate limited, retrying once in %.2fs: %s", self.rate_limit_backoff, exc)
            await pause(self.rate_limit_backoff)
            return await self._embed_client.do_embed_text(query)

    async def _chat(self, messages: list[dict]) -> str:
        try:
            return await self._llm_client.do_chat(messages)
        except RateLimited:
            fallback = self._llm_client.fallback_chat_model
            if not fallback:
                raise
            self.logging.warning(
                "Chat model '%s' rate limited, switching to fallback model '%s'.",
                self._llm_client.chat_model, fallback,
            )
            return await self._llm_client.do_chat(messages, model=fallback)

    ##########################################
    ############### CORE #####################
    ##########################################

    async def answer(self, request: QueryRequest) -> QueryResponse:
        """Retrieve the nearest records for a question and, unless only the
        context is requested, let the chat model answer from them.

        Args:
            request (QueryRequest): Question, top-K limit, namespace and onlyContext flag.

        Returns:
            QueryResponse: The answer (None for context-only requests) and the sources used.

        Raises:
            EmbeddingFailure: If embedding or chat fails after the retry/fallback.
            ValueError: If an answer is requested but no chat model is configured.
        """
        if not request.only_context and self._llm_client is None:
            raise ValueError("No chat model is configured; use onlyContext to retrieve context only.")

        self.logging.info(
            "Query: '%s' (limit=%d, namespace='%s', onlyContext=%s)",
            request.query, request.limit, request.namespace, request.only_context,
        )
        vector = await self._embed_query(request.query)
        matches = await self._rag_client.do_query(
            vector=vector,
            top_k=request.limit,
            namespace=request.namespace,
            include_metadata=True,
        )
        codes = [str(m.metadata.get("code") or m.id) for m in matches]
        records = {r.code: r for r in await self._doc_client.do_find_records(namespace=request.namespace, codes=codes)}

        sources: list[QuerySource] = []
        context: list[dict] = []
        for code, match in zip(codes, matches):
            record = records.get(code)
            if record is None:
                self.logging.debug("Match '%s' has no document, left out of the context.", code)
                continue
            sources.append(QuerySource(
                file_name=record.file_name,
                code=record.code,
                context=record.metadata_small,
                score=match.score,
            ))
            context.append(record.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"timestamp"}))
        self.logging.info("Query matched %d vector(s), %d with a document.", len(matches), len(sources))

        if request.only_context:
            return QueryResponse(query=request.query, sources=sources, context=context)

        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": f"Context: {json.dumps(context, ensure_ascii=False)}\n\nQuery: {request.query}"},
        ]
        answer = await self._chat(messages)
        return QueryResponse(query=request.query, answer=answer, sources=sources)
