from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.errors import InvalidResponse
from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default=None)
        self.dimension = helper_config.get_positive_int_val(f"{self.get_client_type().upper()}_DIMENSION", default=1536)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str], model: str) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.
            model (str): The embedding model to use.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]}, already ordered
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]}, needs sorting

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            InvalidResponse: If the response format is invalid or embeddings are empty.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str, model: str | None = None) -> list[list[float]]:
        """Send an embedding request and return the extracted vectors.

        The adapter never retries; retry policy belongs to the caller.

        Args:
            texts (list[str] | str): One or more texts to embed.
            model (str | None): Overrides the configured EMBED_MODEL.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            ProviderError: Transport failure or non-2xx (other than rate limits).
            RateLimited: HTTP 429 or a resource-exhaustion signal.
            InvalidResponse: Malformed body, or a vector count that does not match the inputs.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts, model or self.embed_model)
        response_data = await self.do_provider_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        if not isinstance(response_data, dict):
            raise InvalidResponse(f"{self.get_engine_name()} embedding response is not an object.", engine=self.get_engine_name())
        embeddings = self.extract_embeddings_from_response(response_data)
        if len(embeddings) != len(texts):
            raise InvalidResponse(
                f"{self.get_engine_name()} returned {len(embeddings)} embeddings for {len(texts)} inputs.",
                engine=self.get_engine_name(),
            )
        return embeddings

    async def do_embed_text(self, text: str, model: str | None = None) -> list[float]:
        """Embed a single text.

        Args:
            text (str): The text to embed.
            model (str | None): Overrides the configured EMBED_MODEL.

        Returns:
            list[float]: The embedding vector.
        """
        embeddings = await self.do_embed([text], model=model)
        return embeddings[0]
