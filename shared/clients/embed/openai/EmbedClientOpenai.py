from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.errors import InvalidResponse
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOpenai(EmbedClientInterface):
    """Embedding client for any OpenAI-compatible /embeddings endpoint."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.openai.com/v1", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.openai.com/v1"),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/models"

    def get_endpoint_embedding(self) -> str:
        return "/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str], model: str) -> dict:
        return {"model": model, "input": texts, "encoding_format": "float"}

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an OpenAI-compatible response.

        Items carry an "index" field and are not guaranteed to arrive in
        input order, so they are sorted before extraction.

        Raises:
            InvalidResponse: If "data" is missing, empty or holds an empty embedding.
        """
        data = response_data.get("data")
        if not isinstance(data, list) or not data:
            raise InvalidResponse(
                "OpenAI response does not contain embedding data. "
                f"Response keys: {list(response_data.keys())}",
                engine=self.get_engine_name(),
            )
        try:
            ordered = sorted(data, key=lambda item: item.get("index", 0))
            embeddings = [item["embedding"] for item in ordered]
        except (AttributeError, KeyError, TypeError) as e:
            raise InvalidResponse(f"OpenAI embedding item is malformed: {e}", engine=self.get_engine_name()) from e
        if not all(embeddings):
            raise InvalidResponse("OpenAI response contains an empty embedding.", engine=self.get_engine_name())
        return embeddings
