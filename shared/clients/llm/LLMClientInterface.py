from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.errors import InvalidResponse
from shared.helper.HelperConfig import HelperConfig


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default=None)
        self.fallback_chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_FALLBACK_CHAT_MODEL", default="") or None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/chat/completions")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict], model: str) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).
            model (str): The chat model to use.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response.

        Raises:
            InvalidResponse: If the response does not contain a reply.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[dict], model: str | None = None) -> str:
        """Send a chat/completion request and return the assistant reply text.

        Args:
            messages (list[dict]): OpenAI-format messages.
            model (str | None): Overrides the configured LLM_CHAT_MODEL.

        Returns:
            str: The assistant reply text.

        Raises:
            ProviderError: Transport failure or non-2xx (other than rate limits).
            RateLimited: HTTP 429 or a resource-exhaustion signal.
            InvalidResponse: If the response does not contain a valid reply.
        """
        body = self.get_chat_payload(messages, model or self.chat_model)
        response_data = await self.do_provider_request(method="POST", endpoint=self._get_endpoint_chat(), json=body)
        if not isinstance(response_data, dict):
            raise InvalidResponse(f"{self.get_engine_name()} chat response is not an object.", engine=self.get_engine_name())
        return self.extract_chat_response(response_data)
