from shared.clients.ClientManager import ClientManager
from shared.clients.llm.LLMClientInterface import LLMClientInterface


class LLMClientManager(ClientManager[LLMClientInterface]):
    """Instantiates the chat client selected by LLM_ENGINE."""

    client_prefix = "LLM"
