from typing import Generic, TypeVar

from shared.clients.ClientInterface import ClientInterface
from shared.errors import ConfigurationError
from shared.helper.HelperConfig import HelperConfig

C = TypeVar("C", bound=ClientInterface)


class ClientManager(Generic[C]):
    """
    Base manager that instantiates the client configured by <CLIENT_TYPE>_ENGINE.

    The class is looked up by convention:
    shared.clients.<type>.<engine>.<Type>Client<Engine>, e.g.
    shared.clients.rag.pinecone.RAGClientPinecone.
    """

    # e.g. "RAG", "Embed"; used for the env key and the class name
    client_prefix: str = ""

    def __init__(self, helper_config: HelperConfig, engine_key: str | None = None):
        self.helper_config = helper_config
        # a second client of the same type reads its engine from another key, e.g. RAG_MIRROR_ENGINE
        self.engine_key = engine_key or f"{self.client_prefix.upper()}_ENGINE"
        self.logging = helper_config.get_logger()
        self.client: C = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the engine name from ENV configuration.

        Returns:
            str: Capitalised engine name (e.g. "Pinecone").

        Raises:
            ConfigurationError: If the engine key is not set.
        """
        engine = self.helper_config.get_string_val(self.engine_key)
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> C:
        """
        Instantiates the client for the configured engine.

        Raises:
            ConfigurationError: If the engine is unsupported or its config is incomplete.
        """
        engine = self._get_engine_from_env()
        class_name = f"{self.client_prefix}Client{engine}"
        try:
            module = __import__(
                f"shared.clients.{self.client_prefix.lower()}.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ConfigurationError(f"Unsupported {self.client_prefix} engine specified: '{engine}'. Error: {e}") from e
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated %s client for engine: %s", self.client_prefix, engine)
        return client

    def get_client(self) -> C:
        """
        Returns the instantiated client.
        """
        return self.client
