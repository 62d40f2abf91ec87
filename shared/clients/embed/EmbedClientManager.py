from shared.clients.ClientManager import ClientManager
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface


class EmbedClientManager(ClientManager[EmbedClientInterface]):
    """Instantiates the embedding client selected by EMBED_ENGINE."""

    client_prefix = "Embed"
