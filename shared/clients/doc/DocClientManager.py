from shared.clients.ClientManager import ClientManager
from shared.clients.doc.DocClientInterface import DocClientInterface


class DocClientManager(ClientManager[DocClientInterface]):
    """Instantiates the document store client selected by DOC_ENGINE."""

    client_prefix = "Doc"
