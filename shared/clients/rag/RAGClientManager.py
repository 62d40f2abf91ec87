from shared.clients.ClientManager import ClientManager
from shared.clients.rag.RAGClientInterface import RAGClientInterface


class RAGClientManager(ClientManager[RAGClientInterface]):
    """Instantiates the vector store client selected by RAG_ENGINE."""

    client_prefix = "RAG"
