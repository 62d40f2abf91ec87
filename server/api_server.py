"""FastAPI application entry point for csv_rag_sync."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from shared.logging.LogBuffer import LogBuffer
from shared.logging.logging_setup import setup_logging
from shared.errors import ConfigurationError
from shared.helper.HelperClients import boot_clients, close_clients
from shared.helper.HelperConfig import HelperConfig
from shared.clients.doc.DocClientManager import DocClientManager
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.RAGClientManager import RAGClientManager
from services.csv_ingest.IngestService import IngestService
from services.csv_ingest.VectorMirrorService import VectorMirrorService
from services.db_health.HealthAuditor import HealthAuditor
from services.db_health.RepairService import RepairService
from server.core.QueryService import QueryService
from server.core.exception_handlers import register_exception_handlers
from server.routers.CsvRouter import router as csv_router
from server.routers.HealthRouter import router as health_router
from server.routers.LogRouter import router as log_router
from server.routers.QueryRouter import router as query_router

log_buffer = LogBuffer(
    retention_seconds=float(os.getenv("LOG_BUFFER_RETENTION_SECONDS", "60")),
    max_entries=int(os.getenv("LOG_BUFFER_MAX_ENTRIES", "5000")),
)
logging = setup_logging(log_buffer)
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)
    app.state.log_buffer = log_buffer

    doc_client = DocClientManager(helper_config=app.state.helper_config).get_client()
    rag_client = RAGClientManager(helper_config=app.state.helper_config).get_client()
    embed_client = EmbedClientManager(helper_config=app.state.helper_config).get_client()
    clients = [doc_client, rag_client, embed_client]

    logging.info("Booting all clients...")
    await boot_clients(clients, logging)
    llm_client = await boot_llm_client(app.state.helper_config)
    if llm_client is not None:
        clients.append(llm_client)
    mirror_client = await boot_mirror_client(app.state.helper_config)
    if mirror_client is not None:
        clients.append(mirror_client)
    logging.info("All clients booted successfully.")

    app.state.ingest_service = IngestService(
        helper_config=app.state.helper_config,
        doc_client=doc_client,
        rag_client=rag_client,
        embed_client=embed_client,
    )
    app.state.mirror_service = (
        VectorMirrorService(
            helper_config=app.state.helper_config,
            doc_client=doc_client,
            mirror_client=mirror_client,
            pipeline=app.state.ingest_service.pipeline,
        )
        if mirror_client is not None
        else None
    )
    app.state.health_auditor = HealthAuditor(
        helper_config=app.state.helper_config,
        doc_client=doc_client,
        rag_client=rag_client,
        dimension=embed_client.dimension,
    )
    app.state.repair_service = RepairService(
        helper_config=app.state.helper_config,
        doc_client=doc_client,
        rag_client=rag_client,
        embed_client=embed_client,
    )
    app.state.query_service = QueryService(
        helper_config=app.state.helper_config,
        doc_client=doc_client,
        rag_client=rag_client,
        embed_client=embed_client,
        llm_client=llm_client,
    )
    await log_buffer.start()

    # while the app is running...
    yield

    # when the app shuts down, drain running jobs and close all client connections
    logging.info("Shutting down, cancelling running ingestion jobs and closing all clients...")
    await app.state.ingest_service.close()
    await log_buffer.stop()
    await close_clients(clients)
    logging.info("All clients closed.")


async def boot_llm_client(helper_config: HelperConfig) -> LLMClientInterface | None:
    """Build and check the optional chat client.

    Queries with onlyContext work without it, so a missing configuration or an
    unreachable backend only disables answering.

    Returns:
        LLMClientInterface | None: The booted client, or None if unavailable.
    """
    try:
        llm_client = LLMClientManager(helper_config=helper_config).get_client()
    except ConfigurationError as e:
        logging.warning("No chat client configured (%s). Queries will only return context.", e)
        return None

    try:
        await boot_clients([llm_client], logging)
    except ConnectionError as e:
        logging.warning("%s Queries will only return context.", e)
        await llm_client.close()
        return None
    return llm_client



async def boot_mirror_client(helper_config: HelperConfig) -> RAGClientInterface | None:
    """Build and check the optional mirror vector store behind POST /csv/sync.

    Only syncing needs it, so a missing configuration or an unreachable
    backend disables that route and nothing else.

    Returns:
        RAGClientInterface | None: The booted client, or None if unavailable.
    """
    if not helper_config.get_string_val("RAG_MIRROR_ENGINE", default=""):
        logging.info("No mirror vector store configured, syncing is disabled.")
        return None
    try:
        mirror_client = RAGClientManager(helper_config=helper_config, engine_key="RAG_MIRROR_ENGINE").get_client()
    except ConfigurationError as e:
        logging.warning("Mirror vector store not usable (%s), syncing is disabled.", e)
        return None

    try:
        await boot_clients([mirror_client], logging)
    except ConnectionError as e:
        logging.warning("%s Syncing is disabled.", e)
        await mirror_client.close()
        return None
    return mirror_client

app = FastAPI(
    title="csv_rag_sync",
    description=(
        "Ingests CSV files into a document store and a vector index, keeps both "
        "stores consistent through audit and repair, and answers questions from "
        "the stored records via POST /query."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(csv_router)
app.include_router(health_router)
app.include_router(query_router)
app.include_router(log_router)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "csv_rag_sync is running."


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting csv_rag_sync API Server v%s from root dir: %s on port %s...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
        os.getenv("PORT", "8000"),
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
