"""CSV ingestion runner.

Uploads a CSV file into both stores, deletes a file from both stores, lists
the files currently stored, or copies a stored file into the mirror vector
store named by RAG_MIRROR_ENGINE.

Usage:
    python -m services.csv_ingest.csv_runner upload data/products.csv [--namespace ns] [--file-name name]
    python -m services.csv_ingest.csv_runner delete products.csv [--namespace ns]
    python -m services.csv_ingest.csv_runner files [--namespace ns]
    python -m services.csv_ingest.csv_runner sync products.csv [--namespace ns]
"""

import argparse
import asyncio
import os
import sys

from services.csv_ingest.IngestService import IngestService
from services.csv_ingest.VectorMirrorService import VectorMirrorService
from shared.clients.doc.DocClientManager import DocClientManager
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.helper.HelperClients import boot_clients, close_clients
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.ingest import JobStatus


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="csv_runner", description="Ingest CSV files into the document and vector stores.")
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Ingest a CSV file (replaces earlier records of the same file).")
    upload.add_argument("path", help="Path to the CSV file.")
    upload.add_argument("--namespace", default="default")
    upload.add_argument("--file-name", default=None, help="Stored file name (default: base name of path).")

    delete = sub.add_parser("delete", help="Delete a file's records and vectors.")
    delete.add_argument("file_name")
    delete.add_argument("--namespace", default="default")

    files = sub.add_parser("files", help="List stored files with their record counts.")
    files.add_argument("--namespace", default=None)

    sync = sub.add_parser("sync", help="Copy a stored file into the mirror vector store.")
    sync.add_argument("file_name")
    sync.add_argument("--namespace", default="default")
    return parser


async def run_command(
    args: argparse.Namespace,
    ingest_service: IngestService,
    logger,
    mirror_service: VectorMirrorService | None = None,
) -> int:
    """Execute one parsed command.

    Returns:
        int: Process exit code.
    """
    if args.command == "upload":
        with open(args.path, "rb") as f:
            data = f.read()
        job = await ingest_service.start_ingest(data, args.file_name or os.path.basename(args.path), args.namespace)
        job = await ingest_service.wait_for_job(job.id)
        logger.info(
            "Job %s finished with status %s: %d record(s), %d successful, %d failed, %d row(s) skipped.",
            job.id, job.status.value, job.total_records, job.successful, job.failed, job.skipped_rows,
            color="green" if job.status == JobStatus.DONE else "red",
        )
        if job.dangling_codes:
            logger.warning("%d record(s) have no vector yet: %s", len(job.dangling_codes), job.dangling_codes)
        if job.error:
            logger.error("Job error: %s", job.error)
        return 0 if job.status == JobStatus.DONE else 1

    if args.command == "delete":
        result = await ingest_service.delete_file(args.file_name, args.namespace)
        logger.info(
            "Deleted '%s' from namespace '%s': %d document(s), %d vector(s).",
            args.file_name, args.namespace, result.documents_deleted, result.vectors_deleted,
        )
        if result.document_error or result.vector_failures:
            logger.error(
                "Delete incomplete: document error=%s, %d vector(s) not deleted.",
                result.document_error, len(result.vector_failures),
            )
            return 1
        return 0

    if args.command == "files":
        summaries = await ingest_service.list_files(args.namespace)
        if not summaries:
            print("No files stored.")
        for s in summaries:
            print(f"  {s.namespace:<15} {s.file_name:<40} {s.document_count:>8} records")
        return 0

    if args.command == "sync":
        if mirror_service is None:
            logger.error("No mirror vector store configured, set RAG_MIRROR_ENGINE.")
            return 1
        result = await mirror_service.sync_file(args.file_name, args.namespace)
        logger.info(
            "Synced %d of %d record(s) of '%s'.", result.synced, result.total, result.file_name,
            color="green" if not result.errors else "yellow",
        )
        for error in result.errors:
            logger.error("  %s: %s", error.code, error.error)
        return 0 if not result.errors else 1

    raise ValueError(f"Unknown command '{args.command}'.")


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    doc_client = DocClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()
    embed_client = EmbedClientManager(helper_config=config).get_client()
    clients = [doc_client, rag_client, embed_client]
    mirror_client = None
    if args.command == "sync":
        mirror_client = RAGClientManager(helper_config=config, engine_key="RAG_MIRROR_ENGINE").get_client()
        clients.append(mirror_client)

    try:
        try:
            await boot_clients(clients, logger)
        except ConnectionError as e:
            logger.error("%s Aborting.", e)
            return 1
        ingest_service = IngestService(
            helper_config=config,
            doc_client=doc_client,
            rag_client=rag_client,
            embed_client=embed_client,
        )
        mirror_service = (
            VectorMirrorService(config, doc_client, mirror_client, ingest_service.pipeline) if mirror_client is not None else None
        )
        return await run_command(args, ingest_service, logger, mirror_service)
    finally:
        await close_clients(clients)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
