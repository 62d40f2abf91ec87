"""Database health runner.

Audits both stores, lists dangling records, and repairs targets from a CSV
file or a repair log.

Usage:
    python -m services.db_health.db_health_runner audit [--namespace ns ...]
    python -m services.db_health.db_health_runner diff [--file-name name] [--namespace ns] [--write-log repair.log]
    python -m services.db_health.db_health_runner repair (--file data.csv | --log repair.log) [--namespace ns] [--auto]
"""

import argparse
import asyncio
import sys

from services.db_health.HealthAuditor import HealthAuditor
from services.db_health.RepairLog import RepairLog
from services.db_health.RepairService import RepairService
from shared.clients.doc.DocClientManager import DocClientManager
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.helper.HelperClients import boot_clients, close_clients
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.health import AuditReport, RepairTarget


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="db_health_runner", description="Audit and repair the document and vector stores.")
    sub = parser.add_subparsers(dest="command", required=True)

    audit = sub.add_parser("audit", help="Compare per-file counts and find orphan vectors.")
    audit.add_argument("--namespace", action="append", default=None, help="Namespace to audit (repeatable, default: all).")

    diff = sub.add_parser("diff", help="List records that have no vector.")
    diff.add_argument("--file-name", default=None, help="Only this file (default: every file with a positive delta).")
    diff.add_argument("--namespace", default="default")
    diff.add_argument("--write-log", default=None, help="Write the result as a repair log to this path.")

    repair = sub.add_parser("repair", help="Re-embed and upsert targets in both stores.")
    source = repair.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", default=None, help="CSV file whose rows are the targets.")
    source.add_argument("--log", default=None, help="Repair log whose documents are the targets.")
    repair.add_argument("--namespace", default="default")
    repair.add_argument("--auto", action="store_true", help="Do not ask for confirmation per batch.")
    return parser


def print_report(report: AuditReport) -> None:
    print("\n=== Files ===")
    for f in report.files:
        flags = " (truncated)" if f.truncated else ""
        flags += f" (error: {f.error})" if f.error else ""
        print(f"  {f.namespace:<15} {f.file_name:<40} docs {f.document_count:>7}  vectors {f.vector_count:>7}  delta {f.delta:>+6}{flags}")

    print("\n=== Totals ===")
    print(f"  Documents:   {report.total_documents}")
    print(f"  Vectors:     {report.total_vectors}")
    print(f"  Orphans:     {report.total_orphans}")
    print(f"  Dangling:    {report.total_dangling}")
    for namespace, ids in report.orphan_ids.items():
        print(f"  Orphan ids in '{namespace}': {', '.join(ids)}")
    print(f"\nStatus: {'HEALTHY' if report.healthy else 'UNHEALTHY'}")


async def prompt_confirm(batch: list[RepairTarget]) -> bool:
    lines = [f"Repair {len(batch)} record(s)?"] + [f"- {t.code}: {t.source or t.file_name}" for t in batch]
    print("\n".join(lines))
    answer = await asyncio.to_thread(input, "(y/N): ")
    return answer.strip().lower() == "y"


async def run_command(args: argparse.Namespace, auditor: HealthAuditor, repair_service: RepairService, repair_log: RepairLog, logger) -> int:
    """Execute one parsed command.

    Returns:
        int: Process exit code (1 for an unhealthy audit or failed repairs).
    """
    if args.command == "audit":
        report = await auditor.audit(args.namespace)
        print_report(report)
        return 0 if report.healthy else 1

    if args.command == "diff":
        if args.file_name:
            file_names = [args.file_name]
        else:
            report = await auditor.audit([args.namespace])
            file_names = [f.file_name for f in report.files if f.delta > 0]
        sections: dict[str, list[dict]] = {}
        for file_name in file_names:
            dangling = await auditor.find_dangling(file_name, args.namespace)
            if dangling:
                sections[file_name] = [
                    r.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"timestamp"}) for r in dangling
                ]
                print(f"  {file_name}: {len(dangling)} record(s) without vector")
        if not sections:
            print("  No dangling records found.")
        if args.write_log:
            repair_log.write(args.write_log, sections)
            logger.info("Wrote repair log with %d file section(s) to %s", len(sections), args.write_log, color="cyan")
        return 0

    if args.command == "repair":
        if args.file:
            targets = repair_service.load_targets_from_csv(args.file)
        else:
            targets = repair_service.load_targets_from_log(args.log)
        if not targets:
            logger.warning("No repair targets found.")
            return 0
        result = await repair_service.repair(
            targets,
            auto=args.auto,
            namespace=args.namespace,
            confirm=None if args.auto else prompt_confirm,
        )
        logger.info(
            "Repair done: %d target(s), %d vector(s) created, %d metadata update(s), %d already healthy, "
            "%d dimension mismatch(es), %d failure(s), %d batch(es) skipped.",
            result.total, result.vectors_created, result.metadata_updated, result.already_healthy,
            result.dimension_mismatches, result.failed, result.skipped_batches,
            color="green" if not result.failed_codes else "yellow",
        )
        return 0 if not result.failed_codes else 1

    raise ValueError(f"Unknown command '{args.command}'.")


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    doc_client = DocClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()
    embed_client = EmbedClientManager(helper_config=config).get_client()
    clients = [doc_client, rag_client, embed_client]

    try:
        try:
            await boot_clients(clients, logger)
        except ConnectionError as e:
            logger.error("%s Aborting.", e)
            return 1
        auditor = HealthAuditor(config, doc_client, rag_client, dimension=embed_client.dimension)
        repair_service = RepairService(config, doc_client, rag_client, embed_client)
        return await run_command(args, auditor, repair_service, RepairLog(config), logger)
    finally:
        await close_clients(clients)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
