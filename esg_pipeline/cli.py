"""
ESG pipeline CLI.

Usage:
    # Extract every pending record from the input list (direct mode)
    esg-pipeline run --csv data/companies.csv

    # Submit eligible PDF records as batch jobs instead
    esg-pipeline run --csv data/companies.csv --batch

    # Poll active batches once, or until all are processed
    esg-pipeline check-batches
    esg-pipeline monitor --interval 900

    # Inspect, reset and export
    esg-pipeline status
    esg-pipeline reset --id acme_bau_gmbh
    esg-pipeline export
"""

import argparse
import asyncio
import sys
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .config import Settings, ensure_dirs, load_settings
from .db.file_store import RawResponseStore, RecordStore
from .db.status_store import StatusStore
from .exporters.record_exporter import RecordExporter
from .llm.batch_client import BatchClient
from .llm.llm_client import LLMClient
from .pipeline.batch_coordinator import BatchCoordinator
from .pipeline.batch_monitor import BatchMonitor, MonitorCycle
from .pipeline.orchestrator import ExtractionOrchestrator, summarize_results
from .schemas.enums import ProcessingStatus
from .schemas.records import ExtractionResult, SourceRecord
from .utils.backoff import BackoffInvoker
from .utils.criteria_loader import CriteriaProvider
from .utils.errors import BatchSubmissionError
from .utils.logger import PipelineLogger
from .utils.source_loader import load_source_records
from .utils.token_tracker import TokenTracker

console = Console()

STATUS_STYLES = {
    "complete": "green",
    "failed": "red",
    "skipped": "yellow",
    "in_progress": "cyan",
    "pending": "white",
}


@dataclass
class Components:
    """Everything a command needs, built once per process."""

    settings: Settings
    logger: PipelineLogger
    status_store: StatusStore
    raw_store: RawResponseStore
    record_store: RecordStore
    criteria_provider: CriteriaProvider
    token_tracker: TokenTracker

    def orchestrator(self) -> ExtractionOrchestrator:
        settings = self.settings
        return ExtractionOrchestrator(
            model_client=LLMClient(
                model=settings.model,
                api_key=settings.api_key,
                timeout=settings.request_timeout_seconds,
                logger=self.logger,
            ),
            criteria_provider=self.criteria_provider,
            status_store=self.status_store,
            raw_store=self.raw_store,
            record_store=self.record_store,
            invoker=BackoffInvoker(settings.max_retries, settings.initial_delay_ms, logger=self.logger),
            token_tracker=self.token_tracker,
            max_concurrency=settings.max_concurrency,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            logger=self.logger,
        )

    def coordinator(self) -> BatchCoordinator:
        settings = self.settings
        return BatchCoordinator(
            batch_client=BatchClient(api_key=settings.api_key, logger=self.logger),
            criteria_provider=self.criteria_provider,
            status_store=self.status_store,
            raw_store=self.raw_store,
            record_store=self.record_store,
            token_tracker=self.token_tracker,
            invoker=BackoffInvoker(settings.max_retries, settings.initial_delay_ms, logger=self.logger),
            model=settings.model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            logger=self.logger,
        )

    def monitor(self) -> BatchMonitor:
        return BatchMonitor(self.coordinator(), self.status_store, logger=self.logger)

    def exporter(self) -> RecordExporter:
        return RecordExporter(
            self.record_store, self.status_store, self.criteria_provider, self.settings.output_dir, logger=self.logger
        )


def build_components(phase: str) -> Components:
    settings = load_settings()
    ensure_dirs(settings)
    logger = PipelineLogger(log_level=settings.log_level, log_file=f"esg_{phase}.log", phase=phase)
    return Components(
        settings=settings,
        logger=logger,
        status_store=StatusStore(settings.db_path, logger=logger),
        raw_store=RawResponseStore(settings.output_dir, logger=logger),
        record_store=RecordStore(settings.output_dir, logger=logger),
        criteria_provider=CriteriaProvider(settings.criteria_csv, logger=logger),
        token_tracker=TokenTracker(),
    )


# ============================================================================
# Rendering
# ============================================================================


def _styled(status: Optional[str]) -> str:
    status = status or "-"
    style = STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


def print_results(results: List[ExtractionResult]) -> None:
    table = Table(title="Extraction Results")
    table.add_column("Record", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Prompt")
    table.add_column("Strategy")
    table.add_column("Message")
    for result in results:
        table.add_row(
            result.record_id,
            _styled(result.status.value),
            result.prompt_kind.value if result.prompt_kind else "-",
            result.strategy_name or "-",
            result.message,
        )
    console.print(table)

    counts = summarize_results(results)
    console.print(
        f"[green]{counts['complete']} complete[/green], "
        f"[red]{counts['failed']} failed[/red], "
        f"[yellow]{counts['skipped']} skipped[/yellow]"
    )


def print_cycle(cycle: MonitorCycle) -> None:
    table = Table(title="Batch Check")
    table.add_column("Batch", style="cyan")
    table.add_column("State", justify="center")
    table.add_column("Progress", justify="right")
    table.add_column("Results")
    for processing in cycle.processed:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(processing.counts.items()))
        table.add_row(processing.job.job_id, "[green]processed[/green]", "100%", counts or "-")
    for job in cycle.running:
        finished = f"{job.counts.finished}/{job.counts.total}"
        state = job.lifecycle_state.value
        if job.job_id in cycle.near_expiry:
            state = f"[red]{state} (near expiry)[/red]"
        table.add_row(job.job_id, state, finished, "-")
    console.print(table)
    for error in cycle.errors:
        console.print(f"[red]{error}[/red]")


# ============================================================================
# Commands
# ============================================================================


def _chunks(items: List[SourceRecord], size: int) -> List[List[SourceRecord]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def _run_batches(components: Components, sources: List[SourceRecord]) -> int:
    coordinator = components.coordinator()
    exit_code = 0
    for chunk in _chunks(sources, components.settings.batch_size):
        try:
            creation = await coordinator.create_batch(chunk)
        except BatchSubmissionError as e:
            console.print(f"[red]{e}[/red]")
            exit_code = 1
            continue
        if creation.job:
            console.print(
                f"Submitted batch [cyan]{creation.job.job_id}[/cyan] with {len(creation.submitted_ids)} records"
            )
        if creation.skipped:
            print_results(creation.skipped)

    cycle = await BatchMonitor(coordinator, components.status_store, logger=components.logger).check_active_batches()
    print_cycle(cycle)
    return exit_code


def cmd_run(args: argparse.Namespace) -> int:
    """Extract records from the input list."""
    components = build_components("batch" if args.batch else "direct")
    settings = components.settings
    csv_path = Path(args.csv) if args.csv else settings.data_dir / "companies.csv"
    if not csv_path.exists():
        console.print(f"[red]Error: File not found: {csv_path}[/red]")
        return 1

    sources = load_source_records(csv_path, logger=components.logger)
    pending = [s for s in sources if components.status_store.should_process(s.id)]
    if args.limit:
        pending = pending[: args.limit]
    console.print(f"{len(pending)} of {len(sources)} records need processing")
    if not pending:
        return 0

    use_batch = args.batch or settings.use_batch
    components.logger.log_pipeline_start(len(pending), "batch" if use_batch else "direct")
    if use_batch:
        return asyncio.run(_run_batches(components, pending))

    if args.workers:
        settings = replace(settings, max_concurrency=args.workers)
        components.settings = settings

    start = time.monotonic()
    results = asyncio.run(components.orchestrator().process_all(pending))
    duration = time.monotonic() - start

    print_results(results)
    console.print(components.token_tracker.generate_report())
    components.token_tracker.save(settings.output_dir / "token_usage.json")
    components.logger.log_pipeline_complete(
        summarize_results(results), duration, components.token_tracker.totals()["cost_usd"]
    )

    exporter = components.exporter()
    exporter.export_json()
    exporter.export_csv()
    exporter.export_excel()
    failed = sum(1 for r in results if r.status == ProcessingStatus.FAILED)
    return 1 if failed else 0


def cmd_check_batches(args: argparse.Namespace) -> int:
    """Poll every active batch once."""
    components = build_components("monitor")
    cycle = asyncio.run(components.monitor().check_active_batches())
    print_cycle(cycle)
    if cycle.processed:
        components.exporter().export_csv()
    return 1 if cycle.errors else 0


def cmd_monitor(args: argparse.Namespace) -> int:
    """Poll active batches until all are processed."""
    components = build_components("monitor")
    interval = args.interval or components.settings.batch_check_interval_minutes * 60
    cycles = asyncio.run(components.monitor().run(interval, max_cycles=args.max_cycles))
    for cycle in cycles:
        print_cycle(cycle)
    if any(cycle.processed for cycle in cycles):
        components.exporter().export_csv()
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show processing status of every record."""
    components = build_components("status")
    rows = components.status_store.get_all_statuses()
    if not rows:
        console.print("No records found.")
        return 0

    table = Table(title="Processing Status")
    table.add_column("Record", style="cyan")
    table.add_column("Name")
    table.add_column("Industry")
    table.add_column("Extraction", justify="center")
    table.add_column("Message")
    table.add_column("Updated")
    for row in rows:
        table.add_row(
            row["record_id"],
            row.get("display_name") or "",
            row.get("industry") or "",
            _styled(row.get("extraction_status")),
            row.get("extraction_message") or "",
            row.get("updated_at") or "",
        )
    console.print(table)

    active = components.status_store.get_active_batches()
    if active:
        console.print(f"{len(active)} active batch(es): {', '.join(b['batch_id'] for b in active)}")
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Reset extraction status to pending."""
    components = build_components("reset")
    count = components.status_store.reset_status(args.id)
    console.print(f"Reset {count} record(s) to pending")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export extracted records to JSON, CSV and Excel."""
    components = build_components("export")
    exporter = components.exporter()
    json_path = exporter.export_json(Path(args.json) if args.json else None)
    csv_path = exporter.export_csv(Path(args.csv) if args.csv else None)
    xlsx_path = exporter.export_excel(Path(args.xlsx) if args.xlsx else None)
    console.print(f"Exported to {json_path}, {csv_path} and {xlsx_path}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Extract structured ESG data from sustainability reports and websites",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Extract pending records")
    run_parser.add_argument("--csv", help="Input list (default: <data dir>/companies.csv)")
    run_parser.add_argument("--batch", action="store_true", help="Submit PDF records as batch jobs")
    run_parser.add_argument("--workers", type=int, help="Concurrent extractions (direct mode)")
    run_parser.add_argument("--limit", type=int, help="Maximum records to process")

    subparsers.add_parser("check-batches", help="Poll active batches once")

    monitor_parser = subparsers.add_parser("monitor", help="Poll active batches until done")
    monitor_parser.add_argument("--interval", type=float, help="Seconds between checks")
    monitor_parser.add_argument("--max-cycles", type=int, help="Stop after this many checks")

    subparsers.add_parser("status", help="Show processing status")

    reset_parser = subparsers.add_parser("reset", help="Reset extraction status to pending")
    reset_parser.add_argument("--id", help="Record id (default: all records)")

    export_parser = subparsers.add_parser("export", help="Export extracted records")
    export_parser.add_argument("--json", help="JSON output path")
    export_parser.add_argument("--csv", help="CSV output path")
    export_parser.add_argument("--xlsx", help="Excel output path")

    args = parser.parse_args(argv)

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "check-batches":
        return cmd_check_batches(args)
    elif args.command == "monitor":
        return cmd_monitor(args)
    elif args.command == "status":
        return cmd_status(args)
    elif args.command == "reset":
        return cmd_reset(args)
    elif args.command == "export":
        return cmd_export(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
