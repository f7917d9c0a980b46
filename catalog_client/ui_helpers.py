import os
import json
from datetime import datetime
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from catalog_client.errors import CatalogError, ErrorKind
from catalog_client.health import format_metric, format_storage_size
from catalog_client.models import BorrowRequest, HealthSnapshot, SearchHistoryEntry

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "CATALOG_CLI_OUTPUT"

_console = Console()

_STATUS_STYLE = {"healthy": "green", "warning": "yellow", "failed": "red"}

_ERROR_COPY = {
    ErrorKind.NETWORK: "Network error. Please check your connection and try again.",
    ErrorKind.SERVER: "Server error. Please try again later.",
    ErrorKind.CANCELLED: "Cancelled.",
}


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def describe_error(error: CatalogError) -> str:
    """User-facing copy for a classified failure.

    Transport and server failures get generic copy; every other kind carries
    a message meant for the user (validation text comes from the server).
    """
    return _ERROR_COPY.get(error.kind) or error.message


def print_error(error: CatalogError) -> None:
    if get_output_mode() == "json":
        print(json.dumps({"error": error.kind.value, "message": describe_error(error)}))
    elif get_output_mode() == "rich":
        _console.print(f"[bold red]Error:[/] {describe_error(error)}")
    else:
        print(f"Error: {describe_error(error)}")


def print_message(message: str) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({"message": message}, ensure_ascii=False))
    elif mode == "rich":
        _console.print(f"[green]{message}[/]")
    else:
        print(message)


def print_requests(requests: List[BorrowRequest]) -> None:
    """Print borrow requests according to the current output mode.
    - plain: one 'id - book <bookId>: status' line each, or 'No borrow requests.'
    - json: JSON array using the wire field names
    - rich: table
    """
    mode = get_output_mode()

    if not requests:
        print("No borrow requests.")
        return

    if mode == "json":
        payload = [r.model_dump(by_alias=True, mode="json") for r in requests]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Borrow Requests", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("Status", style="white")
        table.add_column("Requested", style="dim")
        for r in requests:
            reason = f" ({r.rejection_reason})" if r.rejection_reason else ""
            table.add_row(r.id, r.book_id, f"{r.status.value}{reason}", r.created_at or "")
        _console.print(table)
    else:
        for r in requests:
            reason = f" ({r.rejection_reason})" if r.rejection_reason else ""
            print(f"{r.id} - book {r.book_id}: {r.status.value}{reason}")


def print_snapshot(snapshot: Optional[HealthSnapshot], last_refreshed: Optional[datetime] = None) -> None:
    """Print the health dashboard according to the current output mode."""
    mode = get_output_mode()

    if snapshot is None:
        print("No health data available.")
        return

    if mode == "json":
        print(json.dumps(snapshot.model_dump(by_alias=True, mode="json"), ensure_ascii=False))
        return

    status = snapshot.system_status
    metrics = snapshot.daily_metrics
    progress = snapshot.ingestion_progress
    storage = snapshot.storage_health
    refreshed = last_refreshed.strftime("%H:%M:%S") if last_refreshed else "never"

    lines = [
        f"Overall: {status.overall.value}",
        f"Ingestion: {status.ingestion.value} | Maintenance: {status.maintenance.value}"
        f" | AI Classification: {status.ai_classification.value}",
        f"Books Ingested Today: {format_metric(metrics.books_ingested)}"
        f" (skipped {format_metric(metrics.books_skipped)}, failed {format_metric(metrics.books_failed)})",
        f"Total Ingested: {format_metric(progress.total_ingested)} (last run: {progress.last_run_status})",
        f"Storage: {format_metric(storage.total_pdfs)} PDFs, {format_storage_size(storage.estimated_size_mb)}",
        f"Last refreshed: {refreshed}",
    ]

    if mode == "rich":
        style = _STATUS_STYLE.get(status.overall.value, "white")
        body = "\n".join(lines[1:])
        _console.print(Panel.fit(body, title=f"🩺 System Health: {status.overall.value}", border_style=style))
        if snapshot.error_summary.ingestion_errors:
            table = Table(title="Recent Ingestion Errors", header_style="bold red")
            table.add_column("Time", style="dim")
            table.add_column("Type")
            table.add_column("Message")
            for e in snapshot.error_summary.ingestion_errors:
                table.add_row(e.timestamp, e.type, e.message)
            _console.print(table)
    else:
        for line in lines:
            print(line)


def print_history(entries: List[SearchHistoryEntry]) -> None:
    mode = get_output_mode()

    if not entries:
        print("No search history.")
        return

    if mode == "json":
        print(json.dumps([e.model_dump(by_alias=True, mode="json") for e in entries], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="🔎 Search History", header_style="bold cyan")
        table.add_column("When", style="dim")
        table.add_column("Type", style="magenta")
        table.add_column("Query / Book", style="white")
        for e in entries:
            table.add_row(e.created_at or "", e.type, e.query if e.type == "search" else f"book {e.book_id}")
        _console.print(table)
    else:
        for e in entries:
            detail = f"'{e.query}'" if e.type == "search" else f"book {e.book_id}"
            print(f"{e.created_at or ''} {e.type}: {detail}".strip())
