import asyncio
import logging
import subprocess
import sys
from typing import Any, Awaitable, Callable, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from catalog_client.borrow import BorrowRequestCoordinator, PendingCheck
from catalog_client.config import settings
from catalog_client.credentials import CredentialProvider
from catalog_client.errors import Result
from catalog_client.health import ADMIN_ACTIONS, HealthMonitor, MonitorState, rich_confirm
from catalog_client.search_history import SearchHistoryClient
from catalog_client.services.catalog_api import CatalogAPI
from catalog_client.services.http_client import cleanup_http_client, get_http_client
from catalog_client.ui_helpers import (
    print_error,
    print_history,
    print_message,
    print_requests,
    print_snapshot,
    set_output_mode,
)

APP_NAME = "Library Catalog CLI"

console = Console()
logger = logging.getLogger("catalog_client")


def _setup_logging() -> None:
    if logger.handlers:
        return
    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(settings.log_level.upper())


def _run(operation: Callable[[CatalogAPI], Awaitable[Any]]) -> Any:
    """Run one async operation against the shared HTTP client."""
    async def _main():
        try:
            http = await get_http_client()
            return await operation(CatalogAPI(http))
        finally:
            await cleanup_http_client()

    return asyncio.run(_main())


def _fail(result: Result) -> None:
    print_error(result.error)
    raise typer.Exit(code=1)


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    _setup_logging()
    if output:
        set_output_mode(output)


@app.command("requests")
def cli_requests(user_id: Optional[str] = typer.Argument(None, help="Patron id (defaults to CATALOG_USER_ID)")):
    """List a patron's borrow requests, newest first."""
    user_id = user_id or settings.default_user_id

    async def _op(api: CatalogAPI) -> Result:
        return await BorrowRequestCoordinator(api).list_requests(user_id)

    result = _run(_op)
    if not result.ok:
        _fail(result)
    print_requests(result.value)


@app.command("borrow")
def cli_borrow(user_id: str, book_id: str):
    """Request to borrow a book unless a request is already pending."""
    async def _op(api: CatalogAPI) -> Result:
        coordinator = BorrowRequestCoordinator(api)
        await coordinator.has_pending_request(user_id, book_id)
        if coordinator.check_state(user_id, book_id) is PendingCheck.PENDING:
            return Result.success(None)
        return await coordinator.submit_borrow_request(user_id, book_id)

    result = _run(_op)
    if not result.ok:
        _fail(result)
    if result.value is None:
        print_message("You already have a pending request for this book.")
    else:
        print_message(result.value.message or "Borrow request submitted.")


@app.command("waitlist")
def cli_waitlist(user_id: str, book_id: str):
    """Join the waitlist for a book."""
    async def _op(api: CatalogAPI) -> Result:
        return await BorrowRequestCoordinator(api).join_waitlist(user_id, book_id)

    result = _run(_op)
    if not result.ok:
        _fail(result)
    print_message(f"Joined waitlist at position {result.value.position}.")


def _render(monitor: HealthMonitor) -> None:
    if monitor.state is MonitorState.READY:
        print_snapshot(monitor.snapshot, monitor.last_refreshed)
        if monitor.transient_error is not None:
            console.print(f"[yellow]Refresh failed: {monitor.transient_error.message}[/]")


@app.command("health")
def cli_health(
    watch: bool = typer.Option(False, "--watch", "-w", help="Keep polling the dashboard"),
    interval: float = typer.Option(settings.health_poll_interval, "--interval", help="Polling interval in seconds"),
    count: Optional[int] = typer.Option(None, "--count", help="Stop after this many polls (default: until Ctrl-C)"),
):
    """Show the admin health dashboard."""
    if watch and interval <= 0:
        raise typer.BadParameter("must be positive when watching", param_hint="--interval")

    async def _op(api: CatalogAPI) -> Result:
        monitor = HealthMonitor(
            api,
            CredentialProvider(),
            poll_interval=interval if watch else None,
            on_change=_render if watch else None,
        )
        try:
            result = await monitor.start()
            if not watch:
                if result.ok:
                    print_snapshot(monitor.snapshot, monitor.last_refreshed)
                return result
            if monitor.state is MonitorState.ERROR:
                return result
            polls = 0
            while count is None or polls < count:
                await asyncio.sleep(interval)
                polls += 1
            return result
        finally:
            await monitor.close()

    try:
        result = _run(_op)
    except KeyboardInterrupt:
        print_message("Stopped.")
        return
    if not result.ok:
        _fail(result)


def _confirm_for(name: str) -> Callable[[str], bool]:
    """Confirmation prompt for ``name``; destructive actions are highlighted."""
    action = ADMIN_ACTIONS.get(name)
    if action is not None and action.destructive:
        return lambda message: rich_confirm(f"[bold red]{message}[/]")
    return rich_confirm


@app.command("action")
def cli_action(
    name: str = typer.Argument(..., help=f"One of: {', '.join(ADMIN_ACTIONS)}"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Run an admin control action and show the refreshed dashboard."""
    confirm = (lambda _message: True) if yes else _confirm_for(name)

    async def _op(api: CatalogAPI):
        monitor = HealthMonitor(api, CredentialProvider(), confirm=confirm)
        try:
            return await monitor.execute_action(name), monitor
        finally:
            await monitor.close()

    result, monitor = _run(_op)
    if not result.ok:
        _fail(result)
    outcome = result.value
    print_message(outcome.message or f"{ADMIN_ACTIONS[outcome.action].label} succeeded.")
    if outcome.refresh_error is not None:
        console.print(f"[yellow]Dashboard refresh failed: {outcome.refresh_error.message}[/]")
    else:
        print_snapshot(monitor.snapshot, monitor.last_refreshed)


@app.command("history")
def cli_history(
    user_id: Optional[str] = typer.Argument(None, help="Patron id (defaults to CATALOG_USER_ID)"),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum entries to show"),
):
    """Show a patron's search and view history."""
    user_id = user_id or settings.default_user_id

    async def _op(api: CatalogAPI) -> Result:
        return await SearchHistoryClient(api).list_history(user_id, limit=limit)

    result = _run(_op)
    if not result.ok:
        _fail(result)
    print_history(result.value)


@app.command("clear-history")
def cli_clear_history(user_id: Optional[str] = typer.Argument(None, help="Patron id (defaults to CATALOG_USER_ID)")):
    """Delete a patron's search history."""
    user_id = user_id or settings.default_user_id

    async def _op(api: CatalogAPI) -> Result:
        return await SearchHistoryClient(api).clear_history(user_id)

    result = _run(_op)
    if not result.ok:
        _fail(result)
    print_message("Search history cleared.")


@app.command("logout")
def cli_logout():
    """Forget the stored admin credential."""
    CredentialProvider().invalidate()
    print_message("Admin credential removed.")


@app.command("serve-mock")
def cli_serve_mock(
    host: str = typer.Option(settings.mock_host, "--host"),
    port: int = typer.Option(settings.mock_port, "--port"),
):
    """Start the in-memory development catalog server with uvicorn."""
    url = f"http://{host}:{port}/api"
    print(f"Starting development catalog server on {url}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "catalog_client.mock_server:app",
        "--host", host,
        "--port", str(port),
    ]
    if settings.mock_reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
