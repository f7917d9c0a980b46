import json
import logging

import httpx
import pytest
from typer.testing import CliRunner
from unittest.mock import MagicMock

from catalog_client import main
from catalog_client.config import settings
from catalog_client.credentials import CredentialStore
from catalog_client.health import ADMIN_ACTIONS
from catalog_client.services.http_client import CatalogHTTPClient
from catalog_client.ui_helpers import OUTPUT_MODE_ENV
from conftest import ADMIN_SECRET, BASE_URL, RecordingConfirm

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    monkeypatch.setattr(settings, "default_user_id", None)


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop the handler the CLI callback installs so it does not outlive the test."""
    yield
    for handler in list(main.logger.handlers):
        main.logger.removeHandler(handler)
    main.logger.setLevel(logging.NOTSET)


@pytest.fixture
def server(monkeypatch, mock_app, credential_file):
    """Point the CLI at an in-memory development server."""
    async def fake_get_http_client():
        return CatalogHTTPClient(base_url=BASE_URL, transport=httpx.ASGITransport(app=mock_app))

    monkeypatch.setattr(main, "get_http_client", fake_get_http_client)
    return mock_app


@pytest.fixture
def admin(credential_file):
    CredentialStore(credential_file).save(ADMIN_SECRET)
    return credential_file


def test_requests_empty(server):
    result = runner.invoke(main.app, ["requests", "u1"])
    assert result.exit_code == 0
    assert "No borrow requests." in result.stdout


def test_borrow_then_list(server):
    result = runner.invoke(main.app, ["borrow", "u1", "b1"])
    assert result.exit_code == 0
    assert "Borrow request created successfully" in result.stdout

    result = runner.invoke(main.app, ["requests", "u1"])
    assert result.exit_code == 0
    assert "book b1: pending" in result.stdout


def test_borrow_when_already_pending(server):
    runner.invoke(main.app, ["borrow", "u1", "b1"])
    result = runner.invoke(main.app, ["borrow", "u1", "b1"])
    assert result.exit_code == 0
    assert "You already have a pending request for this book." in result.stdout
    assert len(server.state.catalog.borrow_requests) == 1


def test_requests_json_output(server):
    runner.invoke(main.app, ["borrow", "u1", "b1"])
    result = runner.invoke(main.app, ["--output", "json", "requests", "u1"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout.strip().splitlines()[-1])
    assert payload[0]["bookId"] == "b1"
    assert payload[0]["status"] == "pending"


def test_requests_without_user(server):
    result = runner.invoke(main.app, ["requests"])
    assert result.exit_code == 1
    assert "Please log in to view your requests." in result.stdout


def test_waitlist(server):
    runner.invoke(main.app, ["waitlist", "u2", "b1"])
    result = runner.invoke(main.app, ["waitlist", "u1", "b1"])
    assert result.exit_code == 0
    assert "Joined waitlist at position 2." in result.stdout

    again = runner.invoke(main.app, ["waitlist", "u1", "b1"])
    assert again.exit_code == 1
    assert "Already in waitlist" in again.stdout


def test_network_error_copy(monkeypatch, credential_file):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async def fake_get_http_client():
        return CatalogHTTPClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(main, "get_http_client", fake_get_http_client)
    result = runner.invoke(main.app, ["borrow", "u1", "b1"])
    assert result.exit_code == 1
    assert "Network error. Please check your connection and try again." in result.stdout


def test_health_dashboard(server, admin):
    result = runner.invoke(main.app, ["health"])
    assert result.exit_code == 0
    assert "Overall: healthy" in result.stdout
    assert "2.5 GB" in result.stdout


def test_health_with_rejected_credential(server, credential_file):
    CredentialStore(credential_file).save("wrong")
    result = runner.invoke(main.app, ["health"])
    assert result.exit_code == 1
    assert "Invalid admin secret. Please refresh and try again." in result.stdout
    assert not credential_file.exists()


def test_action_refreshes_dashboard(server, admin):
    result = runner.invoke(main.app, ["action", "pause_ingestion", "--yes"])
    assert result.exit_code == 0
    assert "Ingestion paused successfully" in result.stdout
    assert "Ingestion: warning" in result.stdout


def test_action_declined(server, admin):
    result = runner.invoke(main.app, ["action", "trigger_maintenance"], input="n\n")
    assert result.exit_code == 1
    assert "Cancelled." in result.stdout
    assert server.state.catalog.maintenance_actions == []


def test_destructive_action_prompt_is_highlighted(server, admin, monkeypatch):
    confirm = RecordingConfirm(False)
    monkeypatch.setattr(main, "rich_confirm", confirm)

    result = runner.invoke(main.app, ["action", "pause_ingestion"])
    assert result.exit_code == 1
    assert confirm.messages == [f"[bold red]{ADMIN_ACTIONS['pause_ingestion'].confirm_message}[/]"]
    assert server.state.catalog.ingestion_paused is False


def test_routine_action_prompt_is_plain(server, admin, monkeypatch):
    confirm = RecordingConfirm(False)
    monkeypatch.setattr(main, "rich_confirm", confirm)

    result = runner.invoke(main.app, ["action", "trigger_maintenance"])
    assert result.exit_code == 1
    assert confirm.messages == [ADMIN_ACTIONS["trigger_maintenance"].confirm_message]


def test_action_unknown(server, admin):
    result = runner.invoke(main.app, ["action", "drop_tables", "--yes"])
    assert result.exit_code == 1
    assert "Invalid action: drop_tables" in result.stdout


def test_history_and_clear(server):
    state = server.state.catalog
    state.search_history.append({"id": "1", "userId": "u1", "type": "search", "query": "dune",
                                 "bookId": None, "createdAt": "2024-05-01T10:00:00+00:00"})

    result = runner.invoke(main.app, ["history", "u1"])
    assert result.exit_code == 0
    assert "search: 'dune'" in result.stdout

    result = runner.invoke(main.app, ["clear-history", "u1"])
    assert result.exit_code == 0
    assert "Search history cleared." in result.stdout
    assert "No search history." in runner.invoke(main.app, ["history", "u1"]).stdout


def test_logout_removes_credential(admin):
    result = runner.invoke(main.app, ["logout"])
    assert result.exit_code == 0
    assert "Admin credential removed." in result.stdout
    assert not admin.exists()


def test_serve_mock_runs_uvicorn(monkeypatch):
    run_mock = MagicMock()
    monkeypatch.setattr(main.subprocess, "run", run_mock)

    result = runner.invoke(main.app, ["serve-mock", "--port", "5055"])
    assert result.exit_code == 0
    assert "Starting development catalog server on http://127.0.0.1:5055/api" in result.stdout
    args = run_mock.call_args[0][0]
    assert "catalog_client.mock_server:app" in args
    assert args[args.index("--port") + 1] == "5055"
