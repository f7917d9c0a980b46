"""
End-to-end scenarios against the in-memory development server.

The client talks to the FastAPI app through ``httpx.ASGITransport``; no
sockets are opened.
"""

import asyncio

import pytest

from catalog_client.borrow import BorrowRequestCoordinator, PendingCheck
from catalog_client.credentials import CredentialProvider
from catalog_client.errors import ErrorKind
from catalog_client.health import HealthMonitor, MonitorState
from conftest import ADMIN_SECRET, MemoryCredentialStore, RecordingConfirm, RecordingPrompt

pytestmark = pytest.mark.integration


def test_borrow_an_available_book(asgi_api, mock_app):
    coordinator = BorrowRequestCoordinator(asgi_api)

    async def scenario():
        assert await coordinator.has_pending_request("u1", "b1") is False
        assert coordinator.can_borrow("u1", "b1")
        submitted = await coordinator.submit_borrow_request("u1", "b1")
        # a second click is answered by the server, not by a second local request
        assert not coordinator.can_borrow("u1", "b1")
        return submitted

    result = asyncio.run(scenario())
    assert result.ok
    assert coordinator.check_state("u1", "b1") is PendingCheck.PENDING
    assert len(mock_app.state.catalog.borrow_requests) == 1


def test_duplicate_submission_is_rejected_by_server(asgi_api):
    first = BorrowRequestCoordinator(asgi_api)
    # another tab without local pending state
    second = BorrowRequestCoordinator(asgi_api)

    async def scenario():
        await first.submit_borrow_request("u1", "b1")
        assert await second.has_pending_request("u1", "b1") is True
        return await second.submit_borrow_request("u1", "b1")

    result = asyncio.run(scenario())
    assert result.kind is ErrorKind.VALIDATION
    assert result.error.message == "You already have a pending request for this book"


def test_rejection_by_admin_reaches_client_on_next_list(asgi_api, mock_app):
    coordinator = BorrowRequestCoordinator(asgi_api)
    state = mock_app.state.catalog

    async def scenario():
        submitted = await coordinator.submit_borrow_request("u1", "b1")
        request = next(r for r in state.borrow_requests if r["id"] == submitted.value.request_id)
        request["status"] = "rejected"
        return await coordinator.list_requests("u1")

    result = asyncio.run(scenario())
    assert result.ok
    assert coordinator.check_state("u1", "b1") is PendingCheck.NONE


def test_pause_ingestion_updates_dashboard(asgi_api):
    monitor = HealthMonitor(
        asgi_api,
        CredentialProvider(MemoryCredentialStore(ADMIN_SECRET), RecordingPrompt()),
        confirm=RecordingConfirm(True),
    )

    async def scenario():
        await monitor.load()
        assert monitor.snapshot.system_status.ingestion.value == "healthy"
        result = await monitor.execute_action("pause_ingestion")
        await monitor.close()
        return result

    result = asyncio.run(scenario())
    assert result.ok
    assert result.value.refresh_error is None
    assert monitor.state is MonitorState.READY
    assert monitor.snapshot.system_status.ingestion.value == "warning"
    assert monitor.snapshot.error_summary.maintenance_actions[-1].action == "pause_ingestion"


def test_unauthorized_fetch_clears_credential_and_reprompts(asgi_api):
    store = MemoryCredentialStore("expired")
    prompt = RecordingPrompt(ADMIN_SECRET)
    monitor = HealthMonitor(asgi_api, CredentialProvider(store, prompt), confirm=RecordingConfirm(True))

    async def scenario():
        first = await monitor.load()
        assert first.kind is ErrorKind.AUTH
        assert store.token is None
        assert prompt.calls == 0
        return await monitor.refresh()

    result = asyncio.run(scenario())
    assert result.ok
    assert prompt.calls == 1
    assert store.clears == 1
    assert store.token == ADMIN_SECRET
    assert monitor.state is MonitorState.READY
