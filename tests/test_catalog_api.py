import asyncio
import json

import httpx

from catalog_client.errors import ErrorKind
from catalog_client.services import http_client
from catalog_client.services.http_client import CatalogHTTPClient, cleanup_http_client, get_http_client
from conftest import BASE_URL, make_api


def test_list_borrow_requests_quotes_user_id():
    seen = {}

    def handler(request):
        seen["path"] = request.url.raw_path.decode()
        return httpx.Response(200, json=[])

    result = asyncio.run(make_api(handler).list_borrow_requests("a b/c"))
    assert result.ok
    assert result.value == []
    assert seen["path"] == "/api/borrow-requests/a%20b%2Fc"


def test_create_borrow_request_sends_json_body():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"success": True, "requestId": "r1", "message": "ok"})

    result = asyncio.run(make_api(handler).create_borrow_request("u1", "b1"))
    assert result.ok
    assert seen == {"method": "POST", "body": {"userId": "u1", "bookId": "b1"}}


def test_admin_calls_send_bearer_token():
    seen = []

    def handler(request):
        seen.append(request.headers.get("authorization"))
        return httpx.Response(200, json={"success": True, "message": "done"})

    api = make_api(handler)
    asyncio.run(api.get_health("tok"))
    asyncio.run(api.run_admin_action("trigger_ingestion", "tok"))
    assert seen == ["Bearer tok", "Bearer tok"]


def test_non_admin_calls_send_no_authorization():
    seen = []

    def handler(request):
        seen.append(request.headers.get("authorization"))
        return httpx.Response(200, json=[])

    asyncio.run(make_api(handler).get_search_history("u1", limit=5))
    assert seen == [None]


def test_transport_failure_becomes_network_result():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = asyncio.run(make_api(handler).join_waitlist("u1", "b1"))
    assert not result.ok
    assert result.kind is ErrorKind.NETWORK


def test_timeout_becomes_network_result():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = asyncio.run(make_api(handler).get_health("tok"))
    assert result.kind is ErrorKind.NETWORK
    assert result.error.message == "Request timed out"


def test_non_json_success_body_is_server_error():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    result = asyncio.run(make_api(handler).list_borrow_requests("u1"))
    assert result.kind is ErrorKind.SERVER


def test_empty_success_body():
    result = asyncio.run(make_api(lambda request: httpx.Response(204)).clear_search_history("u1"))
    assert result.ok
    assert result.value is None


def test_search_history_limit_param():
    seen = {}

    def handler(request):
        seen["limit"] = request.url.params.get("limit")
        return httpx.Response(200, json=[])

    asyncio.run(make_api(handler).get_search_history("u1", limit=7))
    assert seen["limit"] == "7"


def test_shared_client_is_recreated_after_cleanup(monkeypatch):
    monkeypatch.setattr(http_client, "_global_client", None)

    async def scenario():
        first = await get_http_client()
        assert await get_http_client() is first
        await cleanup_http_client()
        assert http_client._global_client is None
        second = await get_http_client()
        assert second is not first
        await cleanup_http_client()
        return first, second

    first, second = asyncio.run(scenario())
    assert isinstance(first, CatalogHTTPClient)
    assert first.is_closed and second.is_closed


def test_client_context_manager_closes_pool():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"status": "ok"})

    async def scenario():
        async with CatalogHTTPClient(base_url=BASE_URL, transport=httpx.MockTransport(handler)) as http:
            response = await http.request("GET", "/admin/health", token="s3cret")
            assert not http.is_closed
        return http, response

    http, response = asyncio.run(scenario())
    assert response.json() == {"status": "ok"}
    assert seen["auth"] == "Bearer s3cret"
    assert http.is_closed
