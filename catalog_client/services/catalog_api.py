import logging
import time
from typing import Optional, Dict, Any
from urllib.parse import quote

import httpx

from catalog_client.errors import ErrorClassifier, ErrorKind, Result
from catalog_client.services.http_client import CatalogHTTPClient

logger = logging.getLogger(__name__)


def _segment(value: Any) -> str:
    """Quote an identifier for use as a single URL path segment"""
    return quote(str(value), safe="")


class CatalogAPI:
    """Typed access to the catalog REST endpoints.

    Every method returns a ``Result``: the decoded JSON body on success or a
    classified ``CatalogError``. Transport exceptions never escape.
    """

    def __init__(self, http: CatalogHTTPClient):
        self.http = http

    async def _call(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Result:
        start_time = time.time()
        try:
            response = await self.http.request(method, path, token=token, **kwargs)
        except httpx.RequestError as exc:
            error = ErrorClassifier.classify_exception(exc)
            logger.warning(f"{method} {path} failed before a response arrived: {error.message}")
            return Result.failure(error)

        elapsed_ms = int((time.time() - start_time) * 1000)
        error = ErrorClassifier.classify(response)
        if error is not None:
            logger.warning(
                f"{method} {path} -> {response.status_code} ({error.kind.value}) in {elapsed_ms}ms: {error.message}"
            )
            return Result.failure(error)

        logger.debug(f"{method} {path} -> {response.status_code} in {elapsed_ms}ms")
        if not response.content:
            return Result.success(None)
        try:
            return Result.success(response.json())
        except ValueError:
            logger.error(f"{method} {path} returned a body that is not JSON")
            return Result.failure(ErrorKind.SERVER, "Malformed response from server", response.status_code)

    # ------------------------- Borrow requests ------------------------- #
    async def list_borrow_requests(self, user_id: str) -> Result:
        """GET /borrow-requests/{userId}"""
        return await self._call("GET", f"/borrow-requests/{_segment(user_id)}")

    async def create_borrow_request(self, user_id: str, book_id: str) -> Result:
        """POST /borrow-requests"""
        return await self._call("POST", "/borrow-requests", json={"userId": user_id, "bookId": book_id})

    # ------------------------- Waitlist ------------------------- #
    async def join_waitlist(self, user_id: str, book_id: str) -> Result:
        """POST /waitlist/join"""
        return await self._call("POST", "/waitlist/join", json={"userId": user_id, "bookId": book_id})

    # ------------------------- Admin health ------------------------- #
    async def get_health(self, token: str) -> Result:
        """GET /admin/health (bearer protected)"""
        return await self._call("GET", "/admin/health", token=token)

    async def run_admin_action(self, action: str, token: str) -> Result:
        """POST /admin/health/actions (bearer protected)"""
        return await self._call("POST", "/admin/health/actions", token=token, json={"action": action})

    # ------------------------- Search history ------------------------- #
    async def record_search_history(self, payload: Dict[str, Any]) -> Result:
        """POST /search-history"""
        return await self._call("POST", "/search-history", json=payload)

    async def get_search_history(self, user_id: str, limit: int = 50) -> Result:
        """GET /search-history/{userId}"""
        return await self._call("GET", f"/search-history/{_segment(user_id)}", params={"limit": limit})

    async def clear_search_history(self, user_id: str) -> Result:
        """DELETE /search-history/{userId}"""
        return await self._call("DELETE", f"/search-history/{_segment(user_id)}")
