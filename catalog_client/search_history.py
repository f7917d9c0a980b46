import logging
from typing import Any, Optional, Set

from pydantic import ValidationError

from catalog_client.errors import ErrorKind, Result
from catalog_client.lifecycle import ViewLifetime
from catalog_client.models import SearchHistoryEntry
from catalog_client.services.catalog_api import CatalogAPI

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class SearchHistoryClient:
    """Records searches and book views and manages a patron's history."""

    def __init__(self, api: CatalogAPI, lifetime: Optional[ViewLifetime] = None):
        self.api = api
        self.lifetime = lifetime or ViewLifetime("search-history")
        self._clearing: Set[str] = set()

    async def record_view(self, user_id: Any, book_id: Any) -> None:
        """Fire-and-forget: failures are logged, never surfaced."""
        if not user_id:
            return
        result = await self.api.record_search_history(
            {"userId": str(user_id), "type": "view", "bookId": str(book_id)}
        )
        if not result.ok:
            logger.warning(f"Failed to record book view: {result.error.message}")

    async def record_search(self, user_id: Any, query: str) -> Result:
        if not user_id:
            return Result.failure(ErrorKind.NOT_AUTHENTICATED, "Please log in to save searches.")
        query = (query or "").strip()
        if not query:
            return Result.failure(ErrorKind.VALIDATION, "query is required for search type")
        result = await self.api.record_search_history({"userId": str(user_id), "type": "search", "query": query})
        if not result.ok:
            logger.warning(f"Failed to record search: {result.error.message}")
        return result

    async def list_history(self, user_id: Any, limit: int = DEFAULT_HISTORY_LIMIT) -> Result:
        """Most recent entries first, as returned by the server."""
        if not user_id:
            return Result.failure(ErrorKind.NOT_AUTHENTICATED, "Please log in to view your history.")
        result = await self.lifetime.guard(self.api.get_search_history(str(user_id), limit=limit))
        if not result.ok:
            return result
        if not isinstance(result.value, list):
            return Result.failure(ErrorKind.SERVER, "Malformed search history")
        try:
            return Result.success([SearchHistoryEntry.model_validate(item) for item in result.value])
        except ValidationError as e:
            logger.error(f"Could not parse search history: {e}")
            return Result.failure(ErrorKind.SERVER, "Malformed search history")

    async def clear_history(self, user_id: Any) -> Result:
        """Delete every entry of ``user_id``; one clear per user at a time."""
        if not user_id:
            return Result.failure(ErrorKind.NOT_AUTHENTICATED, "Please log in to clear your history.")
        uid = str(user_id)
        if uid in self._clearing:
            return Result.failure(ErrorKind.ALREADY_IN_PROGRESS, "Search history is already being cleared.")
        self._clearing.add(uid)
        try:
            result = await self.lifetime.guard(self.api.clear_search_history(uid))
        finally:
            self._clearing.discard(uid)
        if result.ok:
            logger.info(f"Search history cleared for user {uid}")
        return result
