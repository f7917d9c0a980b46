"""
Borrow request coordination.

Tracks one patron's relationship to each book they look at: whether a
pending borrow request already exists, submitting new requests and joining
waitlists. The server is authoritative for request status; local state is a
presentation hint that the next full list fetch always overwrites.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from catalog_client.errors import ErrorKind, Result
from catalog_client.lifecycle import ViewLifetime
from catalog_client.models import BorrowRequest, BorrowSubmission, WaitlistEntry
from catalog_client.services.catalog_api import CatalogAPI

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


class PendingCheck(str, Enum):
    UNCHECKED = "unchecked"
    CHECKING = "checking"
    PENDING = "pending"
    NONE = "none"
    UNKNOWN = "unknown"  # the check failed; borrowing stays available


def _parse_requests(payload: Any) -> Result:
    if not isinstance(payload, list):
        return Result.failure(ErrorKind.SERVER, "Malformed borrow request list")
    try:
        return Result.success([BorrowRequest.model_validate(item) for item in payload])
    except ValidationError as e:
        logger.error(f"Could not parse borrow requests: {e}")
        return Result.failure(ErrorKind.SERVER, "Malformed borrow request list")


class BorrowRequestCoordinator:
    """Owns pending-request checks, borrow submissions and waitlist joins."""

    def __init__(self, api: CatalogAPI, lifetime: Optional[ViewLifetime] = None):
        self.api = api
        self.lifetime = lifetime or ViewLifetime("borrow")
        self._checks: Dict[Key, PendingCheck] = {}
        # bumped on every local state change so older in-flight checks can tell they were superseded
        self._epochs: Dict[Key, int] = {}
        self._inflight: Dict[Key, str] = {}
        self._checking: Dict[Key, asyncio.Task] = {}

    @staticmethod
    def _key(user_id: Any, book_id: Any) -> Key:
        return (str(user_id), str(book_id))

    def _mark(self, key: Key, state: PendingCheck) -> None:
        self._checks[key] = state
        self._epochs[key] = self._epochs.get(key, 0) + 1

    # ------------------------- Exposed state ------------------------- #
    def check_state(self, user_id: Any, book_id: Any) -> PendingCheck:
        return self._checks.get(self._key(user_id, book_id), PendingCheck.UNCHECKED)

    def is_submitting(self, user_id: Any, book_id: Any) -> bool:
        return self._key(user_id, book_id) in self._inflight

    def can_borrow(self, user_id: Any, book_id: Any) -> bool:
        """True when the borrow control may be offered to the user."""
        if not user_id:
            return False
        if self.is_submitting(user_id, book_id):
            return False
        return self.check_state(user_id, book_id) in (PendingCheck.NONE, PendingCheck.UNKNOWN)

    # ------------------------- Operations ------------------------- #
    async def has_pending_request(self, user_id: Any, book_id: Any) -> bool:
        """Whether ``user_id`` already has a pending request for ``book_id``.

        A failed check resolves to False without surfacing an error; the
        state moves to UNKNOWN so the borrow control becomes available again.
        """
        if not user_id:
            return False
        key = self._key(user_id, book_id)
        task = self._checking.get(key)
        if task is not None and not task.done():
            logger.debug(f"Pending check for {key} already in flight; joining it")
        else:
            epoch = self._epochs.get(key, 0)
            previous = self._checks.get(key)
            self._checks[key] = PendingCheck.CHECKING
            task = asyncio.create_task(self._check_pending(key, epoch, previous))
            self._checking[key] = task
            task.add_done_callback(lambda t, k=key: self._forget_check(k, t))
        return await asyncio.shield(task)

    def _forget_check(self, key: Key, task: asyncio.Task) -> None:
        if self._checking.get(key) is task:
            del self._checking[key]

    async def _check_pending(self, key: Key, epoch: int, previous: Optional[PendingCheck]) -> bool:
        result = await self.api.list_borrow_requests(key[0])
        if not self.lifetime.alive:
            return False
        if self._epochs.get(key, 0) != epoch:
            # superseded by a submission or a full list fetch
            logger.debug(f"Discarding superseded pending check for {key}")
            return self._checks.get(key) is PendingCheck.PENDING

        if result.ok:
            result = _parse_requests(result.value)
        if not result.ok:
            logger.warning(f"Could not check pending requests for user {key[0]}: {result.error.message}")
            self._checks[key] = PendingCheck.PENDING if previous is PendingCheck.PENDING else PendingCheck.UNKNOWN
            return False

        pending = any(r.book_id == key[1] and r.is_pending for r in result.value)
        self._mark(key, PendingCheck.PENDING if pending else PendingCheck.NONE)
        return pending

    async def list_requests(self, user_id: Any) -> Result:
        """Fetch every request of ``user_id``; the answer overwrites local hints."""
        if not user_id:
            return Result.failure(ErrorKind.NOT_AUTHENTICATED, "Please log in to view your requests.")
        uid = str(user_id)
        started = {k: e for k, e in self._epochs.items() if k[0] == uid}

        result = await self.lifetime.guard(self.api.list_borrow_requests(uid))
        if not result.ok:
            return result
        result = _parse_requests(result.value)
        if not result.ok:
            return result

        requests: List[BorrowRequest] = result.value
        pending_books = {r.book_id for r in requests if r.is_pending}
        keys = {k for k in self._checks if k[0] == uid} | {(uid, b) for b in pending_books}
        for key in keys:
            if self._epochs.get(key, 0) != started.get(key, 0):
                continue
            self._mark(key, PendingCheck.PENDING if key[1] in pending_books else PendingCheck.NONE)
        return result

    async def _single_flight(self, key: Key, operation: str, send: Callable[[], Awaitable[Result]]) -> Result:
        running = self._inflight.get(key)
        if running:
            logger.debug(f"Rejecting duplicate {operation} for {key}: {running} already in progress")
            return Result.failure(
                ErrorKind.ALREADY_IN_PROGRESS,
                f"A {running} request for this book is already in progress.",
            )
        self._inflight[key] = operation
        try:
            return await self.lifetime.guard(send())
        finally:
            self._inflight.pop(key, None)

    async def submit_borrow_request(self, user_id: Any, book_id: Any) -> Result:
        """Create a borrow request; on success the pair is shown as pending."""
        if not user_id:
            return Result.failure(ErrorKind.NOT_AUTHENTICATED, "Please log in to borrow books.")
        key = self._key(user_id, book_id)

        result = await self._single_flight(
            key, "borrow", lambda: self.api.create_borrow_request(key[0], key[1])
        )
        if not result.ok:
            if result.kind not in (ErrorKind.ALREADY_IN_PROGRESS, ErrorKind.CANCELLED):
                logger.warning(f"Borrow request for book {key[1]} by user {key[0]} failed: {result.error.message}")
            return result

        try:
            submission = BorrowSubmission.model_validate(result.value or {})
        except ValidationError:
            submission = BorrowSubmission()
        self._mark(key, PendingCheck.PENDING)
        logger.info(f"Borrow request submitted for book {key[1]} by user {key[0]}")
        return Result.success(submission)

    async def join_waitlist(self, user_id: Any, book_id: Any) -> Result:
        """Join the waitlist for ``book_id``; returns the assigned position."""
        if not user_id:
            return Result.failure(ErrorKind.NOT_AUTHENTICATED, "Please log in to join the waitlist.")
        key = self._key(user_id, book_id)

        result = await self._single_flight(
            key, "waitlist", lambda: self.api.join_waitlist(key[0], key[1])
        )
        if not result.ok:
            if result.kind not in (ErrorKind.ALREADY_IN_PROGRESS, ErrorKind.CANCELLED):
                logger.warning(f"Waitlist join for book {key[1]} by user {key[0]} failed: {result.error.message}")
            return result

        body = result.value if isinstance(result.value, dict) else {}
        try:
            entry = WaitlistEntry(user_id=key[0], book_id=key[1], position=body.get("position"))
        except ValidationError:
            return Result.failure(ErrorKind.SERVER, "Waitlist response did not include a position")
        logger.info(f"User {key[0]} joined waitlist for book {key[1]} at position {entry.position}")
        return Result.success(entry)
