"""
Admin health monitoring.

``HealthMonitor`` drives the operational dashboard: the initial load, manual
and periodic refreshes, and confirmation-gated admin control actions.

State machine::

    IDLE -> LOADING -> READY | ERROR
    READY -> REFRESHING -> READY        (failure keeps the previous snapshot)
    ERROR -> LOADING                    (retry)

At most one snapshot retrieval is in flight; further refresh triggers are
coalesced onto it. A 401 from any admin call invalidates the stored
credential exactly once and the next retrieval prompts for a new one.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError
from rich.prompt import Confirm

from catalog_client.credentials import CredentialProvider
from catalog_client.errors import CatalogError, ErrorKind, Result
from catalog_client.lifecycle import ViewLifetime
from catalog_client.models import HealthSnapshot
from catalog_client.services.catalog_api import CatalogAPI

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[str], bool]


class MonitorState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"
    ERROR = "error"


@dataclass(frozen=True)
class AdminAction:
    """A named control operation; intent only, nothing is stored."""
    name: str
    label: str
    confirm_message: str
    destructive: bool = False


ADMIN_ACTIONS: Dict[str, AdminAction] = {
    action.name: action
    for action in (
        AdminAction("trigger_ingestion", "Trigger Ingestion",
                    "This will start a new ingestion job. Continue?"),
        AdminAction("pause_ingestion", "Pause Ingestion",
                    "This will pause all ingestion jobs. Continue?", destructive=True),
        AdminAction("resume_ingestion", "Resume Ingestion",
                    "This will resume paused ingestion jobs. Continue?"),
        AdminAction("trigger_maintenance", "Trigger Maintenance",
                    "This will start a maintenance job. Continue?"),
    )
}


@dataclass
class ActionOutcome:
    action: str
    message: Optional[str] = None
    refresh_error: Optional[CatalogError] = None


def format_storage_size(mb: Union[int, float]) -> str:
    """MB below 1024, GB with one decimal from 1024 up."""
    if mb >= 1024:
        return f"{mb / 1024:.1f} GB"
    if isinstance(mb, float) and mb.is_integer():
        mb = int(mb)
    return f"{mb} MB"


def format_metric(value: Any) -> str:
    """Compact display of a dashboard metric value."""
    if value is None:
        return "N/A"
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return str(value)
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1000:
        return f"{value / 1000:.1f}K"
    return f"{value:,}"


def rich_confirm(message: str) -> bool:
    return Confirm.ask(message, default=False)


class HealthMonitor:
    """Loads, refreshes and acts on the admin health snapshot."""

    def __init__(
        self,
        api: CatalogAPI,
        credentials: CredentialProvider,
        confirm: Optional[ConfirmFn] = None,
        lifetime: Optional[ViewLifetime] = None,
        poll_interval: Optional[float] = None,
        on_change: Optional[Callable[["HealthMonitor"], None]] = None,
    ):
        self.api = api
        self.credentials = credentials
        self.confirm = confirm or rich_confirm
        self.lifetime = lifetime or ViewLifetime("health-dashboard")
        self.poll_interval = poll_interval
        self.on_change = on_change

        self.state = MonitorState.IDLE
        self.snapshot: Optional[HealthSnapshot] = None
        self.error: Optional[CatalogError] = None
        self.transient_error: Optional[CatalogError] = None
        self.last_refreshed: Optional[datetime] = None
        self.action_in_flight: Optional[str] = None
        self._retrieval: Optional[asyncio.Task] = None

    # ------------------------- Exposed state ------------------------- #
    @property
    def is_refreshing(self) -> bool:
        return self._retrieval is not None and not self._retrieval.done()

    def _set_state(self, state: MonitorState) -> None:
        if state is not self.state:
            logger.debug(f"Health monitor {self.state.value} -> {state.value}")
        self.state = state
        if self.on_change is not None and self.lifetime.alive:
            self.on_change(self)

    def _apply_snapshot(self, snapshot: HealthSnapshot) -> None:
        self.snapshot = snapshot
        self.last_refreshed = datetime.now()
        self.error = None
        self.transient_error = None

    # ------------------------- Remote calls ------------------------- #
    async def fetch_snapshot(self, credential: Optional[str] = None) -> Result:
        """One authenticated snapshot retrieval. Mutates no dashboard state.

        A 401 invalidates the stored credential before returning AUTH.
        """
        token = credential or self.credentials.resolve()
        if not token:
            return Result.failure(
                ErrorKind.NOT_AUTHENTICATED,
                "Admin secret is required to access the health dashboard",
            )

        result = await self.api.get_health(token)
        if not result.ok:
            if result.kind is ErrorKind.AUTH:
                self.credentials.invalidate()
                return Result.failure(
                    ErrorKind.AUTH, "Invalid admin secret. Please refresh and try again.", 401
                )
            return result

        try:
            return Result.success(HealthSnapshot.model_validate(result.value))
        except ValidationError as e:
            logger.error(f"Malformed health snapshot: {e}")
            return Result.failure(ErrorKind.SERVER, "Malformed health snapshot")

    def _run_retrieval(self, coro_factory) -> "asyncio.Future":
        """Start a retrieval unless one is running; callers share the same task."""
        if self.is_refreshing:
            logger.debug("Snapshot retrieval already in flight; coalescing")
        else:
            self._retrieval = asyncio.create_task(coro_factory())
        return asyncio.shield(self._retrieval)

    async def _load_once(self) -> Result:
        self._set_state(MonitorState.LOADING)
        result = await self.fetch_snapshot()
        if not self.lifetime.alive:
            return self.lifetime.stale_result()
        if result.ok:
            self._apply_snapshot(result.value)
            self._set_state(MonitorState.READY)
            logger.info("Health snapshot loaded")
        else:
            self.error = result.error
            self._set_state(MonitorState.ERROR)
            logger.warning(f"Health snapshot load failed ({result.kind.value}): {result.error.message}")
        return result

    async def _refresh_once(self) -> Result:
        self._set_state(MonitorState.REFRESHING)
        result = await self.fetch_snapshot()
        if not self.lifetime.alive:
            return self.lifetime.stale_result()
        if result.ok:
            self._apply_snapshot(result.value)
        else:
            # previous snapshot stays on screen
            self.transient_error = result.error
            logger.warning(f"Health snapshot refresh failed ({result.kind.value}): {result.error.message}")
        self._set_state(MonitorState.READY)
        return result

    # ------------------------- Operations ------------------------- #
    async def load(self) -> Result:
        """Initial load, or retry after an error."""
        if self.state in (MonitorState.READY, MonitorState.REFRESHING):
            return await self.refresh()
        return await self._run_retrieval(self._load_once)

    async def refresh(self) -> Result:
        """Manual refresh; a trigger while one is running joins it."""
        if self.state in (MonitorState.IDLE, MonitorState.ERROR, MonitorState.LOADING):
            return await self._run_retrieval(self._load_once)
        return await self._run_retrieval(self._refresh_once)

    async def start(self) -> Result:
        """Load the dashboard and begin periodic refreshes if configured."""
        result = await self.load()
        if self.poll_interval and self.poll_interval > 0 and self.lifetime.alive:
            self.lifetime.schedule_every(self.poll_interval, self.refresh, name="health-poll")
        return result

    async def execute_action(self, action: Union[str, AdminAction]) -> Result:
        """Confirm, then run an admin action and re-fetch the snapshot once.

        Declining the confirmation returns CANCELLED without any network call.
        A failing follow-up fetch is reported on the outcome and does not undo
        the action.
        """
        if isinstance(action, str):
            name = action
            action = ADMIN_ACTIONS.get(name)
            if action is None:
                return Result.failure(ErrorKind.VALIDATION, f"Invalid action: {name}")

        if self.action_in_flight:
            return Result.failure(
                ErrorKind.ALREADY_IN_PROGRESS, f"Action '{self.action_in_flight}' is already running"
            )
        if not self.confirm(action.confirm_message):
            logger.info(f"Admin action '{action.name}' declined")
            return Result.failure(ErrorKind.CANCELLED, "Action cancelled")

        token = self.credentials.resolve()
        if not token:
            return Result.failure(ErrorKind.NOT_AUTHENTICATED, "Admin secret is required")

        self.action_in_flight = action.name
        try:
            result = await self.api.run_admin_action(action.name, token)
        finally:
            self.action_in_flight = None

        if not result.ok:
            if result.kind is ErrorKind.AUTH:
                self.credentials.invalidate()
            logger.warning(f"Admin action '{action.name}' failed ({result.kind.value}): {result.error.message}")
            return result

        body = result.value if isinstance(result.value, dict) else {}
        outcome = ActionOutcome(action=action.name, message=body.get("message"))
        logger.info(f"Admin action '{action.name}' succeeded")
        if not self.lifetime.alive:
            return Result.success(outcome)

        follow_up = await self._follow_up_refresh()
        if not follow_up.ok:
            outcome.refresh_error = follow_up.error
        return Result.success(outcome)

    async def _follow_up_refresh(self) -> Result:
        # wait out running retrievals: their snapshots may predate the action
        while self.is_refreshing:
            await asyncio.shield(self._retrieval)

        async def _fetch_after_action() -> Result:
            if self.state in (MonitorState.IDLE, MonitorState.ERROR):
                return await self._load_once()
            return await self._refresh_once()

        self._retrieval = asyncio.create_task(_fetch_after_action())
        return await asyncio.shield(self._retrieval)

    async def close(self) -> None:
        """Stop polling and drop any responses still in flight."""
        await self.lifetime.aclose()
        if self.is_refreshing:
            self._retrieval.cancel()
            await asyncio.gather(self._retrieval, return_exceptions=True)
