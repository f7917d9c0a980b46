"""
In-memory development server for the catalog API.

Implements the endpoints the client consumes (borrow requests, waitlist,
admin health and actions, search history) with the same request and
response shapes, so the client can be exercised locally and in tests:

    uvicorn catalog_client.mock_server:app --port 5000
"""

import itertools
import logging
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from catalog_client.config import settings

logger = logging.getLogger(__name__)

Identifier = Union[str, int]

VALID_ACTIONS = ("trigger_ingestion", "trigger_maintenance", "pause_ingestion", "resume_ingestion")

BOOKS_PER_INGESTION_RUN = 25
MB_PER_PDF = 2.5


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def calculate_status(last_run_at: Optional[str], last_run_status: str, error_count_24h: int) -> str:
    """Service status from its last run and recent error volume."""
    if last_run_status == "failed":
        return "failed"
    if not last_run_at:
        return "warning"
    last_run = datetime.fromisoformat(last_run_at)
    if datetime.now(timezone.utc) - last_run > timedelta(hours=48):
        return "warning"
    if error_count_24h > 5:
        return "warning"
    return "healthy"


def _worst(*statuses: str) -> str:
    if "failed" in statuses:
        return "failed"
    if "warning" in statuses:
        return "warning"
    return "healthy"


# --- Request models ---
class BorrowRequestCreate(BaseModel):
    userId: Optional[Identifier] = None
    bookId: Optional[Identifier] = None


class WaitlistJoin(BaseModel):
    userId: Optional[Identifier] = None
    bookId: Optional[Identifier] = None


class RejectBody(BaseModel):
    reason: Optional[str] = None


class AdminActionRequest(BaseModel):
    action: Optional[str] = None


class SearchHistoryCreate(BaseModel):
    userId: Optional[Identifier] = None
    type: Optional[str] = None
    query: Optional[str] = None
    bookId: Optional[Identifier] = None


class CatalogState:
    """Everything the development server knows, kept in memory."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.borrow_requests: List[Dict[str, Any]] = []
        self.waitlists: Dict[str, List[str]] = defaultdict(list)
        self.search_history: List[Dict[str, Any]] = []

        self.ingestion_paused = False
        self.daily_metrics = {
            "booksIngested": 0,
            "booksSkipped": 0,
            "booksFailed": 0,
            "booksClassified": 0,
            "classificationFailures": 0,
            "date": datetime.now(timezone.utc).date().isoformat(),
        }
        self.ingestion_progress = {
            "source": "internet_archive",
            "lastPage": 48,
            "lastCursor": None,
            "totalIngested": 1024,
            "lastRunAt": _now_iso(),
            "lastRunStatus": "completed",
        }
        self.storage_health = {
            "totalPdfs": 1024,
            "estimatedSizeMb": 1024 * MB_PER_PDF,
            "orphanedFiles": None,
            "corruptFiles": None,
        }
        self.ingestion_errors: List[Dict[str, Any]] = []
        self.maintenance_actions: List[Dict[str, Any]] = []

    def next_id(self) -> str:
        return str(next(self._ids))

    # ------------------------- Health ------------------------- #
    def snapshot(self) -> Dict[str, Any]:
        progress = self.ingestion_progress
        if self.ingestion_paused:
            ingestion = "warning"
        else:
            ingestion = calculate_status(progress["lastRunAt"], progress["lastRunStatus"], len(self.ingestion_errors))
        ai = "warning" if self.daily_metrics["classificationFailures"] > 5 else "healthy"
        maintenance = "healthy"
        return {
            "systemStatus": {
                "ingestion": ingestion,
                "maintenance": maintenance,
                "aiClassification": ai,
                "overall": _worst(ingestion, maintenance, ai),
            },
            "dailyMetrics": dict(self.daily_metrics),
            "ingestionProgress": dict(progress),
            "storageHealth": dict(self.storage_health),
            "errorSummary": {
                "ingestionErrors": list(self.ingestion_errors[-10:]),
                "maintenanceActions": list(self.maintenance_actions[-10:]),
                "lastAiError": None,
            },
            "timestamp": _now_iso(),
        }

    def run_action(self, action: str) -> Dict[str, Any]:
        if action == "trigger_ingestion":
            if self.ingestion_paused:
                return {"success": False, "message": "Ingestion is currently paused. Resume it first."}
            self.daily_metrics["booksIngested"] += BOOKS_PER_INGESTION_RUN
            self.daily_metrics["booksClassified"] += BOOKS_PER_INGESTION_RUN
            self.ingestion_progress["lastPage"] += 1
            self.ingestion_progress["totalIngested"] += BOOKS_PER_INGESTION_RUN
            self.ingestion_progress["lastRunAt"] = _now_iso()
            self.ingestion_progress["lastRunStatus"] = "completed"
            self.storage_health["totalPdfs"] += BOOKS_PER_INGESTION_RUN
            self.storage_health["estimatedSizeMb"] += BOOKS_PER_INGESTION_RUN * MB_PER_PDF
            return {"success": True, "message": "Ingestion triggered successfully"}
        if action == "pause_ingestion":
            if self.ingestion_paused:
                return {"success": False, "message": "Ingestion is already paused"}
            self.ingestion_paused = True
            return {"success": True, "message": "Ingestion paused successfully"}
        if action == "resume_ingestion":
            if not self.ingestion_paused:
                return {"success": False, "message": "Ingestion is not paused"}
            self.ingestion_paused = False
            return {"success": True, "message": "Ingestion resumed successfully"}
        # trigger_maintenance
        self.storage_health["orphanedFiles"] = 0
        self.storage_health["corruptFiles"] = 0
        return {"success": True, "message": "Maintenance triggered"}

    def log_action(self, action: str, result: str) -> None:
        self.maintenance_actions.append({"timestamp": _now_iso(), "action": action, "result": result})
        logger.info(f"[Health Actions] Action logged: {action} -> {result}")


def create_app(admin_secret: Optional[str] = None) -> FastAPI:
    """Build a fresh development server with its own in-memory state."""
    secret = admin_secret if admin_secret is not None else settings.admin_health_secret
    state = CatalogState()

    app = FastAPI(title="Library Catalog Development API")
    app.state.catalog = state

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.debug(f"{request.method} {request.url.path} -> {response.status_code}")
        return response

    @app.exception_handler(HTTPException)
    async def catalog_error_handler(request: Request, exc: HTTPException):
        if exc.status_code == 401:
            content = {"error": "Unauthorized", "message": exc.detail}
        else:
            content = {"error": exc.detail}
        content["timestamp"] = _now_iso()
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    # --- Security ---
    def require_admin(authorization: Optional[str] = Header(None)):
        """Dependency validating the bearer admin secret."""
        if not secret:
            logger.error("[Health API] ADMIN_HEALTH_SECRET not configured")
            raise HTTPException(status_code=401, detail="Service not configured")
        if not authorization:
            raise HTTPException(status_code=401, detail="Authorization required")
        if authorization != f"Bearer {secret}":
            logger.warning("[Health API] Unauthorized request: Invalid authorization")
            raise HTTPException(status_code=401, detail="Invalid authorization")

    router = APIRouter(prefix="/api")

    # --- Borrow requests ---
    @router.post("/borrow-requests", status_code=201)
    def create_borrow_request(payload: BorrowRequestCreate):
        if not payload.userId or not payload.bookId:
            raise HTTPException(status_code=400, detail="userId and bookId are required")
        user_id, book_id = str(payload.userId), str(payload.bookId)
        duplicate = any(
            r["userId"] == user_id and r["bookId"] == book_id and r["status"] == "pending"
            for r in state.borrow_requests
        )
        if duplicate:
            raise HTTPException(status_code=400, detail="You already have a pending request for this book")
        request_id = state.next_id()
        state.borrow_requests.append({
            "id": request_id,
            "userId": user_id,
            "bookId": book_id,
            "status": "pending",
            "rejectionReason": None,
            "requestedAt": _now_iso(),
            "processedAt": None,
        })
        return {"success": True, "requestId": request_id, "message": "Borrow request created successfully"}

    @router.get("/borrow-requests/{user_id}")
    def list_borrow_requests(user_id: str):
        requests = [r for r in state.borrow_requests if r["userId"] == user_id]
        return sorted(requests, key=lambda r: r["requestedAt"], reverse=True)

    def _process(request_id: str, status: str, reason: Optional[str] = None) -> Dict[str, Any]:
        for r in state.borrow_requests:
            if r["id"] == request_id:
                if r["status"] != "pending":
                    raise HTTPException(status_code=400, detail=f"Request is already {r['status']}")
                r["status"] = status
                r["rejectionReason"] = reason
                r["processedAt"] = _now_iso()
                return {"success": True, "message": f"Request {status}"}
        raise HTTPException(status_code=404, detail="Borrow request not found")

    @router.post("/admin/borrow-requests/{request_id}/approve", dependencies=[Depends(require_admin)])
    def approve_borrow_request(request_id: str):
        return _process(request_id, "approved")

    @router.post("/admin/borrow-requests/{request_id}/reject", dependencies=[Depends(require_admin)])
    def reject_borrow_request(request_id: str, body: Optional[RejectBody] = None):
        return _process(request_id, "rejected", body.reason if body else None)

    # --- Waitlist ---
    @router.post("/waitlist/join")
    def join_waitlist(payload: WaitlistJoin):
        if not payload.userId or not payload.bookId:
            raise HTTPException(status_code=400, detail="userId and bookId are required")
        user_id, book_id = str(payload.userId), str(payload.bookId)
        queue = state.waitlists[book_id]
        if user_id in queue:
            raise HTTPException(status_code=400, detail="Already in waitlist")
        queue.append(user_id)
        return {"success": True, "position": len(queue)}

    # --- Admin health ---
    @router.get("/admin/health", dependencies=[Depends(require_admin)])
    def get_health():
        start_time = time.time()
        snapshot = state.snapshot()
        snapshot["responseTimeMs"] = int((time.time() - start_time) * 1000)
        return snapshot

    @router.post("/admin/health/actions", dependencies=[Depends(require_admin)])
    def run_action(payload: AdminActionRequest):
        if not payload.action or payload.action not in VALID_ACTIONS:
            message = "Action is required" if not payload.action else f"Invalid action: {payload.action}"
            return JSONResponse(status_code=400, content={
                "error": "Bad request",
                "message": message,
                "validActions": list(VALID_ACTIONS),
                "timestamp": _now_iso(),
            })
        result = state.run_action(payload.action)
        state.log_action(payload.action, result["message"])
        return {
            "success": result["success"],
            "action": payload.action,
            "message": result["message"],
            "timestamp": _now_iso(),
        }

    # --- Search history ---
    @router.post("/search-history", status_code=201)
    def record_search_history(payload: SearchHistoryCreate):
        if not payload.userId:
            raise HTTPException(status_code=400, detail="userId is required")
        if payload.type not in ("search", "view"):
            raise HTTPException(status_code=400, detail='type must be "search" or "view"')
        if payload.type == "search" and not payload.query:
            raise HTTPException(status_code=400, detail="query is required for search type")
        if payload.type == "view" and not payload.bookId:
            raise HTTPException(status_code=400, detail="bookId is required for view type")
        entry = {
            "id": state.next_id(),
            "userId": str(payload.userId),
            "type": payload.type,
            "query": payload.query if payload.type == "search" else None,
            "bookId": str(payload.bookId) if payload.type == "view" else None,
            "createdAt": _now_iso(),
        }
        state.search_history.append(entry)
        return {"success": True, "entry": entry}

    @router.get("/search-history/{user_id}")
    def get_search_history(user_id: str, limit: int = Query(50, ge=1, le=500)):
        entries = [e for e in state.search_history if e["userId"] == user_id]
        return list(reversed(entries))[:limit]

    @router.delete("/search-history/{user_id}")
    def clear_search_history(user_id: str):
        state.search_history = [e for e in state.search_history if e["userId"] != user_id]
        return {"success": True, "message": "Search history cleared successfully"}

    app.include_router(router)
    return app


app = create_app()
