"""FastAPI application for the ticket queue.

Visitors take a number, the operator console calls the next one and edits
ticket details, and the public display polls the current state.  All state
lives in Redis (see ``services.py``); configuration comes from environment
variables (see ``config.py``).
"""

from __future__ import annotations

import logging
import sys
import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import redis
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

import config
import services
from auth import MANAGER, SharedSecretAuthenticator, get_authenticator, require_admin, require_manager
from exceptions import QueueError, ValidationError
from excel import CONTENT_TYPE
from schemas import IssueTicketRequest, StateOverrideRequest, UpdateTicketRequest
from services import get_redis

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_host = config.REDIS_URL.rsplit("@", 1)[-1]
    logger.info("Starting ticket queue (Redis: %s, key prefix: %s)", redis_host, config.QUEUE_KEY_PREFIX)
    roles = get_authenticator().configured_roles()
    if roles:
        logger.info("Passwords configured for: %s", ", ".join(roles))
    else:
        logger.warning("No ADMIN_PASS or MANAGER_PASS set; protected endpoints will reject every request")
    try:
        get_redis().ping()
    except redis.RedisError as exc:
        logger.error("Redis is not reachable at startup: %s", exc)
    yield


app = FastAPI(
    title="Ticket Queue",
    description="Take-a-number queue with ticket tracking",
    version="2.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    content: Dict[str, Any] = {"error": exc.message}
    fields = getattr(exc, "fields", None)
    if fields:
        content["fields"] = fields
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    logger.error(traceback.format_exc())
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


@app.get("/")
def root() -> Dict[str, Any]:
    """Service banner listing the endpoints."""
    return {
        "service": "Ticket Queue API",
        "status": "running",
        "version": app.version,
        "endpoints": {
            "issue": "POST /api/ticket",
            "state": "/api/state",
            "next": "POST /api/next",
            "tickets": "/api/tickets",
            "ticket": "/api/ticket/{ticketNumber}",
            "reset": "POST /api/reset",
            "export": "/api/export",
            "import": "POST /api/import",
        },
    }


@app.get("/health")
def health_check(r: redis.Redis = Depends(get_redis)) -> Dict[str, str]:
    try:
        r.ping()
    except redis.RedisError as exc:
        logger.error("Health check failed: %s", exc)
        raise HTTPException(status_code=503, detail="Redis unavailable")
    return {"status": "healthy", "redis": "connected"}


@app.post("/api/ticket")
def issue_ticket(body: IssueTicketRequest, r: redis.Redis = Depends(get_redis)) -> Dict[str, int]:
    ticket = services.issue_ticket(r, body.model_dump())
    return {"ticketNumber": ticket.ticket_number}


@app.get("/api/state")
def get_state(r: redis.Redis = Depends(get_redis)) -> Dict[str, int]:
    return services.get_state(r).to_dict()


@app.put("/api/state", dependencies=[Depends(require_admin)])
def override_state(body: StateOverrideRequest, r: redis.Redis = Depends(get_redis)) -> Dict[str, int]:
    """Set the counters by hand.  Out-of-sequence values are allowed."""
    state = services.override_state(r, body.current_number, body.next_number)
    return state.to_dict()


@app.post("/api/next", dependencies=[Depends(require_admin)])
def call_next(r: redis.Redis = Depends(get_redis)) -> Dict[str, Any]:
    state, advanced = services.advance(r)
    return {
        "currentNumber": state.current_number,
        "nextNumber": state.next_number,
        "advanced": advanced,
        "message": None if advanced else "No more tickets",
    }


@app.get("/api/tickets")
def list_tickets(
    limit: int = config.TICKET_LIST_DEFAULT_LIMIT,
    order: str = Query(default="asc", pattern="^(asc|desc)$"),
    r: redis.Redis = Depends(get_redis),
) -> List[Dict[str, Any]]:
    """Most recent tickets; ``asc`` suits the display board, ``desc`` the console."""
    limit = min(max(limit, 1), config.TICKET_LIST_MAX_LIMIT)
    tickets = services.list_tickets(r, limit=limit, newest_first=(order == "desc"))
    return [ticket.to_dict() for ticket in tickets]


@app.get("/api/ticket/{ticket_number}")
def get_ticket(ticket_number: int, r: redis.Redis = Depends(get_redis)) -> Dict[str, Any]:
    return services.get_ticket(r, ticket_number).to_dict()


@app.patch("/api/ticket/{ticket_number}", dependencies=[Depends(require_admin)])
def update_ticket(
    ticket_number: int,
    body: UpdateTicketRequest,
    r: redis.Redis = Depends(get_redis),
) -> Dict[str, Any]:
    ticket = services.update_ticket(r, ticket_number, body.model_dump(exclude_none=True))
    return ticket.to_dict()


@app.delete("/api/ticket/{ticket_number}", dependencies=[Depends(require_admin)])
def delete_ticket(ticket_number: int, r: redis.Redis = Depends(get_redis)) -> Dict[str, Any]:
    deleted = services.delete_ticket(r, ticket_number)
    return {"ok": True, "ticketNumber": deleted}


@app.post("/api/reset", dependencies=[Depends(require_manager)])
def reset_queue(r: redis.Redis = Depends(get_redis)) -> Dict[str, bool]:
    services.reset(r)
    return {"ok": True}


@app.get("/api/export", dependencies=[Depends(require_admin)])
def export_tickets(r: redis.Redis = Depends(get_redis)) -> Response:
    content, filename = services.export_tickets(r)
    return Response(
        content=content,
        media_type=CONTENT_TYPE,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@app.post("/api/import")
async def import_tickets(
    file: Optional[UploadFile] = File(default=None),
    password: Optional[str] = Form(default=None),
    x_manager_password: Optional[str] = Header(default=None),
    authenticator: SharedSecretAuthenticator = Depends(get_authenticator),
    r: redis.Redis = Depends(get_redis),
) -> Dict[str, Any]:
    """Upsert tickets from an uploaded .xlsx file (manager password required)."""
    authenticator.verify(MANAGER, password or x_manager_password)
    if file is None:
        raise ValidationError("Choose a file to import", fields=["file"])
    content = await file.read()
    return await run_in_threadpool(services.import_tickets, r, content)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
