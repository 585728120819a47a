"""FastAPI server for the salon receptionist.

Run with:
    uvicorn receptionist.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from receptionist.api.routes import router
from receptionist.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from receptionist.engine.coordinator import TurnCoordinator
from receptionist.engine.invoker import ReasoningInvoker
from receptionist.services.messaging import MessagingClient
from receptionist.services.record_store import get_record_store
from receptionist.services.session_store import create_session_store
from receptionist.tools.registry import build_default_registry

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the clients and the turn coordinator once and keep
    them in app state; close the HTTP clients on shutdown."""
    logger.info("Building turn coordinator…")
    record_store = get_record_store()
    messaging = MessagingClient()
    session_store = create_session_store()

    application.state.record_store = record_store
    application.state.coordinator = TurnCoordinator(
        invoker=ReasoningInvoker(),
        registry=build_default_registry(),
        session_store=session_store,
        send_reply=messaging.send_text,
        record_store=record_store,
    )
    logger.info("Receptionist ready.")
    yield
    await messaging.aclose()
    await record_store.aclose()
    close = getattr(session_store, "aclose", None)
    if close is not None:
        await close()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Salon Receptionist",
    description="WhatsApp booking assistant — book, cancel and reschedule appointments and answer questions.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is returned in the ``X-Request-ID`` response header.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Salon Receptionist",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting receptionist API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "receptionist.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
