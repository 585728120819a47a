"""FastAPI route definitions for the salon receptionist API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from receptionist.api.schemas import HealthResponse, MessageRequest, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_coordinator(request: Request):
    """Retrieve the turn coordinator from app state.

    The coordinator is built once during the FastAPI lifespan (see
    ``server.py``).
    """
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return coordinator


async def _is_privileged(request: Request, business_id: str, user_id: str) -> bool:
    """Admin tools are only offered to the business's registered admin."""
    store = getattr(request.app.state, "record_store", None)
    if store is None:
        return False
    try:
        return await store.is_admin(business_id, user_id)
    except Exception as exc:
        logger.warning("Admin lookup failed for %s, treating as customer: %s", user_id, exc)
        return False


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/messages", response_model=MessageResponse)
async def handle_message(request: MessageRequest, http_request: Request):
    """Run one turn for an inbound message.

    The reply is delivered through the messaging channel by the coordinator
    and echoed in the response body.
    """
    coordinator = _get_coordinator(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        privileged = await _is_privileged(http_request, request.business_id, request.user_id)
        result = await coordinator.handle_message(
            request.business_id, request.user_id, request.text, privileged=privileged,
        )
    except Exception as e:
        # Full traceback stays server-side.
        logger.exception("[%s] Error processing message", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    metadata = result.answer.metadata
    logger.info(
        "[%s] Turn done: intent=%s iterations=%d actions=%d",
        request_id, metadata.intent, result.iterations, len(result.records),
    )
    return MessageResponse(
        reply=result.answer.text,
        intent=metadata.intent,
        confidence=metadata.confidence,
        booked_slots=metadata.booked_slots,
        iterations=result.iterations,
    )
