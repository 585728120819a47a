"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    """An inbound customer message, already extracted from the channel webhook."""

    business_id: str = Field(..., min_length=1, max_length=100, description="Tenant the message was sent to")
    user_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Sender identifier (phone number); also keys the session",
    )
    text: str = Field(..., min_length=1, max_length=4000, description="The customer's message")


class MessageResponse(BaseModel):
    """The reply that was sent back to the customer."""

    reply: str = Field(..., description="Text delivered to the customer")
    intent: str = Field("unknown", description="Intent the assistant reported")
    confidence: float = Field(0.0, description="Self-reported confidence, 0 to 1")
    booked_slots: list[str] = Field(default_factory=list, description="Times booked during this turn")
    iterations: int = Field(0, description="Model/tool iterations used")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "salon-receptionist"
