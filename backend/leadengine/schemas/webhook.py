"""Webhook response schemas.

Intake payloads are free-form per channel and validated by the intake
normalizer, not by a pydantic model.
"""

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    """Standard webhook response."""
    ok: bool
    id: str
    status: str
    duplicate: bool = False
    message: str



class EngagementEvent(BaseModel):
    """Open/reply signal from the email or chat provider."""
    opened: bool = False
    replied: bool = False


class EngagementResponse(BaseModel):
    ok: bool
    lead_id: str
    auto_response_id: str
    opened: bool
    replied: bool
