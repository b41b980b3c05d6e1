"""Webhook acknowledgement body."""
from app.schemas.base import ApiModel


class WebhookAck(ApiModel):
    received: bool = True
    event_id: str
    # processed | ignored | duplicate | anomaly
    status: str
    error_code: str | None = None
