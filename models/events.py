"""Telemetry records and operator notifications."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.payment import WireModel


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TelemetryEvent(WireModel):
    """Append-only workflow occurrence.  Never mutated after creation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_type: str
    timestamp: datetime = Field(default_factory=_utc_now)
    operator_id: Optional[str] = None
    payment_id: Optional[str] = None
    portal_id: Optional[str] = None
    page_key: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class NotificationType(str, Enum):
    NEXT_STEP_REQUIRED = "NEXT_STEP_REQUIRED"
    AUTO_ACTION_IN_PROGRESS = "AUTO_ACTION_IN_PROGRESS"
    AUTO_ACTION_COMPLETE = "AUTO_ACTION_COMPLETE"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ExtensionNotification(WireModel):
    """A user-facing message, broadcast to the popup.  Never persisted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: NotificationType
    message_key: str
    human_message: str
    timestamp: datetime = Field(default_factory=_utc_now)
    blocking: Optional[bool] = None
    payment_id: Optional[str] = None
    portal_id: Optional[str] = None
    page_key: Optional[str] = None
    confidence: Optional[float] = None
