"""Static catalog of operator notifications, keyed by message key."""

from __future__ import annotations

from enum import Enum
from typing import Dict, NamedTuple, Optional

from pydantic import BaseModel

from models.events import ExtensionNotification, NotificationType
from utils.helpers import utc_now


class NotificationKey(str, Enum):
    AUTOFILL_COMPLETE = "AUTOFILL_COMPLETE"
    CAPTCHA_DETECTED = "CAPTCHA_DETECTED"
    LEARNING_MODE = "LEARNING_MODE"
    CAPTURING_EVIDENCE = "CAPTURING_EVIDENCE"
    UPLOADING_EVIDENCE = "UPLOADING_EVIDENCE"
    FETCHING_PAYMENT = "FETCHING_PAYMENT"
    EVIDENCE_UPLOADED = "EVIDENCE_UPLOADED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    TEMPLATE_LEARNED = "TEMPLATE_LEARNED"
    EXCEPTION_CREATED = "EXCEPTION_CREATED"
    TEMPLATE_LOW_CONFIDENCE = "TEMPLATE_LOW_CONFIDENCE"
    TEMPLATE_MISMATCH = "TEMPLATE_MISMATCH"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    EVIDENCE_UPLOAD_FAILED = "EVIDENCE_UPLOAD_FAILED"
    PAYMENT_FETCH_FAILED = "PAYMENT_FETCH_FAILED"
    PORTAL_DETECTION_FAILED = "PORTAL_DETECTION_FAILED"
    NO_PAYMENT_AVAILABLE = "NO_PAYMENT_AVAILABLE"
    AUTOFILL_STARTING = "AUTOFILL_STARTING"
    AUTOFILL_FAILED = "AUTOFILL_FAILED"
    LEARNING_SUBMIT_FAILED = "LEARNING_SUBMIT_FAILED"
    AUTOFILL_ERROR = "AUTOFILL_ERROR"
    EXCEPTION_CREATE_FAILED = "EXCEPTION_CREATE_FAILED"


class CatalogEntry(NamedTuple):
    type: NotificationType
    human_message: str
    blocking: bool


class NotificationOverrides(BaseModel):
    """The only fields a caller may set on top of a catalog entry."""

    model_config = {"extra": "forbid"}

    payment_id: Optional[str] = None
    portal_id: Optional[str] = None
    page_key: Optional[str] = None
    confidence: Optional[float] = None


_NEXT = NotificationType.NEXT_STEP_REQUIRED
_BUSY = NotificationType.AUTO_ACTION_IN_PROGRESS
_DONE = NotificationType.AUTO_ACTION_COMPLETE
_WARN = NotificationType.WARNING
_ERR = NotificationType.ERROR

NOTIFICATION_CATALOG: Dict[NotificationKey, CatalogEntry] = {
    NotificationKey.AUTOFILL_COMPLETE: CatalogEntry(_NEXT, "Form auto-filled. Click Submit.", True),
    NotificationKey.CAPTCHA_DETECTED: CatalogEntry(_NEXT, "Captcha detected. Please solve manually.", True),
    NotificationKey.LEARNING_MODE: CatalogEntry(_NEXT, "Learning mode. Please fill form manually.", False),
    NotificationKey.CAPTURING_EVIDENCE: CatalogEntry(_BUSY, "Capturing screenshot...", True),
    NotificationKey.UPLOADING_EVIDENCE: CatalogEntry(_BUSY, "Uploading evidence...", True),
    NotificationKey.FETCHING_PAYMENT: CatalogEntry(_BUSY, "Fetching next payment...", True),
    NotificationKey.EVIDENCE_UPLOADED: CatalogEntry(_DONE, "Evidence uploaded. Ready.", False),
    NotificationKey.PAYMENT_COMPLETED: CatalogEntry(_DONE, "Payment completed. Evidence uploaded.", False),
    NotificationKey.TEMPLATE_LEARNED: CatalogEntry(_DONE, "Template learned. Capturing evidence...", False),
    NotificationKey.EXCEPTION_CREATED: CatalogEntry(_DONE, "Exception created. Payment parked.", False),
    NotificationKey.TEMPLATE_LOW_CONFIDENCE: CatalogEntry(
        _WARN, "Template confidence low. Please verify fields.", False
    ),
    NotificationKey.TEMPLATE_MISMATCH: CatalogEntry(_WARN, "Template mismatch detected. Please verify.", False),
    NotificationKey.TOKEN_EXPIRED: CatalogEntry(_ERR, "Authentication expired. Please refresh.", True),
    NotificationKey.EVIDENCE_UPLOAD_FAILED: CatalogEntry(_ERR, "Evidence upload failed. Retry?", True),
    NotificationKey.PAYMENT_FETCH_FAILED: CatalogEntry(_ERR, "Failed to fetch payment. Retry?", True),
    NotificationKey.PORTAL_DETECTION_FAILED: CatalogEntry(
        _ERR, "Portal detection failed. Please continue manually.", False
    ),
    NotificationKey.NO_PAYMENT_AVAILABLE: CatalogEntry(_DONE, "No payment available in queue.", False),
    NotificationKey.AUTOFILL_STARTING: CatalogEntry(_BUSY, "Auto-filling form...", True),
    NotificationKey.AUTOFILL_FAILED: CatalogEntry(_WARN, "Autofill failed. Please fill form manually.", False),
    NotificationKey.LEARNING_SUBMIT_FAILED: CatalogEntry(
        _ERR, "Failed to save template. Please try again.", False
    ),
    NotificationKey.AUTOFILL_ERROR: CatalogEntry(
        _ERR, "Autofill encountered an error. Please fill form manually.", False
    ),
    NotificationKey.EXCEPTION_CREATE_FAILED: CatalogEntry(_ERR, "Failed to create exception", True),
}


def create_notification(
    key: NotificationKey,
    overrides: Optional[NotificationOverrides] = None,
) -> ExtensionNotification:
    entry = NOTIFICATION_CATALOG[key]
    extra = overrides.model_dump(exclude_none=True) if overrides else {}
    return ExtensionNotification(
        type=entry.type,
        message_key=key.value,
        human_message=entry.human_message,
        blocking=entry.blocking,
        timestamp=utc_now(),
        **extra,
    )
