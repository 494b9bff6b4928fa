"""Workflow context: the single mutable record describing the payment lifecycle."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from models.payment import Payment, PortalTemplate, WireModel


class WorkflowState(str, Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    ACTIVE = "ACTIVE"
    COMPLETING = "COMPLETING"
    LEARNING = "LEARNING"
    TEMPLATE_MISMATCH = "TEMPLATE_MISMATCH"
    EXCEPTION = "EXCEPTION"
    BLOCKED_AUTOMATION = "BLOCKED_AUTOMATION"


class WorkflowTimestamps(WireModel):
    """Set at most once per payment cycle; only used for duration metrics."""

    payment_received_at: Optional[datetime] = None
    first_portal_interaction_at: Optional[datetime] = None
    confirmation_detected_at: Optional[datetime] = None
    payment_completed_at: Optional[datetime] = None


class WorkflowError(WireModel):
    """Diagnostic descriptor of the last failure.  Overwritten on each failure."""

    type: str
    message: str
    at: datetime

    @classmethod
    def from_exception(cls, exc: BaseException, at: datetime) -> "WorkflowError":
        return cls(type=type(exc).__name__, message=str(exc), at=at)


class WorkflowContext(WireModel):
    state: WorkflowState = WorkflowState.IDLE
    payment: Optional[Payment] = None
    portal_id: Optional[str] = None
    page_key: Optional[str] = None
    template: Optional[PortalTemplate] = None
    error: Optional[WorkflowError] = None
    timestamps: WorkflowTimestamps = Field(default_factory=WorkflowTimestamps)

    # Confirmation metadata of a payment whose evidence upload failed
    pending_evidence: Optional[Dict[str, Any]] = None

    def clear_payment(self) -> None:
        """Drop the active payment and everything scoped to it, as one group."""
        self.payment = None
        self.portal_id = None
        self.page_key = None
        self.template = None
        self.pending_evidence = None

    def snapshot(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
