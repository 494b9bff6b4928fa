"""Commands accepted from the popup and page collaborators."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from models.events import TelemetryEvent
from models.payment import FieldMapping, WireModel


class GetNextPayment(WireModel):
    type: Literal["GET_NEXT_PAYMENT"]


class StopAfterNext(WireModel):
    type: Literal["STOP_AFTER_NEXT"]


class CreateException(WireModel):
    type: Literal["CREATE_EXCEPTION"]
    payment_id: str
    reason: str


class PortalDetected(WireModel):
    type: Literal["PORTAL_DETECTED"]
    portal_id: str
    confidence: float = Field(..., ge=0, le=1)
    page_key: str = "default"


class ConfirmationDetected(WireModel):
    type: Literal["CONFIRMATION_DETECTED"]
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuthRequired(WireModel):
    type: Literal["AUTH_REQUIRED"]


class ResetState(WireModel):
    type: Literal["RESET_STATE"]


class ToggleAutoFetch(WireModel):
    type: Literal["TOGGLE_AUTO_FETCH"]
    enabled: bool


class AutofillResult(WireModel):
    type: Literal["AUTOFILL_RESULT"]
    success: bool
    fields_filled: int = Field(..., ge=0)
    total_fields: int = Field(..., ge=0)
    errors: List[str] = Field(default_factory=list)


class SubmitLearning(WireModel):
    type: Literal["SUBMIT_LEARNING"]
    fields: List[FieldMapping]
    url: Optional[str] = None
    fingerprint: Optional[str] = None


class RetryEvidence(WireModel):
    type: Literal["RETRY_EVIDENCE"]


class Telemetry(WireModel):
    type: Literal["TELEMETRY"]
    event: TelemetryEvent


Command = Annotated[
    Union[
        GetNextPayment,
        StopAfterNext,
        CreateException,
        PortalDetected,
        ConfirmationDetected,
        AuthRequired,
        ResetState,
        ToggleAutoFetch,
        AutofillResult,
        SubmitLearning,
        RetryEvidence,
        Telemetry,
    ],
    Field(discriminator="type"),
]

command_adapter: TypeAdapter[Command] = TypeAdapter(Command)
