"""Pydantic models for payments and learned portal templates.

Wire payloads use camelCase keys; attributes are snake_case.  Sensitive
fields are excluded from ``repr`` so they never end up in log lines.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models exchanged with the backend services."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SemanticType(str, Enum):
    """What a form field means, independent of how the page labels it."""

    AMOUNT = "amount"
    INVOICE_NUMBER = "invoice_number"
    ACCOUNT_NUMBER = "account_number"
    ROUTING_NUMBER = "routing_number"
    CARD_NUMBER = "card_number"
    EXPIRY = "expiry"
    CVV = "cvv"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    TEXT = "text"


class VirtualCard(WireModel):
    card_number: str = Field(..., repr=False)
    expiry: str = Field(..., repr=False)
    cvv: str = Field(..., repr=False)
    account_number: Optional[str] = Field(default=None, repr=False)
    routing_number: Optional[str] = Field(default=None, repr=False)


class Payment(WireModel):
    """A pending payment task pulled from the queue.  Immutable once fetched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    account_id: str
    client_id: str
    vendor_id: str
    vendor_name: str
    amount: float
    currency: str
    invoice_numbers: List[str] = Field(default_factory=list)

    # Routing hints; absent on slim queue records
    portal_id: Optional[str] = None
    portal_url: Optional[str] = None
    organization_id: Optional[str] = None

    virtual_card: VirtualCard = Field(..., repr=False)
    payment_fields: Optional[Dict[str, str]] = Field(default=None, repr=False)
    credential_fields: Optional[Dict[str, str]] = Field(default=None, repr=False)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def has_routing_hints(self) -> bool:
        return bool(self.portal_id and self.portal_url)


class FieldMapping(WireModel):
    """One learned form field.  ``confidence`` is the detector's score for this field alone."""

    selector: str
    semantic_type: SemanticType
    input_type: str
    label: Optional[str] = None
    confidence: float = Field(..., ge=0, le=1)


class PortalTemplate(WireModel):
    """A learned, versioned and signed field mapping for one portal page and scope."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    portal_id: str
    account_id: str
    client_id: str
    vendor_id: str
    page_key: str
    fields: List[FieldMapping] = Field(default_factory=list)
    confidence: float = Field(..., ge=0, le=1, description="Aggregate template confidence")
    version: int = Field(default=1, ge=1)
    signature: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
