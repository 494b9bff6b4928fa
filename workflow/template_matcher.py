"""Decides between autofill, learning and mismatch for a candidate template."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa
from loguru import logger

from config.settings import settings
from models.payment import PortalTemplate


class MatchOutcome(str, Enum):
    ABSENT = "absent"
    ACCEPT = "accept"
    LOW_CONFIDENCE = "low_confidence"


@dataclass(frozen=True)
class MatchResult:
    outcome: MatchOutcome
    template: Optional[PortalTemplate] = None
    observed_confidence: Optional[float] = None


def classify(template: Optional[PortalTemplate], threshold: float) -> MatchResult:
    """Pure decision: ``confidence >= threshold`` (inclusive) accepts."""
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be within [0, 1], got {threshold}")
    if template is None:
        return MatchResult(MatchOutcome.ABSENT)
    if template.confidence >= threshold:
        return MatchResult(MatchOutcome.ACCEPT, template, template.confidence)
    return MatchResult(MatchOutcome.LOW_CONFIDENCE, template, template.confidence)


def signing_payload(template: PortalTemplate) -> bytes:
    """Canonical bytes a template signature covers: sorted-key JSON without ``signature``."""
    body: Dict[str, Any] = template.model_dump(mode="json", by_alias=True, exclude={"signature"})
    return json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")


class SignatureVerifier:
    """
    Verifies template signatures against a PEM public key (Ed25519 or RSA/SHA-256).

    With no key configured every template passes.  That weak mode is reported
    once, at construction.
    """

    def __init__(self, public_key_pem: Optional[str] = None) -> None:
        pem = settings.template_signing_public_key if public_key_pem is None else public_key_pem
        self._key = serialization.load_pem_public_key(pem.encode("utf-8")) if pem.strip() else None
        if self._key is None:
            logger.warning("No template signing key configured: template signatures are NOT verified")
        elif not isinstance(self._key, (ed25519.Ed25519PublicKey, rsa.RSAPublicKey)):
            raise ValueError(f"Unsupported template signing key type: {type(self._key).__name__}")

    @property
    def enforcing(self) -> bool:
        return self._key is not None

    def verify(self, template: PortalTemplate) -> bool:
        if self._key is None:
            return True
        try:
            signature = base64.b64decode(template.signature, validate=True)
        except (binascii.Error, ValueError):
            return False
        if not signature:
            return False
        payload = signing_payload(template)
        try:
            if isinstance(self._key, ed25519.Ed25519PublicKey):
                self._key.verify(signature, payload)
            else:
                self._key.verify(signature, payload, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            return False
        return True


class TemplateMatcher:
    """Signature gate followed by the confidence decision."""

    def __init__(self, verifier: Optional[SignatureVerifier] = None, threshold: Optional[float] = None) -> None:
        self._verifier = verifier or SignatureVerifier()
        self.threshold = settings.template_confidence_threshold if threshold is None else threshold

    def match(self, template: Optional[PortalTemplate]) -> MatchResult:
        if template is not None and not self._verifier.verify(template):
            logger.warning(
                f"Template {template.id} v{template.version} failed signature verification; ignoring it"
            )
            template = None
        return classify(template, self.threshold)
