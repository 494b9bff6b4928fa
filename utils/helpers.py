"""Utility helper functions."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Iterable

from models.payment import FieldMapping

# Learned templates never claim full certainty.
LEARNED_CONFIDENCE_CAP = 0.95


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def _path_segment(value: str) -> str:
    """Make an identifier safe to use as one storage path segment."""
    cleaned = re.sub(r"[^A-Za-z0-9._\-]", "_", value.strip())
    return cleaned or "_"


def screenshot_filename(at: datetime) -> str:
    return f"screenshot_{int(at.timestamp() * 1000)}.png"


def build_evidence_path(
    organization_id: str,
    account_id: str,
    payment_id: str,
    filename: str,
) -> str:
    """Deterministic object path for an evidence artifact.

    Layout: ``{org}/{account}/{payment}/sent/{md5(filename)}.png``
    """
    digest = md5_hex(filename)
    return "/".join(
        [
            _path_segment(organization_id),
            _path_segment(account_id),
            _path_segment(payment_id),
            "sent",
            f"{digest}.png",
        ]
    )


def learned_confidence(fields: Iterable[FieldMapping]) -> float:
    """Aggregate confidence of a learning submission: capped mean of field scores."""
    scores = [f.confidence for f in fields]
    if not scores:
        return 0.0
    return min(sum(scores) / len(scores), LEARNED_CONFIDENCE_CAP)


def strip_query(url: str) -> str:
    return url.split("?", 1)[0]
