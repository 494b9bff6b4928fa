"""Interfaces to the page-side collaborators (capture primitive and page signalling)."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from models.payment import Payment, PortalTemplate
from workflow.publisher import EventPublisher


class PageCapture(Protocol):
    """Produces a visual artifact (PNG bytes) of the page currently in front of the operator."""

    async def capture(self) -> bytes: ...


class PageChannel(Protocol):
    """Signals the page to autofill or to begin capturing fields for learning."""

    async def autofill(self, payment: Payment, template: PortalTemplate) -> None: ...

    async def start_learning(self) -> None: ...


class FileCapture:
    """Reads the artifact the page collaborator last wrote to ``path``."""

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    async def capture(self) -> bytes:
        if not self._path.exists():
            raise FileNotFoundError(f"No capture available at {self._path}")
        return self._path.read_bytes()


class PublishedPageChannel:
    """Sends page commands over the event publisher, like any other broadcast."""

    def __init__(self, publisher: EventPublisher) -> None:
        self._publisher = publisher

    async def autofill(self, payment: Payment, template: PortalTemplate) -> None:
        await self._publisher.publish(
            {"type": "AUTOFILL", "template": template.to_wire(), "payment": payment.to_wire()}
        )

    async def start_learning(self) -> None:
        await self._publisher.publish({"type": "START_LEARNING"})
