"""Wires the clients, stores and workflow components into one runnable unit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger

from clients.api_client import ApiClient
from clients.auth import AuthService, IdentityProvider, StaticIdentityProvider
from clients.services import (
    EvidenceService,
    ExceptionService,
    PaymentService,
    QueueService,
    TelemetryService,
    TemplateService,
)
from config.settings import settings
from storage.state_store import JsonFileStore, KeyValueStore, WorkflowStateStore
from workflow.collaborators import PageCapture, PageChannel, PublishedPageChannel
from workflow.dispatcher import CommandDispatcher
from workflow.evidence import EvidencePipeline
from workflow.publisher import EventPublisher
from workflow.scheduler import Scheduler
from workflow.state_machine import WorkflowStateMachine
from workflow.telemetry import TelemetryBuffer
from workflow.template_matcher import TemplateMatcher


@dataclass
class WorkflowRuntime:
    api: ApiClient
    auth: AuthService
    publisher: EventPublisher
    scheduler: Scheduler
    telemetry: TelemetryBuffer
    machine: WorkflowStateMachine
    dispatcher: CommandDispatcher

    async def start(self) -> None:
        """Restore the last snapshot and start the periodic jobs."""
        await self.machine.restore()
        self.scheduler.start()
        logger.info(f"Workflow runtime started in state {self.machine.state.value}")

    async def shutdown(self) -> None:
        await self.dispatcher.drain()
        await self.scheduler.shutdown()
        await self.telemetry.destroy()
        await self.api.aclose()
        logger.info("Workflow runtime stopped")

    async def __aenter__(self) -> "WorkflowRuntime":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.shutdown()


def build_runtime(
    capture: PageCapture,
    page: Optional[PageChannel] = None,
    identity: Optional[IdentityProvider] = None,
    store: Optional[KeyValueStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    matcher: Optional[TemplateMatcher] = None,
) -> WorkflowRuntime:
    """Build a fully wired runtime from ``settings``; collaborators are injected."""
    store = store or JsonFileStore()
    api = ApiClient(transport=transport)
    publisher = EventPublisher()
    scheduler = Scheduler()

    auth = AuthService(api, identity or StaticIdentityProvider(), store)
    scheduler.every("token-refresh", settings.token_refresh_interval_seconds, auth.refresh_if_needed)

    telemetry = TelemetryBuffer(TelemetryService(api), scheduler=scheduler)
    evidence = EvidencePipeline(
        EvidenceService(api),
        capture,
        telemetry,
        operator_id=lambda: auth.operator_id,
    )
    machine = WorkflowStateMachine(
        auth=auth,
        queue=QueueService(api),
        payments=PaymentService(api),
        templates=TemplateService(api),
        exceptions=ExceptionService(api),
        evidence=evidence,
        telemetry=telemetry,
        state_store=WorkflowStateStore(store),
        publisher=publisher,
        page=page or PublishedPageChannel(publisher),
        matcher=matcher,
    )
    return WorkflowRuntime(
        api=api,
        auth=auth,
        publisher=publisher,
        scheduler=scheduler,
        telemetry=telemetry,
        machine=machine,
        dispatcher=CommandDispatcher(machine),
    )
