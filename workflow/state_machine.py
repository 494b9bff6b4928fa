"""
Workflow state machine driving the payment lifecycle.

States
------
IDLE → FETCHING → ACTIVE → (LEARNING | TEMPLATE_MISMATCH) → COMPLETING → IDLE | FETCHING

Every transition persists the full context and then broadcasts
``STATE_CHANGED``.  Commands arriving in the wrong state are logged and
ignored; they never interrupt an in-flight command.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from loguru import logger

from clients.api_client import UnauthorizedError
from clients.auth import AuthError, AuthService
from clients.services import ExceptionService, PaymentService, QueueService, TemplateService
from config.settings import settings
from models.events import TelemetryEvent
from models.payment import FieldMapping, Payment
from models.workflow import WorkflowContext, WorkflowError, WorkflowState, WorkflowTimestamps
from storage.state_store import WorkflowStateStore
from utils.helpers import learned_confidence, utc_now
from workflow.collaborators import PageChannel
from workflow.evidence import EvidenceError, EvidencePipeline
from workflow.notifications import NotificationKey, NotificationOverrides, create_notification
from workflow.publisher import EventPublisher
from workflow.telemetry import TelemetryBuffer
from workflow.template_matcher import MatchOutcome, TemplateMatcher

S = WorkflowState
H = TypeVar("H", bound=Callable[..., Awaitable[Any]])


def serialized(handler: H) -> H:
    """Run a context-mutating handler under the machine lock, one at a time."""

    @functools.wraps(handler)
    async def wrapper(self: "WorkflowStateMachine", *args: Any, **kwargs: Any) -> Any:
        async with self._lock:
            return await handler(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class WorkflowStateMachine:
    def __init__(
        self,
        auth: AuthService,
        queue: QueueService,
        payments: PaymentService,
        templates: TemplateService,
        exceptions: ExceptionService,
        evidence: EvidencePipeline,
        telemetry: TelemetryBuffer,
        state_store: WorkflowStateStore,
        publisher: EventPublisher,
        page: PageChannel,
        matcher: Optional[TemplateMatcher] = None,
        auto_fetch_enabled: Optional[bool] = None,
        clock: Callable[[], Any] = utc_now,
    ) -> None:
        self._auth = auth
        self._queue = queue
        self._payments = payments
        self._templates = templates
        self._exceptions = exceptions
        self._evidence = evidence
        self._telemetry = telemetry
        self._store = state_store
        self._publisher = publisher
        self._page = page
        self._matcher = matcher or TemplateMatcher()
        self._clock = clock

        self._context = WorkflowContext()
        self._stop_after_next = False
        self.auto_fetch_enabled = settings.auto_fetch_enabled if auto_fetch_enabled is None else auto_fetch_enabled
        # Held for the whole of a handler, chained fetch included. STOP_AFTER_NEXT,
        # TOGGLE_AUTO_FETCH, AUTH_REQUIRED and TELEMETRY never take it.
        self._lock = asyncio.Lock()

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def context(self) -> WorkflowContext:
        """Read-only view: a deep copy, so callers cannot mutate machine state."""
        return self._context.model_copy(deep=True)

    @property
    def state(self) -> WorkflowState:
        return self._context.state

    @property
    def stop_after_next_requested(self) -> bool:
        return self._stop_after_next

    # ── Persistence & broadcast ───────────────────────────────────────────────

    @serialized
    async def restore(self) -> None:
        """Reload the last snapshot verbatim.  In-flight calls are not re-validated."""
        restored = await self._store.load()
        if restored is None:
            return
        self._context = restored
        logger.info(f"State restored: {restored.state.value}")
        if restored.state in (S.FETCHING, S.COMPLETING):
            logger.warning(
                f"Restored into {restored.state.value}; the call that was in flight is not resumed. "
                "Use RESET_STATE if the workflow is stuck."
            )

    async def _persist(self) -> None:
        await self._store.save(self._context)

    async def _commit(self) -> None:
        await self._persist()
        await self._publisher.state_changed(self._context.state)

    async def _transition(self, state: WorkflowState) -> None:
        logger.debug(f"Transition {self._context.state.value} -> {state.value}")
        self._context.state = state
        await self._commit()

    async def _notify(self, key: NotificationKey, **overrides: Any) -> None:
        await self._publisher.notification(create_notification(key, NotificationOverrides(**overrides)))

    async def _record(self, event_type: str, **fields: Any) -> None:
        await self._telemetry.log_event(
            TelemetryEvent(event_type=event_type, operator_id=self._auth.operator_id, **fields)
        )

    def _fail(self, exc: BaseException) -> None:
        self._context.error = WorkflowError.from_exception(exc, self._clock())

    async def _signal_page(self, action: str, signal) -> None:
        try:
            await signal
        except Exception as exc:
            logger.error(f"Failed to send {action} signal to the page: {exc}")

    # ── GET_NEXT_PAYMENT ──────────────────────────────────────────────────────

    @serialized
    async def get_next_payment(self) -> None:
        if self._context.state != S.IDLE:
            logger.warning(f"Cannot get next payment: not in IDLE state (current={self._context.state.value})")
            return
        await self._fetch_next_payment()

    async def _fetch_next_payment(self) -> None:
        ctx = self._context
        if ctx.payment is not None:
            logger.warning(f"Abandoning payment {ctx.payment.id} whose evidence was never uploaded")
            await self._record("evidence_abandoned", payment_id=ctx.payment.id)
            ctx.clear_payment()
        ctx.timestamps = WorkflowTimestamps()

        # Claim the state before the first suspension point.
        ctx.state = S.FETCHING
        await self._notify(NotificationKey.FETCHING_PAYMENT)
        await self._commit()

        try:
            if not await self._auth.is_authenticated():
                await self._auth.authenticate()

            response = await self._queue.get_next_payment(settings.queue_poll_timeout_seconds)
            if response is None or response.payment is None:
                await self._transition(S.IDLE)
                await self._notify(NotificationKey.NO_PAYMENT_AVAILABLE)
                return

            payment = Payment.model_validate(response.payment)
            ctx.payment = payment
            ctx.timestamps.payment_received_at = self._clock()

            if not payment.has_routing_hints:
                ctx.payment = await self._payments.get_payment(payment.id)

            await self._transition(S.ACTIVE)
            await self._record(
                "payment_fetched",
                payment_id=payment.id,
                metadata={
                    "queuePosition": response.queue_position,
                    "estimatedWaitTime": response.estimated_wait_time,
                },
            )
            logger.info(f"Payment fetched: {payment.id}")
        except Exception as exc:
            in_flight = ctx.payment.id if ctx.payment else None
            logger.error(f"Failed to fetch payment: {exc}")
            self._fail(exc)
            ctx.clear_payment()
            await self._transition(S.IDLE)
            if isinstance(exc, (AuthError, UnauthorizedError)):
                await self._notify(NotificationKey.TOKEN_EXPIRED)
            await self._notify(NotificationKey.PAYMENT_FETCH_FAILED, payment_id=in_flight)

    # ── STOP_AFTER_NEXT / TOGGLE_AUTO_FETCH / RESET_STATE ─────────────────────

    def stop_after_next(self) -> None:
        self._stop_after_next = True
        logger.info("Stop after next payment enabled")

    def set_auto_fetch_enabled(self, enabled: bool) -> None:
        self.auto_fetch_enabled = enabled
        logger.info(f"Auto-fetch enabled: {enabled}")

    @serialized
    async def reset_state(self) -> None:
        self._context = WorkflowContext()
        self._stop_after_next = False
        await self._commit()
        logger.info("State reset to IDLE")

    # ── CREATE_EXCEPTION ──────────────────────────────────────────────────────

    @serialized
    async def create_exception(self, payment_id: str, reason: str) -> None:
        try:
            await self._exceptions.create_exception(payment_id, reason)
        except Exception as exc:
            logger.error(f"Failed to create exception for payment {payment_id}: {exc}")
            self._fail(exc)
            await self._persist()
            await self._notify(NotificationKey.EXCEPTION_CREATE_FAILED, payment_id=payment_id)
            return

        active = self._context.payment
        if active is None or active.id == payment_id:
            self._context.clear_payment()
            await self._transition(S.IDLE)
        else:
            logger.warning(f"Exception created for {payment_id}, which is not the active payment {active.id}")
        await self._notify(NotificationKey.EXCEPTION_CREATED, payment_id=payment_id)
        await self._record("exception_created", payment_id=payment_id, metadata={"reason": reason})
        logger.info(f"Exception created for payment {payment_id}: {reason}")

    # ── PORTAL_DETECTED ───────────────────────────────────────────────────────

    @serialized
    async def portal_detected(self, portal_id: str, confidence: float, page_key: str) -> None:
        ctx = self._context
        if ctx.state != S.ACTIVE:
            logger.debug(f"Ignoring portal detection of {portal_id} in state {ctx.state.value}")
            return

        ctx.portal_id = portal_id
        ctx.page_key = page_key
        if ctx.timestamps.first_portal_interaction_at is None:
            ctx.timestamps.first_portal_interaction_at = self._clock()

        outcome: Optional[MatchOutcome] = None
        payment = ctx.payment
        if payment is not None:
            try:
                template = await self._templates.get_template(
                    portal_id, payment.account_id, payment.client_id, payment.vendor_id, page_key
                )
                result = self._matcher.match(template)
                outcome = result.outcome

                if result.outcome is MatchOutcome.ABSENT:
                    ctx.template = None
                    await self._transition(S.LEARNING)
                    await self._notify(
                        NotificationKey.LEARNING_MODE, payment_id=payment.id, portal_id=portal_id, page_key=page_key
                    )
                    await self._signal_page("learning", self._page.start_learning())
                elif result.outcome is MatchOutcome.ACCEPT:
                    ctx.template = result.template
                    await self._signal_page("autofill", self._page.autofill(payment, result.template))
                    await self._notify(
                        NotificationKey.AUTOFILL_STARTING,
                        payment_id=payment.id,
                        portal_id=portal_id,
                        page_key=page_key,
                        confidence=result.observed_confidence,
                    )
                else:
                    ctx.template = None
                    await self._transition(S.TEMPLATE_MISMATCH)
                    await self._notify(
                        NotificationKey.TEMPLATE_LOW_CONFIDENCE,
                        payment_id=payment.id,
                        portal_id=portal_id,
                        page_key=page_key,
                        confidence=result.observed_confidence,
                    )
            except Exception as exc:
                # Detection carries on in manual mode.
                logger.error(f"Failed to get template for portal {portal_id}/{page_key}: {exc}")

        await self._record(
            "portal_detected",
            payment_id=payment.id if payment else None,
            portal_id=portal_id,
            page_key=page_key,
            metadata={"confidence": confidence, "templateOutcome": outcome.value if outcome else None},
        )
        await self._persist()

    # ── CONFIRMATION_DETECTED / RETRY_EVIDENCE ────────────────────────────────

    @serialized
    async def confirmation_detected(self, metadata: Dict[str, Any]) -> None:
        ctx = self._context
        if ctx.state not in (S.ACTIVE, S.LEARNING):
            logger.debug(f"Ignoring confirmation in state {ctx.state.value}")
            return
        if ctx.timestamps.confirmation_detected_at is None:
            ctx.timestamps.confirmation_detected_at = self._clock()
        await self._complete(metadata)

    @serialized
    async def retry_evidence(self) -> None:
        ctx = self._context
        if ctx.state != S.IDLE or ctx.payment is None or ctx.pending_evidence is None:
            logger.warning("Nothing to retry: no payment is waiting for evidence")
            return
        metadata, ctx.pending_evidence = ctx.pending_evidence, None
        logger.info(f"Retrying evidence upload for payment {ctx.payment.id}")
        await self._complete(metadata)

    async def _complete(self, metadata: Dict[str, Any]) -> None:
        ctx = self._context
        ctx.state = S.COMPLETING
        await self._commit()
        payment = ctx.payment
        await self._notify(NotificationKey.CAPTURING_EVIDENCE, payment_id=payment.id if payment else None)

        try:
            if payment is None:
                raise EvidenceError("No payment ID available")
            await self._evidence.capture_and_upload(payment.id, metadata, payment)
        except Exception as exc:
            logger.error(f"Failed to complete payment: {exc}")
            self._fail(exc)
            if payment is not None:
                # Keep the payment so its proof can be retried or parked.
                ctx.pending_evidence = metadata
            await self._transition(S.IDLE)
            await self._notify(NotificationKey.EVIDENCE_UPLOAD_FAILED, payment_id=payment.id if payment else None)
            return

        ctx.timestamps.payment_completed_at = self._clock()
        timings = ctx.timestamps.model_dump(mode="json", by_alias=True)
        portal_id, page_key = ctx.portal_id, ctx.page_key
        ctx.clear_payment()
        await self._persist()

        await self._notify(NotificationKey.PAYMENT_COMPLETED, payment_id=payment.id, portal_id=portal_id)
        await self._record(
            "payment_completed",
            payment_id=payment.id,
            portal_id=portal_id,
            page_key=page_key,
            metadata={"timings": timings},
        )
        logger.success(f"Payment {payment.id} completed")

        if not self._stop_after_next and self.auto_fetch_enabled:
            await self._fetch_next_payment()
        else:
            self._stop_after_next = False
            await self._transition(S.IDLE)

    # ── AUTOFILL_RESULT ───────────────────────────────────────────────────────

    @serialized
    async def autofill_result(
        self,
        success: bool,
        fields_filled: int,
        total_fields: int,
        errors: Optional[List[str]] = None,
    ) -> None:
        ctx = self._context
        template = ctx.template
        if ctx.state != S.ACTIVE or template is None or ctx.payment is None:
            logger.debug("Ignoring autofill result: no template is being applied")
            return

        try:
            await self._templates.update_usage(template.id, success, fields_filled, total_fields)
        except Exception as exc:
            logger.warning(f"Failed to report usage of template {template.id}: {exc}")

        key = NotificationKey.AUTOFILL_COMPLETE if success else NotificationKey.AUTOFILL_FAILED
        await self._notify(key, payment_id=ctx.payment.id, portal_id=ctx.portal_id, page_key=ctx.page_key)
        await self._record(
            "autofill_completed",
            payment_id=ctx.payment.id,
            portal_id=ctx.portal_id,
            page_key=ctx.page_key,
            metadata={
                "success": success,
                "fieldsFilled": fields_filled,
                "totalFields": total_fields,
                "templateId": template.id,
                "templateVersion": template.version,
                "errorCount": len(errors or []),
            },
        )

    # ── SUBMIT_LEARNING ───────────────────────────────────────────────────────

    @serialized
    async def submit_learning(
        self,
        fields: List[FieldMapping],
        url: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> None:
        ctx = self._context
        payment = ctx.payment
        if ctx.state != S.LEARNING or payment is None:
            logger.warning(f"Learning submission ignored in state {ctx.state.value}")
            return
        if not fields:
            logger.warning("Learning submission ignored: no fields captured")
            return

        portal_id = ctx.portal_id or payment.portal_id
        page_key = ctx.page_key or "default"
        confidence = learned_confidence(fields)
        # Only selectors, semantic types, labels and scores leave the machine; never values.
        submission = {
            "portalId": portal_id,
            "accountId": payment.account_id,
            "clientId": payment.client_id,
            "vendorId": payment.vendor_id,
            "pageKey": page_key,
            "fields": [f.to_wire() for f in fields],
            "confidence": confidence,
            "url": url,
            "fingerprint": fingerprint,
        }
        try:
            template = await self._templates.create_template(submission)
        except Exception as exc:
            logger.error(f"Failed to submit learning for {portal_id}/{page_key}: {exc}")
            await self._notify(
                NotificationKey.LEARNING_SUBMIT_FAILED, payment_id=payment.id, portal_id=portal_id, page_key=page_key
            )
            return

        await self._notify(
            NotificationKey.TEMPLATE_LEARNED, payment_id=payment.id, portal_id=portal_id, page_key=page_key
        )
        await self._record(
            "template_learned",
            payment_id=payment.id,
            portal_id=portal_id,
            page_key=page_key,
            metadata={
                "templateId": template.id if template else None,
                "fieldCount": len(fields),
                "confidence": confidence,
            },
        )
        logger.info(f"Template learned for {portal_id}/{page_key} ({len(fields)} fields)")

    # ── AUTH_REQUIRED / TELEMETRY ─────────────────────────────────────────────

    async def authenticate(self) -> bool:
        try:
            await self._auth.authenticate()
        except AuthError:
            await self._notify(NotificationKey.TOKEN_EXPIRED)
            return False
        return True

    async def record_telemetry(self, event: TelemetryEvent) -> None:
        await self._telemetry.log_event(event)
