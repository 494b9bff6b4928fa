"""Evidence capture pipeline: screenshot, upload, metadata record."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from loguru import logger

from clients.services import EvidenceService
from config.settings import settings
from models.events import TelemetryEvent
from models.payment import Payment
from utils.helpers import build_evidence_path, screenshot_filename, strip_query, utc_now
from utils.retry import RetryPolicy
from workflow.collaborators import PageCapture
from workflow.telemetry import TelemetryBuffer


class EvidenceError(RuntimeError):
    pass


class EvidencePipeline:
    def __init__(
        self,
        service: EvidenceService,
        capture: PageCapture,
        telemetry: TelemetryBuffer,
        upload_retry: Optional[RetryPolicy] = None,
        organization_id: Optional[str] = None,
        operator_id: Callable[[], Optional[str]] = lambda: None,
    ) -> None:
        self._service = service
        self._capture = capture
        self._telemetry = telemetry
        self._upload_retry = upload_retry or RetryPolicy.from_settings(
            label="evidence.upload", max_retries=settings.evidence_upload_max_retries
        )
        self._organization_id = organization_id or settings.organization_id
        self._operator_id = operator_id

    async def capture_and_upload(
        self,
        payment_id: str,
        metadata: Dict[str, Any],
        payment: Optional[Payment],
    ) -> str:
        """
        Capture the current page and file it as proof for ``payment_id``.

        Returns the artifact URL (query string stripped).  Any failure is
        recorded as ``evidence_upload_failed`` telemetry and then re-raised.
        """
        try:
            if payment is None or payment.id != payment_id:
                raise EvidenceError(f"No resolved payment for evidence of {payment_id}")

            now = utc_now()
            filename = screenshot_filename(now)
            path = build_evidence_path(
                payment.organization_id or self._organization_id,
                payment.account_id,
                payment_id,
                filename,
            )

            target = await self._service.get_upload_target(payment_id, path, filename)
            artifact = await self._capture.capture()
            if not artifact:
                raise EvidenceError("Page capture returned an empty artifact")

            await self._upload_retry.run(lambda: self._service.upload_artifact(target, artifact))

            artifact_url = strip_query(target.url)
            await self._service.upload_metadata(
                payment_id,
                {
                    "screenshotUrl": artifact_url,
                    "path": path,
                    "metadata": metadata,
                    "uploadedAt": utc_now().isoformat(),
                },
            )
        except Exception as exc:
            logger.error(f"Failed to upload evidence for payment {payment_id}: {exc}")
            await self._telemetry.log_event(
                TelemetryEvent(
                    event_type="evidence_upload_failed",
                    operator_id=self._operator_id(),
                    payment_id=payment_id,
                    metadata={"error": str(exc)},
                )
            )
            raise

        await self._telemetry.log_event(
            TelemetryEvent(
                event_type="evidence_uploaded",
                operator_id=self._operator_id(),
                payment_id=payment_id,
                metadata={"path": path},
            )
        )
        logger.info(f"Evidence uploaded for payment {payment_id}")
        return artifact_url
