"""Typed wrappers for the backend services the workflow talks to."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import Field

from clients.api_client import ApiClient
from config.settings import settings
from models.events import TelemetryEvent
from models.payment import Payment, PortalTemplate, WireModel
from utils.retry import RetryPolicy


class QueueResponse(WireModel):
    payment: Optional[Dict[str, Any]] = None
    queue_position: Optional[int] = None
    estimated_wait_time: Optional[float] = None


class UploadTarget(WireModel):
    url: str = Field(..., min_length=1)
    expires_at: Optional[str] = None


class QueueService:
    """Long-poll queue of pending payments.  Calls go through a RetryPolicy."""

    def __init__(self, api: ApiClient, base_url: Optional[str] = None, retry: Optional[RetryPolicy] = None) -> None:
        self._api = api
        self._base_url = (base_url if base_url is not None else settings.queue_service_url).rstrip("/")
        self._retry = retry or RetryPolicy.from_settings(
            label="queue.next_payment", max_delay=settings.queue_retry_max_delay_seconds
        )

    async def get_next_payment(self, timeout: Optional[float] = None) -> Optional[QueueResponse]:
        """
        Long-poll for the next payment.

        ``timeout`` (seconds) is clamped to ``queue_poll_max_seconds`` and sent in
        whole seconds, rounded up; 0 asks the server not to wait.  A 204 or
        an empty body yields ``None``, the same as a queue with nothing in it.
        """
        if timeout is None:
            timeout = settings.queue_poll_timeout_seconds
        wait = max(0.0, min(timeout, settings.queue_poll_max_seconds))
        url = f"{self._base_url}/api/v1/queue/next-payment"

        async def _call() -> Any:
            # Give the transport a little headroom over the server-side wait.
            return await self._api.get(url, params={"timeout": math.ceil(wait)}, timeout=wait + 5)

        data = await self._retry.run(_call)
        if not data:
            return None
        return QueueResponse.model_validate(data)


class PaymentService:
    def __init__(self, api: ApiClient, base_url: Optional[str] = None) -> None:
        self._api = api
        self._base_url = (base_url if base_url is not None else settings.payment_service_url).rstrip("/")

    async def get_payment(self, payment_id: str) -> Payment:
        data = await self._api.get(f"{self._base_url}/api/v1/payments/{payment_id}")
        if isinstance(data, dict) and isinstance(data.get("payment"), dict):
            data = data["payment"]
        return Payment.model_validate(data)


class TemplateService:
    """Portal learning service: template lookup, learning submission and usage stats."""

    def __init__(self, api: ApiClient, base_url: Optional[str] = None) -> None:
        self._api = api
        self._base_url = (
            base_url if base_url is not None else settings.portal_learning_service_url
        ).rstrip("/")

    @staticmethod
    def _unwrap(data: Any) -> Optional[PortalTemplate]:
        # The service answers either {"template": {...}} or the bare template.
        if not data:
            return None
        if isinstance(data, dict) and "template" in data:
            data = data["template"]
            if not data:
                return None
        return PortalTemplate.model_validate(data)

    async def get_template(
        self,
        portal_id: str,
        account_id: str,
        client_id: str,
        vendor_id: str,
        page_key: str = "default",
    ) -> Optional[PortalTemplate]:
        params = {
            "portalId": portal_id,
            "accountId": account_id,
            "clientId": client_id,
            "vendorId": vendor_id,
            "pageKey": page_key,
        }
        data = await self._api.get(f"{self._base_url}/api/v1/portals/templates", params=params)
        return self._unwrap(data)

    async def create_template(self, submission: Dict[str, Any]) -> Optional[PortalTemplate]:
        data = await self._api.post(f"{self._base_url}/api/v1/portals/templates", submission)
        return self._unwrap(data)

    async def update_usage(self, template_id: str, success: bool, fields_filled: int, total_fields: int) -> None:
        await self._api.put(
            f"{self._base_url}/api/v1/portals/templates/{template_id}/usage",
            {"success": success, "fieldsFilled": fields_filled, "totalFields": total_fields},
        )


class ExceptionService:
    def __init__(self, api: ApiClient, base_url: Optional[str] = None) -> None:
        self._api = api
        self._base_url = (base_url if base_url is not None else settings.exception_service_url).rstrip("/")

    async def create_exception(self, payment_id: str, reason: str) -> Any:
        return await self._api.post(
            f"{self._base_url}/api/v1/exceptions", {"paymentId": payment_id, "reason": reason}
        )


class EvidenceService:
    def __init__(self, api: ApiClient, base_url: Optional[str] = None) -> None:
        self._api = api
        self._base_url = (base_url if base_url is not None else settings.evidence_service_url).rstrip("/")

    async def get_upload_target(self, payment_id: str, path: str, filename: str) -> UploadTarget:
        data = await self._api.post(
            f"{self._base_url}/api/v1/evidence/presigned-url",
            {"paymentId": payment_id, "path": path, "filename": filename},
        )
        return UploadTarget.model_validate(data or {})

    async def upload_artifact(self, target: UploadTarget, content: bytes, content_type: str = "image/png") -> None:
        await self._api.put_bytes(target.url, content, content_type)

    async def upload_metadata(self, payment_id: str, record: Dict[str, Any]) -> None:
        await self._api.post(f"{self._base_url}/api/v1/evidence/{payment_id}/metadata", record)


class TelemetryService:
    def __init__(self, api: ApiClient, base_url: Optional[str] = None) -> None:
        self._api = api
        self._base_url = (base_url if base_url is not None else settings.telemetry_service_url).rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    async def send_events(self, events: List[TelemetryEvent]) -> None:
        if not self.enabled:
            logger.warning(f"No telemetry service URL configured; discarding {len(events)} events")
            return
        await self._api.post(
            f"{self._base_url}/api/v1/telemetry/events",
            {"events": [e.to_wire() for e in events]},
        )
