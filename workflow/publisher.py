"""Best-effort fan-out of workflow events to whoever is listening.

Delivery is not guaranteed and no subscriber is required: a subscriber that
raises is logged and skipped, the remaining subscribers still receive the event.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Union

from loguru import logger

from models.events import ExtensionNotification
from models.workflow import WorkflowState

Subscriber = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class EventPublisher:
    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    async def publish(self, message: Dict[str, Any]) -> None:
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.debug(f"Subscriber dropped {message.get('type')} event: {exc}")

    async def state_changed(self, state: WorkflowState) -> None:
        await self.publish({"type": "STATE_CHANGED", "state": state.value})

    async def notification(self, notification: ExtensionNotification) -> None:
        await self.publish({"type": "NOTIFICATION", "notification": notification.to_wire()})
