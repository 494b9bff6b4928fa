"""Routes raw command messages from the popup and page to the state machine."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Set

from loguru import logger
from pydantic import ValidationError

from models import commands as cmd
from workflow.state_machine import WorkflowStateMachine


class CommandDispatcher:
    """
    ``dispatch`` parses a message and runs the matching handler to completion.
    ``submit`` does the same in a background task. Handlers that change the
    workflow context queue on the machine lock in submission order; STOP_AFTER_NEXT
    and TOGGLE_AUTO_FETCH only flip flags, so they land even while a long-poll
    is in flight.
    """

    def __init__(self, machine: WorkflowStateMachine) -> None:
        self._machine = machine
        self._tasks: Set[asyncio.Task] = set()

    async def dispatch(self, message: Dict[str, Any]) -> Dict[str, Any]:
        try:
            command = cmd.command_adapter.validate_python(message)
        except ValidationError as exc:
            logger.warning(f"Rejected command {message.get('type')!r}: {exc.error_count()} validation errors")
            return {"success": False, "error": f"Invalid or unknown command: {message.get('type')}"}

        logger.debug(f"Command received: {command.type}")
        m = self._machine

        if isinstance(command, cmd.GetNextPayment):
            await m.get_next_payment()
        elif isinstance(command, cmd.StopAfterNext):
            m.stop_after_next()
        elif isinstance(command, cmd.CreateException):
            await m.create_exception(command.payment_id, command.reason)
        elif isinstance(command, cmd.PortalDetected):
            await m.portal_detected(command.portal_id, command.confidence, command.page_key)
        elif isinstance(command, cmd.ConfirmationDetected):
            await m.confirmation_detected(command.metadata)
        elif isinstance(command, cmd.AuthRequired):
            if not await m.authenticate():
                return {"success": False, "error": "Authentication failed"}
        elif isinstance(command, cmd.ResetState):
            await m.reset_state()
        elif isinstance(command, cmd.ToggleAutoFetch):
            m.set_auto_fetch_enabled(command.enabled)
        elif isinstance(command, cmd.AutofillResult):
            await m.autofill_result(command.success, command.fields_filled, command.total_fields, command.errors)
        elif isinstance(command, cmd.SubmitLearning):
            await m.submit_learning(command.fields, command.url, command.fingerprint)
        elif isinstance(command, cmd.RetryEvidence):
            await m.retry_evidence()
        elif isinstance(command, cmd.Telemetry):
            await m.record_telemetry(command.event)
        return {"success": True}

    def submit(self, message: Dict[str, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.dispatch(message))
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Command handler crashed: {task.exception()!r}")

    async def drain(self) -> None:
        """Wait for every submitted command to reach a terminal outcome."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
