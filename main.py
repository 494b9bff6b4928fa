"""
Payment autopilot – main entry point.

Usage
-----
# Long-running worker: newline-delimited JSON commands on stdin,
# STATE_CHANGED / NOTIFICATION / page events as JSON lines on stdout.
python main.py run --capture-file /tmp/page.png

# Fetch a single payment and exit
python main.py next

# Drop the persisted workflow snapshot
python main.py reset
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict

from dotenv import load_dotenv
from loguru import logger

load_dotenv(override=True)

from config.settings import settings  # noqa: E402 – must be after load_dotenv
from storage.state_store import JsonFileStore, WorkflowStateStore  # noqa: E402
from workflow.collaborators import FileCapture  # noqa: E402
from workflow.runtime import WorkflowRuntime, build_runtime  # noqa: E402


def _configure_logging() -> None:
    logger.remove()
    # stdout carries the event stream, so logs go to stderr.
    logger.add(
        sys.stderr,
        level=settings.log_level,
        colorize=False,
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )
    if settings.log_file:
        import pathlib

        pathlib.Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention="7 days")


def _emit(message: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(message, default=str) + "\n")
    sys.stdout.flush()


async def _run_worker(runtime: WorkflowRuntime) -> None:
    """Read commands from stdin until EOF, each handled in its own task."""
    loop = asyncio.get_running_loop()
    runtime.publisher.subscribe(_emit)
    async with runtime:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning(f"Skipping malformed command line: {exc}")
                continue
            if not isinstance(message, dict):
                logger.warning("Skipping command that is not a JSON object")
                continue
            runtime.dispatcher.submit(message)
        logger.info("stdin closed; waiting for in-flight commands")


async def _run_next(runtime: WorkflowRuntime) -> None:
    runtime.publisher.subscribe(_emit)
    async with runtime:
        await runtime.machine.get_next_payment()


async def _reset() -> None:
    await WorkflowStateStore(JsonFileStore()).clear()
    logger.info(f"Cleared workflow snapshot '{settings.session_slot}' in {settings.state_dir}")


def main() -> None:
    _configure_logging()

    parser = argparse.ArgumentParser(description="Payment autopilot workflow engine")
    parser.add_argument(
        "command",
        choices=["run", "next", "reset"],
        nargs="?",
        default="run",
        help="run: process stdin commands; next: fetch one payment; reset: clear saved state.",
    )
    parser.add_argument(
        "--capture-file",
        type=str,
        default="data/capture/latest.png",
        help="Where the page collaborator writes the screenshot used as evidence.",
    )
    args = parser.parse_args()

    if args.command == "reset":
        asyncio.run(_reset())
        return

    runtime = build_runtime(capture=FileCapture(args.capture_file))
    if args.command == "next":
        asyncio.run(_run_next(runtime))
    else:
        asyncio.run(_run_worker(runtime))


if __name__ == "__main__":
    main()
