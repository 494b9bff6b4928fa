"""Periodic background jobs with structured cancellation."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from loguru import logger


class Ticker:
    """Runs ``job`` every ``interval`` seconds until stopped.  Job errors are logged, never raised."""

    def __init__(self, name: str, interval: float, job: Callable[[], Awaitable[None]]) -> None:
        self.name = name
        self.interval = interval
        self._job = job
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=f"ticker:{self.name}")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._job()
            except Exception as exc:
                logger.error(f"Ticker '{self.name}' job failed: {exc}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class Scheduler:
    """Owns a set of tickers; ``shutdown`` guarantees none outlives its owner."""

    def __init__(self) -> None:
        self._tickers: Dict[str, Ticker] = {}

    def every(self, name: str, interval: float, job: Callable[[], Awaitable[None]]) -> Ticker:
        if name in self._tickers:
            raise ValueError(f"Ticker '{name}' already registered")
        ticker = Ticker(name, interval, job)
        self._tickers[name] = ticker
        return ticker

    def start(self) -> None:
        for ticker in self._tickers.values():
            ticker.start()

    async def shutdown(self) -> None:
        for ticker in self._tickers.values():
            await ticker.stop()
        logger.debug(f"Scheduler stopped {len(self._tickers)} tickers")
