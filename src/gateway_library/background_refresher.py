# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/background_refresher.py

import asyncio
import logging
from typing import Optional

from .defaults import DEFAULT_REFRESH_INTERVAL_SECONDS
from .token_manager import RefreshNotifier, TokenRefresher
from .types import SweepResult

lib_logger = logging.getLogger("gateway_library")


class BackgroundRefresher:
    """Runs the credential refresh sweep on a fixed interval."""

    def __init__(
        self,
        refresher: TokenRefresher,
        interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        notifier: Optional[RefreshNotifier] = None,
    ):
        self.refresher = refresher
        self.interval_seconds = interval_seconds
        self.notifier = notifier
        self._task: Optional[asyncio.Task] = None
        self.last_result: Optional[SweepResult] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        lib_logger.info(
            f"Background refresher started (interval {self.interval_seconds}s)"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        lib_logger.info("Background refresher stopped")

    async def run_once(self) -> SweepResult:
        self.last_result = await self.refresher.sweep(notifier=self.notifier)
        return self.last_result

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                lib_logger.error(f"[Cron] Refresh sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)
