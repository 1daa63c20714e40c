# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Process-local event counters.

Decision points in the gateway (credential selection, refresh outcomes,
translation fallbacks, dropped stream payloads) call `emit()`. Counting is
kept separate from control flow so handlers never branch on it.
"""

import logging
import time
from collections import Counter
from typing import Any, Dict, Optional

lib_logger = logging.getLogger("gateway_library")


class GatewayEvents:
    """Named counters plus the last occurrence time of each event."""

    def __init__(self):
        self._counts: Counter = Counter()
        self._last_seen: Dict[str, float] = {}
        self._started_at = time.time()

    def emit(self, name: str, **fields: Any) -> None:
        self._counts[name] += 1
        self._last_seen[name] = time.time()
        if fields:
            details = ", ".join(f"{k}={v}" for k, v in fields.items())
            lib_logger.debug(f"[event] {name}: {details}")
        else:
            lib_logger.debug(f"[event] {name}")

    def count(self, name: str) -> int:
        return self._counts.get(name, 0)

    def reset(self) -> None:
        self._counts.clear()
        self._last_seen.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": int(time.time() - self._started_at),
            "counters": dict(self._counts),
            "last_seen": dict(self._last_seen),
        }


_events: Optional[GatewayEvents] = None


def get_events() -> GatewayEvents:
    """Shared counter registry for the running process."""
    global _events
    if _events is None:
        _events = GatewayEvents()
    return _events
