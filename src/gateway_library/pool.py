# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential pool selection and usage accounting.

Selection is "least-loaded with error penalties, randomized among the best":

    score = use_count
          + error_weight * error_count
          + recent_error_penalty   (if the last error is inside the window)
          + fresh_bonus            (if never used; negative)

Eligible credentials are sorted by score and one of the best `top_n` is
picked uniformly at random, so concurrent requests do not all land on the
single lowest-scoring credential.
"""

import logging
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .defaults import env_int
from .errors import PoolExhaustedError
from .events import GatewayEvents, get_events
from .storage import CredentialStore
from .types import CredentialRecord, iso_from_ms, ms_from_iso, now_ms

lib_logger = logging.getLogger("gateway_library")


@dataclass(frozen=True)
class PoolSettings:
    buffer_ms: int = 2 * 60 * 1000
    error_weight: int = 10
    recent_error_penalty: int = 50
    recent_error_window_ms: int = 5 * 60 * 1000
    fresh_bonus: int = -5
    top_n: int = 3

    @classmethod
    def from_env(cls) -> "PoolSettings":
        defaults = cls()
        return cls(
            buffer_ms=env_int("POOL_EXPIRY_BUFFER_SECONDS", defaults.buffer_ms // 1000) * 1000,
            error_weight=env_int("POOL_ERROR_WEIGHT", defaults.error_weight),
            recent_error_penalty=env_int(
                "POOL_RECENT_ERROR_PENALTY", defaults.recent_error_penalty
            ),
            recent_error_window_ms=env_int(
                "POOL_RECENT_ERROR_WINDOW_SECONDS", defaults.recent_error_window_ms // 1000
            )
            * 1000,
            fresh_bonus=env_int("POOL_FRESH_BONUS", defaults.fresh_bonus),
            top_n=max(1, env_int("POOL_TOP_N", defaults.top_n)),
        )


def is_eligible(record: CredentialRecord, at_ms: int, settings: PoolSettings) -> bool:
    return (
        record.enabled
        and bool(record.access_token)
        and record.expires_at > at_ms + settings.buffer_ms
    )


def score_credential(record: CredentialRecord, at_ms: int, settings: PoolSettings) -> int:
    """Lower is better."""
    score = record.use_count + settings.error_weight * record.error_count

    last_error = ms_from_iso(record.last_error_at)
    if last_error is not None and at_ms - last_error < settings.recent_error_window_ms:
        score += settings.recent_error_penalty

    if not record.last_used:
        score += settings.fresh_bonus

    return score


def select_credential(
    records: Sequence[CredentialRecord],
    at_ms: int,
    settings: Optional[PoolSettings] = None,
    rng: Optional[random.Random] = None,
) -> Optional[CredentialRecord]:
    """Pick a credential for the next request, or None if none is eligible."""
    settings = settings or PoolSettings()
    rng = rng or random

    available = [r for r in records if is_eligible(r, at_ms, settings)]
    if not available:
        return None

    scored = sorted(
        ((score_credential(r, at_ms, settings), r) for r in available),
        key=lambda item: item[0],
    )
    top = scored[: min(settings.top_n, len(scored))]
    score, selected = top[rng.randrange(len(top))]

    lib_logger.info(
        f"[LB] Selected key '{selected.label}' (score: {score}, "
        f"from {len(available)} available)"
    )
    return selected


class CredentialPool:
    """Selects credentials from the store and records their usage."""

    def __init__(
        self,
        store: CredentialStore,
        settings: Optional[PoolSettings] = None,
        rng: Optional[random.Random] = None,
        events: Optional[GatewayEvents] = None,
    ):
        self.store = store
        self.settings = settings or PoolSettings()
        self._rng = rng
        self.events = events or get_events()

    async def eligible(self, at_ms: Optional[int] = None) -> List[CredentialRecord]:
        at_ms = now_ms() if at_ms is None else at_ms
        return [
            r for r in await self.store.list_all() if is_eligible(r, at_ms, self.settings)
        ]

    async def acquire(self, at_ms: Optional[int] = None) -> CredentialRecord:
        """Select a credential, raising PoolExhaustedError when none is eligible."""
        at_ms = now_ms() if at_ms is None else at_ms
        records = await self.store.list_all()
        selected = select_credential(records, at_ms, self.settings, self._rng)
        if selected is None:
            self.events.emit("pool_exhausted", total=len(records))
            lib_logger.error("[LB] No available keys!")
            raise PoolExhaustedError()
        self.events.emit("credential_selected", label=selected.label)
        return selected

    async def record_usage(
        self, label: str, success: bool, at_ms: Optional[int] = None
    ) -> None:
        """Bump the credential's counters and the global request stats."""
        at_ms = now_ms() if at_ms is None else at_ms
        record = await self.store.get(label)
        if record is not None:
            record.use_count += 1
            record.last_used = iso_from_ms(at_ms)
            if not success:
                record.error_count += 1
                record.last_error_at = iso_from_ms(at_ms)
            await self.store.put(record)

        if not success:
            self.events.emit("upstream_failure", label=label)

        await self.store.increment_stats(at_ms)
