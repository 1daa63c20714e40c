# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/admin.py

import json
import logging
from typing import Any, Dict, List, Optional, Union

from .errors import CredentialExistsError, CredentialNotFoundError
from .events import GatewayEvents, get_events
from .storage import CredentialStore
from .token_manager import TokenRefresher
from .types import CredentialRecord, RefreshReport, SweepResult, iso_from_ms, now_ms

lib_logger = logging.getLogger("gateway_library")


def parse_oauth_payload(payload: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Accept a `{"claudeAiOauth": {...}}` export (as text or already decoded) and
    return the inner object. Raises ValueError when the tokens are missing.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValueError(f"Credential payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ValueError("Credential payload must be a JSON object")

    oauth = payload.get("claudeAiOauth", payload)
    if not isinstance(oauth, dict):
        raise ValueError("'claudeAiOauth' must be a JSON object")

    if not oauth.get("accessToken") or not oauth.get("refreshToken"):
        raise ValueError("Credential payload must contain accessToken and refreshToken")
    if not isinstance(oauth["accessToken"], str) or not isinstance(oauth["refreshToken"], str):
        raise ValueError("accessToken and refreshToken must be strings")

    return oauth


class CredentialAdmin:
    """Administrative operations over the credential pool."""

    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher,
        events: Optional[GatewayEvents] = None,
    ):
        self.store = store
        self.refresher = refresher
        self.events = events or get_events()

    async def _require(self, label: str) -> CredentialRecord:
        record = await self.store.get(label)
        if record is None:
            raise CredentialNotFoundError(label)
        return record

    async def add_from_oauth_json(
        self,
        label: str,
        payload: Union[str, Dict[str, Any]],
        added_by: str = "unknown",
    ) -> CredentialRecord:
        """Store a new credential. An existing label is overwritten with fresh counters."""
        label = (label or "").strip()
        if not label:
            raise ValueError("Label must not be empty")

        oauth = parse_oauth_payload(payload)
        scopes = oauth.get("scopes")
        at_ms = now_ms()

        record = CredentialRecord(
            label=label,
            access_token=oauth["accessToken"],
            refresh_token=oauth["refreshToken"],
            expires_at=int(oauth.get("expiresAt") or 0),
            scopes=[str(s) for s in scopes] if isinstance(scopes, list) else [],
            subscription_type=oauth.get("subscriptionType") or "unknown",
            rate_limit_tier=oauth.get("rateLimitTier") or "default",
            added_at=iso_from_ms(at_ms),
            added_by=added_by or "unknown",
        )
        await self.store.put_strict(record)
        self.events.emit("credential_added", label=label)
        lib_logger.info(f"Added credential '{label}' (by {record.added_by})")
        return record

    async def remove(self, label: str) -> None:
        await self._require(label)
        await self.store.delete_strict(label)
        self.events.emit("credential_removed", label=label)
        lib_logger.info(f"Removed credential '{label}'")

    async def rename(self, old_label: str, new_label: str) -> CredentialRecord:
        """
        Move a credential to a new label. Refuses an occupied target; the
        check and the write are not atomic, so two concurrent renames onto
        the same label resolve as last-write-wins.
        """
        new_label = (new_label or "").strip()
        if not new_label:
            raise ValueError("New label must not be empty")

        record = await self._require(old_label)
        if new_label == old_label:
            return record
        if await self.store.get(new_label) is not None:
            raise CredentialExistsError(new_label)

        record.label = new_label
        await self.store.put_strict(record)
        await self.store.delete_strict(old_label)
        lib_logger.info(f"Renamed credential '{old_label}' -> '{new_label}'")
        return record

    async def set_enabled(self, label: str, enabled: bool) -> CredentialRecord:
        record = await self._require(label)
        record.enabled = enabled
        await self.store.put_strict(record)
        lib_logger.info(f"{'Enabled' if enabled else 'Disabled'} credential '{label}'")
        return record

    async def refresh(self, label: str) -> RefreshReport:
        """Refresh one credential now, whether or not it is enabled."""
        record = await self._require(label)
        return await self.refresher.refresh_credential(record)

    async def refresh_all(self) -> SweepResult:
        return await self.refresher.sweep(force=True)

    async def status(self, at_ms: Optional[int] = None) -> List[Dict[str, Any]]:
        at_ms = now_ms() if at_ms is None else at_ms
        return [
            {
                "label": r.label,
                "enabled": r.enabled,
                "expiresAt": iso_from_ms(r.expires_at) if r.expires_at else None,
                "remainingMin": r.remaining_minutes(at_ms),
                "subscriptionType": r.subscription_type,
                "useCount": r.use_count,
                "errorCount": r.error_count,
                "lastUsed": r.last_used,
                "lastRefreshed": r.last_refreshed,
            }
            for r in await self.store.list_all()
        ]

    async def stats(self, at_ms: Optional[int] = None) -> Dict[str, Any]:
        """Global counters plus a per-credential ranking by use count."""
        at_ms = now_ms() if at_ms is None else at_ms
        records = await self.store.list_all()
        global_stats = await self.store.get_stats()

        ranking = sorted(records, key=lambda r: r.use_count, reverse=True)
        return {
            "totalRequests": global_stats.total_requests,
            "todayRequests": global_stats.today_requests,
            "today": global_stats.today,
            "totalKeyUses": sum(r.use_count for r in records),
            "totalErrors": sum(r.error_count for r in records),
            "keys": {
                "total": len(records),
                "active": sum(1 for r in records if r.enabled and not r.is_expired(at_ms)),
                "disabled": sum(1 for r in records if not r.enabled),
                "expired": sum(1 for r in records if r.enabled and r.is_expired(at_ms)),
            },
            "ranking": [
                {"label": r.label, "useCount": r.use_count, "errorCount": r.error_count}
                for r in ranking
            ],
            "events": self.events.get_stats(),
        }
