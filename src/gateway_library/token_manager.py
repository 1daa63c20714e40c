# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/token_manager.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .defaults import (
    CLIENT_ID,
    DEFAULT_EXPIRES_IN_SECONDS,
    DEFAULT_REFRESH_TIMEOUT,
    DEFAULT_SWEEP_BUFFER_SECONDS,
    DEFAULT_SWEEP_DELAY_SECONDS,
    TOKEN_ENDPOINT,
)
from .errors import mask_credential
from .events import GatewayEvents, get_events
from .storage import CredentialStore
from .types import (
    CredentialRecord,
    RefreshOutcome,
    RefreshPermanentError,
    RefreshReport,
    RefreshSuccess,
    RefreshTransientError,
    SweepResult,
    iso_from_ms,
    now_ms,
)

lib_logger = logging.getLogger("gateway_library")

RefreshNotifier = Callable[[RefreshReport], Awaitable[None]]

# Statuses on which the token endpoint has rejected the refresh token itself
PERMANENT_STATUS_CODES = (400, 401, 403)


class TokenRefresher:
    """
    Keeps upstream OAuth access tokens fresh.

    Supports:
    - Single-flight refresh keyed by refresh-token value (not by label), so
      two labels sharing a refresh token collapse into one upstream call
    - Transient vs permanent failure classification; permanent failures
      disable the credential instead of leaving it to be retried every sweep
    - A throttled sequential sweep over every stored credential
    """

    def __init__(
        self,
        store: CredentialStore,
        http_client: Optional[httpx.AsyncClient] = None,
        token_endpoint: str = TOKEN_ENDPOINT,
        client_id: str = CLIENT_ID,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT,
        sweep_buffer_seconds: int = DEFAULT_SWEEP_BUFFER_SECONDS,
        sweep_delay_seconds: float = DEFAULT_SWEEP_DELAY_SECONDS,
        events: Optional[GatewayEvents] = None,
    ):
        self.store = store
        self._http_client = http_client
        self.token_endpoint = token_endpoint
        self.client_id = client_id
        self.refresh_timeout = refresh_timeout
        self.sweep_buffer_ms = int(sweep_buffer_seconds * 1000)
        self.sweep_delay_seconds = sweep_delay_seconds
        self.events = events or get_events()

        # refresh_token -> in-progress refresh task
        self._inflight: Dict[str, "asyncio.Task[RefreshOutcome]"] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    # =========================================================================
    # Single refresh-token exchange
    # =========================================================================

    async def refresh(self, refresh_token: str) -> RefreshOutcome:
        """
        Exchange a refresh token for a new access token.

        Concurrent calls with the same token value share one upstream call
        and all receive the same outcome.
        """
        task = self._inflight.get(refresh_token)
        if task is not None:
            self.events.emit("refresh_deduplicated")
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._perform_refresh(refresh_token))
        self._inflight[refresh_token] = task

        def _release(done: "asyncio.Task[RefreshOutcome]") -> None:
            if self._inflight.get(refresh_token) is done:
                del self._inflight[refresh_token]

        task.add_done_callback(_release)
        return await asyncio.shield(task)

    async def _perform_refresh(self, refresh_token: str) -> RefreshOutcome:
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self.token_endpoint,
                    json=payload,
                    headers=headers,
                    timeout=self.refresh_timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self.refresh_timeout) as client:
                    response = await client.post(
                        self.token_endpoint, json=payload, headers=headers
                    )
        except httpx.TimeoutException as e:
            lib_logger.error(
                f"[Refresh] Timed out for {mask_credential(refresh_token)}: {e!r}"
            )
            return RefreshTransientError(f"Token endpoint timed out: {e!r}")
        except httpx.RequestError as e:
            lib_logger.error(
                f"[Refresh] Network error for {mask_credential(refresh_token)}: {e}"
            )
            return RefreshTransientError(f"Network error: {e}")

        return self._classify_response(response)

    def _classify_response(self, response: httpx.Response) -> RefreshOutcome:
        status_code = response.status_code

        body: Any = None
        try:
            body = response.json()
        except ValueError:
            body = None

        if 200 <= status_code < 300:
            if not isinstance(body, dict) or not body.get("access_token"):
                return RefreshTransientError("Refresh API returned no token")

            expires_in = body.get("expires_in")
            if not isinstance(expires_in, (int, float)) or expires_in <= 0:
                expires_in = DEFAULT_EXPIRES_IN_SECONDS

            new_refresh = body.get("refresh_token")
            return RefreshSuccess(
                access_token=body["access_token"],
                refresh_token=new_refresh if isinstance(new_refresh, str) and new_refresh else None,
                expires_in=int(expires_in),
            )

        error_type = ""
        error_desc = ""
        if isinstance(body, dict):
            raw_error = body.get("error")
            if isinstance(raw_error, dict):
                error_type = str(raw_error.get("type", "") or "")
                error_desc = str(raw_error.get("message", "") or "")
            else:
                error_type = str(raw_error or "")
                error_desc = str(
                    body.get("error_description", "") or body.get("message", "") or ""
                )
        else:
            error_desc = response.text[:500]

        detail = f"HTTP {status_code}: {error_type or error_desc or 'no details'}"
        if error_type and error_desc:
            detail = f"HTTP {status_code}: {error_type} ({error_desc})"

        lib_logger.error(f"[Refresh] {detail}")

        if "invalid_grant" in error_type or "invalid_grant" in error_desc.lower():
            return RefreshPermanentError(detail)
        if status_code in PERMANENT_STATUS_CODES:
            return RefreshPermanentError(detail)
        return RefreshTransientError(detail)

    # =========================================================================
    # Stored credential refresh
    # =========================================================================

    async def refresh_credential(
        self, record: CredentialRecord, now: Optional[int] = None
    ) -> RefreshReport:
        """
        Refresh one stored credential and persist the result under its label.

        On success the record receives the new token pair and expiry; on a
        permanent failure it is disabled; on a transient failure it is left
        untouched so the next sweep can retry it. `record` is updated in place.
        """
        if not record.refresh_token:
            outcome: RefreshOutcome = RefreshPermanentError("No refresh token stored")
        else:
            outcome = await self.refresh(record.refresh_token)

        now = now_ms() if now is None else now
        report = RefreshReport(label=record.label, outcome=outcome)

        if isinstance(outcome, RefreshTransientError):
            self.events.emit("refresh_transient_error", label=record.label)
            lib_logger.warning(
                f"[Refresh] '{record.label}' failed transiently: {outcome.detail}"
            )
            return report

        latest = await self.store.get(record.label)
        target = latest or record

        if isinstance(outcome, RefreshSuccess):
            updated = [record] if target is record else [record, target]
            for rec in updated:
                rec.access_token = outcome.access_token
                if outcome.refresh_token:
                    rec.refresh_token = outcome.refresh_token
                rec.expires_at = now + outcome.expires_in * 1000
                rec.last_refreshed = iso_from_ms(now)
            report.expires_at = target.expires_at
            self.events.emit("refresh_success", label=record.label)
            lib_logger.info(
                f"[Refresh] '{record.label}' refreshed, expires in {outcome.expires_in}s"
            )
        else:
            record.enabled = False
            target.enabled = False
            report.disabled = True
            self.events.emit("refresh_permanent_error", label=record.label)
            lib_logger.error(
                f"[Refresh] '{record.label}' refresh token rejected; credential disabled: "
                f"{outcome.detail}"
            )

        await self.store.put(target)
        return report

    # =========================================================================
    # Sweep
    # =========================================================================

    def needs_refresh(self, record: CredentialRecord, at_ms: int) -> bool:
        return record.is_expired(at_ms, self.sweep_buffer_ms)

    async def sweep(
        self,
        force: bool = False,
        notifier: Optional[RefreshNotifier] = None,
    ) -> SweepResult:
        """
        Refresh every enabled credential close to expiry (or all enabled ones
        when forced), one at a time with a fixed pause between refreshes to
        stay under the token endpoint's rate limits.
        """
        records = await self.store.list_all()
        result = SweepResult(checked=len(records))
        start = now_ms()

        for record in records:
            if not record.enabled:
                result.skipped += 1
                continue

            if not force and not self.needs_refresh(record, start):
                result.skipped += 1
                continue

            lib_logger.info(f"[Sweep] Refreshing '{record.label}'")
            report = await self.refresh_credential(record)
            result.reports.append(report)

            if report.success:
                result.refreshed += 1
            else:
                result.failed += 1
                if report.disabled:
                    result.disabled += 1

            if notifier is not None:
                try:
                    await notifier(report)
                except Exception as e:
                    lib_logger.error(f"[Sweep] Notifier failed for '{record.label}': {e}")

            await asyncio.sleep(self.sweep_delay_seconds)

        lib_logger.info(
            f"[Sweep] Done: {result.refreshed} refreshed, {result.failed} failed, "
            f"{result.skipped} skipped"
        )
        return result
