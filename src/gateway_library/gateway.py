# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/gateway.py

import logging
from typing import Any, AsyncGenerator, Dict, Optional, Tuple, Union

import httpx

from .defaults import DEFAULT_MODEL
from .errors import GatewayError
from .events import GatewayEvents, get_events
from .pool import CredentialPool
from .storage import CredentialStore
from .token_manager import TokenRefresher
from .translation.request import MODEL_MAP, translate_request
from .translation.response import translate_response
from .translation.streaming import StreamCompletionHook, translate_stream
from .types import CredentialRecord, now_ms
from .upstream import UpstreamClient

lib_logger = logging.getLogger("gateway_library")


def model_catalog() -> Dict[str, Any]:
    return {
        "object": "list",
        "data": [
            {"id": model_id, "object": "model", "created": 0, "owned_by": "anthropic"}
            for model_id in MODEL_MAP
        ],
    }


class ChatGateway:
    """
    Serves one chat-completion request end to end:
    select credential -> (inline refresh) -> translate -> upstream -> translate back,
    recording usage against the chosen credential on every exit path.
    """

    def __init__(
        self,
        store: CredentialStore,
        pool: CredentialPool,
        refresher: TokenRefresher,
        upstream: UpstreamClient,
        default_model: str = DEFAULT_MODEL,
        surface_refresh_notice: bool = False,
        events: Optional[GatewayEvents] = None,
    ):
        self.store = store
        self.pool = pool
        self.refresher = refresher
        self.upstream = upstream
        self.default_model = default_model
        self.surface_refresh_notice = surface_refresh_notice
        self.events = events or get_events()

    def list_models(self) -> Dict[str, Any]:
        return model_catalog()

    async def _ensure_fresh(
        self, credential: CredentialRecord
    ) -> Tuple[CredentialRecord, Optional[str]]:
        """
        Refresh the credential inline if it is inside the sweep buffer.

        Never fails the request: the selected token is still valid for at
        least the pool's expiry buffer, so it is used as-is if refresh fails.
        """
        at_ms = now_ms()
        if not self.refresher.needs_refresh(credential, at_ms):
            return credential, None

        # Another request may already have rotated the token pair
        latest = await self.store.get(credential.label)
        if latest is not None and not self.refresher.needs_refresh(latest, at_ms):
            return latest, None

        target = latest or credential
        report = await self.refresher.refresh_credential(target)
        if not report.success:
            self.events.emit("inline_refresh_fallback", label=credential.label)
            lib_logger.warning(
                f"Inline refresh for '{credential.label}' failed, "
                f"using current token until expiry: {report.error}"
            )
            return credential, None

        notice = None
        if self.surface_refresh_notice:
            notice = f"[Notice: upstream token '{credential.label}' was refreshed]\n\n"
        return target, notice

    async def chat_completion(
        self, body: Dict[str, Any]
    ) -> Union[Dict[str, Any], AsyncGenerator[str, None]]:
        """
        Returns a chat.completion dict, or an async generator of SSE frames
        when the body asks for streaming.

        Raises PoolExhaustedError before any upstream call, and the
        Upstream*Error family for upstream failures.
        """
        credential = await self.pool.acquire()
        credential, notice = await self._ensure_fresh(credential)

        payload = translate_request(body, self.default_model, events=self.events)
        requested_model = body.get("model") or payload["model"]

        if payload.get("stream"):
            return await self._start_stream(credential, payload, requested_model, notice)

        try:
            upstream_response = await self.upstream.create_message(
                credential.access_token, payload
            )
        except GatewayError:
            await self.pool.record_usage(credential.label, success=False)
            raise

        await self.pool.record_usage(credential.label, success=True)
        return translate_response(upstream_response, requested_model, prefix=notice)

    async def _start_stream(
        self,
        credential: CredentialRecord,
        payload: Dict[str, Any],
        requested_model: str,
        notice: Optional[str],
    ) -> AsyncGenerator[str, None]:
        try:
            response = await self.upstream.open_stream(credential.access_token, payload)
        except GatewayError:
            await self.pool.record_usage(credential.label, success=False)
            raise

        label = credential.label

        async def on_complete(success: bool) -> None:
            await self.pool.record_usage(label, success=success)

        return self._relay_stream(response, requested_model, notice, on_complete)

    async def _relay_stream(
        self,
        response: httpx.Response,
        requested_model: str,
        notice: Optional[str],
        on_complete: StreamCompletionHook,
    ) -> AsyncGenerator[str, None]:
        frames = translate_stream(
            response.aiter_bytes(),
            requested_model,
            on_complete=on_complete,
            prefix=notice,
            events=self.events,
        )
        try:
            async for frame in frames:
                yield frame
        finally:
            await frames.aclose()
            await response.aclose()
