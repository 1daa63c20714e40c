# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/upstream.py

import logging
from typing import Any, Dict, Optional

import httpx

from .defaults import (
    ANTHROPIC_BETA,
    ANTHROPIC_VERSION,
    DEFAULT_API_BASE,
    DEFAULT_UPSTREAM_TIMEOUT,
    MESSAGES_ENDPOINT_PATH,
    OAUTH_TOKEN_PREFIX,
)
from .errors import (
    UpstreamNetworkError,
    UpstreamProtocolError,
    UpstreamTimeoutError,
    mask_credential,
)

lib_logger = logging.getLogger("gateway_library")


class UpstreamClient:
    """
    Single-attempt client for the upstream messages endpoint.

    Transport failures are raised as gateway errors; non-2xx responses are
    raised as UpstreamProtocolError carrying the body so callers can relay it.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = DEFAULT_UPSTREAM_TIMEOUT,
    ):
        self.http_client = http_client
        self.api_base = api_base
        self.timeout = timeout

    @property
    def messages_url(self) -> str:
        return f"{self.api_base.rstrip('/')}{MESSAGES_ENDPOINT_PATH}"

    def build_headers(self, access_token: str, stream: bool = False) -> Dict[str, str]:
        headers = {
            "anthropic-version": ANTHROPIC_VERSION,
            "anthropic-beta": ANTHROPIC_BETA,
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        if access_token.startswith(OAUTH_TOKEN_PREFIX):
            headers["Authorization"] = f"Bearer {access_token}"
        else:
            headers["x-api-key"] = access_token
        return headers

    @staticmethod
    def _protocol_error(response: httpx.Response, body: bytes) -> UpstreamProtocolError:
        text = body.decode("utf-8", "replace")
        lib_logger.warning(
            f"Upstream returned HTTP {response.status_code}: {text[:300]}"
        )
        return UpstreamProtocolError(
            response.status_code, text, response.headers.get("content-type")
        )

    async def create_message(self, access_token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Unary messages call. Returns the decoded upstream message object."""
        try:
            response = await self.http_client.post(
                self.messages_url,
                json=payload,
                headers=self.build_headers(access_token),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            lib_logger.error(f"Upstream timed out for {mask_credential(access_token)}: {e!r}")
            raise UpstreamTimeoutError(f"Upstream request timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            lib_logger.error(f"Upstream network error for {mask_credential(access_token)}: {e}")
            raise UpstreamNetworkError(f"Upstream network error: {e}") from e

        if not response.is_success:
            raise self._protocol_error(response, response.content)

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamProtocolError(
                502, response.text, response.headers.get("content-type")
            ) from e
        if not isinstance(body, dict):
            lib_logger.error(f"Upstream returned a non-object JSON body: {type(body).__name__}")
            raise UpstreamProtocolError(502, response.text, response.headers.get("content-type"))
        return body

    async def open_stream(self, access_token: str, payload: Dict[str, Any]) -> httpx.Response:
        """
        Start a streaming messages call.

        The returned response has not been read; the caller owns it and must
        close it. On a non-2xx status the body is read, the response closed,
        and UpstreamProtocolError raised.
        """
        request = self.http_client.build_request(
            "POST",
            self.messages_url,
            json={**payload, "stream": True},
            headers=self.build_headers(access_token, stream=True),
            timeout=self.timeout,
        )
        try:
            response = await self.http_client.send(request, stream=True)
        except httpx.TimeoutException as e:
            lib_logger.error(f"Upstream timed out for {mask_credential(access_token)}: {e!r}")
            raise UpstreamTimeoutError(f"Upstream request timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            lib_logger.error(f"Upstream network error for {mask_credential(access_token)}: {e}")
            raise UpstreamNetworkError(f"Upstream network error: {e}") from e

        if response.is_success:
            return response

        try:
            body = await response.aread()
        except httpx.HTTPError:
            body = b""
        finally:
            await response.aclose()
        raise self._protocol_error(response, body)
