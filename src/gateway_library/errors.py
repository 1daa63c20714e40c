# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/errors.py

from typing import Optional


def mask_credential(token: str) -> str:
    """Mask a token for logs. Shows the first 12 characters only."""
    if not token or len(token) <= 16:
        return "****"
    return f"{token[:12]}..."


class GatewayError(Exception):
    """Base class for errors surfaced to gateway callers."""

    status_code: int = 500
    error_type: str = "gateway_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PoolExhaustedError(GatewayError):
    """No stored credential is currently eligible for selection."""

    status_code = 503
    error_type = "pool_exhausted"

    def __init__(self, message: str = "No available upstream credentials"):
        super().__init__(message)


class UpstreamTimeoutError(GatewayError):
    status_code = 504
    error_type = "upstream_timeout"


class UpstreamNetworkError(GatewayError):
    status_code = 502
    error_type = "upstream_network_error"


class UpstreamProtocolError(GatewayError):
    """Non-2xx response from the messages endpoint. The body is relayed verbatim."""

    error_type = "upstream_error"

    def __init__(
        self,
        status_code: int,
        body: str,
        content_type: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.content_type = content_type or "application/json"
        super().__init__(f"Upstream HTTP {status_code}: {body[:500]}")


class StoreUnavailableError(GatewayError):
    status_code = 503
    error_type = "store_unavailable"


class CredentialNotFoundError(GatewayError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, label: str):
        self.label = label
        super().__init__(f"Credential '{label}' not found")


class CredentialExistsError(GatewayError):
    status_code = 409
    error_type = "conflict"

    def __init__(self, label: str):
        self.label = label
        super().__init__(f"Credential label '{label}' is already in use")
