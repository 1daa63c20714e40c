# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
FastAPI dependencies for the gateway application.

This module centralizes all FastAPI dependency functions including:
- Gateway component retrieval from app state
- Caller token verification for the chat endpoints
- Admin key verification for the management endpoints
"""

import hmac
import logging
import os
import re
from typing import List, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader

from gateway_library import BackgroundRefresher, ChatGateway, CredentialAdmin

logger = logging.getLogger(__name__)

# Security schemes
api_key_header = APIKeyHeader(name="Authorization", auto_error=False)

_BEARER_RE = re.compile(r"^Bearer\s+", re.IGNORECASE)


def get_gateway(request: Request) -> ChatGateway:
    """Dependency to get the chat gateway instance from the app state."""
    return request.app.state.gateway


def get_credential_admin(request: Request) -> CredentialAdmin:
    return request.app.state.credential_admin


def get_background_refresher(request: Request) -> Optional[BackgroundRefresher]:
    return getattr(request.app.state, "background_refresher", None)


def _extract_bearer(auth: Optional[str]) -> str:
    if not auth:
        return ""
    return _BEARER_RE.sub("", auth).strip()


def allowed_tokens() -> List[str]:
    """CUSTOM_TOKENS as a list. Read per call so a reloaded .env takes effect."""
    return [t.strip() for t in os.getenv("CUSTOM_TOKENS", "").split(",") if t.strip()]


async def verify_api_key(auth: str = Depends(api_key_header)):
    """
    Dependency to verify the caller's bearer token for the chat endpoints.

    The token must be listed in CUSTOM_TOKENS. With no tokens configured,
    every request is rejected.
    """
    token = _extract_bearer(auth)
    tokens = allowed_tokens()
    if not tokens:
        logger.warning("No CUSTOM_TOKENS configured, rejecting request")
        raise HTTPException(status_code=401, detail="Invalid or missing API Key")
    if not token or token not in tokens:
        raise HTTPException(status_code=401, detail="Invalid or missing API Key")
    return token


async def verify_admin_key(auth: str = Depends(api_key_header)):
    """Dependency to verify the ADMIN_KEY bearer token for /admin endpoints."""
    admin_key = os.getenv("ADMIN_KEY", "")
    token = _extract_bearer(auth)
    if not admin_key or not token or not hmac.compare_digest(token, admin_key):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return token
