# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .admin import CredentialAdmin
from .background_refresher import BackgroundRefresher
from .errors import (
    CredentialExistsError,
    CredentialNotFoundError,
    GatewayError,
    PoolExhaustedError,
    StoreUnavailableError,
    UpstreamNetworkError,
    UpstreamProtocolError,
    UpstreamTimeoutError,
)
from .events import GatewayEvents, get_events
from .gateway import ChatGateway
from .pool import CredentialPool, PoolSettings, select_credential
from .storage import CredentialStore, create_store
from .token_manager import TokenRefresher
from .types import CredentialRecord
from .upstream import UpstreamClient

__all__ = [
    "BackgroundRefresher",
    "ChatGateway",
    "CredentialAdmin",
    "CredentialExistsError",
    "CredentialNotFoundError",
    "CredentialPool",
    "CredentialRecord",
    "CredentialStore",
    "GatewayError",
    "GatewayEvents",
    "PoolExhaustedError",
    "PoolSettings",
    "StoreUnavailableError",
    "TokenRefresher",
    "UpstreamClient",
    "UpstreamNetworkError",
    "UpstreamProtocolError",
    "UpstreamTimeoutError",
    "create_store",
    "get_events",
    "select_credential",
]
