# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Application startup and shutdown logic.

This module contains the lifespan context manager that builds the gateway
components from the environment and stores them on app.state.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI

from gateway_library import (
    BackgroundRefresher,
    ChatGateway,
    CredentialAdmin,
    CredentialPool,
    PoolSettings,
    TokenRefresher,
    UpstreamClient,
    create_store,
    get_events,
)
from gateway_library.defaults import (
    DEFAULT_API_BASE,
    DEFAULT_MODEL,
    DEFAULT_REFRESH_INTERVAL_SECONDS,
    DEFAULT_REFRESH_TIMEOUT,
    DEFAULT_SWEEP_BUFFER_SECONDS,
    DEFAULT_SWEEP_DELAY_SECONDS,
    DEFAULT_UPSTREAM_TIMEOUT,
    env_bool,
    env_float,
    env_int,
)
from gateway_library.types import RefreshReport

logger = logging.getLogger(__name__)


def _resolve_store_path(data_dir: Optional[Path]) -> Optional[Path]:
    raw = os.getenv("CREDENTIAL_STORE_PATH", "").strip()
    if not raw:
        return None
    path = Path(raw)
    if not path.is_absolute() and data_dir is not None:
        path = data_dir / path
    return path


async def _log_refresh_report(report: RefreshReport) -> None:
    """Sweep notifier: one log line per refreshed credential."""
    if report.success:
        logger.info(f"Token refreshed for '{report.label}'")
    elif report.disabled:
        logger.error(
            f"Token refresh for '{report.label}' was rejected; credential disabled. "
            f"Reason: {report.error}"
        )
    else:
        logger.warning(f"Token refresh for '{report.label}' failed: {report.error}")


@asynccontextmanager
async def lifespan(app: FastAPI, data_dir: Optional[Path] = None):
    """
    Manage the gateway's lifecycle with the app's lifespan.

    Args:
        app: The FastAPI application instance
        data_dir: Optional data directory; relative store paths resolve against it
    """
    events = get_events()
    store = create_store(_resolve_store_path(data_dir))

    upstream_timeout = env_float("UPSTREAM_TIMEOUT", DEFAULT_UPSTREAM_TIMEOUT)
    http_client = httpx.AsyncClient(timeout=upstream_timeout)

    refresher = TokenRefresher(
        store,
        http_client=http_client,
        refresh_timeout=env_float("REFRESH_TIMEOUT", DEFAULT_REFRESH_TIMEOUT),
        sweep_buffer_seconds=env_int(
            "REFRESH_SWEEP_BUFFER_SECONDS", DEFAULT_SWEEP_BUFFER_SECONDS
        ),
        sweep_delay_seconds=env_float(
            "REFRESH_SWEEP_DELAY_SECONDS", DEFAULT_SWEEP_DELAY_SECONDS
        ),
        events=events,
    )
    pool = CredentialPool(store, PoolSettings.from_env(), events=events)
    upstream = UpstreamClient(
        http_client,
        api_base=os.getenv("UPSTREAM_API_BASE", DEFAULT_API_BASE),
        timeout=upstream_timeout,
    )

    app.state.store = store
    app.state.gateway = ChatGateway(
        store,
        pool,
        refresher,
        upstream,
        default_model=os.getenv("DEFAULT_MODEL", DEFAULT_MODEL),
        surface_refresh_notice=env_bool("SURFACE_REFRESH_NOTICE", False),
        events=events,
    )
    app.state.credential_admin = CredentialAdmin(store, refresher, events=events)

    background_refresher = BackgroundRefresher(
        refresher,
        interval_seconds=env_float(
            "REFRESH_INTERVAL_SECONDS", DEFAULT_REFRESH_INTERVAL_SECONDS
        ),
        notifier=_log_refresh_report,
    )
    app.state.background_refresher = background_refresher
    if env_bool("ENABLE_BACKGROUND_REFRESH", True):
        background_refresher.start()
    else:
        logging.info("Background token refresh is disabled.")

    # Warn if no credentials
    if not await store.list_all():
        logging.warning("=" * 70)
        logging.warning("⚠️  NO UPSTREAM CREDENTIALS CONFIGURED")
        logging.warning("The gateway is running but cannot serve any chat requests.")
        logging.warning("Add credentials via POST /admin/keys or the credential tool:")
        logging.warning("  • python -m gateway_app.main --add-credential")
        logging.warning("=" * 70)

    if not os.getenv("CUSTOM_TOKENS", "").strip():
        logging.warning("CUSTOM_TOKENS is not set; all chat requests will be rejected.")

    logging.info("Gateway initialized.")

    yield

    # Shutdown
    await background_refresher.stop()
    await http_client.aclose()
    logging.info("Gateway closed.")
