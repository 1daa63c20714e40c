# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""Builds the gateway's FastAPI app: lifespan, CORS, error envelopes and routers."""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway_library.defaults import env_bool
from gateway_library.errors import GatewayError

from gateway_app import __version__
from gateway_app.error_mapping import (
    gateway_error_handler,
    http_exception_handler,
    validation_exception_handler,
)
from gateway_app.routes import admin, openai
from gateway_app.startup import lifespan

logger = logging.getLogger(__name__)


def cors_settings() -> Tuple[List[str], bool]:
    """(allowed origins, allow credentials) from PROXY_CORS_ORIGINS / PROXY_CORS_CREDENTIALS."""
    origins = [o.strip() for o in os.getenv("PROXY_CORS_ORIGINS", "*").split(",") if o.strip()]
    allow_credentials = env_bool("PROXY_CORS_CREDENTIALS", False)

    if origins == ["*"]:
        logger.warning("CORS allows every origin; set PROXY_CORS_ORIGINS to restrict browser callers")
        if allow_credentials:
            # browsers refuse credentialed requests against a wildcard origin
            logger.warning("PROXY_CORS_CREDENTIALS has no effect while PROXY_CORS_ORIGINS is '*'")
    return origins, allow_credentials


def create_app(data_dir: Optional[Path] = None) -> FastAPI:
    """
    The gateway app. A relative CREDENTIAL_STORE_PATH resolves against
    `data_dir`; main.py passes the install root.
    """
    app = FastAPI(
        title="OAuth Chat Gateway",
        description="OpenAI-compatible gateway over a pool of Anthropic OAuth credentials",
        version=__version__,
        lifespan=lambda app: lifespan(app, data_dir),
    )

    origins, allow_credentials = cors_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(GatewayError, gateway_error_handler)

    app.include_router(openai.router)
    app.include_router(admin.router)
    return app
