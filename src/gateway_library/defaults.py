# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/defaults.py

import os

# OAuth constants
CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
TOKEN_ENDPOINT = "https://console.anthropic.com/v1/oauth/token"

# API constants
DEFAULT_API_BASE = "https://api.anthropic.com"
MESSAGES_ENDPOINT_PATH = "/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_BETA = "oauth-2025-04-20"
OAUTH_TOKEN_PREFIX = "sk-ant-oat"

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 8192

# Timeouts (seconds)
DEFAULT_UPSTREAM_TIMEOUT = 120
DEFAULT_REFRESH_TIMEOUT = 30

# Refresh sweep
DEFAULT_REFRESH_INTERVAL_SECONDS = 300
DEFAULT_SWEEP_BUFFER_SECONDS = 10 * 60
DEFAULT_SWEEP_DELAY_SECONDS = 1.0

# Used when the token endpoint omits expires_in
DEFAULT_EXPIRES_IN_SECONDS = 3600


def env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    return os.getenv(key, str(default).lower()).lower() in ("true", "1", "yes")


def env_int(key: str, default: int) -> int:
    """Get integer from environment variable, falling back on bad values."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


def env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default
