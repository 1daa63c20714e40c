# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/utils/__init__.py

from .resilient_io import (
    safe_write_json,
    safe_read_json,
    safe_mkdir,
)

__all__ = [
    "safe_write_json",
    "safe_read_json",
    "safe_mkdir",
]
