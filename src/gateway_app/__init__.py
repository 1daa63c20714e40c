# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

__version__ = "3.0.0"
