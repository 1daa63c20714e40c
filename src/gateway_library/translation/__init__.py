# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .request import MODEL_MAP, resolve_model, translate_request
from .response import map_stop_reason, translate_response
from .streaming import DONE_FRAME, SSELineBuffer, StreamTranslator, translate_stream

__all__ = [
    "MODEL_MAP",
    "resolve_model",
    "translate_request",
    "map_stop_reason",
    "translate_response",
    "DONE_FRAME",
    "SSELineBuffer",
    "StreamTranslator",
    "translate_stream",
]
