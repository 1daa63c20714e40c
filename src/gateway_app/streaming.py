# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Streaming response handling for the gateway application.
"""

import json
import logging
from typing import AsyncGenerator

from fastapi import Request

logger = logging.getLogger(__name__)


async def streaming_response_wrapper(
    request: Request,
    response_stream: AsyncGenerator[str, None],
) -> AsyncGenerator[str, None]:
    """
    Relays translated SSE frames to the client and makes sure any error during
    the stream reaches the client as a final error frame.

    The wrapped stream is always closed on exit so the upstream response is
    released even when the client disconnects mid-stream.
    """
    try:
        async for chunk_str in response_stream:
            if await request.is_disconnected():
                logger.warning("Client disconnected, stopping stream.")
                break
            yield chunk_str
    except Exception as e:
        logger.error(f"An error occurred during the response stream: {e}")
        # Yield a final error message to the client
        error_payload = {
            "error": {
                "message": f"An unexpected error occurred during the stream: {str(e)}",
                "type": "proxy_internal_error",
                "code": 500,
            }
        }
        yield f"data: {json.dumps(error_payload)}\n\n"
        yield "data: [DONE]\n\n"
    finally:
        await response_stream.aclose()
