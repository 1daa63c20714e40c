# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
OpenAI-compatible API routes.

This module contains the OpenAI-compatible endpoints:
- Chat completions (/v1/chat/completions)
- Models list (/v1/models)
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from gateway_library import ChatGateway

from gateway_app.dependencies import get_gateway, verify_api_key
from gateway_app.error_mapping import map_gateway_error
from gateway_app.models import ModelList
from gateway_app.streaming import streaming_response_wrapper

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/v1/chat/completions")
async def chat_completions(
    request: Request,
    gateway: ChatGateway = Depends(get_gateway),
    _=Depends(verify_api_key),
):
    """
    OpenAI-compatible chat completions endpoint.
    Handles both streaming and non-streaming responses.
    """
    try:
        # Read and parse the request body
        try:
            request_data = await request.json()
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON in request body.")

        if not isinstance(request_data, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

        logger.info(
            f"Chat request: model={request_data.get('model')}, "
            f"messages={len(request_data.get('messages') or [])}, "
            f"stream={bool(request_data.get('stream'))}"
        )

        result = await gateway.chat_completion(request_data)

        if request_data.get("stream"):
            return StreamingResponse(
                streaming_response_wrapper(request, result),
                media_type="text/event-stream",
            )
        return result

    except HTTPException:
        raise
    except Exception as e:
        return map_gateway_error(e, "chat_completions")


@router.get("/v1/models", response_model=ModelList)
async def list_models(
    gateway: ChatGateway = Depends(get_gateway),
    _=Depends(verify_api_key),
):
    """Returns the static model catalog in OpenAI-compatible format."""
    return gateway.list_models()


@router.get("/")
def read_root():
    """Root endpoint returning gateway status."""
    return {"Status": "OAuth chat gateway is running"}
