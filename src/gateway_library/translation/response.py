# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/translation/response.py

import json
import time
import uuid
from typing import Any, Dict, List, Optional

STOP_REASON_MAP = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def map_stop_reason(reason: Optional[str]) -> str:
    """Anthropic stop_reason -> OpenAI finish_reason. Unknown values map to 'stop'."""
    return STOP_REASON_MAP.get(reason or "", "stop")


def translate_usage(usage: Any) -> Dict[str, int]:
    if not isinstance(usage, dict):
        usage = {}
    prompt = usage.get("input_tokens") or 0
    completion = usage.get("output_tokens") or 0
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
    }


def generate_chat_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:24]}"


def translate_response(
    upstream: Dict[str, Any],
    requested_model: str,
    prefix: Optional[str] = None,
) -> Dict[str, Any]:
    """Convert one Anthropic message object into an OpenAI chat.completion."""
    text_parts: List[str] = []
    reasoning_parts: List[str] = []
    tool_calls: List[Dict[str, Any]] = []

    for block in upstream.get("content") or []:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text_parts.append(block.get("text") or "")
        elif block_type == "thinking":
            reasoning_parts.append(block.get("thinking") or "")
        elif block_type == "tool_use":
            tool_calls.append(
                {
                    "id": block.get("id") or f"call_{uuid.uuid4().hex[:24]}",
                    "type": "function",
                    "function": {
                        "name": block.get("name") or "",
                        "arguments": json.dumps(block.get("input") or {}, ensure_ascii=False),
                    },
                }
            )

    content = "".join(text_parts)
    if prefix:
        content = prefix + content

    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    if reasoning_parts:
        message["reasoning_content"] = "".join(reasoning_parts)

    return {
        "id": upstream.get("id") or generate_chat_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": requested_model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": map_stop_reason(upstream.get("stop_reason")),
            }
        ],
        "usage": translate_usage(upstream.get("usage")),
    }
