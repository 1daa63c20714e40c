# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/translation/request.py

"""
OpenAI chat-completion request -> Anthropic messages request.

Everything here is pure: malformed input is repaired with a fallback and
logged, never raised.
"""

import copy
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from ..defaults import DEFAULT_MAX_TOKENS, DEFAULT_MODEL
from ..events import GatewayEvents, get_events

lib_logger = logging.getLogger("gateway_library")

# Friendly alias -> concrete upstream model id
MODEL_MAP: Dict[str, str] = {
    "claude-opus-4-6": "claude-opus-4-20250601",
    "claude-sonnet-4-5": "claude-sonnet-4-20250514",
    "claude-haiku-4-5": "claude-haiku-4-20250506",
    "claude-opus-4-20250601": "claude-opus-4-20250601",
    "claude-sonnet-4-20250514": "claude-sonnet-4-20250514",
    "claude-haiku-4-20250506": "claude-haiku-4-20250506",
    "claude-3-7-sonnet-20250219": "claude-3-7-sonnet-20250219",
    "claude-3-5-sonnet-20241022": "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku-20241022": "claude-3-5-haiku-20241022",
    "claude-3-opus-20240229": "claude-3-opus-20240229",
}

EMPTY_CONTENT_PLACEHOLDER = "(empty)"
CONTINUATION_PROMPT = "(continued)"

_DATA_URI_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


def resolve_model(model: Optional[str], default_model: str = DEFAULT_MODEL) -> str:
    if isinstance(model, str) and model in MODEL_MAP:
        return MODEL_MAP[model]
    if model:
        lib_logger.debug(f"Unknown model '{model}', falling back to '{default_model}'")
    return default_model


def _convert_image_block(block: Dict[str, Any]) -> Dict[str, Any]:
    image_url = block.get("image_url")
    url = image_url.get("url", "") if isinstance(image_url, dict) else image_url
    if not isinstance(url, str):
        url = ""

    match = _DATA_URI_RE.match(url)
    if match:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": match.group(1),
                "data": match.group(2),
            },
        }
    return {"type": "text", "text": f"[Image: {url}]"}


def convert_content(content: Any) -> Any:
    """
    Convert OpenAI message content to Anthropic content.

    Strings pass through. Block lists are converted element-wise; blocks with
    no upstream equivalent are dropped, and a list that ends up empty becomes
    a placeholder string so the upstream never sees zero content blocks.
    """
    if isinstance(content, str):
        return content

    if content is None:
        return EMPTY_CONTENT_PLACEHOLDER

    if isinstance(content, list):
        blocks: List[Dict[str, Any]] = []
        for block in content:
            if isinstance(block, str):
                blocks.append({"type": "text", "text": block})
                continue
            if not isinstance(block, dict):
                continue

            block_type = block.get("type")
            if block_type == "text":
                text = block.get("text")
                blocks.append({"type": "text", "text": text if isinstance(text, str) else ""})
            elif block_type == "image_url":
                blocks.append(_convert_image_block(block))
            else:
                lib_logger.debug(f"Dropping unsupported content block type '{block_type}'")

        return blocks if blocks else EMPTY_CONTENT_PLACEHOLDER

    return json.dumps(content, ensure_ascii=False)


def _as_blocks(content: Any) -> List[Dict[str, Any]]:
    if isinstance(content, list):
        return list(content)
    return [{"type": "text", "text": content if isinstance(content, str) else str(content)}]


def merge_consecutive_roles(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Collapse adjacent same-role messages; the upstream rejects back-to-back turns."""
    merged: List[Dict[str, Any]] = []
    for message in messages:
        if merged and merged[-1]["role"] == message["role"]:
            previous = merged[-1]
            if isinstance(previous["content"], str) and isinstance(message["content"], str):
                previous["content"] = f"{previous['content']}\n\n{message['content']}"
            else:
                previous["content"] = _as_blocks(previous["content"]) + _as_blocks(
                    message["content"]
                )
            continue
        merged.append({"role": message["role"], "content": message["content"]})
    return merged


def _system_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
            elif isinstance(block, str):
                parts.append(block)
        return "\n".join(parts)
    if content is None:
        return ""
    return json.dumps(content, ensure_ascii=False)


def convert_messages(
    messages: Any, events: Optional[GatewayEvents] = None
) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Split out the system prompt and convert the rest. Returns (system, messages)."""
    events = events or get_events()
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    if not isinstance(messages, list):
        messages = []

    for message in messages:
        if not isinstance(message, dict):
            continue

        role = message.get("role")
        content = message.get("content")

        if role == "system":
            system_parts.append(_system_text(content))
        elif role in ("user", "assistant"):
            converted.append({"role": role, "content": convert_content(content)})
        else:
            # tool/function/developer/unknown roles are folded into user turns
            events.emit("role_remapped", role=str(role))
            lib_logger.warning(f"Remapping unsupported message role '{role}' to 'user'")
            if content is None:
                text = EMPTY_CONTENT_PLACEHOLDER
            elif isinstance(content, str):
                text = content
            else:
                text = json.dumps(content, ensure_ascii=False)
            converted.append({"role": "user", "content": text})

    merged = merge_consecutive_roles(converted)
    if merged and merged[0]["role"] != "user":
        merged.insert(0, {"role": "user", "content": CONTINUATION_PROMPT})

    system_prompt = "\n".join(system_parts).strip()
    return (system_prompt or None), merged


def convert_tools(tools: Any) -> Optional[List[Dict[str, Any]]]:
    if not isinstance(tools, list) or not tools:
        return None

    converted: List[Dict[str, Any]] = []
    for tool in tools:
        if not isinstance(tool, dict):
            continue
        fn = tool.get("function")
        if tool.get("type") != "function" or not isinstance(fn, dict):
            continue

        name = fn.get("name")
        if not isinstance(name, str) or not name:
            continue

        schema = fn.get("parameters")
        if not isinstance(schema, dict):
            schema = {"type": "object", "properties": {}}

        converted.append(
            {
                "name": name,
                "description": fn.get("description") or "",
                "input_schema": copy.deepcopy(schema),
            }
        )

    return converted or None


def translate_request(
    body: Dict[str, Any],
    default_model: str = DEFAULT_MODEL,
    events: Optional[GatewayEvents] = None,
) -> Dict[str, Any]:
    """Build the upstream messages payload for an inbound chat-completion body."""
    system_prompt, messages = convert_messages(body.get("messages"), events=events)

    payload: Dict[str, Any] = {
        "model": resolve_model(body.get("model"), default_model),
        "messages": messages,
        "max_tokens": body.get("max_tokens") or DEFAULT_MAX_TOKENS,
    }
    if system_prompt:
        payload["system"] = system_prompt

    if body.get("temperature") is not None:
        payload["temperature"] = body["temperature"]
    if body.get("top_p") is not None:
        payload["top_p"] = body["top_p"]
    if body.get("stream"):
        payload["stream"] = True

    stop = body.get("stop")
    if isinstance(stop, str) and stop:
        payload["stop_sequences"] = [stop]
    elif isinstance(stop, list) and stop:
        payload["stop_sequences"] = [s for s in stop if isinstance(s, str)]

    tools = convert_tools(body.get("tools"))
    if tools:
        payload["tools"] = tools

    return payload
