# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/translation/streaming.py

import codecs
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncGenerator, Awaitable, Callable, Dict, List, Optional

from ..events import GatewayEvents, get_events
from .response import generate_chat_id, map_stop_reason

lib_logger = logging.getLogger("gateway_library")

DONE_FRAME = "data: [DONE]\n\n"

StreamCompletionHook = Callable[[bool], Awaitable[None]]


class SSELineBuffer:
    """
    Reassembles complete lines from arbitrarily split network reads.

    Bytes are decoded incrementally, so a multi-byte UTF-8 sequence split
    across two reads is decoded correctly once both halves have arrived.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> Optional[str]:
        """Drop whatever unterminated text is left. Returns it for logging."""
        remainder = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return remainder or None


@dataclass
class StreamState:
    model: str
    chat_id: str = field(default_factory=generate_chat_id)
    created: int = field(default_factory=lambda: int(time.time()))
    current_tool_index: int = -1
    input_tokens: int = 0
    finished: bool = False
    errored: bool = False


class StreamTranslator:
    """
    Translates Anthropic message stream events into OpenAI chat.completion.chunk
    frames.

    Each call to process_event returns the outbound `data: ...` frames for one
    upstream event. Once message_stop or an error event has been seen the
    stream is finished and later events produce nothing.
    """

    def __init__(
        self,
        model: str,
        prefix: Optional[str] = None,
        events: Optional[GatewayEvents] = None,
    ):
        self.state = StreamState(model=model)
        self.prefix = prefix
        self.events = events or get_events()
        self._current_event: Optional[str] = None

    def _build_chunk(
        self,
        *,
        delta: Optional[Dict[str, Any]] = None,
        finish_reason: Optional[str] = None,
        usage: Optional[Dict[str, int]] = None,
    ) -> str:
        chunk: Dict[str, Any] = {
            "id": self.state.chat_id,
            "object": "chat.completion.chunk",
            "created": self.state.created,
            "model": self.state.model,
            "choices": [
                {
                    "index": 0,
                    "delta": delta or {},
                    "finish_reason": finish_reason,
                }
            ],
        }
        if usage is not None:
            chunk["usage"] = usage
        return f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n"

    def _tool_delta(self, entry: Dict[str, Any]) -> str:
        return self._build_chunk(delta={"tool_calls": [entry]})

    def finish(self) -> List[str]:
        """Terminate the stream. Idempotent."""
        if self.state.finished:
            return []
        self.state.finished = True
        return [DONE_FRAME]

    def fail(self, message: str) -> List[str]:
        """Emit a bracketed error as content, then terminate."""
        if self.state.finished:
            return []
        self.state.errored = True
        return [self._build_chunk(delta={"content": f"[Error: {message}]"})] + self.finish()

    # =========================================================================
    # Line / event dispatch
    # =========================================================================

    def process_line(self, line: str) -> List[str]:
        """Feed one complete SSE line."""
        if line == "":
            self._current_event = None
            return []
        if line.startswith(":"):
            return []
        if line.startswith("event:"):
            self._current_event = line[6:].strip()
            return []
        if not line.startswith("data:"):
            return []

        raw = line[5:].strip()
        if not raw:
            return []

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            self.events.emit("stream_payload_malformed")
            lib_logger.warning(f"Skipping malformed stream payload: {raw[:200]}")
            return []
        if not isinstance(payload, dict):
            self.events.emit("stream_payload_malformed")
            lib_logger.warning(f"Skipping non-object stream payload: {raw[:200]}")
            return []

        event_type = payload.get("type") or self._current_event
        return self.process_event(event_type, payload)

    def process_event(self, event_type: Optional[str], payload: Dict[str, Any]) -> List[str]:
        if self.state.finished:
            return []

        if event_type == "message_start":
            return self._on_message_start(payload)
        if event_type == "content_block_start":
            return self._on_content_block_start(payload)
        if event_type == "content_block_delta":
            return self._on_content_block_delta(payload)
        if event_type == "message_delta":
            return self._on_message_delta(payload)
        if event_type == "message_stop":
            return self.finish()
        if event_type == "error":
            return self._on_error(payload)

        # ping, content_block_stop and unknown events carry nothing to relay
        return []

    def _on_message_start(self, payload: Dict[str, Any]) -> List[str]:
        message = payload.get("message")
        if isinstance(message, dict):
            if isinstance(message.get("id"), str) and message["id"]:
                self.state.chat_id = message["id"]
            usage = message.get("usage")
            if isinstance(usage, dict):
                self.state.input_tokens = usage.get("input_tokens") or 0

        frames = [self._build_chunk(delta={"role": "assistant"})]
        if self.prefix:
            frames.append(self._build_chunk(delta={"content": self.prefix}))
        return frames

    def _on_content_block_start(self, payload: Dict[str, Any]) -> List[str]:
        block = payload.get("content_block")
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            return []

        self.state.current_tool_index += 1
        return [
            self._tool_delta(
                {
                    "index": self.state.current_tool_index,
                    "id": block.get("id") or "",
                    "type": "function",
                    "function": {"name": block.get("name") or "", "arguments": ""},
                }
            )
        ]

    def _on_content_block_delta(self, payload: Dict[str, Any]) -> List[str]:
        delta = payload.get("delta")
        if not isinstance(delta, dict):
            return []

        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return [self._build_chunk(delta={"content": delta.get("text") or ""})]
        if delta_type == "thinking_delta":
            return [self._build_chunk(delta={"reasoning_content": delta.get("thinking") or ""})]
        if delta_type == "input_json_delta":
            if self.state.current_tool_index < 0:
                lib_logger.warning("Tool argument delta received before any tool_use block")
                return []
            return [
                self._tool_delta(
                    {
                        "index": self.state.current_tool_index,
                        "function": {"arguments": delta.get("partial_json") or ""},
                    }
                )
            ]
        return []

    def _on_message_delta(self, payload: Dict[str, Any]) -> List[str]:
        delta = payload.get("delta")
        stop_reason = delta.get("stop_reason") if isinstance(delta, dict) else None

        usage = None
        raw_usage = payload.get("usage")
        if isinstance(raw_usage, dict):
            prompt = raw_usage.get("input_tokens") or self.state.input_tokens
            completion = raw_usage.get("output_tokens") or 0
            usage = {
                "prompt_tokens": prompt,
                "completion_tokens": completion,
                "total_tokens": prompt + completion,
            }

        return [
            self._build_chunk(
                delta={}, finish_reason=map_stop_reason(stop_reason), usage=usage
            )
        ]

    def _on_error(self, payload: Dict[str, Any]) -> List[str]:
        error = payload.get("error")
        message = None
        if isinstance(error, dict):
            message = error.get("message")
        if not isinstance(message, str) or not message:
            message = "Upstream stream error"
        self.events.emit("stream_upstream_error")
        lib_logger.error(f"Upstream stream error: {message}")
        return self.fail(message)


async def translate_stream(
    byte_stream: AsyncIterable[bytes],
    model: str,
    on_complete: Optional[StreamCompletionHook] = None,
    prefix: Optional[str] = None,
    events: Optional[GatewayEvents] = None,
) -> AsyncGenerator[str, None]:
    """
    Re-frame an upstream byte stream as OpenAI SSE frames.

    Exactly one `data: [DONE]` frame is produced unless the consumer stops
    reading first. `on_complete(success)` runs exactly once on whichever exit
    path is taken first; a consumer that stops reading early does not count
    as an upstream failure.
    """
    translator = StreamTranslator(model, prefix=prefix, events=events)
    buffer = SSELineBuffer()
    failed = False

    try:
        async for chunk in byte_stream:
            for line in buffer.feed(chunk):
                for frame in translator.process_line(line):
                    yield frame
                if translator.state.finished:
                    break
            if translator.state.finished:
                break

        remainder = buffer.flush()
        if remainder and not translator.state.finished:
            lib_logger.debug(f"Discarding unterminated stream line: {remainder[:200]}")

        if not translator.state.finished:
            lib_logger.warning("Upstream stream ended without message_stop")
            failed = True
            for frame in translator.finish():
                yield frame

    except Exception as e:
        failed = True
        lib_logger.error(f"Error while reading upstream stream: {e}", exc_info=True)
        for frame in translator.fail(f"Stream interrupted: {e}"):
            yield frame

    finally:
        if on_complete is not None:
            try:
                await on_complete(not (failed or translator.state.errored))
            except Exception as e:
                lib_logger.error(f"Stream completion hook failed: {e}")
