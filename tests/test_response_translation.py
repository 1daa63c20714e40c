import json

import pytest

from gateway_library.translation.response import map_stop_reason, translate_response


@pytest.mark.parametrize(
    "reason,expected",
    [
        ("end_turn", "stop"),
        ("stop_sequence", "stop"),
        ("max_tokens", "length"),
        ("tool_use", "tool_calls"),
        ("refusal", "stop"),
        ("pause_turn", "stop"),
        (None, "stop"),
        ("", "stop"),
    ],
)
def test_stop_reason_mapping(reason, expected):
    assert map_stop_reason(reason) == expected


def test_text_tool_use_and_thinking_blocks_are_split_out():
    upstream = {
        "id": "msg_01ABC",
        "type": "message",
        "role": "assistant",
        "content": [
            {"type": "thinking", "thinking": "Need the weather."},
            {"type": "text", "text": "Let me "},
            {"type": "text", "text": "check."},
            {
                "type": "tool_use",
                "id": "toolu_01",
                "name": "get_weather",
                "input": {"city": "Paris"},
            },
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 12, "output_tokens": 30},
    }

    result = translate_response(upstream, "claude-sonnet-4-5")

    assert result["id"] == "msg_01ABC"
    assert result["object"] == "chat.completion"
    assert result["model"] == "claude-sonnet-4-5"

    choice = result["choices"][0]
    assert choice["finish_reason"] == "tool_calls"
    message = choice["message"]
    assert message["role"] == "assistant"
    assert message["content"] == "Let me check."
    assert message["reasoning_content"] == "Need the weather."
    assert message["tool_calls"] == [
        {
            "id": "toolu_01",
            "type": "function",
            "function": {"name": "get_weather", "arguments": json.dumps({"city": "Paris"})},
        }
    ]
    assert result["usage"] == {"prompt_tokens": 12, "completion_tokens": 30, "total_tokens": 42}


def test_missing_usage_defaults_to_zero_and_no_optional_fields():
    result = translate_response(
        {"content": [{"type": "text", "text": "ok"}], "stop_reason": "end_turn"},
        "claude-haiku-4-5",
    )

    assert result["id"].startswith("chatcmpl-")
    assert result["usage"] == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    message = result["choices"][0]["message"]
    assert "tool_calls" not in message
    assert "reasoning_content" not in message


def test_prefix_is_prepended_to_content():
    result = translate_response(
        {"content": [{"type": "text", "text": "answer"}], "stop_reason": "max_tokens"},
        "m",
        prefix="[notice]\n\n",
    )

    assert result["choices"][0]["message"]["content"] == "[notice]\n\nanswer"
    assert result["choices"][0]["finish_reason"] == "length"
