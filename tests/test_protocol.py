"""Tests for OpenAI <-> Anthropic payload translation."""

import json

from botrouter.protocol import (
    adapt_request,
    anthropic_response_to_openai,
    extract_usage,
    openai_response_to_anthropic,
    response_text,
    text_of,
    to_anthropic,
    to_openai,
)


def test_text_of():
    assert text_of(None) == ""
    assert text_of("plain") == "plain"
    assert text_of([{"type": "text", "text": "a"}, {"type": "image"}, {"type": "text", "text": "b"}]) == "ab"


def test_same_protocol_is_passthrough():
    payload = {"messages": []}
    assert adapt_request(payload, "openai-compatible", "openai-compatible") is payload


class TestToAnthropic:
    def test_system_tools_and_stop(self):
        body = to_anthropic({
            "model": "x",
            "messages": [
                {"role": "system", "content": "rule one"},
                {"role": "system", "content": "rule two"},
                {"role": "user", "content": "what's the weather?"},
            ],
            "tools": [{
                "type": "function",
                "function": {"name": "weather", "description": "d", "parameters": {"type": "object"}},
            }],
            "stop": "END",
            "seed": 7,
        })

        assert body["system"] == "rule one\n\nrule two"
        assert body["messages"] == [{"role": "user", "content": "what's the weather?"}]
        assert body["tools"] == [{"name": "weather", "description": "d", "input_schema": {"type": "object"}}]
        assert body["stop_sequences"] == ["END"]
        assert "stop" not in body
        assert "seed" not in body
        assert body["max_tokens"] == 8192

    def test_tool_call_round(self):
        body = to_anthropic({
            "max_tokens": 100,
            "messages": [
                {"role": "user", "content": "weather?"},
                {"role": "assistant", "content": None, "tool_calls": [{
                    "id": "call_1", "type": "function",
                    "function": {"name": "weather", "arguments": "{\"city\": \"Oslo\"}"},
                }]},
                {"role": "tool", "tool_call_id": "call_1", "content": "sunny"},
            ],
        })

        assistant, tool_result = body["messages"][1], body["messages"][2]
        assert assistant["content"] == [
            {"type": "tool_use", "id": "call_1", "name": "weather", "input": {"city": "Oslo"}}
        ]
        assert tool_result == {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "call_1", "content": "sunny"}],
        }
        assert body["max_tokens"] == 100

    def test_base64_image(self):
        body = to_anthropic({"messages": [{"role": "user", "content": [
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
        ]}]})
        assert body["messages"][0]["content"] == [
            {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"}}
        ]


class TestToOpenAI:
    def test_system_and_tool_use(self):
        body = to_openai({
            "model": "claude",
            "system": "be nice",
            "thinking": {"type": "enabled", "budget_tokens": 1000},
            "stop_sequences": ["X"],
            "messages": [
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": [
                    {"type": "text", "text": "checking"},
                    {"type": "tool_use", "id": "t1", "name": "look", "input": {"q": 1}},
                ]},
                {"role": "user", "content": [
                    {"type": "tool_result", "tool_use_id": "t1", "content": "found"},
                ]},
            ],
        })

        assert body["messages"][0] == {"role": "system", "content": "be nice"}
        assert body["messages"][1] == {"role": "user", "content": "hi"}
        assistant = body["messages"][2]
        assert assistant["content"] == "checking"
        assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {"q": 1}
        assert body["messages"][3] == {"role": "tool", "tool_call_id": "t1", "content": "found"}
        assert body["stop"] == ["X"]
        assert "thinking" not in body
        assert "system" not in body


class TestResponses:
    ANTHROPIC = {
        "id": "msg_1",
        "model": "claude",
        "content": [
            {"type": "thinking", "thinking": "hmm"},
            {"type": "text", "text": "answer"},
            {"type": "tool_use", "id": "t1", "name": "look", "input": {}},
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 11, "output_tokens": 7, "cache_read_input_tokens": 4},
    }

    def test_anthropic_to_openai(self):
        out = anthropic_response_to_openai(self.ANTHROPIC)
        choice = out["choices"][0]
        assert choice["message"]["content"] == "answer"
        assert choice["message"]["tool_calls"][0]["function"]["name"] == "look"
        assert choice["finish_reason"] == "tool_calls"
        assert out["usage"] == {"prompt_tokens": 11, "completion_tokens": 7, "total_tokens": 18}

    def test_openai_to_anthropic(self):
        out = openai_response_to_anthropic({
            "id": "c1",
            "choices": [{"message": {"role": "assistant", "content": "hey"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 2, "completion_tokens": 3},
        })
        assert out["content"] == [{"type": "text", "text": "hey"}]
        assert out["stop_reason"] == "end_turn"
        assert out["usage"] == {"input_tokens": 2, "output_tokens": 3}

    def test_extract_usage(self):
        native = extract_usage(self.ANTHROPIC, "anthropic-native")
        assert (native.input_tokens, native.output_tokens, native.cache_read_tokens) == (11, 7, 4)

        openai = extract_usage({"usage": {
            "prompt_tokens": 5, "completion_tokens": 9,
            "completion_tokens_details": {"reasoning_tokens": 6},
        }}, "openai-compatible")
        assert (openai.input_tokens, openai.output_tokens, openai.thinking_tokens) == (5, 9, 6)

        assert extract_usage({}, "openai-compatible").input_tokens == 0

    def test_response_text(self):
        assert response_text(self.ANTHROPIC, "anthropic-native") == "answer"
        assert response_text(
            {"choices": [{"message": {"content": "hi"}}]}, "openai-compatible"
        ) == "hi"
