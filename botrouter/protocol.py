"""
Translation between OpenAI-compatible chat-completions payloads and
Anthropic-native messages payloads.

Request and response bodies are plain dicts in the wire shape of their
protocol.  Only the fields the router cares about are mapped: system
prompts, text and image content, tool definitions and calls, stop
reasons, and token usage.  Anything else is passed through untouched or
dropped when the other side has no equivalent.
"""

import json
import logging
import uuid
from typing import Any

from botrouter.models import Protocol, TokenUsage

logger = logging.getLogger(__name__)

OPENAI: Protocol = "openai-compatible"
ANTHROPIC: Protocol = "anthropic-native"

ANTHROPIC_DEFAULT_MAX_TOKENS = 8192

# Keys with no counterpart on the Anthropic side
_OPENAI_ONLY_KEYS = {
    "stream_options", "n", "presence_penalty", "frequency_penalty",
    "logit_bias", "logprobs", "top_logprobs", "response_format", "seed",
    "user", "parallel_tool_calls", "max_completion_tokens",
}
_ANTHROPIC_ONLY_KEYS = {"thinking", "top_k", "metadata", "system"}

_STOP_TO_OPENAI = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}
_FINISH_TO_ANTHROPIC = {
    "stop": "end_turn",
    "length": "max_tokens",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "content_filter": "end_turn",
}


def text_of(content: Any) -> str:
    """Flatten string or block-list content to plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
        elif isinstance(block, str):
            parts.append(block)
    return "".join(parts)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

def _openai_content_to_anthropic(content: Any) -> Any:
    if content is None or isinstance(content, str):
        return content or ""
    blocks = []
    for part in content:
        kind = part.get("type")
        if kind == "text":
            block = {"type": "text", "text": part.get("text", "")}
            if part.get("cache_control"):
                block["cache_control"] = part["cache_control"]
            blocks.append(block)
        elif kind == "image_url":
            url = (part.get("image_url") or {}).get("url", "")
            if url.startswith("data:") and ";base64," in url:
                media_type, data = url[5:].split(";base64,", 1)
                blocks.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                })
            else:
                blocks.append({"type": "image", "source": {"type": "url", "url": url}})
        else:
            blocks.append(part)
    return blocks


def _openai_tool_to_anthropic(tool: dict) -> dict:
    if "function" not in tool:
        return tool
    fn = tool["function"]
    return {
        "name": fn["name"],
        "description": fn.get("description", ""),
        "input_schema": fn.get("parameters") or {"type": "object", "properties": {}},
    }


def to_anthropic(payload: dict) -> dict:
    """OpenAI chat-completions request -> Anthropic messages request."""
    body = {k: v for k, v in payload.items() if k not in _OPENAI_ONLY_KEYS}

    system_parts: list[str] = []
    messages: list[dict] = []
    for msg in payload.get("messages", []):
        role = msg.get("role")
        if role == "system":
            system_parts.append(text_of(msg.get("content")))
        elif role == "tool":
            messages.append({
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": msg.get("tool_call_id"),
                    "content": text_of(msg.get("content")),
                }],
            })
        elif role == "assistant" and msg.get("tool_calls"):
            blocks: list[dict] = []
            text = text_of(msg.get("content"))
            if text:
                blocks.append({"type": "text", "text": text})
            for call in msg["tool_calls"]:
                fn = call.get("function", {})
                arguments = fn.get("arguments") or "{}"
                blocks.append({
                    "type": "tool_use",
                    "id": call.get("id"),
                    "name": fn.get("name"),
                    "input": json.loads(arguments) if isinstance(arguments, str) else arguments,
                })
            messages.append({"role": "assistant", "content": blocks})
        else:
            messages.append({"role": role, "content": _openai_content_to_anthropic(msg.get("content"))})

    body["messages"] = messages
    if system_parts:
        body["system"] = "\n\n".join(p for p in system_parts if p)
    if not body.get("max_tokens"):
        body["max_tokens"] = payload.get("max_completion_tokens") or ANTHROPIC_DEFAULT_MAX_TOKENS
    if payload.get("tools"):
        body["tools"] = [_openai_tool_to_anthropic(t) for t in payload["tools"]]
    if isinstance(payload.get("stop"), (str, list)):
        stop = payload["stop"]
        body.pop("stop", None)
        body["stop_sequences"] = [stop] if isinstance(stop, str) else stop
    return body


def _anthropic_content_to_openai(role: str, content: Any) -> list[dict]:
    """One Anthropic message can fan out into several OpenAI messages."""
    if content is None or isinstance(content, str):
        return [{"role": role, "content": content or ""}]

    parts: list[dict] = []
    tool_calls: list[dict] = []
    tool_results: list[dict] = []
    for block in content:
        kind = block.get("type")
        if kind == "text":
            parts.append({"type": "text", "text": block.get("text", "")})
        elif kind == "image":
            source = block.get("source") or {}
            if source.get("type") == "base64":
                url = f"data:{source.get('media_type')};base64,{source.get('data')}"
            else:
                url = source.get("url", "")
            parts.append({"type": "image_url", "image_url": {"url": url}})
        elif kind == "tool_use":
            tool_calls.append({
                "id": block.get("id"),
                "type": "function",
                "function": {
                    "name": block.get("name"),
                    "arguments": json.dumps(block.get("input") or {}),
                },
            })
        elif kind == "tool_result":
            tool_results.append({
                "role": "tool",
                "tool_call_id": block.get("tool_use_id"),
                "content": text_of(block.get("content")),
            })
        # thinking / redacted_thinking blocks have no OpenAI equivalent

    out: list[dict] = list(tool_results)
    if parts or tool_calls:
        only_text = all(p["type"] == "text" for p in parts)
        message: dict[str, Any] = {
            "role": role,
            "content": "".join(p["text"] for p in parts) if only_text else parts,
        }
        if tool_calls:
            message["tool_calls"] = tool_calls
        out.append(message)
    return out


def to_openai(payload: dict) -> dict:
    """Anthropic messages request -> OpenAI chat-completions request."""
    body = {k: v for k, v in payload.items() if k not in _ANTHROPIC_ONLY_KEYS}

    messages: list[dict] = []
    system = payload.get("system")
    if system:
        messages.append({"role": "system", "content": text_of(system)})
    for msg in payload.get("messages", []):
        messages.extend(_anthropic_content_to_openai(msg.get("role"), msg.get("content")))
    body["messages"] = messages

    if payload.get("tools"):
        body["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("input_schema") or {"type": "object", "properties": {}},
                },
            }
            if "function" not in t else t
            for t in payload["tools"]
        ]
    if "stop_sequences" in body:
        body["stop"] = body.pop("stop_sequences")
    return body


def adapt_request(payload: dict, source: Protocol, target: Protocol) -> dict:
    if source == target:
        return payload
    return to_anthropic(payload) if target == ANTHROPIC else to_openai(payload)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

def anthropic_response_to_openai(response: dict) -> dict:
    text_parts = []
    tool_calls = []
    for block in response.get("content") or []:
        if block.get("type") == "text":
            text_parts.append(block.get("text", ""))
        elif block.get("type") == "tool_use":
            tool_calls.append({
                "id": block.get("id"),
                "type": "function",
                "function": {
                    "name": block.get("name"),
                    "arguments": json.dumps(block.get("input") or {}),
                },
            })

    message: dict[str, Any] = {"role": "assistant", "content": "".join(text_parts)}
    if tool_calls:
        message["tool_calls"] = tool_calls

    usage = response.get("usage") or {}
    prompt_tokens = usage.get("input_tokens", 0)
    completion_tokens = usage.get("output_tokens", 0)
    return {
        "id": response.get("id") or f"chatcmpl-{uuid.uuid4().hex}",
        "object": "chat.completion",
        "model": response.get("model"),
        "choices": [{
            "index": 0,
            "message": message,
            "finish_reason": _STOP_TO_OPENAI.get(response.get("stop_reason"), "stop"),
        }],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


def openai_response_to_anthropic(response: dict) -> dict:
    choice = (response.get("choices") or [{}])[0]
    message = choice.get("message") or {}

    content: list[dict] = []
    text = text_of(message.get("content"))
    if text:
        content.append({"type": "text", "text": text})
    for call in message.get("tool_calls") or []:
        fn = call.get("function", {})
        arguments = fn.get("arguments") or "{}"
        content.append({
            "type": "tool_use",
            "id": call.get("id"),
            "name": fn.get("name"),
            "input": json.loads(arguments) if isinstance(arguments, str) else arguments,
        })

    usage = response.get("usage") or {}
    return {
        "id": response.get("id") or f"msg_{uuid.uuid4().hex}",
        "type": "message",
        "role": "assistant",
        "model": response.get("model"),
        "content": content,
        "stop_reason": _FINISH_TO_ANTHROPIC.get(choice.get("finish_reason"), "end_turn"),
        "stop_sequence": None,
        "usage": {
            "input_tokens": usage.get("prompt_tokens", 0),
            "output_tokens": usage.get("completion_tokens", 0),
        },
    }


def adapt_response(response: dict, source: Protocol, target: Protocol) -> dict:
    if source == target:
        return response
    if target == OPENAI:
        return anthropic_response_to_openai(response)
    return openai_response_to_anthropic(response)


def extract_usage(response: dict, protocol: Protocol) -> TokenUsage:
    """Pull token counts out of a response body in its own protocol."""
    usage = response.get("usage") or {}
    if protocol == ANTHROPIC:
        return TokenUsage(
            input_tokens=usage.get("input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
            cache_read_tokens=usage.get("cache_read_input_tokens"),
            cache_write_tokens=usage.get("cache_creation_input_tokens"),
        )

    completion_details = usage.get("completion_tokens_details") or {}
    prompt_details = usage.get("prompt_tokens_details") or {}
    return TokenUsage(
        input_tokens=usage.get("prompt_tokens") or 0,
        output_tokens=usage.get("completion_tokens") or 0,
        thinking_tokens=completion_details.get("reasoning_tokens"),
        cache_read_tokens=prompt_details.get("cached_tokens"),
    )


def response_text(response: dict, protocol: Protocol) -> str:
    if protocol == ANTHROPIC:
        return text_of(response.get("content"))
    choice = (response.get("choices") or [{}])[0]
    return text_of((choice.get("message") or {}).get("content"))
