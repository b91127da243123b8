"""Utilities for reading OpenAI Responses API payloads."""

from __future__ import annotations

import json
import re
from typing import Any, List


_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_output_text(response: object) -> str:
    """Best-effort extraction of text from an OpenAI Responses result."""
    output_text = getattr(response, "output_text", None)
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    output = getattr(response, "output", None)
    if not isinstance(output, list):
        return ""

    collected: List[str] = []
    for item in output:
        content = getattr(item, "content", None)
        parts = content if isinstance(content, list) else [content]
        for part in parts:
            if getattr(part, "type", None) != "output_text":
                continue
            text = getattr(part, "text", None)
            if isinstance(text, str) and text:
                collected.append(text)
    return "\n".join(collected)


def strip_code_fences(response_text: str) -> str:
    fenced = response_text.strip()
    if fenced.startswith("```") and fenced.endswith("```"):
        return fenced.split("\n", 1)[-1].rsplit("\n", 1)[0].strip()
    return fenced


def parse_json_reply(response_text: str) -> Any:
    """Decode a model reply that should be JSON, tolerating fences and chatter.

    Raises ``ValueError`` when no JSON document can be recovered.
    """
    cleaned = strip_code_fences(response_text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for pattern in (_JSON_ARRAY_RE, _JSON_OBJECT_RE):
        match = pattern.search(cleaned)
        if match is None:
            continue
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            continue
    raise ValueError("Model reply does not contain valid JSON.")
