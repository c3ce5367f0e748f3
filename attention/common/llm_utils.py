"""Shared utilities for parsing LLM responses."""

from __future__ import annotations

import re
from typing import Optional

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_JSON_FENCE = re.compile(r"```json\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_ANY_FENCE = re.compile(r"```\s*(.*?)```", re.DOTALL)


def extract_json_block(raw: Optional[str]) -> Optional[str]:
    """Locate the JSON object in a model response, handling known wrappers.

    Applied in order:
    1. Remove every ``<think>...</think>`` section, and anything before a
       stray closing ``</think>``
    2. If a code fence is present, keep only its body (```json fences win)
    3. Cut from the first "{" to the last "}" (the outermost span)

    Returns the candidate object text, or None when no ``{...}`` span is
    found. The result is not guaranteed to be valid JSON.
    """
    if not raw:
        return None

    text = _THINK_BLOCK.sub("", raw).strip()
    closing = text.lower().rfind("</think>")
    if closing >= 0:
        # opening tag omitted by the model
        text = text[closing + len("</think>"):].strip()

    fence = _JSON_FENCE.search(text) or _ANY_FENCE.search(text)
    if fence:
        text = fence.group(1).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    return text[start:end + 1]
