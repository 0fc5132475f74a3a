"""Response parsing utilities for LLM output.

Extracts fenced blocks and JSON objects from raw LLM responses.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional


def extract_code_blocks(text: str, language: Optional[str] = None) -> list[str]:
    """Extract fenced code blocks from LLM output.

    Args:
        text: Raw LLM response.
        language: If specified, only return blocks with this language tag.

    Returns:
        List of code block contents (without fences).
    """
    if language:
        pattern = rf"```{re.escape(language)}\s*\n(.*?)```"
    else:
        pattern = r"```(?:\w+)?\s*\n(.*?)```"

    matches = re.findall(pattern, text, re.DOTALL)
    return [m.strip() for m in matches]


def extract_json_block(text: str) -> Optional[dict[str, Any]]:
    """Extract and parse the first JSON object from LLM output.

    Tries a ```json fence, then the whole text, then the outermost
    brace-delimited span. Returns None when nothing parses to an object.
    """
    candidates = extract_code_blocks(text, "json") + extract_code_blocks(text)
    candidates.append(text.strip())

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
