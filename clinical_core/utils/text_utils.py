"""Text processing utilities for provider output parsing."""

import json
import re
from typing import Any, Dict

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def _load_object(text: str) -> Dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def parse_structured_reply(text: str) -> Dict[str, Any]:
    """Parse a provider reply into a dict, tolerating common formatting noise.

    Providers asked for JSON often wrap it in a markdown fence or surround it
    with prose. Attempts, in order:
    1. The whole reply as JSON
    2. The first ```json fenced block
    3. The span from the first "{" to the last "}"

    If nothing parses, the raw text is kept rather than discarded.

    Args:
        text: Raw provider reply

    Returns:
        Parsed object, or {"raw_response": text, "parsing_error": True}

    Examples:
        >>> parse_structured_reply('{"a": 1}')
        {'a': 1}
        >>> parse_structured_reply('Here you go:\\n```json\\n{"a": 1}\\n```')
        {'a': 1}
        >>> parse_structured_reply('no json here')
        {'raw_response': 'no json here', 'parsing_error': True}
    """
    stripped = text.strip()

    parsed = _load_object(stripped)
    if parsed is not None:
        return parsed

    match = _FENCED_JSON.search(stripped)
    if match:
        parsed = _load_object(match.group(1))
        if parsed is not None:
            return parsed

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        parsed = _load_object(stripped[start:end + 1])
        if parsed is not None:
            return parsed

    return {"raw_response": text, "parsing_error": True}


def is_parsing_error(parsed: Dict[str, Any]) -> bool:
    return parsed.get("parsing_error") is True and "raw_response" in parsed
