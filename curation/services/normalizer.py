"""Payload normalization applied when a draft becomes a candidate.

Normalization only reshapes data: keys become snake_case, strings are
trimmed, and a few per-kind cosmetic fixes are applied. Whether the content
is acceptable is decided later by the validation gates.
"""

import json
import re
from typing import Any

from curation.core.enums import ContentKind

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_TERMINAL_PUNCTUATION = re.compile(r"[.!?。？！]$")


def to_snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).replace("-", "_").lower()


def normalize_value(value: Any) -> Any:
    """Recursively trim strings and snake_case dictionary keys."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return {to_snake_case(str(k)): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    return value


def capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


def parse_list(value: Any) -> Any:
    """Accept JSON-encoded arrays as well as real lists."""
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return value
        if isinstance(parsed, list):
            return parsed
    return value


def normalize_payload(kind: ContentKind, payload: dict) -> dict:
    """Return a normalized copy of ``payload``; the input is left untouched."""
    data = normalize_value(dict(payload))

    if isinstance(data.get("language"), str):
        data["language"] = data["language"].lower()
    if isinstance(data.get("level"), str):
        data["level"] = data["level"].upper()

    match kind:
        case ContentKind.MEANING:
            if isinstance(data.get("definition"), str):
                data["definition"] = capitalize_first(data["definition"])
            if "tags" in data:
                data["tags"] = parse_list(data["tags"])
        case ContentKind.UTTERANCE:
            text = data.get("text")
            if isinstance(text, str) and text:
                text = capitalize_first(text)
                if not _TERMINAL_PUNCTUATION.search(text):
                    text += "."
                data["text"] = text
            if isinstance(data.get("translation"), str):
                data["translation"] = capitalize_first(data["translation"])
        case ContentKind.RULE:
            if "examples" in data:
                data["examples"] = parse_list(data["examples"])
        case ContentKind.EXERCISE:
            for field in ("options", "languages"):
                if field in data:
                    data[field] = parse_list(data[field])

    return data
