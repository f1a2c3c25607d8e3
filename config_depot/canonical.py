import json
from typing import Any

INDENT = 2


def canonicalize(value: Any) -> Any:
    """Recursively rebuild every JSON object with its keys in sorted order."""
    if isinstance(value, dict):
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def pretty(value: Any) -> str:
    return json.dumps(canonicalize(value), indent=INDENT, ensure_ascii=False)


def canonical_text(text: str) -> str:
    """Re-emit JSON text in canonical form. Canonical input comes back unchanged."""
    return pretty(json.loads(text))
