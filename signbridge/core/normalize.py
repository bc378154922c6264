"""
Field value normalization.

Pipefy hands the same checkbox back in several encodings depending on the API
surface and the field type: a real boolean, a list, a JSON-encoded list
(``'["Sim"]'``), a legacy brace list (``'{Sim}'``) or a plain string.
``normalize_field_value`` folds these into ``None | bool | int | float | str |
list[str]``, trying the shapes in this order:

1. ``None``
2. ``bool``
3. ``int`` / ``float``
4. list / tuple / set -> list of strings
5. dict -> its ``value``/``label``/``name`` entry, else its values as a list
6. string holding JSON (list, object, string or boolean)
7. legacy brace list ``{a,b}`` -> list of strings
8. anything else -> the stripped string
"""

import json
from typing import Any

YES_TOKENS = frozenset({"true", "yes", "sim", "s", "y", "on", "checked"})

_DICT_VALUE_KEYS = ("value", "label", "name")


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def _as_list(values) -> list[str]:
    out = []
    for item in values:
        if item is None:
            continue
        if isinstance(item, (list, tuple, set)):
            out.extend(_as_list(item))
        else:
            out.append(_as_text(item))
    return out


def _parse_brace_list(text: str) -> list[str]:
    inner = text[1:-1].strip()
    if not inner:
        return []
    return [part.strip().strip('"').strip("'") for part in inner.split(",") if part.strip()]


def normalize_field_value(raw: Any) -> Any:
    """Fold any known encoding of a field value into a plain Python value."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return raw
    if isinstance(raw, (list, tuple, set)):
        return _as_list(raw)
    if isinstance(raw, dict):
        for key in _DICT_VALUE_KEYS:
            if key in raw:
                return normalize_field_value(raw[key])
        return _as_list(raw.values())

    text = str(raw).strip()
    if not text:
        return ""

    if text[0] in '["{':
        try:
            decoded = json.loads(text)
        except ValueError:
            decoded = text
        if decoded is not text:
            if isinstance(decoded, str):
                return decoded.strip()
            return normalize_field_value(decoded)

    if text.startswith("{") and text.endswith("}"):
        return _parse_brace_list(text)

    return text


def is_yes_token(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in YES_TOKENS


def is_affirmative(raw: Any) -> bool:
    """True for ``True``, a yes-token string, or a collection holding a yes-token."""
    value = normalize_field_value(raw)
    if value is True:
        return True
    if isinstance(value, list):
        return any(is_yes_token(item) for item in value)
    if isinstance(value, str):
        return is_yes_token(value)
    return False


def is_filled(raw: Any) -> bool:
    """True when a field holds anything besides nothing/whitespace/empty list."""
    value = normalize_field_value(raw)
    if value is None or value is False:
        return False
    if isinstance(value, (str, list)):
        return len(value) > 0
    return True
