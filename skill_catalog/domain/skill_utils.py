import json
import re
from typing import Any, List

DEFAULT_CATEGORY = "other"

# ASCII and full-width separators seen in exported datasets
_DELIMITERS = re.compile(r"[,，;；|、\n]")
_QUOTES = "\"'`"


def _clean(items: List[Any]) -> List[str]:
    result = []
    for item in items:
        if item is None or isinstance(item, (dict, list)):
            continue
        text = str(item).strip().strip(_QUOTES).strip()
        if text:
            result.append(text)
    return result


def parse_array_value(value: Any) -> List[str]:
    """
    Turn a raw list-ish column value into a list of trimmed, non-empty strings.

    Accepts real lists/tuples, JSON arrays ('["a", "b"]'), Python-style
    bracketed lists ("['a', 'b']") and delimited strings ("a, b; c").
    Anything else yields an empty list.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return _clean(list(value))
    if isinstance(value, bytes):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return []
    if not isinstance(value, str):
        return []

    text = value.strip()
    if not text:
        return []

    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return _clean(parsed)
        # Not valid JSON (single quotes, trailing commas): drop the brackets
        # and fall through to delimiter splitting.
        text = text.strip("[]")

    return _clean(_DELIMITERS.split(text))


def pick_category(value: Any) -> str:
    """
    Pick a single category from a raw ``categories`` value.

    The first parsed entry wins; rows without any usable entry are
    counted under ``DEFAULT_CATEGORY``.
    """
    categories = parse_array_value(value)
    if categories:
        return categories[0]
    return DEFAULT_CATEGORY
