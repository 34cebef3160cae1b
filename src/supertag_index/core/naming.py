"""Name normalization and name-based data type guesses."""

import re

DATA_TYPE_TEXT = "text"
DATA_TYPE_DATE = "date"
DATA_TYPE_REFERENCE = "reference"
DATA_TYPE_URL = "url"
DATA_TYPE_NUMBER = "number"
DATA_TYPE_CHECKBOX = "checkbox"
DATA_TYPE_EMAIL = "email"
DATA_TYPE_OPTIONS = "options"

_NON_WORD = re.compile(r"[^\w\s-]")
_SEPARATORS = re.compile(r"[\s\-_]+")
_BOOL_PREFIX_CAMEL = re.compile(r"^(is|has)($|[A-Z\s_-])")
_BOOL_PREFIX_LOWER = re.compile(r"^(is|has)($|[\s_-])")


def normalize_name(name: str) -> str:
    """Lowercase and strip punctuation and separators: "Due Date" -> "duedate"."""
    lowered = name.lower()
    lowered = _NON_WORD.sub("", lowered)
    return _SEPARATORS.sub("", lowered)


def infer_data_type_from_name(field_name: str) -> str:
    """Guess a field's data type from its name alone."""
    name = field_name.lower()

    if "date" in name or "time" in name:
        return DATA_TYPE_DATE
    if "url" in name or "link" in name:
        return DATA_TYPE_URL
    # "phone number" is free text
    if "phone" in name:
        return DATA_TYPE_TEXT
    if "count" in name or "number" in name or "amount" in name:
        return DATA_TYPE_NUMBER
    if "status" in name or "type" in name or "category" in name:
        return DATA_TYPE_REFERENCE
    if _BOOL_PREFIX_CAMEL.match(field_name) or _BOOL_PREFIX_LOWER.match(name):
        return DATA_TYPE_CHECKBOX
    if "enabled" in name or "completed" in name:
        return DATA_TYPE_CHECKBOX

    return DATA_TYPE_TEXT
