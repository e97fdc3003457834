"""Domain normalization: pure functions, zero external dependencies.

Only stdlib imports allowed.
"""

import unicodedata


def normalize_lot_label(value):
    """Trim and collapse whitespace of a lot label. Returns None when blank."""
    if value is None:
        return None
    result = " ".join(str(value).split())
    return result or None


def lot_label_key(value):
    """Case- and accent-insensitive key used for the lot catalog upsert."""
    label = normalize_lot_label(value)
    if label is None:
        return None
    decomposed = unicodedata.normalize("NFKD", label)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return stripped.casefold()


def coerce_identifier(value):
    """Return a positive int if *value* looks like an identifier, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit() and int(text) > 0:
            return int(text)
    return None
