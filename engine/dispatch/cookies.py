import json
from typing import Any, Dict, Mapping
from urllib.parse import quote_plus

SCALAR_TYPES = (str, int, float, bool)


def serialize_cookie_value(value: Any) -> str:
    """
    Scalars pass through as text. Everything else becomes JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, SCALAR_TYPES):
        return str(value)
    return json.dumps(value, separators=(",", ":"), default=str)


def build_cookie_header(cookies: Mapping[str, Any]) -> str:
    """
    Build a single Cookie header line: ``name=urlencoded(value); ...``.
    Insertion order is kept.
    """
    return "; ".join(
        f"{name}={quote_plus(serialize_cookie_value(value))}"
        for name, value in cookies.items()
    )


def build_form_body(payload: Mapping[str, Any]) -> Dict[str, str]:
    """
    Flatten a payload into form fields, one text value per name.

    Lists and mappings travel as JSON so the receiver gets them back whole.
    """
    return {str(name): serialize_cookie_value(value) for name, value in payload.items()}
