import json
from enum import Enum
from typing import Any, Dict, Mapping

from .errors import HeaderParseError
from .schemas import DISABLE_HEADER_KEY


class HeaderFormat(str, Enum):
    STRUCTURED = "structured"
    DELIMITED = "delimited"


def parse_structured_headers(raw: str) -> Dict[str, str]:
    """
    Parses a JSON object of header names to values. Anything that is not a
    JSON object yields an empty mapping.
    """
    try:
        decoded = json.loads(raw)
    except ValueError:
        return {}
    if not isinstance(decoded, dict):
        return {}
    return {str(key): str(value) for key, value in decoded.items()}


def parse_delimited_headers(raw: str) -> Dict[str, str]:
    """Parses "Key1:Value1,Key2:Value2", splitting each entry on its first colon."""
    headers: Dict[str, str] = {}
    for entry in raw.split(","):
        fields = entry.split(":", 1)
        if len(fields) != 2:
            raise HeaderParseError(
                f"config: failed to decode headers from '{raw}'", field="headers_env", value=raw
            )
        headers[fields[0]] = fields[1]
    return headers


def detect_header_format(raw: str) -> HeaderFormat:
    # A valid but empty JSON object is reported as delimited, see DESIGN.md.
    if parse_structured_headers(raw):
        return HeaderFormat.STRUCTURED
    return HeaderFormat.DELIMITED


_PARSERS = {
    HeaderFormat.STRUCTURED: parse_structured_headers,
    HeaderFormat.DELIMITED: parse_delimited_headers,
}


def parse_header_override(raw: str) -> Dict[str, str]:
    return _PARSERS[detect_header_format(raw)](raw)


def coerce_header_mapping(value: Any) -> Dict[str, str]:
    """Adopts a structured `headers` mapping taken from the merged settings."""
    if not isinstance(value, Mapping):
        raise HeaderParseError(
            f"config: header {value!r} failed to parse: expected a mapping", field="headers", value=value
        )
    return {str(key): "" if item is None else str(item) for key, item in value.items()}


def apply_disable_sentinel(headers: Mapping[str, str]) -> Dict[str, str]:
    if DISABLE_HEADER_KEY in headers:
        return {}
    return dict(headers)
