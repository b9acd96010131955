"""
Static binding table between option fields, environment variables and
their parsers. Every recognized option is declared here explicitly.
"""

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, Tuple

_TRUE_VALUES = ("true", "1", "t", "y", "yes", "on")
_FALSE_VALUES = ("false", "0", "f", "n", "no", "off")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_str(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    return str(value)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    val_lower = str(value).strip().lower()
    if val_lower in _TRUE_VALUES:
        return True
    if val_lower in _FALSE_VALUES:
        return False
    raise ValueError(f"{value!r} could not be reliably cast to bool")


def parse_duration(value: Any) -> timedelta:
    """
    Accepts a timedelta, a number of seconds, or a duration string such as
    "1h30m", "500ms" or "-1.5h".
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not a duration")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    if text in ("", "0"):
        return timedelta(0)
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * seconds)


def parse_str_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    raise ValueError(f"expected a list of strings, got {type(value).__name__}")


@dataclass(frozen=True)
class OptionDescriptor:
    field: str
    env: str
    default: Any
    parse: Callable[[Any], Any]


def _option(field: str, default: Any, parse: Callable[[Any], Any] = parse_str) -> OptionDescriptor:
    return OptionDescriptor(field=field, env=field.upper(), default=default, parse=parse)


OPTION_SCHEMA: Tuple[OptionDescriptor, ...] = (
    _option("debug", False, parse_bool),
    _option("log_level", "debug"),
    _option("shared_secret", ""),
    _option("services", "all"),
    _option("address", ":443"),
    _option("insecure_server", False, parse_bool),
    _option("certificate", ""),
    _option("certificate_key", ""),
    _option("certificate_file", ""),
    _option("certificate_key_file", ""),
    _option("http_redirect_addr", ""),
    _option("timeout_read", timedelta(seconds=30), parse_duration),
    _option("timeout_write", timedelta(0), parse_duration),
    _option("timeout_read_header", timedelta(seconds=10), parse_duration),
    _option("timeout_idle", timedelta(minutes=5), parse_duration),
    _option("policy_file", ""),
    _option("authenticate_service_url", ""),
    _option("cookie_name", "_pomerium"),
    _option("cookie_secret", ""),
    _option("cookie_domain", ""),
    _option("cookie_secure", True, parse_bool),
    _option("cookie_http_only", True, parse_bool),
    _option("cookie_expire", timedelta(hours=14), parse_duration),
    _option("cookie_refresh", timedelta(minutes=30), parse_duration),
    _option("idp_client_id", ""),
    _option("idp_client_secret", ""),
    _option("idp_provider", ""),
    _option("idp_provider_url", ""),
    _option("idp_scopes", (), parse_str_list),
    _option("idp_service_account", ""),
    _option("administrators", (), parse_str_list),
    _option("authorize_service_url", ""),
    _option("override_certificate_name", ""),
    _option("certificate_authority", ""),
    _option("certificate_authority_file", ""),
    _option("signing_key", ""),
    _option("refresh_cooldown", timedelta(minutes=5), parse_duration),
    _option("default_upstream_timeout", timedelta(seconds=30), parse_duration),
    _option("metrics_address", ""),
    _option("tracing_provider", ""),
    _option("tracing_debug", False, parse_bool),
    _option("tracing_jaeger_collector_endpoint", ""),
    _option("tracing_jaeger_agent_endpoint", ""),
    _option("grpc_address", ":443"),
    _option("grpc_insecure", False, parse_bool),
    _option("grpc_client_timeout", timedelta(seconds=10), parse_duration),
    _option("grpc_client_dns_roundrobin", True, parse_bool),
    _option("forward_auth_url", ""),
)

# Bound outside the generic schema: their source form (base64 policy list,
# structured or delimited header string) differs from the validated form.
STATIC_BINDINGS: Tuple[OptionDescriptor, ...] = (
    OptionDescriptor(field="policy_env", env="POLICY", default="", parse=parse_str),
    OptionDescriptor(field="headers_env", env="HEADERS", default="", parse=parse_str),
)


def all_descriptors() -> Tuple[OptionDescriptor, ...]:
    return OPTION_SCHEMA + STATIC_BINDINGS


def env_bindings() -> Dict[str, str]:
    """Returns the settings key -> environment variable name table."""
    return {descriptor.field: descriptor.env for descriptor in all_descriptors()}
