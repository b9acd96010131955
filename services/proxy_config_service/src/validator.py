import base64
import binascii
import secrets
from typing import Any, Dict, List, Optional, Sequence, Tuple

import jsonschema
import yaml
from pydantic import AnyUrl, ValidationError

from shared.common_utils import logger
from .certificates import Certificate, certificate_from_base64, certificate_from_file
from .errors import (
    DeprecatedSettingUsed,
    InvalidURL,
    MissingSharedKey,
    NoCertificateSupplied,
    PolicyDecodeError,
    PolicyValidationError,
)
from .headers import apply_disable_sentinel, coerce_header_mapping, parse_header_override
from .policy import Policy
from .schemas import (
    DEFAULT_ALTERNATIVE_ADDR,
    DEFAULT_GRPC_ADDR,
    DEFAULT_HEADERS,
    Options,
    RawOptions,
    ServiceMode,
    Snapshot,
)
from .urlutil import parse_and_validate_url

POLICY_LIST_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {"type": "object"},
}

URL_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("authenticate_service_url", "authenticate_url"),
    ("authorize_service_url", "authorize_url"),
    ("forward_auth_url", "forward_auth_url"),
)


def generate_shared_key() -> str:
    """Returns a random 256 bit key, base64 encoded."""
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def derive_mode_defaults(options: Options, mode: ServiceMode) -> Options:
    """
    Returns a copy of `options` with the values implied by the service mode
    filled in. `options` itself is left untouched.
    """
    update: Dict[str, Any] = {}
    if mode.is_all:
        # mutual auth between services on the same host can be generated at runtime
        if not options.shared_secret:
            update["shared_secret"] = generate_shared_key()
        # all-in-one mode talks gRPC over the local socket
        update["grpc_insecure"] = True
        if options.grpc_address == DEFAULT_GRPC_ADDR:
            update["grpc_address"] = DEFAULT_ALTERNATIVE_ADDR
        if not options.authorize_service_url:
            update["authorize_service_url"] = "https://localhost" + DEFAULT_ALTERNATIVE_ADDR
    derived = options.model_copy(update=update)

    if mode.is_authorize and derived.address == derived.grpc_address:
        # only the HTTP health check api is served on this listener
        derived = derived.model_copy(update={"address": DEFAULT_ALTERNATIVE_ADDR})
        logger.warning(
            f"config: default http handler changed: address={derived.address} "
            f"grpc_address={derived.grpc_address}"
        )
    return derived


def validate_urls(options: Options) -> Dict[str, Optional[AnyUrl]]:
    parsed: Dict[str, Optional[AnyUrl]] = {}
    for raw_field, snapshot_field in URL_FIELDS:
        raw_value = getattr(options, raw_field)
        if not raw_value:
            parsed[snapshot_field] = None
            continue
        try:
            parsed[snapshot_field] = parse_and_validate_url(raw_value)
        except ValueError as e:
            raise InvalidURL(
                f"config: bad {raw_field.replace('_', '-')} {raw_value} : {e}",
                field=raw_field,
                value=raw_value,
            )
    return parsed


def _decode_policy_env(policy_env: str) -> Any:
    try:
        policy_bytes = base64.b64decode(policy_env, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PolicyDecodeError(f"could not decode POLICY env var: {e}", field="policy_env")
    try:
        return yaml.safe_load(policy_bytes)
    except yaml.YAMLError as e:
        raise PolicyDecodeError(f"could not unmarshal policy yaml: {e}", field="policy_env")


def _build_policies(documents: Any, field: str) -> List[Policy]:
    if documents is None:
        return []
    try:
        jsonschema.validate(instance=documents, schema=POLICY_LIST_SCHEMA)
    except jsonschema.exceptions.ValidationError as e:
        raise PolicyDecodeError(f"could not unmarshal policy: {e.message}", field=field, value=documents)

    policies = []
    for index, document in enumerate(documents):
        try:
            policies.append(Policy.model_validate(document))
        except ValidationError as e:
            raise PolicyDecodeError(
                f"could not unmarshal policy #{index + 1}: {e}", field=field, value=document
            )
    return policies


def resolve_policies(raw: RawOptions, existing: Sequence[Policy] = ()) -> Tuple[Policy, ...]:
    """
    Resolves the policy list from the base64 POLICY override, falling back to
    the `policy` key of the merged settings. An empty result keeps `existing`.
    Every policy is validated in order.
    """
    if raw.options.policy_env:
        policies = _build_policies(_decode_policy_env(raw.options.policy_env), "policy_env")
    else:
        policies = _build_policies(raw.settings.get("policy"), "policy")

    resolved = tuple(policies) if policies else tuple(existing)
    for index, policy in enumerate(resolved):
        try:
            policy.validate_policy()
        except ValueError as e:
            raise PolicyValidationError(
                f"config: policy #{index + 1} ({policy.source}) is invalid: {e}",
                index=index,
                field="policy",
                value=policy.source,
            )
    return resolved


def resolve_headers(raw: RawOptions) -> Dict[str, str]:
    if raw.options.headers_env:
        headers = parse_header_override(raw.options.headers_env)
    elif raw.is_set("headers"):
        headers = coerce_header_mapping(raw.settings["headers"])
    else:
        headers = dict(DEFAULT_HEADERS)
    return apply_disable_sentinel(headers)


def resolve_certificate(options: Options) -> Optional[Certificate]:
    if options.insecure_server:
        logger.warning("config: insecure mode enabled")
        return None
    if options.certificate or options.certificate_key:
        return certificate_from_base64(options.certificate, options.certificate_key)
    if options.certificate_file or options.certificate_key_file:
        return certificate_from_file(options.certificate_file, options.certificate_key_file)
    raise NoCertificateSupplied("config: no certificates supplied nor was insecure mode set")


def validate(raw: RawOptions) -> Snapshot:
    """
    Turns loaded options into a validated snapshot. Raises a
    ConfigValidationError subclass describing the first problem found.
    """
    mode = ServiceMode.parse(raw.options.services)
    options = derive_mode_defaults(raw.options, mode)

    if not options.shared_secret:
        raise MissingSharedKey("config: shared-key cannot be empty", field="shared_secret")

    urls = validate_urls(options)

    policies = resolve_policies(raw)
    headers = resolve_headers(raw)
    tls_certificate = resolve_certificate(options)

    if options.policy_file:
        raise DeprecatedSettingUsed(
            "config: policy file setting is deprecated, use the POLICY env var or the "
            "policy key of the config file instead",
            field="policy_file",
            value=options.policy_file,
        )

    fields = {
        name: getattr(options, name)
        for name in Snapshot.model_fields
        if name in Options.model_fields
    }
    fields.update(urls)
    fields.update(
        services=mode,
        tls_certificate=tls_certificate,
        policies=policies,
        headers=headers,
    )
    return Snapshot(**fields)
