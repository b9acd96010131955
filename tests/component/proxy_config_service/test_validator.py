import yaml
import pytest

from services.proxy_config_service.src.errors import (
    CertificateError,
    DeprecatedSettingUsed,
    HeaderParseError,
    InvalidServiceMode,
    InvalidURL,
    MissingSharedKey,
    NoCertificateSupplied,
    PolicyDecodeError,
    PolicyValidationError,
)
from services.proxy_config_service.src.schemas import (
    DEFAULT_HEADERS,
    Options,
    ServiceMode,
)
from services.proxy_config_service.src.validator import derive_mode_defaults, validate
from _helpers import SHARED_SECRET, b64, make_raw

POLICIES = [
    {"from": "https://a.example.com", "to": "http://a.internal"},
    {"from": "https://b.example.com", "to": "not a url"},
    {"from": "https://c.example.com", "to": "http://c.internal"},
]


def test_all_mode_forces_insecure_grpc_on_alternative_address():
    """Test all-in-one mode moves gRPC to the local insecure listener."""
    snapshot = validate(make_raw(services="all", shared_secret=SHARED_SECRET, insecure_server=True))

    assert snapshot.services is ServiceMode.ALL
    assert snapshot.grpc_insecure is True
    assert snapshot.grpc_address == ":5443"
    assert snapshot.address == ":443"
    assert snapshot.authorize_url.host == "localhost"
    assert snapshot.authorize_url.port == 5443


def test_all_mode_keeps_explicit_grpc_address():
    """Test an explicit gRPC address survives all-in-one mode."""
    snapshot = validate(
        make_raw(services="all", shared_secret=SHARED_SECRET, insecure_server=True, grpc_address=":9000")
    )
    assert snapshot.grpc_address == ":9000"
    assert snapshot.grpc_insecure is True


def test_all_mode_generates_missing_shared_secret():
    """Test all-in-one mode generates a shared secret when none is set."""
    first = validate(make_raw(services="all", insecure_server=True))
    second = validate(make_raw(services="all", insecure_server=True))

    assert first.shared_secret
    assert first.shared_secret != second.shared_secret


def test_authenticate_mode_requires_shared_secret():
    """Test the authenticate service needs a shared secret."""
    with pytest.raises(MissingSharedKey):
        validate(make_raw(services="authenticate", insecure_server=True))


def test_authorize_mode_moves_colliding_http_address():
    """Test authorize moves its HTTP listener off the gRPC address."""
    snapshot = validate(
        make_raw(
            services="authorize",
            shared_secret=SHARED_SECRET,
            insecure_server=True,
            address=":443",
            grpc_address=":443",
        )
    )
    assert snapshot.address == ":5443"
    assert snapshot.grpc_address == ":443"
    assert snapshot.grpc_insecure is False


def test_mode_derivation_does_not_mutate_input():
    """Test mode defaults are derived into a new value."""
    options = Options(services="all")
    derived = derive_mode_defaults(options, ServiceMode.ALL)

    assert options.shared_secret == ""
    assert options.grpc_address == ":443"
    assert derived.grpc_address == ":5443"


@pytest.mark.parametrize("mode", ["Proxy", " AUTHORIZE ", "authenticate"])
def test_service_mode_is_case_insensitive(mode):
    """Test service mode parsing ignores case and whitespace."""
    snapshot = validate(make_raw(services=mode, shared_secret=SHARED_SECRET, insecure_server=True))
    assert snapshot.services.value == mode.strip().lower()


def test_unknown_service_mode_is_rejected():
    """Test an unknown service mode."""
    with pytest.raises(InvalidServiceMode) as exc_info:
        validate(make_raw(services="cache", shared_secret=SHARED_SECRET, insecure_server=True))
    assert exc_info.value.value == "cache"


def test_service_mode_taxonomy():
    """Test the service mode predicates."""
    assert ServiceMode.ALL.is_authorize and ServiceMode.ALL.is_proxy
    assert ServiceMode.AUTHORIZE.is_authorize
    assert not ServiceMode.PROXY.is_authorize
    assert not ServiceMode.AUTHENTICATE.is_proxy


def test_urls_are_parsed():
    """Test service URLs are parsed."""
    snapshot = validate(
        make_raw(
            services="proxy",
            shared_secret=SHARED_SECRET,
            insecure_server=True,
            authenticate_service_url="https://authenticate.example.com",
            forward_auth_url="https://fwd.example.com/verify",
        )
    )
    assert snapshot.authenticate_url.host == "authenticate.example.com"
    assert snapshot.forward_auth_url.path == "/verify"
    assert snapshot.authorize_url is None


@pytest.mark.parametrize("url", ["authenticate.example.com", "/relative/path", "https://"])
def test_bad_urls_are_rejected(url):
    """Test relative or hostless URLs are rejected."""
    with pytest.raises(InvalidURL) as exc_info:
        validate(
            make_raw(
                services="proxy",
                shared_secret=SHARED_SECRET,
                insecure_server=True,
                authenticate_service_url=url,
            )
        )
    assert exc_info.value.field == "authenticate_service_url"


def test_policies_from_settings():
    """Test policies read from the config file."""
    raw = make_raw(
        settings={"policy": [POLICIES[0], POLICIES[2]]},
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
    )
    snapshot = validate(raw)

    assert [p.source for p in snapshot.policies] == ["https://a.example.com", "https://c.example.com"]


def test_policy_env_overrides_settings():
    """Test the POLICY env var replaces file policies."""
    override = [{"from": "https://override.example.com", "to": "http://override.internal"}]
    raw = make_raw(
        settings={"policy": [POLICIES[0]]},
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
        policy_env=b64(yaml.dump(override)),
    )
    snapshot = validate(raw)

    assert len(snapshot.policies) == 1
    assert snapshot.policies[0].source == "https://override.example.com"


def test_invalid_policy_is_reported_by_position():
    """Test a bad policy is reported by its position."""
    raw = make_raw(
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
        policy_env=b64(yaml.dump(POLICIES)),
    )
    with pytest.raises(PolicyValidationError) as exc_info:
        validate(raw)

    assert exc_info.value.index == 1
    assert "#2" in str(exc_info.value)


def test_policy_env_that_is_not_base64_fails():
    """Test a POLICY value that is not base64."""
    raw = make_raw(services="all", shared_secret=SHARED_SECRET, insecure_server=True, policy_env="!!!")
    with pytest.raises(PolicyDecodeError):
        validate(raw)


def test_policy_env_with_wrong_shape_fails():
    """Test a POLICY value that is not a list."""
    raw = make_raw(
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
        policy_env=b64(yaml.dump({"from": "https://a.example.com"})),
    )
    with pytest.raises(PolicyDecodeError):
        validate(raw)


def test_policy_missing_destination_fails_to_decode():
    """Test a policy without a destination."""
    raw = make_raw(
        settings={"policy": [{"from": "https://a.example.com"}]},
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
    )
    with pytest.raises(PolicyDecodeError):
        validate(raw)


def test_public_policy_with_whitelist_is_invalid():
    """Test public access cannot be combined with allow lists."""
    policy = dict(POLICIES[0], allow_public_unauthenticated_access=True, allowed_users=["a@example.com"])
    raw = make_raw(
        settings={"policy": [policy]}, services="all", shared_secret=SHARED_SECRET, insecure_server=True
    )
    with pytest.raises(PolicyValidationError) as exc_info:
        validate(raw)
    assert exc_info.value.index == 0


def test_unknown_policy_keys_are_ignored():
    """Test route keys outside the policy model do not reject the config."""
    policy = dict(
        POLICIES[0],
        tls_skip_verify=True,
        preserve_host_header=True,
        set_request_headers={"X-Forwarded-Proto": "https"},
    )
    raw = make_raw(
        settings={"policy": [policy]}, services="all", shared_secret=SHARED_SECRET, insecure_server=True
    )
    snapshot = validate(raw)

    assert len(snapshot.policies) == 1
    assert snapshot.policies[0].destination == "http://a.internal"


def test_default_headers():
    """Test the default security headers."""
    snapshot = validate(make_raw(services="all", shared_secret=SHARED_SECRET, insecure_server=True))
    assert snapshot.headers == DEFAULT_HEADERS


def test_headers_from_settings():
    """Test headers read from the config file."""
    raw = make_raw(
        settings={"headers": {"X-Custom": "value"}},
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
    )
    assert validate(raw).headers == {"X-Custom": "value"}


def test_header_env_wins_over_settings():
    """Test the HEADERS env var replaces file headers."""
    raw = make_raw(
        settings={"headers": {"X-Custom": "value"}},
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
        headers_env="X-Env:1",
    )
    assert validate(raw).headers == {"X-Env": "1"}


def test_disable_sentinel_clears_headers():
    """Test the disable key removes every header."""
    raw = make_raw(
        settings={"headers": {"disable": "true", "X-A": "a", "X-B": "b"}},
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
    )
    assert validate(raw).headers == {}


def test_snapshot_headers_are_read_only():
    """Test the header mapping of a snapshot cannot be changed in place."""
    raw = make_raw(
        settings={"headers": {"X-A": "a"}},
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
    )
    snapshot = validate(raw)

    with pytest.raises(TypeError):
        snapshot.headers["X-B"] = "b"
    with pytest.raises(TypeError):
        del snapshot.headers["X-A"]
    assert snapshot.model_dump(mode="json")["headers"] == {"X-A": "a"}


def test_malformed_header_env_fails():
    """Test a malformed HEADERS value."""
    raw = make_raw(services="all", shared_secret=SHARED_SECRET, insecure_server=True, headers_env="X-A")
    with pytest.raises(HeaderParseError):
        validate(raw)


def test_missing_certificate_is_rejected():
    """Test a secure server without a certificate."""
    with pytest.raises(NoCertificateSupplied):
        validate(make_raw(services="all", shared_secret=SHARED_SECRET))


def test_insecure_mode_ignores_certificate_fields():
    """Test insecure mode skips certificate loading."""
    raw = make_raw(
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
        certificate="not base64",
        certificate_key="not base64 either",
    )
    snapshot = validate(raw)
    assert snapshot.tls_certificate is None


def test_inline_certificate(tls_material):
    """Test base64 certificate material."""
    cert_pem, key_pem = tls_material
    snapshot = validate(
        make_raw(
            services="all",
            shared_secret=SHARED_SECRET,
            certificate=b64(cert_pem),
            certificate_key=b64(key_pem),
        )
    )
    assert snapshot.tls_certificate.subject == "CN=localhost"
    assert snapshot.tls_certificate.cert_pem == cert_pem.decode()
    assert "key_pem" not in repr(snapshot.tls_certificate)


def test_inline_certificate_wins_over_files(tls_material, other_tls_material, tmp_path):
    """Test inline certificate material takes precedence over files."""
    cert_pem, key_pem = tls_material
    other_cert, other_key = other_tls_material
    (tmp_path / "cert.pem").write_bytes(other_cert)
    (tmp_path / "key.pem").write_bytes(other_key)

    snapshot = validate(
        make_raw(
            services="all",
            shared_secret=SHARED_SECRET,
            certificate=b64(cert_pem),
            certificate_key=b64(key_pem),
            certificate_file=str(tmp_path / "cert.pem"),
            certificate_key_file=str(tmp_path / "key.pem"),
        )
    )
    assert snapshot.tls_certificate.subject == "CN=localhost"


def test_certificate_files(other_tls_material, tmp_path):
    """Test certificate material read from files."""
    cert_pem, key_pem = other_tls_material
    (tmp_path / "cert.pem").write_bytes(cert_pem)
    (tmp_path / "key.pem").write_bytes(key_pem)

    snapshot = validate(
        make_raw(
            services="all",
            shared_secret=SHARED_SECRET,
            certificate_file=str(tmp_path / "cert.pem"),
            certificate_key_file=str(tmp_path / "key.pem"),
        )
    )
    assert snapshot.tls_certificate.subject == "CN=other.localhost"


def test_missing_certificate_file_is_rejected(tmp_path):
    """Test missing certificate files."""
    with pytest.raises(CertificateError):
        validate(
            make_raw(
                services="all",
                shared_secret=SHARED_SECRET,
                certificate_file=str(tmp_path / "cert.pem"),
                certificate_key_file=str(tmp_path / "key.pem"),
            )
        )


def test_mismatched_key_is_rejected(tls_material, other_tls_material):
    """Test a key that does not belong to the certificate."""
    cert_pem, _ = tls_material
    _, other_key = other_tls_material
    with pytest.raises(CertificateError):
        validate(
            make_raw(
                services="all",
                shared_secret=SHARED_SECRET,
                certificate=b64(cert_pem),
                certificate_key=b64(other_key),
            )
        )


def test_deprecated_policy_file_is_rejected():
    """Test the deprecated policy file setting."""
    raw = make_raw(
        services="all",
        shared_secret=SHARED_SECRET,
        insecure_server=True,
        policy_file="/etc/proxy/policy.yaml",
    )
    with pytest.raises(DeprecatedSettingUsed) as exc_info:
        validate(raw)
    assert exc_info.value.value == "/etc/proxy/policy.yaml"


def test_snapshot_is_immutable():
    """Test snapshots are frozen and hide secrets from repr."""
    snapshot = validate(make_raw(services="all", shared_secret=SHARED_SECRET, insecure_server=True))
    with pytest.raises(Exception):
        snapshot.shared_secret = "changed"
    assert SHARED_SECRET not in repr(snapshot)
