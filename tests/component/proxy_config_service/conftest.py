from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Callable, Dict

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from prometheus_client import CollectorRegistry

from services.proxy_config_service.src.metrics import ConfigMetrics
from _helpers import SHARED_SECRET


def _self_signed(common_name: str):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return cert_pem, key_pem


@pytest.fixture(scope="session")
def tls_material():
    """Self-signed certificate and key, PEM encoded."""
    return _self_signed("localhost")


@pytest.fixture(scope="session")
def other_tls_material():
    return _self_signed("other.localhost")


@pytest.fixture
def metrics():
    """Metrics bound to a private registry so tests don't share gauges."""
    return ConfigMetrics(CollectorRegistry())


@pytest.fixture
def base_config() -> Dict[str, Any]:
    return {
        "services": "all",
        "shared_secret": SHARED_SECRET,
        "insecure_server": True,
        "cookie_name": "_proxy",
        "policy": [
            {"from": "https://httpbin.example.com", "to": "http://httpbin.internal"},
        ],
    }


@pytest.fixture
def write_config(tmp_path) -> Callable[[Dict[str, Any]], Path]:
    """Writes a YAML config file and returns its path."""
    config_path = tmp_path / "config.yaml"

    def _write(content: Dict[str, Any]) -> Path:
        with open(config_path, "w") as f:
            yaml.dump(content, f)
        return config_path

    return _write
