import base64
import binascii
import hashlib
from datetime import datetime
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from pydantic import BaseModel, ConfigDict, Field

from .errors import CertificateError


class Certificate(BaseModel):
    """Resolved x509 certificate and private key material."""
    model_config = ConfigDict(frozen=True)

    cert_pem: str = Field(..., description="PEM encoded certificate chain")
    key_pem: str = Field(..., repr=False, description="PEM encoded private key")
    fingerprint: str = Field(..., description="SHA-256 of the leaf certificate (DER)")
    subject: str
    not_valid_after: datetime


def _public_bytes(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def certificate_from_pem(cert_pem: bytes, key_pem: bytes) -> Certificate:
    try:
        cert = x509.load_pem_x509_certificate(cert_pem)
    except ValueError as e:
        raise CertificateError(f"config: failed to parse certificate: {e}", field="certificate")
    try:
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError) as e:
        raise CertificateError(f"config: failed to parse certificate key: {e}", field="certificate_key")

    if _public_bytes(cert.public_key()) != _public_bytes(key.public_key()):
        raise CertificateError(
            "config: private key does not match public key", field="certificate_key"
        )

    return Certificate(
        cert_pem=cert_pem.decode("ascii"),
        key_pem=key_pem.decode("ascii"),
        fingerprint=hashlib.sha256(cert.public_bytes(serialization.Encoding.DER)).hexdigest(),
        subject=cert.subject.rfc4514_string(),
        not_valid_after=cert.not_valid_after_utc,
    )


def certificate_from_base64(cert: str, key: str) -> Certificate:
    """Builds a certificate from base64 encoded PEM certificate and key."""
    try:
        cert_pem = base64.b64decode(cert, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CertificateError(f"config: failed to decode certificate: {e}", field="certificate")
    try:
        key_pem = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CertificateError(f"config: failed to decode certificate key: {e}", field="certificate_key")
    return certificate_from_pem(cert_pem, key_pem)


def certificate_from_file(cert_file: str, key_file: str) -> Certificate:
    """Builds a certificate from PEM encoded certificate and key files."""
    try:
        cert_pem = Path(cert_file).read_bytes()
    except OSError as e:
        raise CertificateError(
            f"config: failed to read certificate file: {e}", field="certificate_file", value=cert_file
        )
    try:
        key_pem = Path(key_file).read_bytes()
    except OSError as e:
        raise CertificateError(
            f"config: failed to read certificate key file: {e}", field="certificate_key_file", value=key_file
        )
    return certificate_from_pem(cert_pem, key_pem)
