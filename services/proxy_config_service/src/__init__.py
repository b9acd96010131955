"""
Proxy Config Service Source Package
Contains the configuration lifecycle: sourcing, validation, checksums and hot reload.
"""

from .config_manager import ConfigManager, OptionsUpdater, app
from .schemas import (
    ServiceMode,
    Options,
    RawOptions,
    Snapshot,
    ReloadState,
    ReloadStatus,
    ReloadOutcome,
    SubscriberFailure,
    ConfigStatusResponse,
)
from .policy import Policy
from .certificates import Certificate
from .errors import (
    ConfigError,
    SourceError,
    DecodeError,
    ConfigValidationError,
    InvalidServiceMode,
    MissingSharedKey,
    InvalidURL,
    PolicyDecodeError,
    PolicyValidationError,
    HeaderParseError,
    NoCertificateSupplied,
    CertificateError,
    DeprecatedSettingUsed,
    ChecksumError,
    SubscriberUpdateError,
)
from .option_source import OptionSource
from .config_loader import load
from .validator import validate
from .checksum import checksum, NO_CHECKSUM

__all__ = [
    # Main components
    "ConfigManager",
    "OptionsUpdater",
    "OptionSource",
    "app",
    "load",
    "validate",
    "checksum",
    "NO_CHECKSUM",

    # Schemas
    "ServiceMode",
    "Options",
    "RawOptions",
    "Snapshot",
    "Policy",
    "Certificate",
    "ReloadState",
    "ReloadStatus",
    "ReloadOutcome",
    "SubscriberFailure",
    "ConfigStatusResponse",

    # Errors
    "ConfigError",
    "SourceError",
    "DecodeError",
    "ConfigValidationError",
    "InvalidServiceMode",
    "MissingSharedKey",
    "InvalidURL",
    "PolicyDecodeError",
    "PolicyValidationError",
    "HeaderParseError",
    "NoCertificateSupplied",
    "CertificateError",
    "DeprecatedSettingUsed",
    "ChecksumError",
    "SubscriberUpdateError",
]
