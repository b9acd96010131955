from typing import Any, Optional


class ConfigError(Exception):
    """Base class for every error raised while producing a configuration snapshot."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class SourceError(ConfigError):
    """The config file could not be read or parsed into key/value form."""


class DecodeError(ConfigError):
    """A merged raw value could not be coerced into its typed field."""


class ConfigValidationError(ConfigError):
    pass


class InvalidServiceMode(ConfigValidationError):
    pass


class MissingSharedKey(ConfigValidationError):
    pass


class InvalidURL(ConfigValidationError):
    pass


class PolicyDecodeError(ConfigValidationError):
    pass


class PolicyValidationError(ConfigValidationError):
    def __init__(self, message: str, index: int, field: Optional[str] = None, value: Any = None):
        super().__init__(message, field=field, value=value)
        self.index = index


class HeaderParseError(ConfigValidationError):
    pass


class NoCertificateSupplied(ConfigValidationError):
    pass


class CertificateError(ConfigValidationError):
    pass


class DeprecatedSettingUsed(ConfigValidationError):
    pass


class ChecksumError(ConfigError):
    pass


class SubscriberUpdateError(ConfigError):
    """A subscriber failed to apply a new snapshot."""

    def __init__(self, subscriber: str, cause: BaseException):
        super().__init__(f"subscriber {subscriber} could not update options: {cause}")
        self.subscriber = subscriber
        self.cause = cause
