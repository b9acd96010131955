from datetime import datetime, timedelta, UTC
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import AnyUrl, BaseModel, ConfigDict, Field, field_serializer, field_validator

from .certificates import Certificate
from .errors import InvalidServiceMode
from .policy import Policy

# Used when two services would compete over the same listener: the local
# gRPC server in all-in-one mode, or the health check listener of a
# stand-alone authorize service.
DEFAULT_ALTERNATIVE_ADDR = ":5443"
DEFAULT_ADDR = ":443"
DEFAULT_GRPC_ADDR = ":443"

DISABLE_HEADER_KEY = "disable"

DEFAULT_HEADERS: Dict[str, str] = {
    "X-Frame-Options": "SAMEORIGIN",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
}


class ServiceMode(str, Enum):
    ALL = "all"
    AUTHENTICATE = "authenticate"
    PROXY = "proxy"
    AUTHORIZE = "authorize"

    @classmethod
    def parse(cls, value: str) -> "ServiceMode":
        normalized = (value or "").strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidServiceMode(
                f"config: {value!r} is an invalid service type", field="services", value=value
            )

    @property
    def is_all(self) -> bool:
        return self is ServiceMode.ALL

    @property
    def is_authenticate(self) -> bool:
        return self in (ServiceMode.ALL, ServiceMode.AUTHENTICATE)

    @property
    def is_proxy(self) -> bool:
        return self in (ServiceMode.ALL, ServiceMode.PROXY)

    @property
    def is_authorize(self) -> bool:
        return self in (ServiceMode.ALL, ServiceMode.AUTHORIZE)


class _BaseOptions(BaseModel):
    """Fields shared by the loaded options and the validated snapshot."""
    model_config = ConfigDict(frozen=True)

    debug: bool = False
    log_level: str = "debug"
    shared_secret: str = Field(default="", repr=False)

    # Network
    address: str = DEFAULT_ADDR
    http_redirect_addr: str = ""
    insecure_server: bool = False
    timeout_read: timedelta = timedelta(seconds=30)
    timeout_write: timedelta = timedelta(0)  # streaming by default
    timeout_read_header: timedelta = timedelta(seconds=10)
    timeout_idle: timedelta = timedelta(minutes=5)

    # Session/cookie management
    cookie_name: str = "_pomerium"
    cookie_secret: str = Field(default="", repr=False)
    cookie_domain: str = ""
    cookie_secure: bool = True
    cookie_http_only: bool = True
    cookie_expire: timedelta = timedelta(hours=14)
    cookie_refresh: timedelta = timedelta(minutes=30)

    # Identity provider
    idp_client_id: str = ""
    idp_client_secret: str = Field(default="", repr=False)
    idp_provider: str = ""
    idp_provider_url: str = ""
    idp_scopes: Tuple[str, ...] = ()
    idp_service_account: str = Field(default="", repr=False)

    administrators: Tuple[str, ...] = ()

    # Behind-the-ingress service communication
    override_certificate_name: str = ""
    certificate_authority: str = ""
    certificate_authority_file: str = ""
    signing_key: str = Field(default="", repr=False)

    refresh_cooldown: timedelta = timedelta(minutes=5)
    default_upstream_timeout: timedelta = timedelta(seconds=30)

    # Observability
    metrics_address: str = ""
    tracing_provider: str = ""
    tracing_debug: bool = False
    tracing_jaeger_collector_endpoint: str = ""
    tracing_jaeger_agent_endpoint: str = ""

    # gRPC
    grpc_address: str = DEFAULT_GRPC_ADDR
    grpc_insecure: bool = False
    grpc_client_timeout: timedelta = timedelta(seconds=10)
    grpc_client_dns_roundrobin: bool = True


class Options(_BaseOptions):
    """Typed options straight from the loader, before any cross-field validation."""

    services: str = ServiceMode.ALL.value

    certificate: str = Field(default="", repr=False)
    certificate_key: str = Field(default="", repr=False)
    certificate_file: str = ""
    certificate_key_file: str = ""

    authenticate_service_url: str = ""
    authorize_service_url: str = ""
    forward_auth_url: str = ""

    # Deprecated, detected only to be rejected.
    policy_file: str = ""

    # Statically bound overrides (POLICY and HEADERS env vars).
    policy_env: str = Field(default="", repr=False)
    headers_env: str = ""


class RawOptions(BaseModel):
    """Loader output: the typed options plus the merged, untyped settings map."""
    model_config = ConfigDict(frozen=True)

    options: Options
    settings: Mapping[str, Any] = Field(default_factory=dict)

    def is_set(self, key: str) -> bool:
        return self.settings.get(key) is not None


class Snapshot(_BaseOptions):
    """One fully validated configuration value. Never mutated once built."""

    services: ServiceMode

    authenticate_url: Optional[AnyUrl] = None
    authorize_url: Optional[AnyUrl] = None
    forward_auth_url: Optional[AnyUrl] = None

    tls_certificate: Optional[Certificate] = None
    policies: Tuple[Policy, ...] = ()
    headers: Mapping[str, str] = Field(default_factory=dict, validate_default=True)

    @field_validator("headers", mode="after")
    @classmethod
    def _freeze_headers(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_serializer("headers")
    def _serialize_headers(self, value: Mapping[str, str]) -> Dict[str, str]:
        return dict(value)


class ReloadState(str, Enum):
    IDLE = "idle"
    RELOADING = "reloading"
    UNCHANGED = "unchanged"
    PROPAGATING = "propagating"


class ReloadStatus(str, Enum):
    INVALID = "invalid"
    UNCHANGED = "unchanged"
    PROPAGATED = "propagated"
    PARTIALLY_FAILED = "partially_failed"


class SubscriberFailure(BaseModel):
    subscriber: str = Field(..., description="Name of the subscriber that failed")
    error: str = Field(..., description="Error reported by the subscriber")


class ReloadOutcome(BaseModel):
    status: ReloadStatus = Field(..., description="Aggregate result of the reload cycle")
    valid: bool = Field(..., description="Whether the reloaded configuration validated")
    checksum: str = Field("", description="Checksum of the last-good snapshot after the cycle")
    error: Optional[str] = Field(None, description="Load or validation error, if any")
    notified: List[str] = Field(default_factory=list, description="Subscribers that applied the snapshot")
    failures: List[SubscriberFailure] = Field(default_factory=list, description="Subscribers that failed")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        return self.valid and not self.failures


class ConfigStatusResponse(BaseModel):
    state: ReloadState = Field(..., description="Current coordinator state")
    services: ServiceMode = Field(..., description="Service mode of the last-good snapshot")
    checksum: str = Field(..., description="Checksum of the last-good snapshot")
    policy_count: int = Field(..., description="Number of policies in the last-good snapshot")
    last_outcome: Optional[ReloadOutcome] = Field(None, description="Outcome of the latest reload")
