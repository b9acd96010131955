import time
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Gauge, Info

from .checksum import checksum_to_int
from .schemas import Snapshot


class ConfigMetrics:
    """Reload outcome gauges, labelled by service mode."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY
        self._service: Optional[str] = None
        self.policy_count = Gauge(
            "proxy_config_policy_count",
            "Total number of policies loaded.",
            ["service"],
            registry=self.registry,
        )
        self.checksum_decimal = Gauge(
            "proxy_config_checksum_decimal",
            "Leading 64 bits of the current config checksum.",
            ["service"],
            registry=self.registry,
        )
        self.last_reload_success = Gauge(
            "proxy_config_last_reload_success",
            "Whether the last configuration reload succeeded.",
            ["service"],
            registry=self.registry,
        )
        self.last_reload_success_timestamp = Gauge(
            "proxy_config_last_reload_success_timestamp",
            "Timestamp of the last successful configuration reload.",
            ["service"],
            registry=self.registry,
        )
        self.config_info = Info(
            "proxy_config",
            "Checksum and validity of the current configuration.",
            ["service"],
            registry=self.registry,
        )

    def record_snapshot(self, snapshot: Snapshot, digest: str) -> None:
        service = snapshot.services.value
        if self._service is not None and self._service != service:
            self._drop_service(self._service)
        self._service = service
        self.policy_count.labels(service).set(len(snapshot.policies))
        decimal = checksum_to_int(digest)
        if decimal is not None:
            self.checksum_decimal.labels(service).set(decimal)

    def _drop_service(self, service: str) -> None:
        for gauge in (self.policy_count, self.checksum_decimal):
            try:
                gauge.remove(service)
            except KeyError:
                # checksum_decimal is never set for the sentinel digest
                pass

    def set_config_info(self, service: str, success: bool, digest: str) -> None:
        self.last_reload_success.labels(service).set(1 if success else 0)
        if success:
            self.last_reload_success_timestamp.labels(service).set(time.time())
        self.config_info.labels(service).info(
            {"checksum": digest, "valid": "true" if success else "false"}
        )


default_metrics = ConfigMetrics()
