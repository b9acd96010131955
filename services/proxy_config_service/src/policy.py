from datetime import timedelta
from typing import Any, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .option_schema import parse_duration, parse_str_list
from .urlutil import parse_and_validate_url


class Policy(BaseModel):
    """
    Per-route access control record. The configuration core treats policies
    as opaque apart from `validate_policy`, which every policy in a snapshot
    must have passed. Route keys outside the fields below are ignored.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    source: str = Field(..., alias="from", description="Externally reachable route URL")
    destination: str = Field(..., alias="to", description="Upstream URL requests are proxied to")
    prefix: str = ""

    allowed_users: Tuple[str, ...] = ()
    allowed_groups: Tuple[str, ...] = ()
    allowed_domains: Tuple[str, ...] = ()

    allow_public_unauthenticated_access: bool = False
    cors_allow_preflight: bool = False
    timeout: timedelta = timedelta(0)

    @field_validator("allowed_users", "allowed_groups", "allowed_domains", mode="before")
    @classmethod
    def _split_lists(cls, value: Any) -> Tuple[str, ...]:
        return parse_str_list(value)

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> timedelta:
        return parse_duration(value)

    def validate_policy(self) -> None:
        """Raises ValueError if the route is not internally consistent."""
        try:
            parse_and_validate_url(self.source)
        except ValueError as e:
            raise ValueError(f"policy: bad source url: {e}")
        try:
            parse_and_validate_url(self.destination)
        except ValueError as e:
            raise ValueError(f"policy: bad destination url: {e}")

        if self.allow_public_unauthenticated_access and (
            self.allowed_users or self.allowed_groups or self.allowed_domains
        ):
            raise ValueError(
                "policy: route marked as public but contains whitelists"
            )
