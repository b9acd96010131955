from datetime import timedelta

import pytest

from services.proxy_config_service.src.checksum import (
    NO_CHECKSUM,
    checksum,
    checksum_to_int,
    generate_config_checksum,
    has_changed,
)
from services.proxy_config_service.src.config_loader import load
from services.proxy_config_service.src.errors import ChecksumError
from services.proxy_config_service.src.option_source import OptionSource
from services.proxy_config_service.src.validator import validate
from _helpers import SHARED_SECRET, make_raw


def _snapshot(settings=None, **options):
    options.setdefault("services", "all")
    options.setdefault("shared_secret", SHARED_SECRET)
    options.setdefault("insecure_server", True)
    return validate(make_raw(settings=settings, **options))


@pytest.mark.asyncio
async def test_loading_the_same_source_twice_gives_the_same_checksum(write_config, base_config):
    """Test checksums are stable across loads of the same source."""
    source = OptionSource(config_file=str(write_config(base_config)), environ={})
    first = validate(await load(source))
    second = validate(await load(source))

    assert checksum(first) == checksum(second)
    assert len(checksum(first)) == 64


def test_header_insertion_order_does_not_matter():
    """Test header ordering does not affect the checksum."""
    first = _snapshot(settings={"headers": {"X-A": "a", "X-B": "b"}})
    second = _snapshot(settings={"headers": {"X-B": "b", "X-A": "a"}})
    assert checksum(first) == checksum(second)


@pytest.mark.parametrize(
    "changes",
    [
        {"cookie_name": "_other"},
        {"timeout_idle": timedelta(minutes=6)},
        {"grpc_address": ":9000"},
        {"administrators": ("root@example.com",)},
        {"debug": True},
    ],
)
def test_single_field_change_changes_checksum(changes):
    """Test any single option change changes the checksum."""
    assert checksum(_snapshot()) != checksum(_snapshot(**changes))


def test_policy_change_changes_checksum():
    """Test a policy change changes the checksum."""
    policy = {"from": "https://a.example.com", "to": "http://a.internal"}
    first = _snapshot(settings={"policy": [policy]})
    second = _snapshot(settings={"policy": [dict(policy, to="http://b.internal")]})
    assert checksum(first) != checksum(second)


def test_unserializable_config_raises_checksum_error():
    """Test the raw checksum function rejects unserializable values."""
    with pytest.raises(ChecksumError):
        generate_config_checksum({"handle": object()})


def test_checksum_failure_degrades_to_sentinel(monkeypatch):
    """Test checksum failures yield the sentinel instead of raising."""
    snapshot = _snapshot()

    def broken_dump(*args, **kwargs):
        raise TypeError("cannot serialize")

    monkeypatch.setattr(type(snapshot), "model_dump", broken_dump)
    assert checksum(snapshot) == NO_CHECKSUM


def test_checksum_to_int():
    """Test the decimal form of a checksum."""
    assert checksum_to_int("00000000000000ff" + "0" * 48) == 255
    assert checksum_to_int(NO_CHECKSUM) is None


def test_sentinel_counts_as_changed():
    """Test change detection around the sentinel."""
    assert has_changed(NO_CHECKSUM, NO_CHECKSUM)
    assert has_changed("abc", NO_CHECKSUM)
    assert not has_changed("abc", "abc")
    assert has_changed("abc", "abd")
