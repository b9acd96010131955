from typing import Any, Dict

from pydantic import ValidationError

from shared.common_utils import logger
from .errors import DecodeError
from .option_schema import all_descriptors, env_bindings
from .option_source import OptionSource
from .schemas import Options, RawOptions


def decode_options(settings: Dict[str, Any]) -> Options:
    """Coerces the merged settings map into typed options."""
    values: Dict[str, Any] = {}
    for descriptor in all_descriptors():
        raw_value = settings.get(descriptor.field)
        if raw_value is None:
            values[descriptor.field] = descriptor.default
            continue
        try:
            values[descriptor.field] = descriptor.parse(raw_value)
        except (ValueError, TypeError, OverflowError) as e:
            raise DecodeError(
                f"config: failed to decode '{descriptor.field}' ({descriptor.env}) "
                f"from {raw_value!r}: {e}",
                field=descriptor.field,
                value=raw_value,
            )
    try:
        return Options(**values)
    except ValidationError as e:
        raise DecodeError(f"config: failed to unmarshal config: {e}")


async def load(source: OptionSource) -> RawOptions:
    """
    Reads environment and file values through the option source and returns
    them both as typed options and as the raw merged settings map.
    """
    settings = await source.read_merged(env_bindings())
    options = decode_options(settings)
    logger.debug(f"Loaded {len(settings)} raw settings from {source.config_file or 'environment'}")
    return RawOptions(options=options, settings=settings)
