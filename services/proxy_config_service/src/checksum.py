import hashlib
import json
from typing import Any, Dict, Optional

from shared.common_utils import logger
from .errors import ChecksumError
from .schemas import Snapshot

NO_CHECKSUM = "no checksum available"


def generate_config_checksum(config: Dict[str, Any]) -> str:
    """
    Generates a checksum for a configuration dictionary.
    """
    try:
        config_str = json.dumps(config, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise ChecksumError(f"config: could not serialize configuration: {e}")
    return hashlib.sha256(config_str.encode()).hexdigest()


def checksum(snapshot: Snapshot) -> str:
    """
    Returns the content hash of a snapshot. Map valued fields are hashed in
    sorted key order, so construction order does not matter. Failures are
    logged and reported as NO_CHECKSUM.
    """
    try:
        return generate_config_checksum(snapshot.model_dump(mode="json"))
    except (ChecksumError, ValueError, TypeError) as e:
        logger.warning(f"config: checksum failure: {e}")
        return NO_CHECKSUM


def checksum_to_int(digest: str) -> Optional[int]:
    """Decodes the leading 64 bits of a digest, or None for NO_CHECKSUM."""
    try:
        return int(digest[:16], 16)
    except ValueError:
        logger.warning(f"config: could not parse config checksum {digest!r} into decimal")
        return None


def has_changed(old: str, new: str) -> bool:
    # An unavailable checksum can't prove equality, so it counts as a change.
    if old == NO_CHECKSUM or new == NO_CHECKSUM:
        return True
    return old != new
