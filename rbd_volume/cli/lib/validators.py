"""
Input validation functions.
"""

import re
from typing import Dict, Mapping, Optional

# Option keys accepted by Create, in the order they are checked.
REQUIRED_OPTIONS = ("pool", "image", "hosts", "user", "secret")

# Spellings used by the first release of the plugin.
OPTION_ALIASES = {
    "rbd": "image",
    "username": "user",
}


def validate_name(name: str) -> None:
    """
    Validate a Docker volume name.

    Args:
        name: Name to validate

    Raises:
        ValueError: If name is invalid
    """
    if not name:
        raise ValueError("Name cannot be empty")

    if len(name) > 255:
        raise ValueError("Name must be between 1 and 255 characters")

    # Same character set Docker enforces for local volume names
    if not re.match(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$', name):
        raise ValueError("Name must start with alphanumeric and contain only alphanumeric, dots, underscores, or hyphens")


def normalize_options(options: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Map option aliases onto their canonical keys.

    Args:
        options: Raw `Opts` mapping from the Create request

    Returns:
        Dictionary keyed by canonical option names

    Raises:
        KeyError: With the offending key, if an option is not recognised
        ValueError: With the offending key and the key it collides with,
            if an alias and its canonical name are both given
    """
    normalized: Dict[str, str] = {}
    given_as: Dict[str, str] = {}
    for key, value in (options or {}).items():
        canonical = OPTION_ALIASES.get(key, key)
        if canonical not in REQUIRED_OPTIONS:
            raise KeyError(key)
        if canonical in given_as:
            raise ValueError(key, given_as[canonical])
        given_as[canonical] = key
        normalized[canonical] = "" if value is None else str(value).strip()
    return normalized


def first_missing_option(options: Mapping[str, str]) -> Optional[str]:
    """Return the first required option that is absent or empty."""
    for key in REQUIRED_OPTIONS:
        if not options.get(key):
            return key
    return None


def normalize_hosts(hosts: str) -> str:
    """
    Canonical form of a monitor list: comma separated, stripped, sorted.

    `"10.0.0.2, 10.0.0.1"` and `"10.0.0.1,10.0.0.2"` describe the same cluster.
    """
    parts = sorted({h.strip() for h in hosts.split(",") if h.strip()})
    return ",".join(parts)
