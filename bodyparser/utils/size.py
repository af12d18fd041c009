"""Human readable size specs ("2mb", "500kb") to byte counts and back."""

import re
from typing import Union

from bodyparser.utils.exceptions import ConfigError

BYTE = 1
KILOBYTE = 1024
MEGABYTE = 1024 ** 2
GIGABYTE = 1024 ** 3

UNIT_MULTIPLIERS = {
    'b': BYTE,
    'kb': KILOBYTE,
    'mb': MEGABYTE,
    'gb': GIGABYTE,
}

UNIT_NAMES = ['B', 'KB', 'MB', 'GB']

SIZE_SPEC_PATTERN = re.compile(r'^(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)?$', re.IGNORECASE)


def parse_size(size_spec: Union[str, int]) -> int:
    """
    Convert a size spec to a byte count.

    Args:
        size_spec: Raw byte count, or a string such as "2mb", "500 KB" or "100".
            Units are 1024 based; a string without a unit is a byte count.

    Returns:
        Size in bytes

    Raises:
        ConfigError: For unknown units, non-numeric magnitudes or negative counts
    """
    if isinstance(size_spec, bool):
        raise ConfigError("Size spec must be a byte count or size string", option='size', value=size_spec)

    if isinstance(size_spec, int):
        if size_spec < 0:
            raise ConfigError(f"Size cannot be negative: {size_spec}", option='size', value=size_spec)
        return size_spec

    if not isinstance(size_spec, str):
        raise ConfigError(
            f"Size spec must be a byte count or size string, got {type(size_spec).__name__}",
            option='size',
            value=size_spec
        )

    match = SIZE_SPEC_PATTERN.match(size_spec.strip())
    if not match:
        raise ConfigError(f"Invalid size spec: {size_spec!r}", option='size', value=size_spec)

    magnitude, unit = match.groups()
    multiplier = UNIT_MULTIPLIERS[(unit or 'b').lower()]
    return int(float(magnitude) * multiplier)


def format_size(num_bytes: int, precision: int = 2) -> str:
    """Render a byte count with the largest fitting unit, e.g. ``1.5 MB``."""
    if num_bytes <= 0:
        return "0 B"

    unit_index = 0
    while unit_index < len(UNIT_NAMES) - 1 and num_bytes >= 1024 ** (unit_index + 1):
        unit_index += 1

    if unit_index == 0:
        return f"{num_bytes} B"
    size_in_unit = num_bytes / (1024 ** unit_index)
    return f"{size_in_unit:.{precision}f} {UNIT_NAMES[unit_index]}"


__all__ = ['parse_size', 'format_size', 'UNIT_MULTIPLIERS']
