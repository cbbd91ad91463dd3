import logging
import re
from pathlib import Path
from typing import Union

logger = logging.getLogger("repo-backup")

_SIZE_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024 ** 2,
    "gb": 1024 ** 3,
    "tb": 1024 ** 4,
}

_SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*([a-zA-Z]{1,2})\s*$")


def parse_size(value: Union[str, int]) -> int:
    """Parse a human readable size such as ``"100 MB"`` into bytes.

    Units are powers of 1024. Plain integers are taken as bytes.
    """
    if isinstance(value, int):
        if value <= 0:
            raise ValueError(f"size must be positive, got {value}")
        return value
    text = value.strip()
    if text.isdigit():
        return parse_size(int(text))
    match = _SIZE_PATTERN.match(text)
    if not match:
        raise ValueError(f"expected format: '100 MB', received '{value}'")
    size, unit = match.groups()
    multiplier = _SIZE_UNITS.get(unit.lower())
    if multiplier is None:
        raise ValueError(f"unknown size unit '{unit}' in '{value}'")
    return parse_size(int(size) * multiplier)


def is_empty_dir(path: Path) -> bool:
    return path.is_dir() and not any(path.iterdir())
