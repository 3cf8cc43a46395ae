"""
Block timestamp helpers.
"""

from datetime import datetime, timezone
from typing import Union


def timestamp_from_block_time(block_time: Union[int, str]) -> datetime:
    """UTC datetime of a unix block timestamp."""
    return datetime.fromtimestamp(int(block_time), tz=timezone.utc)
