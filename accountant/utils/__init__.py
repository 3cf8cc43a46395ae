"""Shared helpers."""

from .concurrency import concurrent_map
from .blocktime import timestamp_from_block_time
from .timing import exec_time

__all__ = [
    "concurrent_map",
    "timestamp_from_block_time",
    "exec_time",
]
