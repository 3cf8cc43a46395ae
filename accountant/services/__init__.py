"""Clients for the chain, the explorer and the monitored address list."""

from .addresses import MonitoredAddresses
from .chain_client import ChainClient, ChainEvent, TraceCall, get_chain_client, close_chain_client
from .explorer_client import ExplorerClient, get_explorer_client, close_explorer_client

__all__ = [
    "MonitoredAddresses",
    "ChainClient",
    "ChainEvent",
    "TraceCall",
    "get_chain_client",
    "close_chain_client",
    "ExplorerClient",
    "get_explorer_client",
    "close_explorer_client",
]
