"""Live host package: wraps the Teen Patti engine with websocket broadcasting."""

from .gateway import InMemoryGateway, PersistenceGateway, SessionFinishedError
from .registry import SessionEntry, SessionRegistry
from .server import HostConfig, HostServer

__all__ = [
    "InMemoryGateway",
    "PersistenceGateway",
    "SessionFinishedError",
    "SessionEntry",
    "SessionRegistry",
    "HostConfig",
    "HostServer",
]
