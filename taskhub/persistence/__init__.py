"""Persistence collaborator used by the real-time core."""

from .memory import InMemoryPersistence
from .protocols import PersistenceGateway

__all__ = ["InMemoryPersistence", "PersistenceGateway"]
