"""Durable storage collaborators for accepted feature mutations."""

from mapsync.persistence.base import FeaturePersistence, PersistenceError
from mapsync.persistence.memory import InMemoryFeatureStore
from mapsync.persistence.retrying import RetryingPersistence

__all__ = [
    "FeaturePersistence",
    "InMemoryFeatureStore",
    "PersistenceError",
    "RetryingPersistence",
]
