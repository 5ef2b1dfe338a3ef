"""Abstract base class for feature persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class PersistenceError(Exception):
    """A feature write could not be stored durably."""


class FeaturePersistence(ABC):
    """Durable store for map features (annotations, geofences, markers).

    The engine calls ``persist`` from a background task after a mutation
    was accepted and broadcast. A failure is logged by the engine and
    never blocks broadcast; retrying is the collaborator's job (see
    ``RetryingPersistence``).
    """

    @abstractmethod
    async def persist(
        self,
        feature_id: str,
        geometry: Any,
        properties: dict[str, Any],
        metadata: dict[str, Any],
    ) -> None:
        """Store the latest accepted state of a feature."""
        ...

    async def close(self) -> None:
        """Clean up resources. The default implementation does nothing."""
        return None
