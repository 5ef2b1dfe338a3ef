"""In-memory feature store."""

from __future__ import annotations

from typing import Any

from mapsync.persistence.base import FeaturePersistence


class InMemoryFeatureStore(FeaturePersistence):
    """Dict-based feature store for development and testing.

    Keeps the latest record per feature plus the full write history.
    """

    def __init__(self) -> None:
        self.features: dict[str, dict[str, Any]] = {}
        self.writes: list[str] = []

    async def persist(
        self,
        feature_id: str,
        geometry: Any,
        properties: dict[str, Any],
        metadata: dict[str, Any],
    ) -> None:
        self.features[feature_id] = {
            "id": feature_id,
            "geometry": geometry,
            "properties": dict(properties),
            "metadata": dict(metadata),
            "isActive": not metadata.get("deleted", False),
        }
        self.writes.append(feature_id)

    def get(self, feature_id: str) -> dict[str, Any] | None:
        return self.features.get(feature_id)
