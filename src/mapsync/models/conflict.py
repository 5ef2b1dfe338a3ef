"""Feature versioning and conflict resolution models."""

from __future__ import annotations

from typing import Any

from pydantic import Field, model_validator

from mapsync.models.base import CamelModel
from mapsync.models.enums import ResolutionMethod, SubmitOutcome
from mapsync.models.update import MapUpdate


class FeatureVersion(CamelModel):
    """Last accepted state of one durable map feature.

    ``timestamp`` and ``user_id`` form the version token used for
    arbitration; the remaining fields are what gets persisted and what a
    conflict resolution merges.
    """

    feature_id: str
    kind: str
    timestamp: float
    user_id: str
    deleted: bool = False
    geometry: Any = None
    properties: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def token(self) -> tuple[float, str]:
        return (self.timestamp, self.user_id)


class ConflictResolution(CamelModel):
    """Caller-supplied policy for settling a conflicting write."""

    method: ResolutionMethod = ResolutionMethod.MERGE
    resolved_by: str = Field(min_length=1)
    properties: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _validate_manual(self) -> ConflictResolution:
        if self.method == ResolutionMethod.MANUAL and self.properties is None:
            raise ValueError("Manual resolution requires explicit properties")
        return self


class SubmitResult(CamelModel):
    """What happened to an update handed to the session manager."""

    outcome: SubmitOutcome
    update: MapUpdate
    resolution: MapUpdate | None = None
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome in (SubmitOutcome.ACCEPTED, SubmitOutcome.CONFLICT_RESOLVED)
