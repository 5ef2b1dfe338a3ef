"""Timestamp arbitration for concurrently edited map features."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum, unique
from typing import TYPE_CHECKING, Any

from mapsync.models.conflict import FeatureVersion
from mapsync.models.enums import ResolutionMethod

if TYPE_CHECKING:
    from mapsync.models.conflict import ConflictResolution
    from mapsync.models.update import MapUpdate

logger = logging.getLogger("mapsync.conflicts")


@unique
class VerdictKind(StrEnum):
    ACCEPT = "accept"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    REJECT = "reject"


@dataclass(frozen=True, slots=True)
class Verdict:
    """Outcome of checking one mutation against its feature's token."""

    kind: VerdictKind
    feature_id: str
    version: FeatureVersion | None = None
    reason: str | None = None


class ConflictResolver:
    """Owns the feature version tokens of one session.

    Arbitration is last-writer-wins on the producer timestamp:

    * no token yet: accept.
    * strictly newer timestamp: accept and advance the token.
    * older or equal timestamp from the token's own author: an idempotent
      retry, reported as a duplicate.
    * older or equal timestamp from someone else: a delete still wins
      (deletion is terminal); anything else is a conflict, which the
      caller settles with ``resolve_conflict``.

    Once a feature is deleted only a create newer than the deletion
    starts it again, as a new lineage. Tokens are only ever written here, under the owning
    session's lock.
    """

    def __init__(self) -> None:
        self._versions: dict[str, FeatureVersion] = {}
        # feature_id -> (user_id, timestamp) pairs already reported as conflicts
        self._seen_conflicts: dict[str, set[tuple[str, float]]] = {}

    def __len__(self) -> int:
        return len(self._versions)

    def version(self, feature_id: str) -> FeatureVersion | None:
        return self._versions.get(feature_id)

    def evaluate(self, update: MapUpdate) -> Verdict:
        """Arbitrate a feature mutation and advance the token on acceptance."""
        feature_id = update.feature_id
        if feature_id is None or update.type.feature_kind is None:
            raise ValueError(f"{update.type.value} is not a feature mutation")

        current = self._versions.get(feature_id)
        if current is None:
            return self._accept(feature_id, self._first_version(feature_id, update))

        if current.deleted:
            if update.type.is_create:
                if update.timestamp > current.timestamp:
                    logger.debug("Feature %s recreated by %s", feature_id, update.user_id)
                    return self._accept(feature_id, self._first_version(feature_id, update))
                if update.user_id == current.user_id:
                    return Verdict(VerdictKind.DUPLICATE, feature_id, current)
                return Verdict(
                    VerdictKind.REJECT,
                    feature_id,
                    current,
                    reason="create is older than the feature's deletion",
                )
            if update.type.is_delete:
                return Verdict(VerdictKind.DUPLICATE, feature_id, current)
            return Verdict(
                VerdictKind.REJECT, feature_id, current, reason="feature has been deleted"
            )

        if update.timestamp > current.timestamp:
            return self._accept(feature_id, self._advance(current, update))

        if update.user_id == current.user_id:
            return Verdict(VerdictKind.DUPLICATE, feature_id, current)

        if update.type.is_delete:
            deleted = current.model_copy(update={"deleted": True, "user_id": update.user_id})
            return self._accept(feature_id, deleted)

        key = (update.user_id, update.timestamp)
        seen = self._seen_conflicts.setdefault(feature_id, set())
        if key in seen:
            return Verdict(VerdictKind.DUPLICATE, feature_id, current)
        seen.add(key)
        logger.info(
            "Conflict on %s: %s@%s is not newer than %s@%s",
            feature_id,
            update.user_id,
            update.timestamp,
            current.user_id,
            current.timestamp,
        )
        return Verdict(VerdictKind.CONFLICT, feature_id, current)

    def resolve_conflict(
        self,
        feature_id: str,
        resolution: ConflictResolution,
        *,
        incoming: MapUpdate | None = None,
        now: datetime | None = None,
    ) -> FeatureVersion:
        """Settle a feature's state under *resolution* and flag it resolved.

        Both versions' properties are recorded in the metadata under
        ``conflictVersions``. The token's timestamp is left unchanged so
        later writes keep arbitrating against the winning producer clock.

        Raises:
            KeyError: If the feature is unknown or deleted.
        """
        current = self._versions.get(feature_id)
        if current is None or current.deleted:
            raise KeyError(feature_id)

        incoming_props = incoming.properties if incoming is not None else {}
        properties = _merge(resolution, current.properties, incoming_props)
        resolved_at = (now or datetime.now(UTC)).isoformat()

        metadata: dict[str, Any] = {
            **current.metadata,
            "conflictResolved": True,
            "resolvedBy": resolution.resolved_by,
            "resolvedAt": resolved_at,
            "resolutionMethod": resolution.method.value,
        }
        if incoming is not None:
            metadata["conflictVersions"] = [
                {
                    "userId": current.user_id,
                    "timestamp": current.timestamp,
                    "properties": dict(current.properties),
                },
                {
                    "userId": incoming.user_id,
                    "timestamp": incoming.timestamp,
                    "properties": incoming_props,
                },
            ]

        resolved = current.model_copy(update={"properties": properties, "metadata": metadata})
        self._versions[feature_id] = resolved
        return resolved

    def clear(self) -> None:
        self._versions.clear()
        self._seen_conflicts.clear()

    def _accept(self, feature_id: str, version: FeatureVersion) -> Verdict:
        self._versions[feature_id] = version
        self._seen_conflicts.pop(feature_id, None)
        return Verdict(VerdictKind.ACCEPT, feature_id, version)

    @staticmethod
    def _first_version(feature_id: str, update: MapUpdate) -> FeatureVersion:
        return FeatureVersion(
            feature_id=feature_id,
            kind=update.type.feature_kind or "",
            timestamp=update.timestamp,
            user_id=update.user_id,
            deleted=update.type.is_delete,
            geometry=update.data.get("geometry"),
            properties=update.properties,
            metadata=dict(update.data.get("metadata") or {}),
        )

    @staticmethod
    def _advance(current: FeatureVersion, update: MapUpdate) -> FeatureVersion:
        fields: dict[str, Any] = {
            "timestamp": update.timestamp,
            "user_id": update.user_id,
            "deleted": update.type.is_delete,
        }
        if "geometry" in update.data:
            fields["geometry"] = update.data["geometry"]
        if "properties" in update.data:
            fields["properties"] = update.properties
        if update.data.get("metadata"):
            fields["metadata"] = {**current.metadata, **update.data["metadata"]}
        return current.model_copy(update=fields)


def _merge(
    resolution: ConflictResolution,
    current: dict[str, Any],
    incoming: dict[str, Any],
) -> dict[str, Any]:
    if resolution.method == ResolutionMethod.MERGE:
        return {**incoming, **current}
    if resolution.method == ResolutionMethod.ACCEPT_INCOMING:
        return {**current, **incoming}
    if resolution.method == ResolutionMethod.MANUAL:
        return dict(resolution.properties or {})
    return dict(current)
