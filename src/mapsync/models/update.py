"""MapUpdate: the immutable fact broadcast to session participants."""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import (
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from mapsync.models.base import CamelModel
from mapsync.models.enums import UpdateType
from mapsync.models.participant import Cursor


class MapUpdate(CamelModel):
    """One presence or feature change.

    Instances are frozen: an update is never edited in place, only
    superseded by a newer one. ``data`` is a read-only view over a private
    copy of the payload.
    """

    model_config = ConfigDict(frozen=True)

    type: UpdateType
    data: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    user_id: str = Field(min_length=1)
    user_name: str | None = None
    timestamp: float = Field(ge=0.0, allow_inf_nan=False)
    session_id: str = Field(min_length=1)

    @field_validator("data", mode="after")
    @classmethod
    def _freeze_data(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(copy.deepcopy(dict(value)))

    @field_serializer("data")
    def _serialize_data(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return dict(value)

    @model_validator(mode="after")
    def _validate_payload(self) -> MapUpdate:
        if self.type.is_mutation and self.feature_id is None:
            raise ValueError(f"{self.type.value} update carries no feature id")
        if self.type == UpdateType.CURSOR_MOVED and self.data.get("cursor") is not None:
            Cursor.model_validate(self.data["cursor"])
        return self

    @property
    def feature_id(self) -> str | None:
        """The map feature this update refers to, for feature mutations.

        Looks at ``featureId``, then ``id``, then the kind-specific key
        (``annotationId``, ``geofenceId``, ``markerId``).
        """
        kind = self.type.feature_kind
        if kind is None:
            return None
        for key in ("featureId", "id", f"{kind}Id"):
            value = self.data.get(key)
            if value is not None and value != "":
                return str(value)
        return None

    @property
    def properties(self) -> dict[str, Any]:
        props = self.data.get("properties")
        return dict(props) if isinstance(props, Mapping) else {}

    def to_envelope(self) -> dict[str, Any]:
        """Serialize to the camelCase wire envelope."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_envelope(cls, raw: str | bytes | Mapping[str, Any]) -> MapUpdate:
        """Parse an inbound wire envelope.

        Raises:
            MalformedUpdateError: If the payload is not valid JSON, misses
                required fields, names an unknown type, or names a type the
                engine only generates itself.
        """
        from mapsync.core.manager import MalformedUpdateError

        try:
            payload = json.loads(raw) if isinstance(raw, str | bytes) else dict(raw)
        except (ValueError, TypeError) as exc:
            raise MalformedUpdateError(f"Envelope is not a JSON object: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedUpdateError("Envelope is not a JSON object")

        try:
            update = cls.model_validate(payload)
        except ValidationError as exc:
            raise MalformedUpdateError(f"Invalid update envelope: {exc}") from exc

        if not update.type.is_inbound:
            raise MalformedUpdateError(f"Update type {update.type.value} is engine-generated")
        return update
