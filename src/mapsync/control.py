"""Session control actions consumed from an external request layer.

Each action takes the camelCase JSON body the web layer received and
returns a JSON-ready dict::

    controller = CollaborationController(manager)
    result = await controller.handle_action(
        "start_collaboration", {"name": "Ops", "createdBy": "u1", "creatorName": "Ana"}
    )
    session_id = result["sessionId"]
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from pydantic import Field, ValidationError

from mapsync.core.manager import InvalidRequestError, SessionManager, UnknownActionError
from mapsync.models.base import CamelModel
from mapsync.models.conflict import ConflictResolution, SubmitResult
from mapsync.models.enums import SubmitOutcome
from mapsync.models.participant import Cursor, MediaState
from mapsync.models.session import UserInfo

logger = logging.getLogger("mapsync.control")

ActionHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class JoinRequest(CamelModel):
    session_id: str
    user: UserInfo


class LeaveRequest(CamelModel):
    session_id: str
    user_id: str


class CursorRequest(CamelModel):
    session_id: str
    user_id: str
    cursor: Cursor | None = None


class MediaStateRequest(CamelModel):
    session_id: str
    user_id: str
    media_state: MediaState


class ResolveConflictRequest(CamelModel):
    session_id: str
    feature_id: str
    resolution: ConflictResolution


class BatchUpdateRequest(CamelModel):
    updates: list[dict[str, Any]] = Field(min_length=1)


R = TypeVar("R", bound=CamelModel)


def _parse(model: type[R], action: str, data: Mapping[str, Any]) -> R:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidRequestError(f"Invalid {action} request: {exc}") from exc


class CollaborationController:
    """Maps named control actions onto ``SessionManager`` operations.

    Structural errors (``SessionNotFoundError``, ``SessionFullError``,
    ``InvalidConfigError``, ``InvalidRequestError``) propagate to the
    caller so the request layer can turn them into user-visible messages.
    """

    def __init__(self, manager: SessionManager) -> None:
        self._manager = manager
        self._handlers: dict[str, ActionHandler] = {
            "start_collaboration": self._start,
            "join_collaboration": self._join,
            "leave_collaboration": self._leave,
            "collaboration_cursor_update": self._cursor,
            "collaboration_media_update": self._media,
            "resolve_conflict": self._resolve,
            "map_update": self._map_update,
            "map_updates": self._map_updates,
        }

    @property
    def actions(self) -> list[str]:
        return sorted(self._handlers)

    async def handle_action(self, action: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Dispatch *action* with its request body.

        Raises:
            UnknownActionError: If *action* is not a known action name.
        """
        handler = self._handlers.get(action)
        if handler is None:
            raise UnknownActionError(f"Unknown action: {action}")
        logger.debug("Handling %s", action)
        return await handler(dict(data))

    def get_info(self, session_id: str) -> dict[str, Any] | None:
        """Presence query: session info with participant counts, or ``None``."""
        return self._manager.get_collaboration_info(session_id)

    async def _start(self, data: dict[str, Any]) -> dict[str, Any]:
        session = await self._manager.create_session(data)
        return {"sessionId": session.id, "session": session.to_info()}

    async def _join(self, data: dict[str, Any]) -> dict[str, Any]:
        request = _parse(JoinRequest, "join_collaboration", data)
        session = await self._manager.join_session(request.session_id, request.user)
        return {"session": session.to_info()}

    async def _leave(self, data: dict[str, Any]) -> dict[str, Any]:
        request = _parse(LeaveRequest, "leave_collaboration", data)
        await self._manager.leave_session(request.session_id, request.user_id)
        return {}

    async def _cursor(self, data: dict[str, Any]) -> dict[str, Any]:
        request = _parse(CursorRequest, "collaboration_cursor_update", data)
        await self._manager.update_cursor(request.session_id, request.user_id, request.cursor)
        return {}

    async def _media(self, data: dict[str, Any]) -> dict[str, Any]:
        request = _parse(MediaStateRequest, "collaboration_media_update", data)
        await self._manager.update_media_state(
            request.session_id, request.user_id, request.media_state
        )
        return {}

    async def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        request = _parse(ResolveConflictRequest, "resolve_conflict", data)
        update = await self._manager.resolve_conflict(
            request.session_id, request.feature_id, request.resolution
        )
        return {"update": update.to_envelope()}

    async def _map_update(self, data: dict[str, Any]) -> dict[str, Any]:
        return _outcome(await self._manager.handle_envelope(data))

    async def _map_updates(self, data: dict[str, Any]) -> dict[str, Any]:
        """Submit a batch of envelopes in order, each arbitrated on its own."""
        request = _parse(BatchUpdateRequest, "map_updates", data)
        results = [await self._manager.handle_envelope(raw) for raw in request.updates]
        accepted = sum(
            1 for r in results if r is not None and r.outcome == SubmitOutcome.ACCEPTED
        )
        return {"accepted": accepted, "results": [_outcome(r) for r in results]}


def _outcome(result: SubmitResult | None) -> dict[str, Any]:
    if result is None:
        return {"outcome": "dropped"}
    response: dict[str, Any] = {"outcome": result.outcome.value}
    if result.reason:
        response["reason"] = result.reason
    if result.resolution is not None:
        response["resolution"] = result.resolution.to_envelope()
    return response
