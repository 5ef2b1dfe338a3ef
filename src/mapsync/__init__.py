"""mapsync - Pure async Python engine for shared tactical map sessions."""

from mapsync._version import __version__
from mapsync.control import CollaborationController
from mapsync.core.broadcaster import Broadcaster
from mapsync.core.circuit_breaker import CircuitBreaker
from mapsync.core.conflicts import ConflictResolver, Verdict, VerdictKind
from mapsync.core.delivery import DeliveryQueue
from mapsync.core.locks import InMemorySessionLockManager, SessionLockManager
from mapsync.core.manager import (
    FeatureNotFoundError,
    InvalidConfigError,
    InvalidRequestError,
    MalformedUpdateError,
    MapSyncError,
    ParticipantNotFoundError,
    SessionFullError,
    SessionManager,
    SessionNotFoundError,
    UnknownActionError,
)
from mapsync.core.reaper import SessionReaper
from mapsync.core.registry import ParticipantRegistry
from mapsync.core.retry import retry_with_backoff
from mapsync.core.throttle import ThrottlePolicy
from mapsync.core.worker import DeliveryWorker
from mapsync.models.config import EngineConfig, RetryPolicy
from mapsync.models.conflict import ConflictResolution, FeatureVersion, SubmitResult
from mapsync.models.enums import (
    ParticipantRole,
    ResolutionMethod,
    SessionStatus,
    SubmitOutcome,
    UpdateType,
)
from mapsync.models.participant import Cursor, MediaState, Participant
from mapsync.models.session import Session, SessionConfig, SessionSettings, UserInfo
from mapsync.models.update import MapUpdate
from mapsync.persistence import (
    FeaturePersistence,
    InMemoryFeatureStore,
    PersistenceError,
    RetryingPersistence,
)
from mapsync.telemetry import (
    Attr,
    MockTelemetryProvider,
    NoopTelemetryProvider,
    Span,
    SpanKind,
    TelemetryProvider,
)
from mapsync.transport import (
    DeliveryTransport,
    InMemoryTransport,
    OutboundDelivery,
    TransportError,
)

__all__ = [
    "__version__",
    # Engine
    "Broadcaster",
    "CollaborationController",
    "ConflictResolver",
    "DeliveryQueue",
    "DeliveryWorker",
    "ParticipantRegistry",
    "SessionManager",
    "SessionReaper",
    "ThrottlePolicy",
    "Verdict",
    "VerdictKind",
    # Resilience
    "CircuitBreaker",
    "InMemorySessionLockManager",
    "SessionLockManager",
    "retry_with_backoff",
    # Errors
    "FeatureNotFoundError",
    "InvalidConfigError",
    "InvalidRequestError",
    "MalformedUpdateError",
    "MapSyncError",
    "ParticipantNotFoundError",
    "PersistenceError",
    "SessionFullError",
    "SessionNotFoundError",
    "TransportError",
    "UnknownActionError",
    # Models
    "ConflictResolution",
    "Cursor",
    "EngineConfig",
    "FeatureVersion",
    "MapUpdate",
    "MediaState",
    "Participant",
    "ParticipantRole",
    "ResolutionMethod",
    "RetryPolicy",
    "Session",
    "SessionConfig",
    "SessionSettings",
    "SessionStatus",
    "SubmitOutcome",
    "SubmitResult",
    "UpdateType",
    "UserInfo",
    # Collaborators
    "DeliveryTransport",
    "FeaturePersistence",
    "InMemoryFeatureStore",
    "InMemoryTransport",
    "OutboundDelivery",
    # Telemetry
    "Attr",
    "MockTelemetryProvider",
    "NoopTelemetryProvider",
    "Span",
    "SpanKind",
    "TelemetryProvider",
]
