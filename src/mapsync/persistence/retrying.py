"""Persistence wrapper that retries failed writes with backoff."""

from __future__ import annotations

import functools
import logging
from typing import Any

from mapsync.core.retry import retry_with_backoff
from mapsync.models.config import RetryPolicy
from mapsync.persistence.base import FeaturePersistence, PersistenceError

logger = logging.getLogger("mapsync.persistence")


class RetryingPersistence(FeaturePersistence):
    """Retries another collaborator's writes, escalating once exhausted.

    ``ValueError`` and ``TypeError`` mean the payload itself was refused,
    so they escalate without retrying.

    Example::

        store = RetryingPersistence(PostgresFeatureStore(dsn), RetryPolicy(max_retries=5))
        manager = SessionManager(persistence=store)
    """

    def __init__(self, inner: FeaturePersistence, policy: RetryPolicy | None = None) -> None:
        self._inner = inner
        self._policy = policy or RetryPolicy()

    async def persist(
        self,
        feature_id: str,
        geometry: Any,
        properties: dict[str, Any],
        metadata: dict[str, Any],
    ) -> None:
        try:
            await retry_with_backoff(
                functools.partial(
                    self._inner.persist, feature_id, geometry, properties, metadata
                ),
                self._policy,
                label=f"persist {feature_id}",
                give_up_on=(ValueError, TypeError),
            )
        except Exception as exc:
            logger.error("Giving up persisting feature %s: %s", feature_id, exc)
            raise PersistenceError(f"Failed to persist feature {feature_id}") from exc

    async def close(self) -> None:
        await self._inner.close()
