"""
Live subscription manager for store collections.

Subscribers register a callback per (collection, competition) scope and
receive the full, latest record list for that scope every time a write is
committed. Derived views such as LiveTeamStats recompute from each snapshot.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from scouting.services.aggregation_service import aggregate_team_stats, filter_observations
from scouting.services.scoring_service import ACTIVE_SCORING_TABLE, ScoringTable

logger = logging.getLogger(__name__)

COLLECTIONS = ("competitions", "teams", "matches", "observations")

Scope = Tuple[str, Optional[str]]
Callback = Callable[[List[Any]], Any]


class SubscriptionManager:
    """Routes committed snapshots to subscribers by collection scope."""

    def __init__(self):
        """Initialize the subscription manager."""
        # Dictionary mapping (collection, competition_id) to subscriber callbacks.
        # competition_id None means every competition.
        self.subscribers: Dict[Scope, List[Callback]] = {}
        self._lock = asyncio.Lock()

    def subscribe(self, collection: str, competition_id: Optional[str], callback: Callback) -> Callable[[], None]:
        """
        Register a callback for a collection scope.

        Args:
            collection: One of COLLECTIONS
            competition_id: Competition scope, or None for all competitions
            callback: Sync or async callable receiving the record list

        Returns:
            Function that removes this subscription (safe to call twice)
        """
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        scope = (collection, competition_id)
        self.subscribers.setdefault(scope, []).append(callback)
        logger.info(f"Subscribed to {collection} (competition={competition_id})")

        def unsubscribe() -> None:
            callbacks = self.subscribers.get(scope)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self.subscribers[scope]
                logger.info(f"Unsubscribed from {collection} (competition={competition_id})")

        return unsubscribe

    def has_subscribers(self, collection: str, competition_id: Optional[str]) -> bool:
        return bool(self.subscribers.get((collection, competition_id)))

    def subscriber_count(self, collection: str, competition_id: Optional[str]) -> int:
        return len(self.subscribers.get((collection, competition_id), []))

    async def publish(self, collection: str, competition_id: Optional[str], records: List[Any]) -> int:
        """
        Deliver a snapshot to every subscriber of exactly this scope.

        Publishers send the competition's records to its scope and the full
        collection to the None scope. A callback that raises is logged and
        dropped; the others still receive.

        Returns:
            Number of callbacks that received the snapshot
        """
        async with self._lock:
            targets = list(self.subscribers.get((collection, competition_id), []))

        delivered = 0
        failed = []
        for callback in targets:
            try:
                result = callback(records)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.warning(f"Error delivering {collection} snapshot to subscriber: {e}")
                failed.append(callback)

        if failed:
            async with self._lock:
                for scope, callbacks in list(self.subscribers.items()):
                    remaining = [cb for cb in callbacks if cb not in failed]
                    if remaining:
                        self.subscribers[scope] = remaining
                    else:
                        del self.subscribers[scope]

        return delivered


class LiveTeamStats:
    """
    Team statistics kept current from an observation subscription.

    Every snapshot triggers a full synchronous recompute; only the latest
    result is held.
    """

    def __init__(
        self,
        manager: SubscriptionManager,
        competition_id: Optional[str] = None,
        table: ScoringTable = ACTIVE_SCORING_TABLE,
        on_update: Optional[Callable[[List[Dict[str, Any]]], Any]] = None,
    ):
        self.competition_id = competition_id
        self.table = table
        self.on_update = on_update
        self.team_stats: List[Dict[str, Any]] = []
        self.observation_count = 0
        # Snapshots received so far; a caller seeding initial stats checks it
        self.snapshot_count = 0
        self._unsubscribe = manager.subscribe("observations", competition_id, self._handle_snapshot)

    async def _handle_snapshot(self, observations: List[Any]) -> None:
        self.snapshot_count += 1
        scoped = filter_observations(observations, competition_id=self.competition_id)
        self.observation_count = len(scoped)
        self.team_stats = aggregate_team_stats(scoped, self.table)
        if self.on_update is not None:
            result = self.on_update(self.team_stats)
            if inspect.isawaitable(result):
                await result

    def close(self) -> None:
        """Stop receiving snapshots."""
        self._unsubscribe()


# Global subscription manager instance
_subscription_manager: Optional[SubscriptionManager] = None


def get_subscription_manager() -> SubscriptionManager:
    """
    Get the global subscription manager instance.

    Returns:
        SubscriptionManager instance
    """
    global _subscription_manager
    if _subscription_manager is None:
        _subscription_manager = SubscriptionManager()
    return _subscription_manager


def reset_subscription_manager() -> None:
    """Forget the global manager and all of its subscribers."""
    global _subscription_manager
    _subscription_manager = None
