"""
In-memory stores for per-user workflow state and tracked catalog
requests. Both live for the lifetime of the process only.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from xombi.types import ListableResult, MediaKind, WorkflowState

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 5
DEFAULT_MAX_AGE_DAYS = 30

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
#  Workflow state
# ============================================================


@dataclass
class SearchResultContext:
    """The results a user can currently pick from, in display order."""

    search_results: list[ListableResult] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(self.search_results) > MAX_SEARCH_RESULTS:
            raise ValueError(
                f"at most {MAX_SEARCH_RESULTS} search results may be stored, "
                f"got {len(self.search_results)}"
            )


@dataclass
class UserState:
    state: WorkflowState = WorkflowState.UNSPECIFIED
    context: SearchResultContext | None = None


class UserStateStore:
    """Workflow state keyed by (lower-cased) identifier."""

    def __init__(self) -> None:
        self._states: dict[str, UserState] = {}
        self._lock = threading.Lock()

    def get(self, identifier: str) -> tuple[WorkflowState, SearchResultContext | None]:
        with self._lock:
            user_state = self._states.get(identifier.lower())
        if user_state is None:
            return WorkflowState.UNSPECIFIED, None
        return user_state.state, user_state.context

    def set(
        self,
        identifier: str,
        state: WorkflowState,
        context: SearchResultContext | None,
    ) -> None:
        with self._lock:
            self._states[identifier.lower()] = UserState(state=state, context=context)

    def clear(self, identifier: str) -> None:
        with self._lock:
            self._states.pop(identifier.lower(), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


# ============================================================
#  Request tracking
# ============================================================


@dataclass(frozen=True)
class TrackedRequest:
    item_id: str
    media_kind: MediaKind
    requester: str
    timestamp: datetime


class RequestTracker:
    """Remembers who requested which catalog item.

    Keys are ``(item_id, media_kind)``: a movie and a show can share a
    numeric id. Entries older than ``max_age_days`` are evicted whenever
    a new request is tracked.
    """

    def __init__(
        self,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
        clock: Clock = _utcnow,
    ) -> None:
        self._requests: dict[tuple[str, MediaKind], TrackedRequest] = {}
        self._lock = threading.Lock()
        self._max_age_days = max_age_days
        self._clock = clock

    def track(self, item_id: str | int, media_kind: MediaKind | str, requester: str) -> None:
        self.cleanup(self._max_age_days)
        kind = MediaKind(media_kind)
        request = TrackedRequest(
            item_id=str(item_id),
            media_kind=kind,
            requester=requester,
            timestamp=self._clock(),
        )
        with self._lock:
            self._requests[(request.item_id, kind)] = request
        logger.info("Tracking %s request %s for %s", kind.value, item_id, requester)

    def get_requester(self, item_id: str | int, media_kind: MediaKind | str) -> str | None:
        with self._lock:
            request = self._requests.get((str(item_id), MediaKind(media_kind)))
        return request.requester if request else None

    def remove(self, item_id: str | int, media_kind: MediaKind | str) -> bool:
        kind = MediaKind(media_kind)
        with self._lock:
            removed = self._requests.pop((str(item_id), kind), None)
        if removed:
            logger.info("Removed tracking for %s request %s", kind.value, item_id)
        return removed is not None

    def cleanup(self, max_age_days: int = DEFAULT_MAX_AGE_DAYS) -> int:
        """Evict entries tracked more than ``max_age_days`` ago.

        Returns:
            The number of evicted entries.
        """
        cutoff = self._clock() - timedelta(days=max_age_days)
        with self._lock:
            stale = [key for key, req in self._requests.items() if req.timestamp < cutoff]
            for key in stale:
                del self._requests[key]
        if stale:
            logger.info("Cleaned up %d old tracked requests", len(stale))
        return len(stale)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._requests)

    def all_tracked(self) -> list[TrackedRequest]:
        with self._lock:
            return list(self._requests.values())
