# CirrusFlags/cirrusflags/services/lifecycle_service.py
"""Flag lifecycle management for CirrusFlags.

Lifecycle states move along a fixed transition table::

    draft      -> active, archived
    active     -> paused, deprecated
    paused     -> active, deprecated, archived
    deprecated -> archived
    archived   -> (terminal)

The manager also keeps a per-flag activity log (last evaluation time) that
feeds health scoring and the cleanup report.
"""


from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from cirrusflags.errors.exceptions import InvalidStateTransitionError
from cirrusflags.models import (
    FeatureFlag,
    FlagLifecycle,
    LifecycleState,
    PercentageRollout,
)


logger = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[LifecycleState, frozenset] = {
    LifecycleState.DRAFT: frozenset({LifecycleState.ACTIVE, LifecycleState.ARCHIVED}),
    LifecycleState.ACTIVE: frozenset(
        {LifecycleState.PAUSED, LifecycleState.DEPRECATED}
    ),
    LifecycleState.PAUSED: frozenset(
        {LifecycleState.ACTIVE, LifecycleState.DEPRECATED, LifecycleState.ARCHIVED}
    ),
    LifecycleState.DEPRECATED: frozenset({LifecycleState.ARCHIVED}),
    LifecycleState.ARCHIVED: frozenset(),
}

DEFAULT_REVIEW_DAYS = 30
DEFAULT_REMOVAL_DAYS = 90
STALE_DAYS = 30
OLD_FLAG_DAYS = 180
APPROACHING_DAYS = 7

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


def is_valid_transition(from_state: str, to_state: str) -> bool:
    try:
        return LifecycleState(to_state) in VALID_TRANSITIONS[LifecycleState(from_state)]
    except ValueError:
        return False


@dataclass(frozen=True)
class LifecycleEvent:
    type: str
    flag_id: str
    new_state: LifecycleState
    timestamp: datetime
    user: str
    previous_state: Optional[LifecycleState] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class FlagHealth:
    flag_id: str
    state: LifecycleState
    age_in_days: int
    is_overdue_for_review: bool
    is_approaching_deprecation: bool
    is_stale: bool
    health_score: int
    issues: List[str] = field(default_factory=list)
    last_activity_days_ago: Optional[int] = None


@dataclass(frozen=True)
class CleanupRecommendation:
    flag_id: str
    action: str
    reason: str
    priority: str
    estimated_effort: str


@dataclass(frozen=True)
class CleanupReport:
    overdue_for_review: List[str]
    ready_for_removal: List[str]
    fully_rolled_out: List[str]
    dormant: List[str]
    approaching_deprecation: List[str]
    technical_debt_score: int
    recommendations: List[CleanupRecommendation]


LifecycleListener = Callable[[LifecycleEvent], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class LifecycleManager:
    """Validate lifecycle transitions and analyse flag hygiene.

    Args:
        clock: Returns the current time (timezone-aware), replaceable in
            tests.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._listeners: List[LifecycleListener] = []
        self._activity: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    # ---------- Creation & transitions ----------

    def create_lifecycle(
        self,
        created_by: str,
        owner: Optional[str] = None,
        ticket_id: Optional[str] = None,
        documentation_url: Optional[str] = None,
        review_date: Optional[datetime] = None,
    ) -> FlagLifecycle:
        now = self._clock()
        return FlagLifecycle(
            state=LifecycleState.DRAFT,
            created_at=now,
            created_by=created_by,
            updated_at=now,
            updated_by=created_by,
            owner=owner,
            ticket_id=ticket_id,
            documentation_url=documentation_url,
            review_date=review_date or now + timedelta(days=DEFAULT_REVIEW_DAYS),
        )

    def activate(
        self,
        lifecycle: FlagLifecycle,
        user: str,
        reason: Optional[str] = None,
        flag_id: str = "",
    ) -> FlagLifecycle:
        """Move to ``active`` (from draft or paused).

        Args:
            lifecycle: Current lifecycle of the flag.
            user: Who performs the transition.
            reason: Optional note passed to listeners.
            flag_id: Flag the lifecycle belongs to, for events.

        Returns:
            FlagLifecycle: The updated lifecycle.

        Raises:
            InvalidStateTransitionError: If the current state cannot be
                activated.
        """
        now = self._validate(lifecycle, LifecycleState.ACTIVE)
        updated = replace(
            lifecycle,
            state=LifecycleState.ACTIVE,
            updated_at=now,
            updated_by=user,
            activated_at=now,
        )
        self._emit("activated", flag_id, lifecycle, updated, user, reason)
        return updated

    def pause(
        self,
        lifecycle: FlagLifecycle,
        user: str,
        reason: Optional[str] = None,
        flag_id: str = "",
    ) -> FlagLifecycle:
        """Move an active flag to ``paused``; arguments as for ``activate``."""
        now = self._validate(lifecycle, LifecycleState.PAUSED)
        updated = replace(
            lifecycle, state=LifecycleState.PAUSED, updated_at=now, updated_by=user
        )
        self._emit("paused", flag_id, lifecycle, updated, user, reason)
        return updated

    def deprecate(
        self,
        lifecycle: FlagLifecycle,
        user: str,
        deprecation_date: Optional[datetime] = None,
        removal_date: Optional[datetime] = None,
        reason: Optional[str] = None,
        flag_id: str = "",
    ) -> FlagLifecycle:
        """Move to ``deprecated``.

        ``deprecation_date`` defaults to now and ``removal_date`` to now plus
        90 days.
        """
        now = self._validate(lifecycle, LifecycleState.DEPRECATED)
        updated = replace(
            lifecycle,
            state=LifecycleState.DEPRECATED,
            updated_at=now,
            updated_by=user,
            deprecation_date=deprecation_date or now,
            removal_date=removal_date or now + timedelta(days=DEFAULT_REMOVAL_DAYS),
        )
        self._emit("deprecated", flag_id, lifecycle, updated, user, reason)
        return updated

    def archive(
        self,
        lifecycle: FlagLifecycle,
        user: str,
        reason: Optional[str] = None,
        flag_id: str = "",
    ) -> FlagLifecycle:
        """Move to ``archived``, the terminal state.

        Raises:
            InvalidStateTransitionError: If the flag is already archived.
        """
        now = self._validate(lifecycle, LifecycleState.ARCHIVED)
        updated = replace(
            lifecycle, state=LifecycleState.ARCHIVED, updated_at=now, updated_by=user
        )
        self._emit("archived", flag_id, lifecycle, updated, user, reason)
        return updated

    def set_review_date(
        self, lifecycle: FlagLifecycle, review_date: datetime, user: str
    ) -> FlagLifecycle:
        return replace(
            lifecycle,
            review_date=review_date,
            updated_at=self._clock(),
            updated_by=user,
        )

    def set_owner(
        self, lifecycle: FlagLifecycle, owner: str, user: str
    ) -> FlagLifecycle:
        return replace(
            lifecycle, owner=owner, updated_at=self._clock(), updated_by=user
        )

    def _validate(
        self, lifecycle: FlagLifecycle, to_state: LifecycleState
    ) -> datetime:
        if not is_valid_transition(lifecycle.state, to_state):
            raise InvalidStateTransitionError(
                LifecycleState(lifecycle.state).value, to_state.value
            )
        return self._clock()

    # ---------- Listeners ----------

    def add_listener(self, listener: LifecycleListener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    def _emit(
        self,
        event_type: str,
        flag_id: str,
        before: FlagLifecycle,
        after: FlagLifecycle,
        user: str,
        reason: Optional[str],
    ) -> None:
        event = LifecycleEvent(
            type=event_type,
            flag_id=flag_id,
            previous_state=before.state,
            new_state=after.state,
            timestamp=after.updated_at,
            user=user,
            reason=reason,
        )
        logger.info(
            "Flag %s lifecycle %s -> %s by %s",
            flag_id or "<unbound>",
            before.state.value,
            after.state.value,
            user,
        )
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Lifecycle listener failed for %s", event_type)

    # ---------- Activity ----------

    def record_activity(self, flag_id: str, at: Optional[datetime] = None) -> None:
        with self._lock:
            self._activity[flag_id] = _aware(at) or self._clock()

    def get_last_activity(self, flag_id: str) -> Optional[datetime]:
        with self._lock:
            return self._activity.get(flag_id)

    def forget(self, flag_id: str) -> None:
        with self._lock:
            self._activity.pop(flag_id, None)

    def clear_activity(self) -> None:
        with self._lock:
            self._activity.clear()

    # ---------- Health & reports ----------

    def get_flag_health(self, flag: FeatureFlag) -> FlagHealth:
        """Score a flag from 100 down, one fixed penalty per issue."""
        lifecycle = flag.lifecycle
        now = self._clock()
        issues: List[str] = []

        age_in_days = (now - _aware(lifecycle.created_at)).days
        review_date = _aware(lifecycle.review_date)
        deprecation_date = _aware(lifecycle.deprecation_date)

        overdue = review_date is not None and review_date < now
        approaching = (
            deprecation_date is not None
            and now < deprecation_date < now + timedelta(days=APPROACHING_DAYS)
        )
        last_activity = self.get_last_activity(flag.id)
        days_since = (now - last_activity).days if last_activity else None
        stale = days_since is not None and days_since > STALE_DAYS

        score = 100
        if overdue:
            score -= 20
            issues.append("Overdue for review")
        if stale:
            score -= 15
            issues.append("No recent activity")
        if lifecycle.state == LifecycleState.DEPRECATED:
            score -= 10
            issues.append("Flag is deprecated")
        if age_in_days > OLD_FLAG_DAYS:
            score -= 10
            issues.append("Flag is over 6 months old")
        if not lifecycle.owner:
            score -= 10
            issues.append("No owner assigned")
        if not lifecycle.documentation_url:
            score -= 5
            issues.append("No documentation link")
        if not lifecycle.ticket_id:
            score -= 5
            issues.append("No ticket reference")

        return FlagHealth(
            flag_id=flag.id,
            state=lifecycle.state,
            age_in_days=age_in_days,
            is_overdue_for_review=overdue,
            is_approaching_deprecation=approaching,
            is_stale=stale,
            health_score=max(0, score),
            issues=issues,
            last_activity_days_ago=days_since,
        )

    def get_stale_flags(
        self, flags: Iterable[FeatureFlag], stale_days: int = STALE_DAYS
    ) -> List[FeatureFlag]:
        """Active flags not evaluated within ``stale_days`` (or never)."""
        cutoff = self._clock() - timedelta(days=stale_days)
        stale = []
        for flag in flags:
            if flag.lifecycle.state != LifecycleState.ACTIVE:
                continue
            last = self.get_last_activity(flag.id)
            if last is None or last < cutoff:
                stale.append(flag)
        return stale

    def get_overdue_flags(self, flags: Iterable[FeatureFlag]) -> List[FeatureFlag]:
        now = self._clock()
        return [
            f
            for f in flags
            if f.lifecycle.review_date is not None
            and _aware(f.lifecycle.review_date) < now
            and f.lifecycle.state != LifecycleState.ARCHIVED
        ]

    def get_flags_ready_for_removal(
        self, flags: Iterable[FeatureFlag]
    ) -> List[FeatureFlag]:
        now = self._clock()
        return [f for f in flags if self._past_removal(f, now)]

    @staticmethod
    def _past_removal(flag: FeatureFlag, now: datetime) -> bool:
        removal = _aware(flag.lifecycle.removal_date)
        return (
            flag.lifecycle.state == LifecycleState.DEPRECATED
            and removal is not None
            and removal < now
        )

    def generate_cleanup_report(self, flags: Iterable[FeatureFlag]) -> CleanupReport:
        """Aggregate hygiene findings and prioritized recommendations.

        Technical debt points: overdue review 5, ready for removal 10, fully
        rolled out 3, dormant 2, active for over 6 months 3.
        """
        now = self._clock()
        overdue: List[str] = []
        removable: List[str] = []
        rolled_out: List[str] = []
        dormant: List[str] = []
        approaching: List[str] = []
        recommendations: List[CleanupRecommendation] = []
        debt = 0

        for flag in flags:
            health = self.get_flag_health(flag)
            state = flag.lifecycle.state

            if health.is_overdue_for_review:
                overdue.append(flag.id)
                debt += 5
                recommendations.append(
                    CleanupRecommendation(
                        flag.id,
                        "review",
                        "Flag is overdue for scheduled review",
                        "medium",
                        "minimal",
                    )
                )

            if self._past_removal(flag, now):
                removable.append(flag.id)
                debt += 10
                recommendations.append(
                    CleanupRecommendation(
                        flag.id,
                        "remove",
                        "Deprecated flag past removal date",
                        "high",
                        "moderate",
                    )
                )

            if (
                isinstance(flag.rollout, PercentageRollout)
                and flag.rollout.percentage == 100
            ):
                rolled_out.append(flag.id)
                debt += 3
                recommendations.append(
                    CleanupRecommendation(
                        flag.id,
                        "remove",
                        "Flag is at 100% rollout - consider removing",
                        "low",
                        "moderate",
                    )
                )

            if health.is_stale and state == LifecycleState.ACTIVE:
                dormant.append(flag.id)
                debt += 2
                recommendations.append(
                    CleanupRecommendation(
                        flag.id,
                        "review",
                        "No activity in over 30 days",
                        "low",
                        "minimal",
                    )
                )

            if health.is_approaching_deprecation:
                approaching.append(flag.id)
                recommendations.append(
                    CleanupRecommendation(
                        flag.id,
                        "deprecate",
                        "Deprecation date approaching",
                        "medium",
                        "minimal",
                    )
                )

            if health.age_in_days > OLD_FLAG_DAYS and state == LifecycleState.ACTIVE:
                debt += 3
                already_reviewing = any(
                    r.flag_id == flag.id and r.action == "review"
                    for r in recommendations
                )
                if not already_reviewing:
                    recommendations.append(
                        CleanupRecommendation(
                            flag.id,
                            "review",
                            "Flag has been active for over 6 months",
                            "medium",
                            "minimal",
                        )
                    )

        recommendations.sort(key=lambda r: _PRIORITY_ORDER[r.priority])
        return CleanupReport(
            overdue_for_review=overdue,
            ready_for_removal=removable,
            fully_rolled_out=rolled_out,
            dormant=dormant,
            approaching_deprecation=approaching,
            technical_debt_score=debt,
            recommendations=recommendations,
        )
