# CirrusFlags/cirrusflags/services/segment_service.py
"""Segment matching for CirrusFlags.

A user matches a segment when:
1. they are not in ``excluded_users`` (exclusion always wins),
2. and either they are in ``included_users`` or the segment's rule group
   evaluates true for the context.

Match results are cached per ``(segment_id, user_id)`` for a short TTL.
Contexts without a user id are never cached.
"""


from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from cachetools import TTLCache

from cirrusflags.models import EvaluationContext, Segment
from cirrusflags.services.condition_service import ConditionResult, evaluate_group


logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_CACHE_TTL = 60.0
DEFAULT_SEGMENT_CACHE_MAX_SIZE = 10000

RULE_MATCH = "RULE_MATCH"
EXPLICIT_INCLUDE = "EXPLICIT_INCLUDE"
EXPLICIT_EXCLUDE = "EXPLICIT_EXCLUDE"
NO_MATCH = "NO_MATCH"

COMPOSITION_OPERATIONS = ("union", "intersection", "difference")


@dataclass(frozen=True)
class SegmentMatchResult:
    matched: bool
    segment_id: str
    reason: str
    rules_evaluated: int = 0
    cached: bool = False


@dataclass(frozen=True)
class SegmentComposition:
    """Set operation over segment ids (``union``, ``intersection``, ``difference``)."""

    operation: str
    segments: Tuple[str, ...]


class SegmentMatcher:
    """Evaluate segment membership with a per-user TTL cache.

    Args:
        cache_ttl: Seconds a match result stays valid. ``0`` disables the
            cache entirely.
        clock: Monotonic time source, replaceable in tests.
        max_size: Most ``(segment_id, user_id)`` results kept at once.
    """

    def __init__(
        self,
        cache_ttl: float = DEFAULT_SEGMENT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
        max_size: int = DEFAULT_SEGMENT_CACHE_MAX_SIZE,
    ) -> None:
        self.cache_ttl = cache_ttl
        # TTLCache drops expired entries itself; it is not thread-safe.
        self._cache: Optional[TTLCache] = (
            TTLCache(maxsize=max_size, ttl=cache_ttl, timer=clock)
            if cache_ttl > 0
            else None
        )
        self._lock = threading.Lock()

    def matches(self, segment: Segment, context: EvaluationContext) -> bool:
        """Check whether the context belongs to the segment.

        Args:
            segment: Segment to test.
            context: Evaluation context.

        Returns:
            bool: True when the context is a member.
        """
        return self.match_with_details(segment, context).matched

    def match_with_details(
        self, segment: Segment, context: EvaluationContext
    ) -> SegmentMatchResult:
        user_id = context.user_id
        cache_key = (
            (segment.id, user_id) if user_id and self._cache is not None else None
        )

        if cache_key is not None:
            with self._lock:
                cached = self._cache.get(cache_key)
            if cached is not None:
                return replace(cached, cached=True)

        result = self._evaluate(segment, context, user_id)

        if cache_key is not None:
            with self._lock:
                self._cache[cache_key] = result
        return result

    def _evaluate(
        self,
        segment: Segment,
        context: EvaluationContext,
        user_id: Optional[str],
    ) -> SegmentMatchResult:
        if user_id and user_id in segment.excluded_users:
            return SegmentMatchResult(False, segment.id, EXPLICIT_EXCLUDE)
        if user_id and user_id in segment.included_users:
            return SegmentMatchResult(True, segment.id, EXPLICIT_INCLUDE)

        trace: List[ConditionResult] = []
        matched = evaluate_group(segment.rules, context, trace)
        return SegmentMatchResult(
            matched=matched,
            segment_id=segment.id,
            reason=RULE_MATCH if matched else NO_MATCH,
            rules_evaluated=len(trace),
        )

    def matches_any(
        self, segments: Iterable[Segment], context: EvaluationContext
    ) -> Optional[Segment]:
        """Return the first matching segment, or ``None``."""
        for segment in segments:
            if self.matches(segment, context):
                return segment
        return None

    def matches_all(
        self, segments: Iterable[Segment], context: EvaluationContext
    ) -> bool:
        """Return True when the context belongs to every segment given."""
        return all(self.matches(segment, context) for segment in segments)

    def get_matching_segments(
        self, segments: Iterable[Segment], context: EvaluationContext
    ) -> List[Segment]:
        """List the segments the context belongs to, in input order."""
        return [s for s in segments if self.matches(s, context)]

    def clear_segment_cache(self, segment_id: str) -> None:
        """Drop every cached match of one segment, e.g. after it changes.

        Args:
            segment_id: Segment whose cached results are discarded.
        """
        if self._cache is None:
            return
        with self._lock:
            stale = [key for key in list(self._cache.keys()) if key[0] == segment_id]
            for key in stale:
                self._cache.pop(key, None)
        if stale:
            logger.debug(
                "Cleared %d cached match(es) for segment %s", len(stale), segment_id
            )

    def clear_cache(self) -> None:
        """Drop every cached match."""
        if self._cache is None:
            return
        with self._lock:
            self._cache.clear()

    def cache_size(self) -> int:
        """Number of unexpired cached matches."""
        if self._cache is None:
            return 0
        with self._lock:
            self._cache.expire()
            return len(self._cache)


def compose_segments(
    segments: Mapping[str, Segment],
    composition: SegmentComposition,
    context: EvaluationContext,
    matcher: SegmentMatcher,
) -> bool:
    """Evaluate a set operation over registered segments.

    Unknown segment ids are ignored. ``difference`` needs at least two
    segments: the context must match the first and none of the others.

    Raises:
        ValueError: If the composition operation is unknown.
    """
    selected: Sequence[Segment] = [
        segments[sid] for sid in composition.segments if sid in segments
    ]

    if composition.operation == "union":
        return matcher.matches_any(selected, context) is not None
    if composition.operation == "intersection":
        return bool(selected) and matcher.matches_all(selected, context)
    if composition.operation == "difference":
        if len(selected) < 2:
            return False
        first, rest = selected[0], selected[1:]
        return matcher.matches(first, context) and (
            matcher.matches_any(rest, context) is None
        )
    raise ValueError(f"Unknown segment composition '{composition.operation}'")
