# CirrusFlags/cirrusflags/services/flag_service.py
"""Flag evaluation engine for CirrusFlags.

``FlagEngine.evaluate`` resolves a flag for a context in a fixed order; the
first step that applies decides the result:

1. fresh cache entry -> cached result
2. unknown flag -> ``OFF`` with the configured fallback
3. flag disabled -> ``OFF`` with the off variant
4. dependencies unsatisfied -> ``DEPENDENCY_FAILED`` with the off variant
5. prerequisite segments, none matching -> ``DEFAULT``
6. targeting rule match -> ``RULE_MATCH``
7. rollout inclusion -> ``ROLLOUT``
8. otherwise -> ``DEFAULT``

Evaluation never raises: unexpected failures become an ``ERROR`` result
carrying the fallback value.
"""


from __future__ import annotations

import logging
import threading
import time
import traceback
from dataclasses import replace
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Tuple,
)

from cachetools import LRUCache

from cirrusflags.config import DEFAULT_CACHE_MAX_SIZE, EngineConfig
from cirrusflags.errors.exceptions import (
    EVALUATION_ERROR,
    FLAG_NOT_FOUND,
    FlagNotFoundError,
)
from cirrusflags.models import (
    EvaluationContext,
    EvaluationErrorInfo,
    EvaluationReason,
    EvaluationResult,
    FeatureFlag,
    Segment,
    Variant,
)
from cirrusflags.repositories.memory_repo import FlagRegistry, RegistrySnapshot
from cirrusflags.services.dependency_service import TargetState
from cirrusflags.services.events import (
    EventSink,
    FlagChangeEvent,
    FlagEvaluationEvent,
    FlagExposureEvent,
)
from cirrusflags.services.hashing import HashFunction
from cirrusflags.services.lifecycle_service import (
    CleanupReport,
    FlagHealth,
    LifecycleManager,
)
from cirrusflags.services.rollout_service import PercentageRolloutEngine
from cirrusflags.services.segment_service import SegmentMatcher
from cirrusflags.services.targeting_service import TargetingRulesEngine


logger = logging.getLogger(__name__)

_DISABLED_REASONS = frozenset(
    {
        EvaluationReason.OFF,
        EvaluationReason.DEPENDENCY_FAILED,
        EvaluationReason.ERROR,
    }
)

LIFECYCLE_ACTIONS = ("activate", "pause", "deprecate", "archive")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_enabled_result(result: EvaluationResult) -> bool:
    """A result counts as "enabled" for dependency checks.

    It must not have ended in ``OFF``, ``DEPENDENCY_FAILED`` or ``ERROR``
    and its value must be neither ``None`` nor ``False``.
    """
    return (
        result.reason not in _DISABLED_REASONS
        and result.value is not None
        and result.value is not False
    )


class EvaluationCache:
    """Results keyed by ``(flag_key, user_id, session_id)`` with a TTL.

    Entries live in a ``cachetools.LRUCache`` so the least recently used
    ones are evicted past ``max_size``. Expiry is checked on read instead
    of dropping entries, since offline mode still serves expired results.

    Args:
        ttl: Seconds an entry stays fresh; ``0`` means entries never expire.
        clock: Monotonic time source.
        max_size: Most entries kept at once.
    """

    def __init__(
        self,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: LRUCache = LRUCache(maxsize=max_size)
        self._lock = threading.Lock()

    @staticmethod
    def key_for(flag_key: str, context: EvaluationContext) -> Tuple[str, str, str]:
        return (flag_key, context.user_id or "anonymous", context.session_id or "")

    def get(
        self, flag_key: str, context: EvaluationContext
    ) -> Tuple[Optional[EvaluationResult], bool]:
        """Return ``(result, expired)``; ``(None, False)`` on a miss."""
        with self._lock:
            entry = self._entries.get(self.key_for(flag_key, context))
        if entry is None:
            return None, False
        result, stored_at = entry
        expired = self.ttl > 0 and self._clock() - stored_at > self.ttl
        return result, expired

    def set(
        self,
        flag_key: str,
        context: EvaluationContext,
        result: EvaluationResult,
        is_current: Optional[Callable[[], bool]] = None,
    ) -> bool:
        """Store a result.

        Args:
            flag_key: Key of the evaluated flag.
            context: Context the result was computed for.
            result: Result to store.
            is_current: Checked under the cache lock; the result is dropped
                when it returns False, e.g. because the definitions it was
                computed from have been replaced.

        Returns:
            bool: True when the result was stored.
        """
        with self._lock:
            if is_current is not None and not is_current():
                return False
            self._entries[self.key_for(flag_key, context)] = (result, self._clock())
        return True

    def invalidate(self, flag_key: str) -> int:
        with self._lock:
            doomed = [k for k in list(self._entries.keys()) if k[0] == flag_key]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            keys = [":".join(k) for k in self._entries.keys()]
        return {"size": len(keys), "max_size": self._entries.maxsize, "keys": keys}


class FlagEngine:
    """Evaluate feature flags against evaluation contexts.

    One engine is created per process (or per test) and shared by
    reference; all public methods are safe to call from several threads.

    Args:
        config: Engine settings; defaults to ``EngineConfig()``.
        hash_function: Replacement bucketing hash ``(key, salt) -> [0, 100)``.
        event_sinks: Receivers of evaluation, exposure, change and error
            events.
        default_context: Context every evaluation starts from.
        lifecycle: Lifecycle manager used for transitions and reports.
        clock: Monotonic clock shared by the evaluation and segment caches.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        hash_function: Optional[HashFunction] = None,
        event_sinks: Iterable[EventSink] = (),
        default_context: Optional[EvaluationContext] = None,
        lifecycle: Optional[LifecycleManager] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or EngineConfig()
        self.registry = FlagRegistry()
        self.targeting = TargetingRulesEngine(debug=self.config.debug)
        self.rollouts = PercentageRolloutEngine(hash_function)
        self.segment_matcher = SegmentMatcher(
            self.config.segment_cache_ttl,
            clock,
            max_size=self.config.segment_cache_max_size,
        )
        self.lifecycle = lifecycle or LifecycleManager()
        self._cache = EvaluationCache(
            self.config.cache_ttl, clock, max_size=self.config.cache_max_size
        )
        self._sinks: List[EventSink] = list(event_sinks)
        self._default_context = default_context or EvaluationContext()
        self._context = self._default_context
        self._context_lock = threading.Lock()
        self._previous: Dict[str, Tuple[Any, str]] = {}
        self._previous_lock = threading.Lock()
        self._initialized = False
        logger.debug("FlagEngine initialized (cache_ttl=%s)", self.config.cache_ttl)

    # ---------- Context ----------

    def set_context(self, context: EvaluationContext) -> None:
        """Merge ``context`` into the current context.

        Switching to a different user clears the evaluation cache.
        """
        with self._context_lock:
            previous_user = self._context.user_id
            self._context = self._context.merge(context)
            user_changed = self._context.user_id != previous_user
        if user_changed:
            self._cache.clear()
        logger.debug("Context updated (user changed: %s)", user_changed)

    def update_context(self, updates: EvaluationContext) -> None:
        """Like ``set_context`` but merges ``custom`` key by key."""
        with self._context_lock:
            previous_user = self._context.user_id
            merged = self._context.merge(updates)
            self._context = replace(
                merged, custom={**self._context.custom, **updates.custom}
            )
            user_changed = self._context.user_id != previous_user
        if user_changed:
            self._cache.clear()

    def get_context(self) -> EvaluationContext:
        """Return the context evaluations start from."""
        with self._context_lock:
            return self._context

    def add_event_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    # ---------- Registration ----------

    def register_flags(self, flags: Iterable[FeatureFlag]) -> None:
        """Register or replace a batch of flags atomically.

        Cached results of the registered flags and of every flag that
        (transitively) depends on them are invalidated.
        """
        batch = list(flags)
        replaced = self.registry.save_flags(batch)
        snapshot = self.registry.snapshot()

        keys = {f.key for f in batch} | {f.key for f in replaced}
        for flag in batch:
            for dependent_id in snapshot.resolver.get_transitive_dependents(flag.id):
                dependent = snapshot.get_flag_by_id(dependent_id)
                if dependent is not None:
                    keys.add(dependent.key)
        for key in keys:
            self._cache.invalidate(key)

        self._initialized = True
        snapshot.resolver.detect_circular_dependencies()

    def register_flag(self, flag: FeatureFlag) -> None:
        """Register or replace a single flag; see ``register_flags``."""
        self.register_flags([flag])

    def remove_flag(self, flag_id: str) -> bool:
        """Remove a flag by id. Returns ``False`` if it was not registered."""
        before = self.registry.snapshot()
        removed = self.registry.delete_flag(flag_id)
        if removed is None:
            return False

        keys = {removed.key}
        for dependent_id in before.resolver.get_transitive_dependents(flag_id):
            dependent = before.get_flag_by_id(dependent_id)
            if dependent is not None:
                keys.add(dependent.key)
        for key in keys:
            self._cache.invalidate(key)

        self.rollouts.clear_sticky_buckets(removed.key)
        self.lifecycle.forget(flag_id)
        with self._previous_lock:
            self._previous.pop(removed.key, None)
        return True

    def register_segments(self, segments: Iterable[Segment]) -> None:
        """Register or replace segments; their cached matches are dropped."""
        for segment_id in self.registry.save_segments(segments):
            self.segment_matcher.clear_segment_cache(segment_id)
        self._cache.clear()

    def remove_segment(self, segment_id: str) -> bool:
        """Remove a segment by id. Returns ``False`` if it was not registered."""
        removed = self.registry.delete_segment(segment_id)
        if removed is None:
            return False
        self.segment_matcher.clear_segment_cache(segment_id)
        self._cache.clear()
        return True

    def get_flag(self, flag_key: str) -> Optional[FeatureFlag]:
        """Look up a registered flag by key.

        Args:
            flag_key: Flag key.

        Returns:
            Optional[FeatureFlag]: The flag, or None when unknown.
        """
        return self.registry.get_flag_by_key(flag_key)

    def get_flag_by_id(self, flag_id: str) -> Optional[FeatureFlag]:
        return self.registry.get_flag_by_id(flag_id)

    def get_all_flags(self) -> List[FeatureFlag]:
        """Return every registered flag."""
        return self.registry.list_flags()

    def get_all_segments(self) -> List[Segment]:
        return self.registry.list_segments()

    # ---------- Evaluation API ----------

    def evaluate(
        self,
        flag_key: str,
        context_overrides: Optional[EvaluationContext] = None,
    ) -> EvaluationResult:
        """Evaluate ``flag_key`` for the current context plus overrides.

        Args:
            flag_key: Key of the flag to evaluate.
            context_overrides: Fields replacing those of the engine context
                for this call only.

        Returns:
            The evaluation result. Never raises.
        """
        context = self.get_context().merge(context_overrides)
        return self._evaluate(flag_key, context, self.registry.snapshot(), frozenset())

    def is_enabled(
        self, flag_key: str, context_overrides: Optional[EvaluationContext] = None
    ) -> bool:
        """Evaluate a flag and return its value as a boolean.

        Args:
            flag_key: Key of the flag to evaluate.
            context_overrides: Per-call context fields.

        Returns:
            bool: Truthiness of the served value; False for unknown flags.
        """
        return bool(self.evaluate(flag_key, context_overrides).value)

    def get_string_value(
        self,
        flag_key: str,
        default: str,
        context_overrides: Optional[EvaluationContext] = None,
    ) -> str:
        value = self.evaluate(flag_key, context_overrides).value
        return value if isinstance(value, str) else default

    def get_number_value(
        self,
        flag_key: str,
        default: float,
        context_overrides: Optional[EvaluationContext] = None,
    ) -> float:
        value = self.evaluate(flag_key, context_overrides).value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        return default

    def get_json_value(
        self,
        flag_key: str,
        default: Any,
        context_overrides: Optional[EvaluationContext] = None,
    ) -> Any:
        value = self.evaluate(flag_key, context_overrides).value
        return default if value is None else value

    def evaluate_all(
        self,
        flag_keys: Optional[Iterable[str]] = None,
        context_overrides: Optional[EvaluationContext] = None,
    ) -> Dict[str, EvaluationResult]:
        """Evaluate several flags (every registered flag when ``flag_keys`` is None)."""
        if flag_keys is None:
            flag_keys = [f.key for f in self.get_all_flags()]
        return {key: self.evaluate(key, context_overrides) for key in flag_keys}

    def get_enabled_flags(
        self, context_overrides: Optional[EvaluationContext] = None
    ) -> Dict[str, EvaluationResult]:
        """Results whose value is ``True`` or whose reason is not ``OFF``."""
        results = {}
        for flag in self.get_all_flags():
            result = self.evaluate(flag.key, context_overrides)
            if result.value is True or result.reason != EvaluationReason.OFF:
                results[flag.key] = result
        return results

    def track_exposure(
        self,
        flag_key: str,
        experiment_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        context_overrides: Optional[EvaluationContext] = None,
    ) -> EvaluationResult:
        """Evaluate ``flag_key`` and report that its variant was shown."""
        context = self.get_context().merge(context_overrides)
        result = self._evaluate(
            flag_key, context, self.registry.snapshot(), frozenset()
        )
        self._emit_exposure(result, context, experiment_id, metadata)
        return result

    # ---------- Evaluation internals ----------

    def _evaluate(
        self,
        flag_key: str,
        context: EvaluationContext,
        snapshot: RegistrySnapshot,
        visiting: FrozenSet[str],
    ) -> EvaluationResult:
        started = time.perf_counter()

        cached, expired = self._cache.get(flag_key, context)
        if cached is not None:
            if not expired:
                return cached
            if self.config.offline_mode:
                return replace(cached, reason=EvaluationReason.STALE, is_stale=True)

        flag: Optional[FeatureFlag] = None
        try:
            flag = snapshot.get_flag_by_key(flag_key)
            if flag is None:
                result = self._fallback_result(
                    flag_key,
                    EvaluationReason.OFF,
                    started,
                    EvaluationErrorInfo(
                        code=FLAG_NOT_FOUND,
                        message=f"Flag '{flag_key}' not found",
                    ),
                )
            else:
                result = self._evaluate_flag(flag, context, snapshot, visiting, started)
        except Exception as e:
            logger.warning("Evaluation of flag %s failed: %s", flag_key, e)
            self._emit("on_error", e, flag_key)
            return self._fallback_result(
                flag_key,
                EvaluationReason.ERROR,
                started,
                EvaluationErrorInfo(
                    code=EVALUATION_ERROR,
                    message=str(e) or e.__class__.__name__,
                    is_transient=True,
                    stack=traceback.format_exc() if self.config.debug else None,
                ),
            )

        # A writer may have published new definitions while this ran.
        self._cache.set(
            flag_key,
            context,
            result,
            is_current=lambda: self.registry.version == snapshot.version,
        )
        if flag is not None:
            self.lifecycle.record_activity(flag.id)
        if self.config.debug:
            logger.debug(
                "Evaluated %s -> %s (%s) in %.3f ms",
                flag_key,
                result.variant_id,
                result.reason.value,
                result.duration_ms,
            )

        self._emit(
            "on_evaluation",
            FlagEvaluationEvent(
                flag_key=result.flag_key,
                variant_id=result.variant_id,
                value=result.value,
                reason=result.reason,
                context=context,
                timestamp=result.timestamp,
                duration_ms=result.duration_ms,
            ),
        )
        if "experiment_id" in result.metadata:
            self._emit_exposure(result, context, result.metadata["experiment_id"], None)
        self._check_for_change(result)
        return result

    def _evaluate_flag(
        self,
        flag: FeatureFlag,
        context: EvaluationContext,
        snapshot: RegistrySnapshot,
        visiting: FrozenSet[str],
        started: float,
    ) -> EvaluationResult:
        if not flag.enabled:
            return self._result(flag, flag.off_variant, EvaluationReason.OFF, started)

        if flag.dependencies:
            chain = visiting | {flag.key}

            def target_state(target_id: str) -> TargetState:
                target = snapshot.get_flag_by_id(target_id)
                if target is None or target.key in chain:
                    return TargetState(enabled=False)
                outcome = self._evaluate(target.key, context, snapshot, chain)
                return TargetState(is_enabled_result(outcome), outcome.variant_id)

            resolution = snapshot.resolver.resolve_dependencies(flag.id, target_state)
            if not resolution.satisfied:
                failed = resolution.unsatisfied[0]
                return self._result(
                    flag,
                    flag.off_variant,
                    EvaluationReason.DEPENDENCY_FAILED,
                    started,
                    metadata={
                        "failed_dependency": failed.target_flag,
                        "dependency_type": failed.type,
                        "detail": failed.reason,
                    },
                )

        segment_id: Optional[str] = None
        if flag.segments:
            for candidate in flag.segments:
                segment = snapshot.segments.get(candidate)
                if segment is not None and self.segment_matcher.matches(
                    segment, context
                ):
                    segment_id = candidate
                    break
            if segment_id is None:
                return self._result(
                    flag, flag.default_variant, EvaluationReason.DEFAULT, started
                )

        if flag.targeting_rules:
            match = self.targeting.evaluate(flag.targeting_rules, context)
            if match.matched and flag.get_variant(match.variant_id) is not None:
                return self._result(
                    flag,
                    match.variant_id,
                    EvaluationReason.RULE_MATCH,
                    started,
                    rule_id=match.rule_id,
                    segment_id=segment_id,
                    metadata={"rule_name": match.rule_name},
                )

        if flag.rollout is not None:

            def in_segment(sid: str, ctx: EvaluationContext) -> bool:
                segment = snapshot.segments.get(sid)
                return segment is not None and self.segment_matcher.matches(
                    segment, ctx
                )

            rollout = self.rollouts.evaluate(
                flag.rollout, context, flag.key, flag.variants, in_segment
            )
            if rollout.included and flag.get_variant(rollout.variant_id) is not None:
                metadata: Dict[str, Any] = {
                    "strategy": flag.rollout.strategy,
                    "bucket": rollout.bucket,
                    "rollout_percentage": rollout.percentage,
                }
                if rollout.stage is not None:
                    metadata["stage"] = rollout.stage
                if rollout.ring is not None:
                    metadata["ring"] = rollout.ring
                if rollout.is_canary:
                    metadata["is_canary"] = True
                if rollout.experiment is not None:
                    metadata["experiment_id"] = rollout.experiment.experiment_id
                return self._result(
                    flag,
                    rollout.variant_id,
                    EvaluationReason.ROLLOUT,
                    started,
                    segment_id=segment_id,
                    metadata=metadata,
                )

        return self._result(
            flag,
            flag.default_variant,
            EvaluationReason.DEFAULT,
            started,
            segment_id=segment_id,
        )

    def _result(
        self,
        flag: FeatureFlag,
        variant_id: str,
        reason: EvaluationReason,
        started: float,
        rule_id: Optional[str] = None,
        segment_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EvaluationResult:
        variant: Optional[Variant] = flag.get_variant(variant_id) or flag.variants[0]
        return EvaluationResult(
            flag_key=flag.key,
            value=variant.value,
            variant_id=variant.id,
            reason=reason,
            timestamp=_utcnow(),
            duration_ms=(time.perf_counter() - started) * 1000,
            rule_id=rule_id,
            segment_id=segment_id,
            metadata=metadata or {},
        )

    def _fallback_result(
        self,
        flag_key: str,
        reason: EvaluationReason,
        started: float,
        error: EvaluationErrorInfo,
    ) -> EvaluationResult:
        return EvaluationResult(
            flag_key=flag_key,
            value=self.config.fallback_for(flag_key),
            variant_id="default",
            reason=reason,
            timestamp=_utcnow(),
            duration_ms=(time.perf_counter() - started) * 1000,
            error=error,
        )

    # ---------- Events ----------

    def _emit(self, hook: str, *args: Any) -> None:
        for sink in list(self._sinks):
            try:
                getattr(sink, hook)(*args)
            except Exception:
                logger.exception("Event sink %r failed in %s", sink, hook)

    def _emit_exposure(
        self,
        result: EvaluationResult,
        context: EvaluationContext,
        experiment_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> None:
        self._emit(
            "on_exposure",
            FlagExposureEvent(
                flag_key=result.flag_key,
                variant_id=result.variant_id,
                user_id=context.user_id or "anonymous",
                session_id=context.session_id or "",
                timestamp=_utcnow(),
                experiment_id=experiment_id,
                metadata=dict(metadata or {}),
            ),
        )

    def _check_for_change(self, result: EvaluationResult) -> None:
        with self._previous_lock:
            previous = self._previous.get(result.flag_key)
            self._previous[result.flag_key] = (result.value, result.variant_id)
        if previous is None or previous[0] == result.value:
            return
        self._emit(
            "on_change",
            FlagChangeEvent(
                flag_key=result.flag_key,
                previous_value=previous[0],
                new_value=result.value,
                previous_variant_id=previous[1],
                new_variant_id=result.variant_id,
                timestamp=result.timestamp,
            ),
        )

    # ---------- Lifecycle & reports ----------

    def transition_flag(
        self,
        flag_key: str,
        action: str,
        user: str,
        reason: Optional[str] = None,
        deprecation_date: Optional[datetime] = None,
        removal_date: Optional[datetime] = None,
    ) -> FeatureFlag:
        """Apply a lifecycle action to a registered flag and re-register it.

        Raises:
            FlagNotFoundError: If no flag has ``flag_key``.
            InvalidStateTransitionError: If the action is not allowed from
                the flag's current state.
            ValueError: If ``action`` is not a lifecycle action.
        """
        flag = self.get_flag(flag_key)
        if flag is None:
            raise FlagNotFoundError(flag_key)

        if action == "activate":
            lifecycle = self.lifecycle.activate(flag.lifecycle, user, reason, flag.id)
        elif action == "pause":
            lifecycle = self.lifecycle.pause(flag.lifecycle, user, reason, flag.id)
        elif action == "deprecate":
            lifecycle = self.lifecycle.deprecate(
                flag.lifecycle,
                user,
                deprecation_date=deprecation_date,
                removal_date=removal_date,
                reason=reason,
                flag_id=flag.id,
            )
        elif action == "archive":
            lifecycle = self.lifecycle.archive(flag.lifecycle, user, reason, flag.id)
        else:
            raise ValueError(f"Unknown lifecycle action '{action}'")

        updated = replace(flag, lifecycle=lifecycle)
        self.register_flag(updated)
        return updated

    def get_flag_health(self, flag_key: str) -> FlagHealth:
        flag = self.get_flag(flag_key)
        if flag is None:
            raise FlagNotFoundError(flag_key)
        return self.lifecycle.get_flag_health(flag)

    def generate_cleanup_report(
        self, flags: Optional[Iterable[FeatureFlag]] = None
    ) -> CleanupReport:
        return self.lifecycle.generate_cleanup_report(
            self.get_all_flags() if flags is None else flags
        )

    # ---------- Cache & maintenance ----------

    def invalidate_cache(self, flag_key: str) -> None:
        """Drop cached results of one flag for every user."""
        self._cache.invalidate(flag_key)

    def clear_cache(self) -> None:
        """Drop every cached result and segment match."""
        self._cache.clear()
        self.segment_matcher.clear_cache()

    def clear_sticky_buckets(self, flag_key: Optional[str] = None) -> None:
        """Forget sticky buckets so affected users are bucketed afresh.

        Args:
            flag_key: Only this flag's buckets; every flag when omitted.
        """
        self.rollouts.clear_sticky_buckets(flag_key)
        if flag_key is None:
            self._cache.clear()
        else:
            self._cache.invalidate(flag_key)

    def get_cache_stats(self) -> Dict[str, Any]:
        """Return the evaluation cache size, limit and keys."""
        return self._cache.stats()

    def get_stats(self) -> Dict[str, Any]:
        snapshot = self.registry.snapshot()
        return {
            "flag_count": len(snapshot.flags),
            "segment_count": len(snapshot.segments),
            "cache_size": self._cache.stats()["size"],
            "sticky_buckets": self.rollouts.sticky_bucket_count(),
            "initialized": self._initialized,
        }

    def is_initialized(self) -> bool:
        return self._initialized

    def reset(self) -> None:
        """Drop every flag, segment, cached result and sticky bucket."""
        self.registry.clear()
        self._cache.clear()
        self.segment_matcher.clear_cache()
        self.rollouts.clear_sticky_buckets()
        self.lifecycle.clear_activity()
        with self._previous_lock:
            self._previous.clear()
        with self._context_lock:
            self._context = self._default_context
        self._initialized = False
        logger.info("FlagEngine reset")
