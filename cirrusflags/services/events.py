# CirrusFlags/cirrusflags/services/events.py
"""Analytics event shapes and sinks.

The engine only produces events; shipping them anywhere is the sink's job.
Sinks are called synchronously after an evaluation and must not block.
Exceptions raised by a sink are logged by the engine and never reach the
caller of ``evaluate``.
"""


from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from cirrusflags.models import EvaluationContext, EvaluationReason


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlagEvaluationEvent:
    flag_key: str
    variant_id: str
    value: Any
    reason: EvaluationReason
    context: EvaluationContext
    timestamp: datetime
    duration_ms: float
    type: str = field(default="evaluation", init=False)


@dataclass(frozen=True)
class FlagExposureEvent:
    flag_key: str
    variant_id: str
    user_id: str
    session_id: str
    timestamp: datetime
    experiment_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    type: str = field(default="exposure", init=False)


@dataclass(frozen=True)
class FlagChangeEvent:
    flag_key: str
    previous_value: Any
    new_value: Any
    previous_variant_id: str
    new_variant_id: str
    timestamp: datetime
    type: str = field(default="change", init=False)


class EventSink:
    """Base sink: every hook is a no-op. Override the ones you need."""

    def on_evaluation(self, event: FlagEvaluationEvent) -> None:
        pass

    def on_exposure(self, event: FlagExposureEvent) -> None:
        pass

    def on_change(self, event: FlagChangeEvent) -> None:
        pass

    def on_error(self, error: BaseException, flag_key: str) -> None:
        pass


class LoggingEventSink(EventSink):
    """Write every event to a logger (this module's logger by default)."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    def on_evaluation(self, event: FlagEvaluationEvent) -> None:
        self.log.debug(
            "evaluation flag=%s variant=%s reason=%s duration_ms=%.3f",
            event.flag_key,
            event.variant_id,
            event.reason.value,
            event.duration_ms,
        )

    def on_exposure(self, event: FlagExposureEvent) -> None:
        self.log.info(
            "exposure flag=%s variant=%s experiment=%s user=%s",
            event.flag_key,
            event.variant_id,
            event.experiment_id,
            event.user_id,
        )

    def on_change(self, event: FlagChangeEvent) -> None:
        self.log.info(
            "change flag=%s %s -> %s",
            event.flag_key,
            event.previous_variant_id,
            event.new_variant_id,
        )

    def on_error(self, error: BaseException, flag_key: str) -> None:
        self.log.warning("evaluation error flag=%s: %s", flag_key, error)
