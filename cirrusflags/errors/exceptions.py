# CirrusFlags/cirrusflags/errors/exceptions.py
"""Domain exceptions raised by the CirrusFlags engine.

Evaluation itself never raises: failures during ``FlagEngine.evaluate`` are
converted into an ``ERROR`` result. The exceptions below cover the
preconditions that are allowed to propagate to the caller: invalid flag
definitions (raised when a model is built), invalid lifecycle transitions,
and management lookups of unknown flags.
"""


from __future__ import annotations


class CirrusFlagsError(Exception):
    """Base class for all CirrusFlags domain errors.

    Attributes:
        detail: Human-readable description of the error.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class FlagConfigurationError(CirrusFlagsError):
    """Raised when a flag, segment or rollout definition is inconsistent.

    Examples: a flag without variants, a ``default_variant`` that is not one
    of the flag's variants, or a builder-required field left empty.
    """


class InvalidStateTransitionError(CirrusFlagsError):
    """Raised when a lifecycle transition is not in the transition table.

    Attributes:
        from_state: The current lifecycle state.
        to_state: The state the caller attempted to move to.
    """

    def __init__(self, from_state: str, to_state: str) -> None:
        super().__init__(
            f"Invalid state transition from '{from_state}' to '{to_state}'"
        )
        self.from_state = from_state
        self.to_state = to_state


class FlagNotFoundError(CirrusFlagsError):
    """Raised by management operations that target an unknown flag key."""

    def __init__(self, flag_key: str) -> None:
        super().__init__(f"Flag '{flag_key}' not found")
        self.flag_key = flag_key


# Error codes carried by EvaluationResult.error
FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
DEPENDENCY_FAILED = "DEPENDENCY_FAILED"
EVALUATION_ERROR = "EVALUATION_ERROR"
