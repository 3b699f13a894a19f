# CirrusFlags/cirrusflags/tests/conftest.py
"""Shared fixtures: flag/context builders and a fresh engine per test."""


from datetime import datetime, timezone

import pytest

from cirrusflags.config import EngineConfig
from cirrusflags.models import (
    EvaluationContext,
    FeatureFlag,
    FlagLifecycle,
    SessionContext,
    UserAttributes,
)
from cirrusflags.services.flag_service import FlagEngine
from cirrusflags.services.variant_service import VariantSets


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def lifecycle(state="active", **overrides):
    fields = dict(
        state=state,
        created_at=NOW,
        created_by="tests",
        updated_at=NOW,
        updated_by="tests",
    )
    fields.update(overrides)
    return FlagLifecycle(**fields)


@pytest.fixture
def make_lifecycle():
    return lifecycle


@pytest.fixture
def make_flag():
    """Build a boolean flag (``off``/``on``) unless variants are given."""

    def _make(key, **kwargs):
        kwargs.setdefault("id", key)
        kwargs.setdefault("variants", VariantSets.boolean())
        kwargs.setdefault("default_variant", "off")
        kwargs.setdefault("off_variant", "off")
        kwargs.setdefault("lifecycle", lifecycle())
        return FeatureFlag(key=key, **kwargs)

    return _make


@pytest.fixture
def make_context():
    def _make(user_id=None, session_id=None, **user_fields):
        return EvaluationContext(
            user=UserAttributes(id=user_id, **user_fields) if user_id else None,
            session=SessionContext(session_id=session_id) if session_id else None,
        )

    return _make


@pytest.fixture
def engine():
    return FlagEngine(EngineConfig())
