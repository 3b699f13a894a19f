# CirrusFlags/cirrusflags/tests/test_rollout.py
"""
Unit tests for the rollout strategies and the rollout planning helpers.
"""


from datetime import datetime, timedelta, timezone

import pytest

from cirrusflags.errors.exceptions import FlagConfigurationError
from cirrusflags.models import (
    CanaryRollout,
    DeploymentRing,
    EvaluationContext,
    ExperimentRollout,
    PercentageRollout,
    RingRollout,
    RolloutStage,
    ScheduledRollout,
    SessionContext,
    UserAttributes,
    VariantAllocation,
)
from cirrusflags.services.rollout_service import (
    PercentageRolloutEngine,
    calculate_rollout_impact,
    current_stage,
    generate_rollout_schedule,
)
from cirrusflags.services.variant_service import VariantSets


START = datetime(2024, 6, 1, tzinfo=timezone.utc)
VARIANTS = VariantSets.boolean()


def _user(user_id, **kwargs):
    return EvaluationContext(user=UserAttributes(id=user_id), **kwargs)


@pytest.fixture
def rollouts():
    return PercentageRolloutEngine()


# ---------- Percentage ----------


def test_percentage_rollout_matches_target_rate_and_is_reproducible(rollouts):
    rollout = PercentageRollout(percentage=25, sticky=True)
    ids = [f"user-{i}" for i in range(10000)]

    first = [
        rollouts.evaluate(rollout, _user(uid), "checkout-v2", VARIANTS).included
        for uid in ids
    ]
    assert 2300 <= sum(first) <= 2700

    again = [
        rollouts.evaluate(rollout, _user(uid), "checkout-v2", VARIANTS).included
        for uid in ids
    ]
    assert again == first


def test_percentage_rollout_serves_first_treatment(rollouts):
    result = rollouts.evaluate(
        PercentageRollout(percentage=100), _user("u-1"), "f", VARIANTS
    )
    assert result.included is True
    assert result.variant_id == "on"
    assert 0 <= result.bucket < 100


def test_percentage_bounds(rollouts):
    assert not rollouts.evaluate(
        PercentageRollout(percentage=0), _user("u-1"), "f", VARIANTS
    ).included
    with pytest.raises(FlagConfigurationError):
        PercentageRollout(percentage=101)


def test_no_hash_key_means_not_included(rollouts):
    result = rollouts.evaluate(
        PercentageRollout(percentage=100), EvaluationContext(), "f", VARIANTS
    )
    assert result.included is False


def test_session_id_is_used_without_user(rollouts):
    ctx = EvaluationContext(session=SessionContext(session_id="s-1"))
    result = rollouts.evaluate(PercentageRollout(percentage=100), ctx, "f", VARIANTS)
    assert result.included is True


def test_literal_hash_key_puts_every_user_in_one_bucket(rollouts):
    rollout = PercentageRollout(percentage=50, hash_key="tenant-42")
    buckets = {
        rollouts.evaluate(rollout, _user(f"user-{i}"), "f", VARIANTS).bucket
        for i in range(20)
    }
    assert buckets == {rollouts.get_bucket("f", "tenant-42")}


def test_hash_attribute_buckets_by_context_value(rollouts):
    rollout = PercentageRollout(percentage=50, hash_attribute="custom.org")
    a = _user("u-1", custom={"org": "acme"})
    b = _user("u-2", custom={"org": "acme"})
    assert (
        rollouts.evaluate(rollout, a, "f", VARIANTS).bucket
        == rollouts.evaluate(rollout, b, "f", VARIANTS).bucket
        == rollouts.get_bucket("f", "acme")
    )

    # missing attribute falls back to the user id
    c = _user("u-3")
    assert rollouts.evaluate(rollout, c, "f", VARIANTS).bucket == rollouts.get_bucket(
        "f", "u-3"
    )


def test_sticky_buckets_survive_hash_changes(rollouts):
    rollout = PercentageRollout(percentage=50, sticky=True)
    rollouts.set_sticky_bucket("f", "u-1", 10.0)
    assert rollouts.evaluate(rollout, _user("u-1"), "f", VARIANTS).bucket == 10.0

    rollouts.evaluate(rollout, _user("u-2"), "g", VARIANTS)
    assert rollouts.sticky_bucket_count() == 2

    rollouts.clear_sticky_buckets("f")
    assert rollouts.sticky_bucket_count() == 1
    rollouts.clear_sticky_buckets()
    assert rollouts.sticky_bucket_count() == 0


def test_get_bucket_uses_flag_key_and_salt(rollouts):
    assert rollouts.get_bucket("f", "u-1") == rollouts.get_bucket("f", "u-1", "default")
    assert rollouts.get_bucket("f", "u-1") != rollouts.get_bucket("g", "u-1")


# ---------- Scheduled ----------


def test_current_stage_picks_latest_started():
    stages = [
        RolloutStage("10%", 10, START),
        RolloutStage("50%", 50, START + timedelta(days=2)),
    ]
    assert current_stage(stages, START - timedelta(hours=1)) is None
    assert current_stage(stages, START + timedelta(days=1)).name == "10%"
    assert current_stage(stages, START + timedelta(days=3)).name == "50%"


def test_scheduled_rollout_reports_stage(rollouts):
    rollout = ScheduledRollout(stages=[RolloutStage("all", 100, START)])
    ctx = _user("u-1", timestamp=START + timedelta(days=1))
    result = rollouts.evaluate(rollout, ctx, "f", VARIANTS)
    assert result.included is True
    assert result.stage == "all"

    early = _user("u-1", timestamp=START - timedelta(days=1))
    assert rollouts.evaluate(rollout, early, "f", VARIANTS).included is False


# ---------- Ring & canary ----------


def test_ring_rollout_includes_members_of_reached_rings(rollouts):
    rollout = RingRollout(
        rings=[
            DeploymentRing("r0", "Staff", segments=["staff"], priority=0),
            DeploymentRing("r1", "Beta", segments=["beta"], priority=1),
            DeploymentRing("r2", "Everyone", segments=["all"], priority=2),
        ],
        current_ring="r1",
    )
    members = {"u-staff": {"staff"}, "u-beta": {"beta"}, "u-other": {"all"}}

    def resolver(segment_id, ctx):
        return segment_id in members.get(ctx.user_id, set())

    beta = rollouts.evaluate(rollout, _user("u-beta"), "f", VARIANTS, resolver)
    assert beta.included is True
    assert beta.ring == "Beta"
    assert rollouts.evaluate(rollout, _user("u-staff"), "f", VARIANTS, resolver).included
    assert not rollouts.evaluate(
        rollout, _user("u-other"), "f", VARIANTS, resolver
    ).included
    # no resolver, no segment membership
    assert not rollouts.evaluate(rollout, _user("u-beta"), "f", VARIANTS).included


def test_canary_rollout(rollouts):
    everyone = CanaryRollout(canary_percentage=100)
    result = rollouts.evaluate(everyone, _user("u-1"), "f", VARIANTS)
    assert result.included is True
    assert result.is_canary is True

    gated = CanaryRollout(canary_percentage=100, canary_segment="canaries")
    assert not rollouts.evaluate(
        gated, _user("u-1"), "f", VARIANTS, lambda sid, ctx: False
    ).included
    assert rollouts.evaluate(
        gated, _user("u-1"), "f", VARIANTS, lambda sid, ctx: sid == "canaries"
    ).included


# ---------- Experiment ----------


def test_experiment_allocation_walk():
    rollout = ExperimentRollout(
        experiment_id="exp-1",
        allocation=[VariantAllocation("off", 50), VariantAllocation("on", 50)],
    )
    pinned = PercentageRolloutEngine(hash_function=lambda key, salt: 75.0)
    result = pinned.evaluate(rollout, _user("u-1"), "f", VARIANTS)
    assert result.variant_id == "on"
    assert result.experiment.experiment_id == "exp-1"
    assert result.experiment.allocation_percentage == 50

    low = PercentageRolloutEngine(hash_function=lambda key, salt: 10.0)
    assert low.evaluate(rollout, _user("u-1"), "f", VARIANTS).variant_id == "off"


def test_experiment_partial_allocation_and_end_date():
    partial = ExperimentRollout("exp-2", allocation=[VariantAllocation("on", 20)])
    engine = PercentageRolloutEngine(hash_function=lambda key, salt: 60.0)
    assert engine.evaluate(partial, _user("u-1"), "f", VARIANTS).included is False

    ended = ExperimentRollout(
        "exp-3", allocation=[VariantAllocation("on", 100)], end_date=START
    )
    late = _user("u-1", timestamp=START + timedelta(seconds=1))
    assert engine.evaluate(ended, late, "f", VARIANTS).included is False


def test_experiment_over_allocation_is_rejected():
    with pytest.raises(FlagConfigurationError):
        ExperimentRollout(
            "exp", allocation=[VariantAllocation("a", 60), VariantAllocation("b", 60)]
        )


# ---------- Planning helpers ----------


def test_calculate_rollout_impact():
    assert calculate_rollout_impact(10, 25) == {
        "added": 15,
        "removed": 0.0,
        "unchanged": 10,
    }
    assert calculate_rollout_impact(50, 20) == {
        "added": 0.0,
        "removed": 30,
        "unchanged": 20,
    }


def test_generate_rollout_schedule():
    stages = generate_rollout_schedule(START)
    assert [s.name for s in stages] == ["1%", "5%", "10%", "25%", "50%", "75%", "100%"]
    assert stages[1].start_time - stages[0].start_time == timedelta(days=1)

    short = generate_rollout_schedule(START, target_percentage=20, duration_days=4)
    assert [s.percentage for s in short] == [1, 5, 10, 20]
