# CirrusFlags/cirrusflags/tests/test_memory_repo.py
"""
Unit tests for the copy-on-write flag registry.
"""


import pytest

from cirrusflags.errors.exceptions import FlagConfigurationError
from cirrusflags.models import FlagDependency, Segment
from cirrusflags.repositories.memory_repo import FlagRegistry


@pytest.fixture
def registry():
    return FlagRegistry()


def test_save_and_lookup(registry, make_flag):
    flag = make_flag("checkout-v2", id="flag-1")
    assert registry.save_flag(flag) is None
    assert registry.get_flag_by_key("checkout-v2") is flag
    assert registry.get_flag_by_id("flag-1") is flag
    assert registry.get_flag_by_key("nope") is None


def test_save_returns_replaced_versions(registry, make_flag):
    registry.save_flag(make_flag("a"))
    newer = make_flag("a", enabled=False)
    replaced = registry.save_flags([newer, make_flag("b")])
    assert [f.key for f in replaced] == ["a"]
    assert registry.get_flag_by_key("a").enabled is False


def test_duplicate_keys_leave_snapshot_untouched(registry, make_flag):
    registry.save_flag(make_flag("a", id="id-1"))
    before = registry.snapshot()

    with pytest.raises(FlagConfigurationError):
        registry.save_flags([make_flag("b"), make_flag("a", id="id-2")])

    assert registry.snapshot() is before
    assert registry.get_flag_by_key("b") is None


def test_snapshot_is_unaffected_by_later_writes(registry, make_flag):
    registry.save_flag(make_flag("a"))
    old = registry.snapshot()
    registry.save_flag(make_flag("b"))
    assert old.get_flag_by_key("b") is None
    assert registry.snapshot().get_flag_by_key("b") is not None


def test_dependency_graph_follows_flags(registry, make_flag):
    registry.save_flags(
        [
            make_flag("parent"),
            make_flag(
                "child", dependencies=[FlagDependency("child", "parent", "requires")]
            ),
        ]
    )
    assert registry.snapshot().resolver.get_dependents("parent") == ["child"]

    registry.delete_flag("child")
    assert registry.snapshot().resolver.get_dependents("parent") == []


def test_delete_flag(registry, make_flag):
    registry.save_flag(make_flag("a"))
    assert registry.delete_flag("a").key == "a"
    assert registry.delete_flag("a") is None
    assert registry.list_flags() == []


def test_segments(registry):
    segment = Segment(id="beta", name="Beta testers")
    assert registry.save_segments([segment]) == ["beta"]
    assert registry.get_segment("beta") is segment
    assert registry.delete_segment("beta") is segment
    assert registry.delete_segment("beta") is None


def test_clear(registry, make_flag):
    registry.save_flag(make_flag("a"))
    registry.save_segments([Segment(id="s", name="S")])
    registry.clear()
    assert registry.list_flags() == []
    assert registry.list_segments() == []
