# CirrusFlags/cirrusflags/repositories/memory_repo.py
"""In-memory flag and segment registry for CirrusFlags.

The registry is copy-on-write: every mutation builds a complete new
``RegistrySnapshot`` (flags by id, key index, segments, dependency graph)
under a writer lock and publishes it with a single assignment. Readers grab
the current snapshot once and work on it without locking, so a batch of
flags is either entirely visible to an evaluation or not at all.

Definitions are not persisted; a registry source (admin API, bootstrap
file, tests) feeds it.
"""


from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from cirrusflags.errors.exceptions import FlagConfigurationError
from cirrusflags.models import FeatureFlag, Segment
from cirrusflags.services.dependency_service import DependencyResolver


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrySnapshot:
    """One immutable view of every registered definition.

    The dictionaries are never mutated once the snapshot is published.
    ``version`` grows by one with every published snapshot.
    """

    version: int = 0
    flags: Dict[str, FeatureFlag] = field(default_factory=dict)
    key_index: Dict[str, str] = field(default_factory=dict)
    segments: Dict[str, Segment] = field(default_factory=dict)
    resolver: DependencyResolver = field(default_factory=DependencyResolver)

    def get_flag_by_key(self, key: str) -> Optional[FeatureFlag]:
        flag_id = self.key_index.get(key)
        return self.flags.get(flag_id) if flag_id is not None else None

    def get_flag_by_id(self, flag_id: str) -> Optional[FeatureFlag]:
        return self.flags.get(flag_id)


def _build_snapshot(
    flags: Dict[str, FeatureFlag], segments: Dict[str, Segment], version: int
) -> RegistrySnapshot:
    key_index: Dict[str, str] = {}
    for flag in flags.values():
        owner = key_index.get(flag.key)
        if owner is not None and owner != flag.id:
            raise FlagConfigurationError(
                f"Flag key '{flag.key}' is used by both '{owner}' and '{flag.id}'"
            )
        key_index[flag.key] = flag.id

    resolver = DependencyResolver(
        dep for flag in flags.values() for dep in flag.dependencies
    )
    return RegistrySnapshot(
        version=version,
        flags=flags,
        key_index=key_index,
        segments=segments,
        resolver=resolver,
    )


class FlagRegistry:
    """Thread-safe, copy-on-write store of flags and segments."""

    def __init__(self) -> None:
        self._snapshot = RegistrySnapshot()
        self._write_lock = threading.Lock()

    def snapshot(self) -> RegistrySnapshot:
        """Return the snapshot published most recently."""
        return self._snapshot

    @property
    def version(self) -> int:
        """Version of the current snapshot."""
        return self._snapshot.version

    # ---------- Flags ----------

    def save_flags(self, flags: Iterable[FeatureFlag]) -> List[FeatureFlag]:
        """Upsert a batch of flags atomically.

        Args:
            flags: Flags to add or replace (matched by ``id``).

        Returns:
            The previously registered versions of the replaced flags.

        Raises:
            FlagConfigurationError: If two flags would share a key. The
                current snapshot is left untouched.
        """
        batch = list(flags)
        with self._write_lock:
            current = self._snapshot
            replaced = [current.flags[f.id] for f in batch if f.id in current.flags]
            merged = dict(current.flags)
            for flag in batch:
                merged[flag.id] = flag
            self._snapshot = _build_snapshot(
                merged, current.segments, current.version + 1
            )

        for flag in batch:
            logger.info("Flag registered: %s (%s)", flag.key, flag.id)
        return replaced

    def save_flag(self, flag: FeatureFlag) -> Optional[FeatureFlag]:
        replaced = self.save_flags([flag])
        return replaced[0] if replaced else None

    def delete_flag(self, flag_id: str) -> Optional[FeatureFlag]:
        """Remove a flag by id; returns the removed flag, if any."""
        with self._write_lock:
            current = self._snapshot
            removed = current.flags.get(flag_id)
            if removed is None:
                return None
            remaining = {k: v for k, v in current.flags.items() if k != flag_id}
            self._snapshot = _build_snapshot(
                remaining, current.segments, current.version + 1
            )

        logger.info("Flag removed: %s (%s)", removed.key, removed.id)
        return removed

    def get_flag_by_key(self, key: str) -> Optional[FeatureFlag]:
        """Look up a flag by key.

        Args:
            key: Flag key.

        Returns:
            Optional[FeatureFlag]: The flag, or None when no flag has that key.
        """
        return self._snapshot.get_flag_by_key(key)

    def get_flag_by_id(self, flag_id: str) -> Optional[FeatureFlag]:
        return self._snapshot.get_flag_by_id(flag_id)

    def list_flags(self) -> List[FeatureFlag]:
        """Return every registered flag, in registration order."""
        return list(self._snapshot.flags.values())

    # ---------- Segments ----------

    def save_segments(self, segments: Iterable[Segment]) -> List[str]:
        """Upsert a batch of segments atomically; returns their ids."""
        batch = list(segments)
        with self._write_lock:
            current = self._snapshot
            merged = dict(current.segments)
            for segment in batch:
                merged[segment.id] = segment
            self._snapshot = RegistrySnapshot(
                version=current.version + 1,
                flags=current.flags,
                key_index=current.key_index,
                segments=merged,
                resolver=current.resolver,
            )

        for segment in batch:
            logger.info("Segment registered: %s (%s)", segment.name, segment.id)
        return [s.id for s in batch]

    def delete_segment(self, segment_id: str) -> Optional[Segment]:
        with self._write_lock:
            current = self._snapshot
            removed = current.segments.get(segment_id)
            if removed is None:
                return None
            self._snapshot = RegistrySnapshot(
                version=current.version + 1,
                flags=current.flags,
                key_index=current.key_index,
                segments={
                    k: v for k, v in current.segments.items() if k != segment_id
                },
                resolver=current.resolver,
            )

        logger.info("Segment removed: %s", segment_id)
        return removed

    def get_segment(self, segment_id: str) -> Optional[Segment]:
        return self._snapshot.segments.get(segment_id)

    def list_segments(self) -> List[Segment]:
        return list(self._snapshot.segments.values())

    # ---------- Maintenance ----------

    def clear(self) -> None:
        with self._write_lock:
            self._snapshot = RegistrySnapshot(version=self._snapshot.version + 1)
