"""
Identity resolution.

The SubjectRegistry maps subject keys to live SubjectRecord instances.
Records are created on first encounter (from a loaded snapshot or a new
message) and mutated in place afterwards; nothing is ever removed.
"""

from __future__ import annotations

import logging
import typing

from .subject import Demographics, SubjectRecord

logger = logging.getLogger(__name__)


class SubjectRegistry:
    def __init__(self, target_prefix: str):
        """
        `target_prefix` is the visit-location prefix that marks a subject
        as part of the target population (e.g. a PICU bed code prefix).
        """
        self.target_prefix = target_prefix
        self._subjects: dict[str, SubjectRecord] = {}

    def __len__(self) -> int:
        return len(self._subjects)

    def __contains__(self, subject_key: str) -> bool:
        return subject_key in self._subjects

    def __iter__(self) -> typing.Iterator[SubjectRecord]:
        # key order keeps the persisted workbook stable between runs
        for key in sorted(self._subjects):
            yield self._subjects[key]

    def get(self, subject_key: str) -> SubjectRecord | None:
        return self._subjects.get(subject_key)

    def add(self, record: SubjectRecord) -> SubjectRecord:
        """Register an already-built record (used when loading a snapshot)."""
        existing = self._subjects.get(record.subject_key)
        if existing is not None:
            logger.debug(f"Duplicate snapshot row for subject {record.subject_key}; keeping first")
            return existing
        self._subjects[record.subject_key] = record
        return record

    def resolve(self, demographics: Demographics) -> SubjectRecord:
        """
        Return the record for `demographics`, creating an empty one on
        first encounter. The returned instance is live: callers mutate it.
        """
        record = SubjectRecord(demographics=demographics)
        existing = self._subjects.get(record.subject_key)
        if existing is not None:
            return existing
        self._subjects[record.subject_key] = record
        logger.debug(f"New subject {record.subject_key}")
        return record

    def add_location(self, record: SubjectRecord, location: str | None) -> bool:
        """
        Add a visit-location code to `record`.

        The target-population flag is evaluated against the code just added
        and is never cleared. Returns True if the code was new.
        """
        if not location or location in record.locations:
            return False
        record.locations.append(location)
        if self.target_prefix and location.startswith(self.target_prefix):
            if not record.is_target_population:
                logger.debug(f"Subject {record.subject_key} joins target population via {location!r}")
            record.is_target_population = True
        return True

    def targets(self) -> list[SubjectRecord]:
        return [record for record in self if record.is_target_population]
