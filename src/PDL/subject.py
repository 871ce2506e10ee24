"""
Subject domain model.

Defines the Demographics tuple a subject key is derived from and the
SubjectRecord that accumulates locations and variables across runs.
"""

import hashlib
import html
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Demographics:
    """
    Identity fields of a patient as found in a PID segment.

    Attributes:
        first_name: Given name (PID-5.2).
        last_name: Family name (PID-5.1).
        birth_date_time: Birth date/time exactly as sent (PID-7.1).
        gender: Administrative sex (PID-8).
        birthplace: Birth place (PID-23).
    """

    first_name: str = ""
    last_name: str = ""
    birth_date_time: str = ""
    gender: str = ""
    birthplace: str = ""

    def concatenation(self) -> str:
        return (
            self.first_name
            + self.last_name
            + self.birth_date_time
            + self.gender
            + self.birthplace
        )


def compute_subject_key(demographics: Demographics) -> str:
    """
    SHA-256 of the concatenated demographics, hex encoded, with &, < and >
    escaped so the key can be dropped into markup unchanged.
    """
    digest = hashlib.sha256(demographics.concatenation().encode("utf-8")).hexdigest()
    return html.escape(digest, quote=False)


@dataclass
class SubjectRecord:
    """
    One de-identified patient across all processed files.

    Attributes:
        demographics: Identity tuple; fixed for the life of the record.
        is_target_population: Set once a matching visit location is seen.
        earliest_observation_time: First observation time ('' while unset).
        locations: Visit-location codes, insertion ordered, no duplicates.
        variables: Canonical metric names, insertion ordered, no duplicates.
    """

    demographics: Demographics
    is_target_population: bool = False
    earliest_observation_time: str = ""
    locations: list[str] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)
    _subject_key: str = field(default="", init=False, repr=False, compare=False)

    @property
    def subject_key(self) -> str:
        # demographics are frozen, so the first computation stays valid
        if not self._subject_key:
            self._subject_key = compute_subject_key(self.demographics)
        return self._subject_key

    def mark_earliest_observation(self, timestamp: str) -> bool:
        """Record `timestamp` unless an earlier run or message already did."""
        if self.earliest_observation_time:
            return False
        self.earliest_observation_time = timestamp
        return True

    def add_variable(self, metric: str) -> bool:
        if metric in self.variables:
            return False
        self.variables.append(metric)
        return True
