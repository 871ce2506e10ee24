"""
Message ingestion.

The IngestionDriver walks the message units of one file, resolves each
patient to a SubjectRecord, normalizes every OBX observation and hands the
resulting DataPoints to the time-series sink.

`run` drives a whole pass: reconcile the root directory against the ledger,
ingest every new file in order, then persist registry and ledger together.
Nothing is written unless every file of the run was ingested.
"""

from __future__ import annotations

import logging
import math
import os
import pathlib
import typing
from dataclasses import dataclass, field
from datetime import datetime

from stairval.notepad import Notepad

from .config import LoaderConfig
from .loader import PersistenceError, load_catalog, load_registry, stage_registry
from .measurement import MeasurementCatalog, UnknownChannel, normalize
from .messages import HL7Message, MalformedMessageUnit, read_messages
from .reconcile import ProcessedFileLedger, find_new_files, stage_ledger
from .registry import SubjectRegistry
from .subject import Demographics
from .tsdb import DataPoint, TimeSeriesSink

logger = logging.getLogger(__name__)

# OBR-7 layout, and the form kept in the registry's "First Time Point" column
OBSERVATION_TIME_FORMAT = "%Y%m%d%H%M%S"
OBSERVATION_TIME_DIGITS = 14
CANONICAL_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

SUBJECT_TAG = "subjectId"


@dataclass(frozen=True)
class Observation:
    channel: str | None
    value: str | None
    unit: str | None


@dataclass(frozen=True)
class MessageUnit:
    """The parts of one ORU^R01 message the driver works with."""

    demographics: Demographics
    location: str | None
    observed_at: datetime
    observations: tuple[Observation, ...]


@dataclass
class FileSummary:
    path: str
    messages: int = 0
    skipped_messages: int = 0
    points: int = 0
    skipped_observations: int = 0


@dataclass
class RunState:
    """Registry and ledger owned by one run; persisted once at the end."""

    registry: SubjectRegistry
    ledger: ProcessedFileLedger
    worklist: tuple[str, ...] = ()
    files: list[FileSummary] = field(default_factory=list)

    @property
    def points(self) -> int:
        return sum(f.points for f in self.files)


def parse_observation_time(raw: str | None) -> datetime:
    """
    Read the leading yyyyMMddHHmmss of an HL7 TS value. Fractional seconds
    and a trailing +/-ZZZZ offset are ignored; the time is taken as local.
    """
    if not raw:
        raise MalformedMessageUnit("OBR-7 observation time is missing")
    head = raw[:OBSERVATION_TIME_DIGITS]
    if len(head) < OBSERVATION_TIME_DIGITS or not head.isdigit():
        raise MalformedMessageUnit(f"OBR-7 observation time {raw!r} does not start with {OBSERVATION_TIME_FORMAT}")
    try:
        return datetime.strptime(head, OBSERVATION_TIME_FORMAT)
    except ValueError as e:
        raise MalformedMessageUnit(f"OBR-7 observation time {raw!r} is not {OBSERVATION_TIME_FORMAT}") from e


def epoch_millis(moment: datetime) -> int:
    # naive OBR-7 times are read as local time
    return int(moment.timestamp() * 1000)


def parse_numeric(raw: str | None) -> int | float | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def extract_demographics(message: HL7Message) -> Demographics:
    if not message.segments("PID"):
        raise MalformedMessageUnit("Message has no PID segment")
    return Demographics(
        first_name=message.get("PID", 5, 0, 2) or "",
        last_name=message.get("PID", 5, 0, 1) or "",
        birth_date_time=message.get("PID", 7, 0, 1) or "",
        gender=message.get("PID", 8, 0, 1) or "",
        birthplace=message.get("PID", 23, 0, 1) or "",
    )


def extract_unit(message: HL7Message) -> MessageUnit:
    """
    Pull demographics, location, observation time and OBX entries out of
    `message`. Raises MalformedMessageUnit before anything is mutated.
    """
    demographics = extract_demographics(message)
    observed_at = parse_observation_time(message.get("OBR", 7, 0, 1))
    observations = tuple(
        Observation(
            channel=obx.get(3, 0, 1),
            value=obx.get(5, 0, 1),
            unit=obx.get(6, 0, 1),
        )
        for obx in message.segments("OBX")
    )
    return MessageUnit(
        demographics=demographics,
        location=message.get("PV1", 3, 0, 1),
        observed_at=observed_at,
        observations=observations,
    )


class IngestionDriver:
    def __init__(
        self,
        catalog: MeasurementCatalog,
        registry: SubjectRegistry,
        sink: TimeSeriesSink,
        notepad: Notepad,
    ):
        self._catalog = catalog
        self._registry = registry
        self._sink = sink
        self._notepad = notepad

    def ingest(self, path: str | os.PathLike) -> FileSummary:
        """
        Ingest every message unit of `path` in file order.

        Malformed units and unknown channels are noted and skipped; sink
        failures propagate.
        """
        summary = FileSummary(path=str(path))
        for index, message in enumerate(read_messages(path)):
            summary.messages += 1
            try:
                unit = extract_unit(message)
            except MalformedMessageUnit as e:
                summary.skipped_messages += 1
                self._notepad.add_warning(f"{path}: message {index + 1}: {e}")
                logger.debug(f"Skipping message {index + 1} of {path}: {e}")
                continue
            self.ingest_unit(unit, summary)
        return summary

    def ingest_unit(self, unit: MessageUnit, summary: FileSummary) -> None:
        record = self._registry.resolve(unit.demographics)
        record.mark_earliest_observation(unit.observed_at.strftime(CANONICAL_TIME_FORMAT))
        self._registry.add_location(record, unit.location)

        timestamp = epoch_millis(unit.observed_at)
        tags = {SUBJECT_TAG: record.subject_key}
        for observation in unit.observations:
            try:
                metric = normalize(self._catalog, observation.channel, observation.unit)
            except UnknownChannel as e:
                summary.skipped_observations += 1
                logger.debug(f"{summary.path}: {e}")
                self._notepad.add_warning(f"{summary.path}: {e}")
                continue
            value = parse_numeric(observation.value)
            if value is None:
                summary.skipped_observations += 1
                self._notepad.add_warning(
                    f"{summary.path}: non-numeric value {observation.value!r} for channel {observation.channel!r}"
                )
                continue
            record.add_variable(metric)
            self._sink.store(DataPoint(metric=metric, timestamp=timestamp, value=value, tags=tags))
            summary.points += 1


def _commit(staged: list[tuple[pathlib.Path, pathlib.Path]]) -> None:
    # previous outputs are set aside until every staged file is in place
    moved: list[tuple[pathlib.Path, pathlib.Path | None]] = []
    try:
        for tmp, target in staged:
            backup = None
            if target.exists():
                backup = target.with_name(f".{target.name}.bak")
                os.replace(target, backup)
            moved.append((target, backup))
            os.replace(tmp, target)
    except OSError:
        for target, backup in reversed(moved):
            if backup is not None:
                os.replace(backup, target)
            else:
                target.unlink(missing_ok=True)
        raise
    for _, backup in moved:
        if backup is not None:
            backup.unlink(missing_ok=True)


def persist(state: RunState, config: LoaderConfig) -> None:
    """
    Write registry and ledger side by side, then move both into place.
    Either both outputs are replaced or, on any failure, both keep their
    previous content.
    """
    staged: list[tuple[pathlib.Path, pathlib.Path]] = []
    try:
        staged.append((stage_registry(state.registry, config.registry_path, config.target_sheet), config.registry_path))
        staged.append((stage_ledger(state.ledger, config.ledger_path), config.ledger_path))
        _commit(staged)
    except (OSError, ValueError) as e:
        for tmp, _ in staged:
            tmp.unlink(missing_ok=True)
        raise PersistenceError(f"Failed to persist run outputs: {e}") from e


def prepare(config: LoaderConfig) -> RunState:
    registry = load_registry(config.registry_path, config.target_prefix)
    ledger = ProcessedFileLedger.load(config.ledger_path)
    worklist = find_new_files(config.root_dir, ledger, exclude=[config.ledger_path])
    return RunState(registry=registry, ledger=ledger, worklist=worklist)


def run(
    config: LoaderConfig,
    sink: TimeSeriesSink,
    notepad: Notepad,
    progress: typing.Callable[[str], None] = logger.info,
) -> RunState:
    """
    One complete reconciliation pass. Returns the run state; when the
    worklist is empty nothing is written.
    """
    catalog = load_catalog(config.catalog_path)
    state = prepare(config)
    progress(f"Existing Subject Count: {len(state.registry)}")
    if not state.worklist:
        progress("Nothing new to process...")
        return state

    driver = IngestionDriver(catalog, state.registry, sink, notepad)
    for path in state.worklist:
        progress(f"     File: {path}")
        state.files.append(driver.ingest(path))
        progress(f"     Subject Count: {len(state.registry)}")

    state.ledger.extend(state.worklist)
    persist(state, config)
    progress(f"Registry written to {config.registry_path}")
    progress(f"Ledger written to {config.ledger_path}")
    return state
