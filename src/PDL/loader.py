"""
Workbook I/O for the reference tables.

- the measurement catalog: channel label in column B, channel code in column C
- the subject registry snapshot: one row per subject, fixed column order,
  list cells written as "[a, b, c]"
"""

from __future__ import annotations

import logging
import os
import pathlib
import typing
import zipfile

import pandas as pd

from .measurement import MeasurementCatalog
from .registry import SubjectRegistry
from .subject import Demographics, SubjectRecord

logger = logging.getLogger(__name__)

ALL_SUBJECTS_SHEET = "idMatch"

REGISTRY_COLUMNS = [
    "Count",
    "PICU Subject?",
    "Hash",
    "First Name",
    "Last Name",
    "Birth Date/Time",
    "Gender",
    "Birthplace",
    "First Time Point",
    "Location Count",
    "Locations",
    "Variable Count",
    "Variables",
]

CATALOG_LABEL_COLUMN = 1
CATALOG_CODE_COLUMN = 2


class PersistenceError(RuntimeError):
    """Raised when the registry workbook or the ledger cannot be written."""


def _cell_text(value: typing.Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


def _to_bool(value: typing.Any) -> bool:
    if isinstance(value, bool):
        return value
    return _cell_text(value).lower() in {"1", "true", "t", "yes", "y"}


def encode_list(items: typing.Sequence[str]) -> str:
    return "[" + ", ".join(items) + "]"


def decode_list(cell: typing.Any) -> list[str]:
    """Inverse of encode_list; "[]" and blank cells give an empty list."""
    text = _cell_text(cell).strip("[]")
    items: list[str] = []
    for token in text.split(","):
        token = token.strip()
        if token and token not in items:
            items.append(token)
    return items


def load_catalog(workbook_path: str | os.PathLike) -> MeasurementCatalog:
    """
    Read the first sheet of the supported-parameters workbook.
    The first row is a header; rows without a code or a label are skipped.
    """
    df = pd.read_excel(workbook_path, sheet_name=0, header=0, dtype=str, engine="openpyxl")
    labels: dict[str, str] = {}
    for row in df.itertuples(index=False):
        if len(row) <= CATALOG_CODE_COLUMN:
            continue
        code = _cell_text(row[CATALOG_CODE_COLUMN])
        label = _cell_text(row[CATALOG_LABEL_COLUMN])
        if code and label:
            labels[code] = label
    logger.info(f"Loaded {len(labels)} catalog entries from {workbook_path}")
    return MeasurementCatalog(labels)


def record_from_row(row: typing.Sequence[typing.Any]) -> SubjectRecord:
    demographics = Demographics(
        first_name=_cell_text(row[3]),
        last_name=_cell_text(row[4]),
        birth_date_time=_cell_text(row[5]),
        gender=_cell_text(row[6]),
        birthplace=_cell_text(row[7]),
    )
    return SubjectRecord(
        demographics=demographics,
        is_target_population=_to_bool(row[1]),
        earliest_observation_time=_cell_text(row[8]),
        locations=decode_list(row[10]),
        variables=decode_list(row[12]),
    )


def load_registry(workbook_path: str | os.PathLike, target_prefix: str) -> SubjectRegistry:
    """
    Rebuild the registry from the all-subjects sheet of a snapshot.
    A snapshot that does not exist yet yields an empty registry.
    """
    registry = SubjectRegistry(target_prefix)
    path = pathlib.Path(workbook_path)
    if not path.is_file():
        logger.info(f"No registry snapshot at {path}; starting empty")
        return registry
    # everything as text: birth dates such as 20100101 must not become numbers
    try:
        df = pd.read_excel(path, sheet_name=0, header=0, dtype=str, keep_default_na=False, engine="openpyxl")
    except zipfile.BadZipFile as e:
        raise ValueError(f"{path}: not a readable registry workbook ({e})") from e
    if len(df.columns) < len(REGISTRY_COLUMNS):
        raise ValueError(
            f"{path}: expected {len(REGISTRY_COLUMNS)} registry columns, found {len(df.columns)}"
        )
    for row in df.itertuples(index=False):
        record = record_from_row(row)
        stored_key = _cell_text(row[2])
        if stored_key and stored_key != record.subject_key:
            logger.warning(f"{path}: stored key {stored_key} does not match demographics; using recomputed key")
        registry.add(record)
    return registry


def registry_frame(records: typing.Iterable[SubjectRecord]) -> pd.DataFrame:
    rows = []
    for count, record in enumerate(records, start=1):
        d = record.demographics
        rows.append([
            count,
            record.is_target_population,
            record.subject_key,
            d.first_name,
            d.last_name,
            d.birth_date_time,
            d.gender,
            d.birthplace,
            record.earliest_observation_time,
            len(record.locations),
            encode_list(record.locations),
            len(record.variables),
            encode_list(record.variables),
        ])
    return pd.DataFrame(rows, columns=REGISTRY_COLUMNS)


def stage_registry(
    registry: SubjectRegistry, workbook_path: pathlib.Path, target_sheet: str
) -> pathlib.Path:
    """
    Write both registry views to a temporary sibling of `workbook_path` and
    return it; the caller moves it into place.
    """
    # keep the .xlsx suffix so pandas accepts the file for the openpyxl engine
    tmp = workbook_path.with_name(f".{workbook_path.stem}.tmp{workbook_path.suffix or '.xlsx'}")
    tmp.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(tmp, engine="openpyxl") as writer:
        registry_frame(registry).to_excel(writer, sheet_name=ALL_SUBJECTS_SHEET, index=False)
        registry_frame(registry.targets()).to_excel(writer, sheet_name=target_sheet, index=False)
    return tmp

