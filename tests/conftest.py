import os
import pathlib

import pandas as pd
import pytest

from PDL.measurement import MeasurementCatalog

CATALOG_ROWS = [
    # (id, label, code)
    (1, "Heart Rate", "0002-4182"),
    (2, "Mean Arterial Pressure", "0002-4a15"),
    (3, "Skin Temperature", "TEMP#"),
    (4, "SpO2", "0002-4bb8"),
]


class RecordingSink:
    """Collects data points instead of sending them."""

    def __init__(self):
        self.points = []

    def store(self, point):
        self.points.append(point)


@pytest.fixture(scope="session")
def fpath_test_dir() -> str:
    """
    Path to `tests/data/` folder.
    """
    return os.path.join(os.path.dirname(__file__), "data")


@pytest.fixture(scope="session")
def fpath_oru(fpath_test_dir: str) -> str:
    return os.path.join(fpath_test_dir, "oru_r01_same_patient.msg")


@pytest.fixture
def catalog() -> MeasurementCatalog:
    return MeasurementCatalog({code: label for _, label, code in CATALOG_ROWS})


@pytest.fixture
def catalog_workbook(tmp_path: pathlib.Path) -> pathlib.Path:
    df = pd.DataFrame(CATALOG_ROWS, columns=["ID", "Label", "Code"])
    path = tmp_path / "AwareSupportedParams.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as w:
        df.to_excel(w, sheet_name="params", index=False)
    return path


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


def oru_message(
    control_id="1",
    first="JANE",
    last="DOE",
    birth="20150304",
    gender="F",
    birthplace="BALTIMORE",
    location="ZB04^12",
    observed="20160101120000",
    observations=(("0002-4182", "120", "/min"),),
) -> str:
    """Build a minimal ORU^R01 message with CR segment separators."""
    segments = [
        f"MSH|^~\\&|MONITOR|PICU|HOST|JHH|{observed}||ORU^R01|{control_id}|P|2.3",
        f"PID|||MRN{control_id}||{last}^{first}||{birth}|{gender}|||||||||||||||{birthplace}",
        f"PV1||I|{location}",
        f"OBR|1|||VITALS|||{observed}",
    ]
    for i, (channel, value, unit) in enumerate(observations, start=1):
        segments.append(f"OBX|{i}|NM|{channel}^LABEL||{value}|{unit}")
    return "\r".join(segments) + "\r"
