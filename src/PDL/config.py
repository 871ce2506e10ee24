"""
Loader configuration.

Settings come from a Java-style ``server.properties`` file (``key=value``
lines, ``#`` comments), read with python-dotenv. Property names are the
ones the loader has always used, so existing deployments keep their files.
"""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass

from dotenv import dotenv_values

from .tsdb import DEFAULT_API_PUT

DEFAULT_CONFIG_PATH = "server.properties"
DEFAULT_TARGET_SHEET = "targetSubjects"

REQUIRED_PROPERTIES = (
    "openTSDBUrl",
    "awareSupportedParams",
    "idMatch",
    "processedFile",
    "rootDir",
    "studyString",
)


class ConfigurationError(ValueError):
    """Raised when a property or a referenced file is missing."""


@dataclass(frozen=True)
class LoaderConfig:
    """
    Attributes:
        tsdb_url: OpenTSDB base URL (openTSDBUrl).
        api_put: Path of the put endpoint (apiPut).
        catalog_path: Measurement catalog workbook (awareSupportedParams).
        registry_path: Subject registry workbook, read and rewritten (idMatch).
        target_sheet: Sheet name of the target-population view (idMatchSheet).
        ledger_path: Processed-file ledger (processedFile).
        root_dir: Directory scanned for message files (rootDir).
        target_prefix: Location prefix of the target population (studyString).
    """

    tsdb_url: str
    api_put: str
    catalog_path: pathlib.Path
    registry_path: pathlib.Path
    target_sheet: str
    ledger_path: pathlib.Path
    root_dir: pathlib.Path
    target_prefix: str

    @classmethod
    def from_properties(cls, properties: dict[str, str | None]) -> "LoaderConfig":
        values = {key: (value or "").strip() for key, value in properties.items()}
        missing = [name for name in REQUIRED_PROPERTIES if not values.get(name)]
        if missing:
            raise ConfigurationError(f"Missing required properties: {', '.join(missing)}")
        return cls(
            tsdb_url=values["openTSDBUrl"],
            api_put=values.get("apiPut") or DEFAULT_API_PUT,
            catalog_path=pathlib.Path(values["awareSupportedParams"]),
            registry_path=pathlib.Path(values["idMatch"]),
            target_sheet=values.get("idMatchSheet") or DEFAULT_TARGET_SHEET,
            ledger_path=pathlib.Path(values["processedFile"]),
            root_dir=pathlib.Path(values["rootDir"]),
            target_prefix=values["studyString"],
        )

    def validate(self) -> "LoaderConfig":
        """Check the inputs that must exist before any processing starts."""
        if not self.catalog_path.is_file():
            raise ConfigurationError(
                f"awareSupportedParams: catalog workbook not found at {self.catalog_path}"
            )
        if not self.root_dir.is_dir():
            raise ConfigurationError(f"rootDir: {self.root_dir} is not a directory")
        if self.target_sheet == "idMatch":
            raise ConfigurationError("idMatchSheet: must differ from the all-subjects sheet 'idMatch'")
        return self


def load_config(path: str | os.PathLike = DEFAULT_CONFIG_PATH) -> LoaderConfig:
    config_file = pathlib.Path(path)
    if not config_file.is_file():
        raise ConfigurationError(f"Configuration file not found: {config_file}")
    properties = dotenv_values(config_file, encoding="utf-8")
    return LoaderConfig.from_properties(dict(properties)).validate()
