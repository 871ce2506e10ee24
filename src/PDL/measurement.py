"""
Measurement normalization.

Maps a raw OBX channel code and unit code to a canonical metric name of the
form ``vitals.<unit>.<Label>`` using the channel labels of the measurement
catalog (the "supported parameters" reference workbook).
"""

from __future__ import annotations

import re
import typing

# Stands in for the bed/module digit in catalog codes such as "1#2"
WILDCARD = "#"

_FIRST_DIGIT = re.compile(r"\d")

# Applied in this order, case-insensitively
UNIT_SUBSTITUTIONS: tuple[tuple[str, str], ...] = (
    ("min", "Min"),
    ("/", "Per"),
    ("%", "percent"),
    ("#", "Count"),
    ("cel", "Celsius"),
    ("mm(hg)", "mmHg"),
)

METRIC_PREFIX = "vitals"


class UnknownChannel(KeyError):
    """Raised when a channel code has no catalog label, even as a wildcard."""

    def __init__(self, channel: str | None):
        super().__init__(channel)
        self.channel = channel

    def __str__(self) -> str:
        return f"No catalog entry for channel {self.channel!r}"


class MeasurementCatalog:
    """
    Read-only mapping of raw channel code to human readable label.
    """

    def __init__(self, labels: typing.Mapping[str, str]):
        self._labels = dict(labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __contains__(self, code: str) -> bool:
        return code in self._labels

    def label_for(self, channel: str | None) -> str:
        """
        Look up `channel`; on a miss retry once with its first digit replaced
        by the wildcard marker. Raises UnknownChannel if both lookups miss.
        """
        if channel is None:
            raise UnknownChannel(channel)
        label = self._labels.get(channel)
        if label is not None:
            return label
        wildcard = _FIRST_DIGIT.sub(WILDCARD, channel, count=1)
        if wildcard != channel:
            label = self._labels.get(wildcard)
            if label is not None:
                return label
        raise UnknownChannel(channel)


def camel_case_label(label: str) -> str:
    # only the first letter of each token changes; "heartRate" stays intact
    return "".join(token[:1].upper() + token[1:] for token in label.split())


def normalize_unit(unit: str | None) -> str:
    if unit is None:
        return ""
    for old, new in UNIT_SUBSTITUTIONS:
        unit = re.sub(re.escape(old), new, unit, flags=re.IGNORECASE)
    return unit[:1].lower() + unit[1:]


def normalize(catalog: MeasurementCatalog, channel: str | None, unit: str | None) -> str:
    """
    Canonical metric name for one observation, e.g.
    ``normalize(catalog, "0002-4182", "/min") -> "vitals.perMin.HeartRate"``.
    """
    label = camel_case_label(catalog.label_for(channel))
    return f"{METRIC_PREFIX}.{normalize_unit(unit)}.{label}"
