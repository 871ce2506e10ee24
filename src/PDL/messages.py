"""
HL7 v2 message source.

Splits a message file into message units and exposes field lookups by
segment, field, repetition, component and sub-component, which is all the
ingestion driver needs from an ORU^R01 observation message.

Addressing follows the usual HL7 convention: fields, components and
sub-components are 1-based, repetitions are 0-based, and MSH-1 is the field
separator itself.
"""

from __future__ import annotations

import os
import re
import typing
from dataclasses import dataclass

# Batch/file envelope segments carry no patient data
ENVELOPE_SEGMENTS = {"FHS", "BHS", "BTS", "FTS"}

_SEGMENT_SPLIT = re.compile(r"[\r\n]+")


class MalformedMessageUnit(ValueError):
    """Raised when a message unit lacks a field the driver cannot do without."""


@dataclass(frozen=True)
class Encoding:
    field: str = "|"
    component: str = "^"
    repetition: str = "~"
    escape: str = "\\"
    subcomponent: str = "&"

    @classmethod
    def from_msh(cls, msh: str) -> "Encoding":
        # MSH|^~\&|...  -> field separator at [3], encoding characters follow
        if len(msh) < 4:
            return cls()
        field = msh[3]
        chars = msh[4:].split(field, 1)[0]
        defaults = cls()
        return cls(
            field=field,
            component=chars[0] if len(chars) > 0 else defaults.component,
            repetition=chars[1] if len(chars) > 1 else defaults.repetition,
            escape=chars[2] if len(chars) > 2 else defaults.escape,
            subcomponent=chars[3] if len(chars) > 3 else defaults.subcomponent,
        )


class Segment:
    def __init__(self, raw: str, encoding: Encoding):
        self.raw = raw
        self.encoding = encoding
        parts = raw.split(encoding.field)
        if parts[0] == "MSH":
            # keep MSH-n at index n: MSH-1 is the separator, MSH-2 the encoding characters
            parts = ["MSH", encoding.field] + parts[1:]
        self.fields = parts

    @property
    def name(self) -> str:
        return self.fields[0]

    def get(self, field: int, repetition: int = 0, component: int = 1, subcomponent: int = 1) -> str | None:
        """Stripped value at the given position, or None when absent or empty."""
        if field >= len(self.fields):
            return None
        value = self.fields[field]
        if not (self.name == "MSH" and field in (1, 2)):
            repetitions = value.split(self.encoding.repetition)
            if repetition >= len(repetitions):
                return None
            components = repetitions[repetition].split(self.encoding.component)
            if component > len(components):
                return None
            subcomponents = components[component - 1].split(self.encoding.subcomponent)
            if subcomponent > len(subcomponents):
                return None
            value = subcomponents[subcomponent - 1]
        value = value.strip()
        return value or None

    def __repr__(self) -> str:
        return f"Segment({self.raw!r})"


class HL7Message:
    """
    One message unit (an MSH segment and everything up to the next MSH).
    """

    def __init__(self, raw: str):
        lines = [line for line in _SEGMENT_SPLIT.split(raw) if line.strip()]
        if not lines or not lines[0].startswith("MSH"):
            raise MalformedMessageUnit("Message does not start with an MSH segment")
        self.raw = raw
        self.encoding = Encoding.from_msh(lines[0])
        self._segments = [Segment(line, self.encoding) for line in lines]

    def segments(self, name: str | None = None) -> list[Segment]:
        if name is None:
            return list(self._segments)
        return [segment for segment in self._segments if segment.name == name]

    def get(
        self,
        segment: str,
        field: int,
        repetition: int = 0,
        component: int = 1,
        subcomponent: int = 1,
        occurrence: int = 0,
    ) -> str | None:
        """
        Value of `segment`-`field` in the `occurrence`-th segment of that
        name (0 = first), or None if any level of the path is missing.
        """
        matches = self.segments(segment)
        if occurrence >= len(matches):
            return None
        return matches[occurrence].get(field, repetition, component, subcomponent)

    @property
    def control_id(self) -> str | None:
        return self.get("MSH", 10)

    def __repr__(self) -> str:
        return f"HL7Message(control_id={self.control_id!r}, segments={len(self._segments)})"


def split_messages(content: str) -> list[str]:
    """
    Group the segments of a file into message units, one per MSH segment.

    Segments before the first MSH (other than envelope segments) have no
    message to belong to and are dropped.
    """
    units: list[list[str]] = []
    for line in _SEGMENT_SPLIT.split(content):
        line = line.strip()
        if not line or line[:3] in ENVELOPE_SEGMENTS:
            continue
        if line.startswith("MSH"):
            units.append([line])
        elif units:
            units[-1].append(line)
    return ["\r".join(unit) for unit in units]


def read_messages(path: str | os.PathLike) -> typing.Iterator[HL7Message]:
    """Yield the message units of `path` in file order."""
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        content = fh.read()
    for raw in split_messages(content):
        yield HL7Message(raw)
