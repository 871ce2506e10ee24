"""
Incremental file reconciliation.

Decides which message files under the root directory are new by comparing
their canonical paths against the processed-file ledger written by earlier
runs.
"""

from __future__ import annotations

import logging
import os
import pathlib
import typing

logger = logging.getLogger(__name__)

# Plain-text message containers produced by the monitoring export
MESSAGE_EXTENSIONS = (".txt", ".msg")


class ProcessedFileLedger:
    """
    Paths of every message file ingested so far.

    Grows only: paths from earlier runs are kept and the current run's files
    are appended in processing order.
    """

    def __init__(self, paths: typing.Iterable[str] = ()):
        self._paths: dict[str, None] = {}
        self.extend(paths)

    @classmethod
    def load(cls, ledger_path: str | os.PathLike) -> "ProcessedFileLedger":
        """One path per line; a ledger that does not exist yet is empty."""
        path = pathlib.Path(ledger_path)
        if not path.is_file():
            logger.info(f"No ledger at {path}; treating every file as new")
            return cls()
        with open(path, "r", encoding="utf-8") as fh:
            return cls(line.strip() for line in fh)

    def __contains__(self, path: str) -> bool:
        return path in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    @property
    def paths(self) -> list[str]:
        return list(self._paths)

    def extend(self, paths: typing.Iterable[str]) -> None:
        for path in paths:
            if path:
                self._paths.setdefault(path, None)


def stage_ledger(ledger: ProcessedFileLedger, ledger_path: pathlib.Path) -> pathlib.Path:
    """Write `ledger` next to `ledger_path` and return the temporary file."""
    tmp = ledger_path.with_name(f".{ledger_path.name}.tmp")
    tmp.parent.mkdir(parents=True, exist_ok=True)
    with open(tmp, "w", encoding="utf-8") as fh:
        for line in ledger.paths:
            fh.write(f"{line}\n")
    return tmp


def canonical_path(path: str | os.PathLike) -> str:
    return str(pathlib.Path(path).resolve())


def iter_message_files(directory: pathlib.Path) -> typing.Iterator[str]:
    """
    Canonical paths of message files below `directory`, depth first.

    Directory symlinks are followed, but each real directory is walked once,
    so links to an already visited folder (or back to an ancestor) add nothing.
    """
    visited: set[str] = set()

    def walk(current: pathlib.Path) -> typing.Iterator[str]:
        real = canonical_path(current)
        if real in visited:
            return
        visited.add(real)
        for entry in sorted(current.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                yield from walk(entry)
            else:
                path = canonical_path(entry)
                if path.endswith(MESSAGE_EXTENSIONS):
                    yield path

    yield from walk(directory)


def find_new_files(
    root_dir: str | os.PathLike,
    ledger: ProcessedFileLedger,
    exclude: typing.Iterable[str | os.PathLike] = (),
) -> tuple[str, ...]:
    """
    Return the ordered worklist of message files not yet in `ledger`.

    `exclude` names files that live under the root but are never input (the
    ledger itself is usually kept there). Running this again with the same
    directory and an updated ledger yields an empty tuple.
    """
    skipped = {canonical_path(p) for p in exclude}
    # a file reachable through several links is queued once, at its first sighting
    new_files = tuple(
        dict.fromkeys(
            path
            for path in iter_message_files(pathlib.Path(root_dir))
            if path not in ledger and path not in skipped
        )
    )
    logger.info(f"Reconciled {root_dir}: {len(new_files)} new file(s), {len(ledger)} already processed")
    return new_files
