"""
Candidate Store.

Reads the flat delimited data files that describe assets. Each row is
``dataset_id, value[, value...]``; ``.csv`` files are comma separated and
``.txt`` files are pipe separated.
"""

import csv
import random
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from loguru import logger

T = TypeVar("T")

PathLike = Union[str, Path]

# Errors a malformed or unreadable data file can raise while loading.
READ_ERRORS = (OSError, ValueError, csv.Error)

DELIMITERS: Dict[str, str] = {
    ".csv": ",",
    ".txt": "|",
}


def delimiter_for(path: PathLike) -> str:
    """Pick the column delimiter from the file extension."""
    return DELIMITERS.get(Path(path).suffix.lower(), ",")


@dataclass(frozen=True)
class DataFile:
    """An immutable snapshot of one data file: dataset id -> column values."""
    path: str
    rows: Mapping[str, Tuple[str, ...]]

    @classmethod
    def load(cls, path: PathLike) -> "DataFile":
        """
        Read a data file from disk.

        Args:
            path: Location of the data file.

        Returns:
            The parsed DataFile.

        Raises:
            OSError: If the file cannot be read.
        """
        rows: Dict[str, Tuple[str, ...]] = {}
        with open(path, newline="", encoding="utf-8") as handle:
            for row in csv.reader(handle, delimiter=delimiter_for(path)):
                if not row or not row[0].strip():
                    continue
                dataset_id = row[0].strip()
                rows[dataset_id] = tuple(row)
        return cls(path=str(path), rows=MappingProxyType(rows))

    @property
    def dataset_ids(self) -> List[str]:
        return list(self.rows.keys())

    def has(self, dataset_id: Optional[str]) -> bool:
        if dataset_id is None:
            return False
        return dataset_id.strip() in self.rows

    def value(self, dataset_id: Optional[str], column: int = 1) -> Optional[str]:
        """Get a stripped column value for a dataset, or None if absent."""
        if dataset_id is None:
            return None
        row = self.rows.get(dataset_id.strip())
        if row is None or column >= len(row):
            return None
        return row[column].strip()

    def as_properties(self) -> Dict[str, str]:
        """Flatten the file into key -> first value pairs."""
        properties = {}
        for dataset_id in self.rows:
            value = self.value(dataset_id)
            if value is not None:
                properties[dataset_id] = value
        return properties


def shuffled(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Return a shuffled copy of ``items``."""
    result = list(items)
    (rng or random).shuffle(result)
    return result


def list_files(directory: PathLike, rng: Optional[random.Random] = None) -> List[Path]:
    """
    List the regular files of a directory in random order.

    Raises:
        OSError: If the directory does not exist or is not a directory.
    """
    root = Path(directory)
    if not root.is_dir():
        raise NotADirectoryError(f"Directory does not exist: {directory}")
    return shuffled([p for p in root.iterdir() if p.is_file()], rng)


def contains_text(path: PathLike, text: str) -> bool:
    """Case-insensitive substring search over a file; unreadable files never match."""
    needle = text.strip().lower()
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            return any(needle in line.lower() for line in handle)
    except OSError as e:
        logger.debug(f"Unable to read {path}: {e}")
        return False
