"""Parse GTFS-style stop files into validated stop records.

Each uploaded file is a delimited text file whose first row names the fields,
typically a GTFS ``stops.txt``. Only three fields matter here:

- ``stop_name``: label shown on hover (may be empty)
- ``stop_lat`` / ``stop_lon``: decimal degrees

Rows whose coordinates do not both parse to finite numbers are dropped without
raising; the count of dropped rows is logged. A file that cannot be tokenized
at all fails as a whole with ``FileParseFailed``.

Several files selected together form a batch. Files are read concurrently but
merged in selection order, row order preserved within each file. When some
files of a batch fail, the stops from the files that parsed are still
returned alongside the failures (partial commit).
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence

import numpy as np
import pandas as pd

from scripts.transit_desert_tools.errors import FileParseFailed

# =============================================================================
# CONFIGURATION
# =============================================================================

NAME_FIELD = "stop_name"
LAT_FIELD = "stop_lat"
LON_FIELD = "stop_lon"
STOP_FIELDS = frozenset({NAME_FIELD, LAT_FIELD, LON_FIELD})

FILE_ENCODING = "utf-8-sig"  # tolerates the BOM some exports prepend

LOGGER = logging.getLogger(__name__)

# =============================================================================
# RECORDS
# =============================================================================


@dataclass(frozen=True)
class Stop:
    """A single transit boarding point."""

    stop_name: str
    stop_lat: float
    stop_lon: float


@dataclass
class BatchParseResult:
    """Outcome of parsing every file selected in one upload action."""

    stops: list[Stop] = field(default_factory=list)
    failures: list[tuple[str, FileParseFailed]] = field(default_factory=list)
    file_count: int = 0

    @property
    def ok(self) -> bool:
        """True when every file in the batch parsed."""
        return not self.failures

    @property
    def failed_files(self) -> list[str]:
        return [name for name, _ in self.failures]


class StopFile(Protocol):
    """A named file whose bytes can be read without blocking the event loop."""

    name: str

    async def read(self) -> bytes:
        ...


@dataclass(frozen=True)
class PathStopFile:
    """Stop file on disk, read in a worker thread."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    async def read(self) -> bytes:
        return await asyncio.to_thread(self.path.read_bytes)


@dataclass(frozen=True)
class InMemoryStopFile:
    """Stop file whose contents were already delivered (e.g. a browser upload)."""

    name: str
    data: bytes

    async def read(self) -> bytes:
        return self.data


# =============================================================================
# VALIDATION
# =============================================================================


def coerce_coordinates(values: pd.Series) -> pd.Series:
    """Convert text coordinates to floats; anything unparseable becomes NaN."""
    return pd.to_numeric(values.fillna("").astype(str).str.strip(), errors="coerce").astype(float)


def valid_coordinate_mask(lat: pd.Series, lon: pd.Series) -> pd.Series:
    """Return True where both coordinates are finite numbers.

    Both inputs must already be numeric (see ``coerce_coordinates``). NaN,
    +/-inf and overflowed values are all rejected.
    """
    lat_ok = np.isfinite(lat.to_numpy(dtype=float))
    lon_ok = np.isfinite(lon.to_numpy(dtype=float))
    return pd.Series(lat_ok & lon_ok, index=lat.index)


# =============================================================================
# PARSING
# =============================================================================


def _decode(content: bytes | str, source_name: str) -> str:
    if isinstance(content, str):
        return content.lstrip("\ufeff")
    try:
        return content.decode(FILE_ENCODING)
    except UnicodeDecodeError as exc:
        raise FileParseFailed(
            f"{source_name}: not valid {FILE_ENCODING} text ({exc.reason})",
            file_name=source_name,
        ) from exc


def _is_stop_field(column: object) -> bool:
    return str(column).strip() in STOP_FIELDS


def read_stop_table(content: bytes | str, source_name: str = "<memory>") -> pd.DataFrame:
    """Read the stop fields of delimited text into a DataFrame of raw strings.

    Blank lines are skipped. An empty input yields an empty DataFrame. Only
    the stop fields are kept; fields past the header width are ignored.

    Raises:
        FileParseFailed: the text cannot be tokenized (e.g. an unclosed quote).
    """
    text = _decode(content, source_name)
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
            usecols=_is_stop_field,
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame(columns=[NAME_FIELD, LAT_FIELD, LON_FIELD])
    except pd.errors.ParserError as exc:
        raise FileParseFailed(f"{source_name}: parser error: {exc}", file_name=source_name) from exc

    df.columns = [str(col).strip() for col in df.columns]
    return df


def parse_stop_text(content: bytes | str, source_name: str = "<memory>") -> list[Stop]:
    """Parse one file's contents into the stops with valid coordinates.

    Row order is preserved. A missing coordinate column invalidates every row;
    a missing name column yields empty names.

    Raises:
        FileParseFailed: the file as a whole is unreadable.
    """
    df = read_stop_table(content, source_name)
    if df.empty:
        LOGGER.info("%s: no data rows.", source_name)
        return []

    for col in (LAT_FIELD, LON_FIELD):
        if col not in df.columns:
            LOGGER.warning("%s: column '%s' not found; no stops can be placed.", source_name, col)
            return []

    names = df[NAME_FIELD] if NAME_FIELD in df.columns else pd.Series("", index=df.index)
    lat = coerce_coordinates(df[LAT_FIELD])
    lon = coerce_coordinates(df[LON_FIELD])
    keep = valid_coordinate_mask(lat, lon)

    dropped = int((~keep).sum())
    if dropped:
        LOGGER.warning("%s: dropped %s rows with missing/invalid coordinates.", source_name, dropped)

    names = names[keep].fillna("").astype(str)
    return [
        Stop(stop_name=name, stop_lat=float(lat_v), stop_lon=float(lon_v))
        for name, lat_v, lon_v in zip(names, lat[keep], lon[keep])
    ]


async def parse_stop_files(files: Sequence[StopFile]) -> BatchParseResult:
    """Read and parse a batch of stop files.

    Reads run concurrently; parsing and merging happen in selection order.
    A failed file is recorded in ``failures`` and contributes no stops; the
    stops of the other files are kept.
    """
    result = BatchParseResult(file_count=len(files))
    contents = await asyncio.gather(*(f.read() for f in files), return_exceptions=True)

    for stop_file, content in zip(files, contents):
        try:
            if isinstance(content, OSError):
                raise FileParseFailed(
                    f"{stop_file.name}: could not be read: {content}", file_name=stop_file.name
                ) from content
            if isinstance(content, BaseException):
                raise content
            stops = parse_stop_text(content, source_name=stop_file.name)
        except FileParseFailed as exc:
            LOGGER.error("Error parsing %s: %s", stop_file.name, exc)
            result.failures.append((stop_file.name, exc))
            continue
        result.stops.extend(stops)

    LOGGER.info(
        "Parsed %s file(s): %s stops, %s failure(s).",
        result.file_count,
        len(result.stops),
        len(result.failures),
    )
    return result
