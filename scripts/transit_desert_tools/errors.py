"""Error kinds surfaced by the transit desert map tools."""

from __future__ import annotations


class TransitDesertError(Exception):
    """Base class for errors raised by the transit desert map tools."""


class FileParseFailed(TransitDesertError, ValueError):
    """A whole stops file could not be read as delimited text."""

    def __init__(self, message: str, *, file_name: str = "") -> None:
        self.file_name = file_name
        super().__init__(message)


class RegionNotSelected(TransitDesertError, ValueError):
    """A mesh fetch was requested without choosing a region."""


class MeshFetchFailed(TransitDesertError, OSError):
    """Population mesh retrieval failed (transport, decoding or structure)."""

    def __init__(self, message: str, *, region_code: str = "") -> None:
        self.region_code = region_code
        super().__init__(message)


class MeshDataUnavailable(MeshFetchFailed):
    """No population mesh exists for the requested region."""
