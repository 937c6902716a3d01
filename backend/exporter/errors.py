from __future__ import annotations


class ExportError(Exception):
    """Base class for export failures."""


class TooLargeError(ExportError):
    """The requested region would produce an oversized artifact at this zoom."""

    def __init__(self, message: str, *, width: int = 0, height: int = 0) -> None:
        super().__init__(message)
        self.width = width
        self.height = height


class ExportAborted(ExportError):
    """The export's cancel token fired before the artifact was finished."""


class NothingToExportError(ExportError):
    """No exportable element lies inside the selected region."""
