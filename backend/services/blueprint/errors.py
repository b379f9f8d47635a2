"""Exception types raised by the blueprint pipeline."""

from __future__ import annotations

from typing import Optional, Tuple


class BlueprintError(Exception):
    """Base class for blueprint pipeline failures."""


class ImageInputError(BlueprintError, ValueError):
    """Bad or missing image input, rejected before any extraction work."""


class ImageDecodeError(BlueprintError, ValueError):
    """Corrupt image bytes, or decoded size disagreeing with the declared size."""

    def __init__(
        self,
        message: str,
        *,
        expected: Optional[Tuple[int, int]] = None,
        actual: Optional[Tuple[int, int]] = None,
    ) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class DocumentNotFoundError(BlueprintError, FileNotFoundError):
    """No persisted blueprint document for the requested id."""


class DocumentLockedError(BlueprintError):
    """Operation would change the pixel reference of a locked document."""
