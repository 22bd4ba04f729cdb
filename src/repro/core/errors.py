from __future__ import annotations

from pathlib import Path
from typing import Optional


class ReproError(Exception):
    """Base class for fatal pipeline errors."""


class SourceUnavailable(ReproError):
    """Raised when the raw dataset cannot be read."""


class SchemaViolation(ReproError):
    """Raised when an expected column is absent or a derivation lookup is incomplete."""


class InputMissing(ReproError):
    """Raised when a stage's upstream artifact does not exist.

    The message names the missing file and the stage that produces it.
    """

    def __init__(self, path: str | Path, producer: Optional[str] = None):
        self.path = Path(path)
        self.producer = producer
        msg = f"Input file not found: {self.path}"
        if producer:
            msg += f". Run the '{producer}' stage first."
        super().__init__(msg)


class NoFigureAvailable(ReproError):
    """Raised when save() is called without a figure."""


class EmptyComposition(ReproError):
    """Raised when compose() is called with no figures."""


class RenderingError(ReproError):
    """Raised when a written figure file is not a valid, non-trivial image."""


class DataQualityWarning(UserWarning):
    """Non-fatal data-quality finding (missing values, non-normal residuals)."""
