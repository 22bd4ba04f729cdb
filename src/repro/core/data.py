from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

from .errors import InputMissing, SchemaViolation, SourceUnavailable

logger = logging.getLogger(__name__)


def load_dataset(path: str | Path) -> pd.DataFrame:
    """Read a raw tabular source (.csv or .parquet).

    Any failure to read is reported as :class:`SourceUnavailable`.
    """

    path = Path(path)
    if not path.is_file():
        raise SourceUnavailable(f"Raw data file not found: {path}. Check paths.raw_data in the config.")
    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            return pd.read_csv(path)
        if suffix == ".parquet":
            return pd.read_parquet(path)
    except (OSError, ValueError, ImportError) as e:
        raise SourceUnavailable(f"Could not read raw data file {path}: {e}") from e
    raise SourceUnavailable(f"Unsupported dataset format: {path.suffix}. Use .csv or .parquet")


def require_columns(df: pd.DataFrame, columns: Sequence[str], *, where: str) -> None:
    missing: List[str] = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaViolation(
            f"{where} is missing required columns: {missing}. Available: {list(df.columns)}"
        )


def load_artifact(path: str | Path, *, producer: Optional[str] = None) -> pd.DataFrame:
    """Read a CSV artifact written by an upstream stage.

    A missing file raises :class:`InputMissing` naming the stage to run first.
    """

    path = Path(path)
    if not path.is_file():
        raise InputMissing(path, producer)
    try:
        return pd.read_csv(path)
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
        remedy = f" Re-run the '{producer}' stage." if producer else ""
        raise SchemaViolation(f"Could not parse {path}: {e}.{remedy}") from e


def resolve_frame(
    source: str | Path | pd.DataFrame,
    *,
    producer: Optional[str] = None,
) -> pd.DataFrame:
    if isinstance(source, pd.DataFrame):
        return source.copy()
    return load_artifact(source, producer=producer)


def write_table(df: pd.DataFrame, path: str | Path) -> Path:
    """Write a CSV artifact, creating parent directories. Overwrites existing files."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info("Wrote %s (%d rows x %d columns)", path, len(df), df.shape[1])
    return path


def count_missing(df: pd.DataFrame) -> int:
    return int(df.isna().sum().sum())
