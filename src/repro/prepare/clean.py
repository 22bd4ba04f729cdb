from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd

from repro.core.config import BinClosed, BinConfig, ConversionConfig, DerivationsConfig, LabelConfig, PipelineConfig
from repro.core.data import count_missing, load_dataset, require_columns, write_table
from repro.core.errors import DataQualityWarning, SchemaViolation

logger = logging.getLogger(__name__)

STAGE_NAME = "prepare"


@dataclass(frozen=True)
class PreparedDataset:
    data: pd.DataFrame
    path: Path
    missing_count: int
    derived_columns: List[str]


def _numeric(df: pd.DataFrame, column: str) -> pd.Series:
    values = pd.to_numeric(df[column], errors="coerce")
    bad = df.loc[values.isna() & df[column].notna(), column]
    if len(bad) > 0:
        raise SchemaViolation(
            f"Column '{column}' must be numeric. Example bad values: {bad.unique()[:5].tolist()}"
        )
    return values


def convert_units(df: pd.DataFrame, rule: ConversionConfig) -> pd.Series:
    return _numeric(df, rule.source) * rule.factor


def label_codes(df: pd.DataFrame, rule: LabelConfig) -> pd.Series:
    """Map numeric codes to labels. Every observed code must have a label.

    Missing codes stay missing and are counted by the caller.
    """

    codes = _numeric(df, rule.source)
    observed = codes.notna()

    def _known(v: float) -> bool:
        return bool(float(v).is_integer() and int(v) in rule.mapping)

    known = codes[observed].map(_known).astype(bool)
    if not known.all():
        unmapped = df.loc[known.index[~known], rule.source].unique().tolist()
        raise SchemaViolation(
            f"Column '{rule.source}' has values with no '{rule.name}' label: {unmapped}. "
            f"Add them to derivations.labels[{rule.name}].mapping (known: {sorted(rule.mapping)})."
        )

    labels = [rule.mapping[int(v)] if pd.notna(v) else None for v in codes]
    return pd.Series(pd.Categorical(labels, categories=rule.levels()), index=df.index, name=rule.name)


def bin_values(df: pd.DataFrame, rule: BinConfig) -> pd.Series:
    """Assign each value to exactly one labeled interval.

    Right-closed bins include the lowest edge; left-closed bins include the
    highest edge. Missing values stay missing; observed values outside all
    intervals raise SchemaViolation.
    """

    values = _numeric(df, rule.source).to_numpy(dtype=float)
    edges = np.asarray(rule.edges, dtype=float)
    n_bins = len(edges) - 1

    if rule.closed == BinClosed.right:
        idx = np.searchsorted(edges, values, side="left") - 1
        idx[values == edges[0]] = 0
    else:
        idx = np.searchsorted(edges, values, side="right") - 1
        idx[values == edges[-1]] = n_bins - 1

    observed = ~np.isnan(values)
    outside = observed & ((idx < 0) | (idx >= n_bins))
    if outside.any():
        bad = sorted(set(df.loc[outside, rule.source].tolist()), key=str)
        raise SchemaViolation(
            f"Column '{rule.source}' has values outside the '{rule.name}' bins {rule.edges}: {bad}. "
            "Widen the outer edges (use -inf/inf to cover every value)."
        )

    labels = [rule.labels[i] if ok else None for i, ok in zip(idx, observed)]
    return pd.Series(pd.Categorical(labels, categories=rule.labels), index=df.index, name=rule.name)


def derive_columns(raw: pd.DataFrame, derivations: DerivationsConfig) -> pd.DataFrame:
    """Return ``raw`` plus all derived columns. Does not modify ``raw``."""

    out = raw.copy()
    for conv in derivations.conversions:
        require_columns(out, [conv.source], where=f"Conversion '{conv.name}'")
        out[conv.name] = convert_units(out, conv)
    for lab in derivations.labels:
        require_columns(out, [lab.source], where=f"Label derivation '{lab.name}'")
        out[lab.name] = label_codes(out, lab)
    for b in derivations.bins:
        require_columns(out, [b.source], where=f"Bin derivation '{b.name}'")
        out[b.name] = bin_values(out, b)
    return out


def _log_summary(raw: pd.DataFrame, clean: pd.DataFrame, cfg: PipelineConfig) -> None:
    logger.info(
        "Data preparation complete: %d rows, %d original + %d derived = %d columns",
        len(clean),
        raw.shape[1],
        clean.shape[1] - raw.shape[1],
        clean.shape[1],
    )
    target = cfg.model.target
    if target in clean.columns:
        y = pd.to_numeric(clean[target], errors="coerce")
        logger.info("  %s: mean = %.1f, sd = %.1f", target, y.mean(), y.std())
    group = cfg.figures.group_column
    if group in clean.columns:
        counts = clean[group].value_counts(sort=False)
        logger.info("  %s counts: %s", group, ", ".join(f"{k}={v}" for k, v in counts.items()))


def prepare(
    raw_source: str | Path | pd.DataFrame,
    cfg: PipelineConfig,
    *,
    out_path: Optional[str | Path] = None,
) -> PreparedDataset:
    """Derive the canonical dataset from the raw source and write it to disk.

    Parameters
    ----------
    raw_source:
        DataFrame, or path to a .csv/.parquet file with the raw schema.
    cfg:
        Pipeline config (raw schema + derivation rules).
    out_path:
        Canonical CSV path. Defaults to ``cfg.paths.canonical_path()``.
    """

    if isinstance(raw_source, pd.DataFrame):
        raw = raw_source.copy()
    else:
        raw = load_dataset(raw_source)

    require_columns(raw, cfg.raw.columns(), where="Raw dataset")
    extra = [c for c in raw.columns if c not in cfg.raw.columns()]
    if extra:
        logger.info("Ignoring columns outside the raw schema: %s", extra)
    raw = raw[cfg.raw.columns()].reset_index(drop=True)
    logger.info("Loaded raw data: %d observations, %d variables", len(raw), raw.shape[1])

    clean = derive_columns(raw, cfg.derivations)

    missing = count_missing(clean)
    if missing > 0:
        msg = f"Found {missing} missing values in the prepared dataset"
        logger.warning(msg)
        warnings.warn(msg, DataQualityWarning, stacklevel=2)

    _log_summary(raw, clean, cfg)

    path = write_table(clean, out_path if out_path is not None else cfg.paths.canonical_path())
    return PreparedDataset(
        data=clean,
        path=path,
        missing_count=missing,
        derived_columns=cfg.derivations.names(),
    )
