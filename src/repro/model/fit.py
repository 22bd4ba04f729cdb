from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from repro.core.config import PipelineConfig
from repro.core.data import resolve_frame, write_table
from repro.core.errors import DataQualityWarning
from repro.model.ols import (
    FittedModel,
    ResidualChecks,
    coefficient_table,
    diagnostics_table,
    fit_ols,
    metrics_table,
    residual_checks,
)
from repro.prepare.clean import STAGE_NAME as PREPARE_STAGE

logger = logging.getLogger(__name__)

STAGE_NAME = "fit"


@dataclass(frozen=True)
class FitResult:
    model: FittedModel
    coefficients: pd.DataFrame
    metrics: pd.DataFrame
    diagnostics: pd.DataFrame
    checks: ResidualChecks
    paths: Dict[str, Path]


def _report_checks(checks: ResidualChecks) -> None:
    if checks.normality_tested:
        verdict = "normal" if checks.residuals_normal else "non-normal"
        logger.info("  Shapiro-Wilk p-value: %.4f (%s)", checks.shapiro_p_value, verdict)
        if not checks.residuals_normal:
            msg = (
                f"Standardized residuals look non-normal (Shapiro-Wilk p={checks.shapiro_p_value:.4g} "
                f"<= {checks.alpha:g})"
            )
            logger.warning(msg)
            warnings.warn(msg, DataQualityWarning, stacklevel=3)
    else:
        logger.info("  Shapiro-Wilk skipped (n=%d outside the supported range)", checks.n)

    logger.info(
        "  Breusch-Pagan p-value: %.4f; |std resid| range: %.3f .. %.3f",
        checks.breusch_pagan_p_value,
        checks.min_abs_std_resid,
        checks.max_abs_std_resid,
    )
    if not checks.homoscedastic:
        msg = (
            f"Residual variance looks non-constant (Breusch-Pagan p={checks.breusch_pagan_p_value:.4g} "
            f"<= {checks.alpha:g})"
        )
        logger.warning(msg)
        warnings.warn(msg, DataQualityWarning, stacklevel=3)


def fit(
    canonical_dataset: str | Path | pd.DataFrame,
    cfg: PipelineConfig,
    *,
    target: Optional[str] = None,
    predictor: Optional[str] = None,
    out_dir: Optional[str | Path] = None,
) -> FitResult:
    """Fit ``target ~ predictor`` on the canonical dataset and write model artifacts.

    Writes coefficients, metrics and diagnostics CSVs plus the serialized
    :class:`FittedModel`. File names come from ``cfg.paths``; ``out_dir``
    overrides ``cfg.paths.derived_dir``.
    """

    data = resolve_frame(canonical_dataset, producer=PREPARE_STAGE)
    target = target or cfg.model.target
    predictor = predictor or cfg.model.predictor
    logger.info("Loaded canonical data: %d observations, %d variables", len(data), data.shape[1])

    logger.info("Fitting simple linear regression (%s ~ %s)", target, predictor)
    model, results = fit_ols(data, target, predictor, confidence_level=cfg.model.confidence_level)

    coefficients = coefficient_table(results, predictor, confidence_level=cfg.model.confidence_level)
    metrics = metrics_table(results)
    diagnostics = diagnostics_table(data, results, outlier_threshold=cfg.model.outlier_threshold)

    row = metrics.iloc[0]
    logger.info("  Intercept: %.3f; %s effect: %.3f", model.intercept, predictor, model.slope)
    logger.info(
        "  R²: %.4f; adjusted R²: %.4f; F: %.2f (p=%.3g); residual SE: %.3f",
        row["r_squared"],
        row["adj_r_squared"],
        row["statistic"],
        row["p_value"],
        row["sigma"],
    )
    logger.info("  Mean residual: %.6f", diagnostics["residual"].mean())
    logger.info("  Mean Cook's distance: %.4f", diagnostics["cooks_distance"].mean())

    outliers = diagnostics.loc[diagnostics["outlier"]]
    logger.info(
        "  Outliers (|std resid| > %g): %d / %d",
        cfg.model.outlier_threshold,
        len(outliers),
        len(diagnostics),
    )
    if len(outliers) > 0:
        cols = [c for c in (cfg.raw.id_column, target, predictor, "predicted", "std_resid") if c in outliers]
        logger.info("Outlier details:\n%s", outliers[cols].to_string(index=False))

    checks = residual_checks(results, diagnostics, alpha=cfg.model.normality_alpha)
    _report_checks(checks)

    out = Path(out_dir) if out_dir is not None else Path(cfg.paths.derived_dir)
    paths = {
        "coefficients": write_table(coefficients, out / cfg.paths.coefficients),
        "metrics": write_table(metrics, out / cfg.paths.metrics),
        "diagnostics": write_table(diagnostics, out / cfg.paths.diagnostics),
        "model": model.save(out / cfg.paths.model),
    }
    logger.info("Saved model object to %s", paths["model"])

    return FitResult(
        model=model,
        coefficients=coefficients,
        metrics=metrics,
        diagnostics=diagnostics,
        checks=checks,
        paths=paths,
    )
