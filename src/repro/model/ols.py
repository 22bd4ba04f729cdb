from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from joblib import dump, load
from scipy import stats
from statsmodels.stats.diagnostic import het_breuschpagan

from repro.core.data import require_columns
from repro.core.errors import SchemaViolation

INTERCEPT = "Intercept"

DIAGNOSTIC_COLUMNS = ["predicted", "residual", "std_resid", "leverage", "cooks_distance", "outlier"]

# Shapiro-Wilk is only defined for this sample-size range.
SHAPIRO_MIN_N = 3
SHAPIRO_MAX_N = 5000


@dataclass
class FittedModel:
    """Simple linear regression ``target ~ predictor`` fitted by OLS.

    Stores enough state to predict means and confidence intervals for new
    predictor values without the training data.
    """

    target: str
    predictor: str
    params: Dict[str, float]
    std_errors: Dict[str, float]
    cov_params: np.ndarray
    sigma: float
    df_resid: float
    nobs: int
    confidence_level: float = 0.95
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def formula(self) -> str:
        return f"{self.target} ~ {self.predictor}"

    @property
    def intercept(self) -> float:
        return self.params[INTERCEPT]

    @property
    def slope(self) -> float:
        return self.params[self.predictor]

    def predict(self, x: Sequence[float] | np.ndarray | pd.Series) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        return self.intercept + self.slope * x

    def predict_interval(
        self,
        x: Sequence[float] | np.ndarray | pd.Series,
        *,
        confidence_level: Optional[float] = None,
    ) -> pd.DataFrame:
        """Predicted mean with a confidence interval for the mean response."""

        level = self.confidence_level if confidence_level is None else confidence_level
        x = np.asarray(x, dtype=float)
        X = np.column_stack([np.ones_like(x), x])
        se = np.sqrt(np.einsum("ij,jk,ik->i", X, self.cov_params, X))
        q = float(stats.t.ppf(1.0 - (1.0 - level) / 2.0, self.df_resid))
        mean = self.predict(x)
        return pd.DataFrame(
            {
                self.predictor: x,
                "mean": mean,
                "mean_se": se,
                "mean_ci_lower": mean - q * se,
                "mean_ci_upper": mean + q * se,
            }
        )

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        dump(self, path)
        return path

    @staticmethod
    def load(path: str | Path) -> "FittedModel":
        obj = load(path)
        if not isinstance(obj, FittedModel):
            raise TypeError("Loaded object is not a FittedModel")
        return obj


@dataclass(frozen=True)
class ResidualChecks:
    """Informational residual diagnostics. Never used to fail a run."""

    n: int
    shapiro_statistic: Optional[float]
    shapiro_p_value: Optional[float]
    breusch_pagan_statistic: float
    breusch_pagan_p_value: float
    min_abs_std_resid: float
    max_abs_std_resid: float
    alpha: float = 0.05

    @property
    def normality_tested(self) -> bool:
        return self.shapiro_p_value is not None

    @property
    def residuals_normal(self) -> Optional[bool]:
        if self.shapiro_p_value is None:
            return None
        return self.shapiro_p_value > self.alpha

    @property
    def homoscedastic(self) -> bool:
        return self.breusch_pagan_p_value > self.alpha


def _model_frame(df: pd.DataFrame, target: str, predictor: str) -> pd.DataFrame:
    require_columns(df, [target, predictor], where="Canonical dataset")
    frame = pd.DataFrame(
        {
            "y": pd.to_numeric(df[target], errors="coerce"),
            "x": pd.to_numeric(df[predictor], errors="coerce"),
        }
    )
    bad = frame.isna().any(axis=1)
    if bad.any():
        raise SchemaViolation(
            f"Columns '{target}' and '{predictor}' must be numeric with no missing values. "
            f"Bad rows: {frame.index[bad][:10].tolist()}. Re-run the prepare stage on a clean raw source."
        )
    if len(frame) < 3:
        raise SchemaViolation(
            f"Need at least 3 observations to fit {target} ~ {predictor}, got {len(frame)}. "
            "Check that the raw source holds the full dataset."
        )
    if np.ptp(frame["x"].to_numpy()) == 0:
        raise SchemaViolation(
            f"Predictor '{predictor}' is constant; the slope is not identifiable. "
            "Choose a predictor that varies across observations."
        )
    return frame


def fit_ols(
    df: pd.DataFrame,
    target: str,
    predictor: str,
    *,
    confidence_level: float = 0.95,
) -> Tuple[FittedModel, object]:
    """Fit ``target ~ predictor``.

    Returns the portable :class:`FittedModel` and the statsmodels results object.
    """

    frame = _model_frame(df, target, predictor)
    results = smf.ols("y ~ x", data=frame).fit()

    names = {INTERCEPT: INTERCEPT, "x": predictor}
    params = {names[k]: float(v) for k, v in results.params.items()}
    bse = {names[k]: float(v) for k, v in results.bse.items()}

    model = FittedModel(
        target=target,
        predictor=predictor,
        params=params,
        std_errors=bse,
        cov_params=np.asarray(results.cov_params(), dtype=float),
        sigma=float(np.sqrt(results.scale)),
        df_resid=float(results.df_resid),
        nobs=int(results.nobs),
        confidence_level=confidence_level,
        metadata={"method": "ols", "formula": f"{target} ~ {predictor}"},
    )
    return model, results


def coefficient_table(results, predictor: str, *, confidence_level: float = 0.95) -> pd.DataFrame:
    """One row per term: estimate, std error, t statistic, p-value, CI bounds."""

    coef = results.summary2(alpha=1.0 - confidence_level).tables[1].copy()
    coef.columns = ["estimate", "std_error", "statistic", "p_value", "conf_low", "conf_high"]
    coef = coef.rename(index={"x": predictor})
    coef.index.name = "term"
    return coef.reset_index()


def metrics_table(results) -> pd.DataFrame:
    """Single-row model summary (R², F-test, information criteria)."""

    return pd.DataFrame(
        [
            {
                "r_squared": float(results.rsquared),
                "adj_r_squared": float(results.rsquared_adj),
                "sigma": float(np.sqrt(results.scale)),
                "statistic": float(results.fvalue),
                "p_value": float(results.f_pvalue),
                "df": float(results.df_model),
                "log_lik": float(results.llf),
                "aic": float(results.aic),
                "bic": float(results.bic),
                "deviance": float(results.ssr),
                "df_residual": float(results.df_resid),
                "nobs": int(results.nobs),
            }
        ]
    )


def diagnostics_table(
    df: pd.DataFrame,
    results,
    *,
    outlier_threshold: float = 2.5,
) -> pd.DataFrame:
    """Input rows plus per-observation fit diagnostics.

    ``std_resid`` is the internally studentized residual
    ``e_i / (sigma * sqrt(1 - h_i))``.
    """

    influence = results.get_influence()
    std_resid = np.asarray(influence.resid_studentized_internal, dtype=float)

    out = df.reset_index(drop=True).copy()
    out["predicted"] = np.asarray(results.fittedvalues, dtype=float)
    out["residual"] = np.asarray(results.resid, dtype=float)
    out["std_resid"] = std_resid
    out["leverage"] = np.asarray(influence.hat_matrix_diag, dtype=float)
    out["cooks_distance"] = np.asarray(influence.cooks_distance[0], dtype=float)
    out["outlier"] = np.abs(std_resid) > outlier_threshold
    return out


def residual_checks(results, diagnostics: pd.DataFrame, *, alpha: float = 0.05) -> ResidualChecks:
    std_resid = diagnostics["std_resid"].to_numpy(dtype=float)
    n = len(std_resid)

    sw_stat: Optional[float] = None
    sw_p: Optional[float] = None
    if SHAPIRO_MIN_N <= n <= SHAPIRO_MAX_N:
        sw = stats.shapiro(std_resid)
        sw_stat, sw_p = float(sw[0]), float(sw[1])

    bp_lm, bp_p, _, _ = het_breuschpagan(results.resid, results.model.exog)

    return ResidualChecks(
        n=n,
        shapiro_statistic=sw_stat,
        shapiro_p_value=sw_p,
        breusch_pagan_statistic=float(bp_lm),
        breusch_pagan_p_value=float(bp_p),
        min_abs_std_resid=float(np.min(np.abs(std_resid))),
        max_abs_std_resid=float(np.max(np.abs(std_resid))),
        alpha=alpha,
    )
