import numpy as np
import pandas as pd
import pytest
from joblib import dump

from repro.core.errors import DataQualityWarning, InputMissing, SchemaViolation
from repro.model.fit import fit
from repro.model.ols import DIAGNOSTIC_COLUMNS, FittedModel, fit_ols


def test_fit_requires_canonical_artifact(cfg, tmp_path):
    with pytest.raises(InputMissing, match="prepare"):
        fit(tmp_path / "missing.csv", cfg)


def test_fit_writes_four_artifacts(cfg, fitted):
    assert set(fitted.paths) == {"coefficients", "metrics", "diagnostics", "model"}
    for path in fitted.paths.values():
        assert path.is_file()
    assert fitted.paths["model"] == cfg.paths.model_path()


def test_coefficients_match_closed_form(fitted, prepared):
    coef = pd.read_csv(fitted.paths["coefficients"])
    assert len(coef) == 2
    assert coef["term"].tolist() == ["Intercept", "wt"]
    assert {"estimate", "std_error", "statistic", "p_value", "conf_low", "conf_high"} <= set(coef.columns)

    x = prepared.data["wt"].to_numpy(dtype=float)
    y = prepared.data["mpg"].to_numpy(dtype=float)
    slope = np.cov(x, y, ddof=1)[0, 1] / np.var(x, ddof=1)
    intercept = y.mean() - slope * x.mean()

    est = coef.set_index("term")["estimate"]
    assert est["wt"] == pytest.approx(slope, rel=1e-9)
    assert est["Intercept"] == pytest.approx(intercept, rel=1e-9)
    assert est["Intercept"] == pytest.approx(37.2851, abs=1e-3)
    assert est["wt"] == pytest.approx(-5.3445, abs=1e-3)

    assert (coef["conf_low"] < coef["estimate"]).all()
    assert (coef["estimate"] < coef["conf_high"]).all()
    assert coef.set_index("term").loc["wt", "p_value"] < 1e-6


def test_metrics(fitted):
    m = pd.read_csv(fitted.paths["metrics"]).iloc[0]
    assert 0.0 <= m["r_squared"] <= 1.0
    assert m["r_squared"] == pytest.approx(0.7528, abs=1e-3)
    assert m["adj_r_squared"] == pytest.approx(0.7446, abs=1e-3)
    assert m["sigma"] == pytest.approx(3.046, abs=1e-3)
    assert m["statistic"] == pytest.approx(91.38, abs=0.01)
    assert m["df_residual"] == 30
    assert m["nobs"] == 32


def test_diagnostics_table(fitted, prepared):
    diag = pd.read_csv(fitted.paths["diagnostics"])
    assert len(diag) == len(prepared.data)
    assert set(DIAGNOSTIC_COLUMNS) <= set(diag.columns)
    assert set(prepared.data.columns) <= set(diag.columns)
    assert abs(diag["residual"].mean()) < 0.01
    assert diag["outlier"].dtype == bool
    assert diag["outlier"].tolist() == (diag["std_resid"].abs() > 2.5).tolist()

    # Hat values sum to the number of parameters.
    assert diag["leverage"].sum() == pytest.approx(2.0)

    sigma = fitted.model.sigma
    h = diag["leverage"].to_numpy()
    expected_std = diag["residual"].to_numpy() / (sigma * np.sqrt(1.0 - h))
    np.testing.assert_allclose(diag["std_resid"], expected_std, rtol=1e-6)
    expected_cooks = expected_std ** 2 / 2.0 * h / (1.0 - h)
    np.testing.assert_allclose(diag["cooks_distance"], expected_cooks, rtol=1e-6)


def test_residual_checks_are_informational(fitted):
    checks = fitted.checks
    assert checks.n == 32
    assert 0.0 <= checks.shapiro_p_value <= 1.0
    assert 0.0 <= checks.breusch_pagan_p_value <= 1.0
    assert checks.min_abs_std_resid <= checks.max_abs_std_resid


def test_non_normal_residuals_warn(cfg, tmp_path):
    x = np.arange(40, dtype=float)
    y = 2.0 * x + np.where(x > 36, 60.0, 0.0) + np.tile([0.1, -0.1], 20)
    df = pd.DataFrame({"x": x, "y": y})
    with pytest.warns(DataQualityWarning):
        res = fit(df, cfg, target="y", predictor="x", out_dir=tmp_path / "out")
    assert len(res.diagnostics) == 40
    assert res.checks.residuals_normal is False


def test_model_roundtrip_predicts_without_refit(fitted, prepared):
    loaded = FittedModel.load(fitted.paths["model"])
    assert loaded.formula == "mpg ~ wt"
    np.testing.assert_allclose(loaded.predict(prepared.data["wt"]), fitted.diagnostics["predicted"])

    band = loaded.predict_interval([1.5, prepared.data["wt"].mean(), 5.5])
    assert (band["mean_ci_lower"] < band["mean"]).all()
    assert (band["mean"] < band["mean_ci_upper"]).all()
    widths = (band["mean_ci_upper"] - band["mean_ci_lower"]).to_numpy()
    assert widths[1] < widths[0] and widths[1] < widths[2]


def test_predict_interval_matches_statsmodels(prepared):
    model, results = fit_ols(prepared.data, "mpg", "wt")
    xs = np.array([2.0, 3.0, 4.0])
    ours = model.predict_interval(xs)
    ref = results.get_prediction(pd.DataFrame({"x": xs})).summary_frame(alpha=0.05)
    np.testing.assert_allclose(ours["mean_ci_lower"], ref["mean_ci_lower"], rtol=1e-8)
    np.testing.assert_allclose(ours["mean_ci_upper"], ref["mean_ci_upper"], rtol=1e-8)


def test_load_rejects_other_objects(tmp_path):
    path = tmp_path / "not_a_model.joblib"
    dump({"a": 1}, path)
    with pytest.raises(TypeError):
        FittedModel.load(path)


def test_fit_missing_columns(cfg, prepared):
    with pytest.raises(SchemaViolation, match="nope"):
        fit(prepared.path, cfg, predictor="nope")


def test_constant_predictor_rejected(cfg, tmp_path):
    df = pd.DataFrame({"x": [1.0] * 5, "y": [1.0, 2.0, 3.0, 4.0, 5.0]})
    with pytest.raises(SchemaViolation, match="constant"):
        fit(df, cfg, target="y", predictor="x", out_dir=tmp_path)


def test_too_few_rows_rejected(cfg, tmp_path):
    df = pd.DataFrame({"x": [1.0, 2.0], "y": [1.0, 3.0]})
    with pytest.raises(SchemaViolation, match="at least 3"):
        fit(df, cfg, target="y", predictor="x", out_dir=tmp_path)


def test_unparseable_canonical_csv(cfg, tmp_path):
    empty = tmp_path / "empty.csv"
    empty.write_text("")
    with pytest.raises(SchemaViolation, match="prepare"):
        fit(empty, cfg)
