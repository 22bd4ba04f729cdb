from pathlib import Path

import pandas as pd
import pytest

from repro.core.errors import InputMissing, SchemaViolation
from repro.viz.figures import generate_figures

EXPECTED = ["eda-overview.png", "correlation-plot.png", "model-plot.png", "diagnostics-plot.png"]


@pytest.fixture
def fast_cfg(cfg):
    cfg.figures.dpi = 100
    return cfg


def test_figures_require_canonical_dataset(fast_cfg, fitted, tmp_path):
    with pytest.raises(InputMissing, match="prepare"):
        generate_figures(tmp_path / "nope.csv", fitted.paths["diagnostics"], fast_cfg)


def test_figures_require_diagnostics(fast_cfg, prepared, tmp_path):
    with pytest.raises(InputMissing, match="fit"):
        generate_figures(prepared.path, tmp_path / "nope.csv", fast_cfg)


def test_generate_four_figures(fast_cfg, prepared, fitted):
    artifacts = generate_figures(prepared.path, fitted.paths["diagnostics"], fast_cfg)
    assert [a.path.name for a in artifacts] == EXPECTED
    assert [a.name for a in artifacts] == ["overview", "correlation", "model_fit", "diagnostics"]
    for a in artifacts:
        assert a.is_valid()
        assert a.path.parent == Path(fast_cfg.paths.figures_dir).resolve()
    assert sorted(p.name for p in artifacts[0].path.parent.glob("*.png")) == sorted(EXPECTED)


def test_figures_accept_frames_and_out_dir(fast_cfg, prepared, fitted, tmp_path):
    out = tmp_path / "custom"
    artifacts = generate_figures(prepared.data, fitted.diagnostics, fast_cfg, out_dir=out)
    assert all(a.path.parent == out.resolve() for a in artifacts)


def test_stale_diagnostics_rejected(fast_cfg, prepared, fitted):
    diag = pd.read_csv(fitted.paths["diagnostics"]).head(10)
    with pytest.raises(SchemaViolation, match="fit"):
        generate_figures(prepared.path, diag, fast_cfg)


def test_figures_missing_group_column(fast_cfg, prepared, fitted):
    with pytest.raises(SchemaViolation, match="cyl_factor"):
        generate_figures(prepared.data.drop(columns=["cyl_factor"]), fitted.diagnostics, fast_cfg)
