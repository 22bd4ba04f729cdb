from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pandas as pd  # noqa: E402
import pytest  # noqa: E402

from repro.core.config import PipelineConfig  # noqa: E402


ROOT = Path(__file__).resolve().parents[1]
RAW_CSV = ROOT / "examples" / "datasets" / "mtcars.csv"
CONFIG_YAML = ROOT / "examples" / "configs" / "mtcars.yaml"


@pytest.fixture
def raw_df() -> pd.DataFrame:
    return pd.read_csv(RAW_CSV)


@pytest.fixture
def cfg(tmp_path) -> PipelineConfig:
    c = PipelineConfig().with_root(tmp_path)
    c.paths.raw_data = str(RAW_CSV)
    return c


@pytest.fixture
def prepared(cfg):
    from repro.prepare.clean import prepare

    return prepare(cfg.paths.raw_data, cfg)


@pytest.fixture
def fitted(cfg, prepared):
    from repro.model.fit import fit

    return fit(prepared.path, cfg)
