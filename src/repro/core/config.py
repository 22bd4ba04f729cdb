from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


class BinClosed(str, Enum):
    right = "right"
    left = "left"


class ConversionConfig(BaseModel):
    """Unit conversion: ``name = source * factor``."""

    name: str
    source: str
    factor: float
    units: str = ""


class LabelConfig(BaseModel):
    """Numeric code -> label lookup. Must cover every observed code."""

    name: str
    source: str
    mapping: Dict[int, str]

    @model_validator(mode="after")
    def _validate(self) -> "LabelConfig":
        if not self.mapping:
            raise ValueError(f"Label derivation '{self.name}' requires a non-empty mapping.")
        return self

    def levels(self) -> List[str]:
        return [self.mapping[k] for k in sorted(self.mapping)]


class BinConfig(BaseModel):
    """Partition a continuous column into ordered, labeled intervals.

    ``closed="right"`` gives intervals ``(e[i], e[i+1]]`` with the first interval
    also including its lower edge; ``closed="left"`` gives ``[e[i], e[i+1])`` with
    the last interval also including its upper edge. Use -inf/+inf outer edges
    to cover every possible value.
    """

    name: str
    source: str
    edges: List[float]
    labels: List[str]
    closed: BinClosed = BinClosed.right

    @model_validator(mode="after")
    def _validate(self) -> "BinConfig":
        if len(self.edges) < 2:
            raise ValueError(f"Bin derivation '{self.name}' requires >=2 edges.")
        if any(b <= a for a, b in zip(self.edges, self.edges[1:])):
            raise ValueError(f"Bin derivation '{self.name}' edges must be strictly increasing.")
        if len(self.labels) != len(self.edges) - 1:
            raise ValueError(
                f"Bin derivation '{self.name}' needs {len(self.edges) - 1} labels, got {len(self.labels)}."
            )
        return self


def _default_conversions() -> List[ConversionConfig]:
    return [
        # 1000 lbs -> kg
        ConversionConfig(name="weight_kg", source="wt", factor=453.6, units="kg"),
        ConversionConfig(name="power_kw", source="hp", factor=0.746, units="kW"),
    ]


def _default_labels() -> List[LabelConfig]:
    return [
        LabelConfig(name="cyl_factor", source="cyl", mapping={4: "4-cyl", 6: "6-cyl", 8: "8-cyl"}),
        LabelConfig(name="am_label", source="am", mapping={0: "Automatic", 1: "Manual"}),
        LabelConfig(name="vs_label", source="vs", mapping={0: "V-shaped", 1: "Straight"}),
    ]


def _default_bins() -> List[BinConfig]:
    return [
        BinConfig(
            name="speed_category",
            source="qsec",
            edges=[float("-inf"), 16.0, 18.0, float("inf")],
            labels=["Fast", "Medium", "Slow"],
        )
    ]


class DerivationsConfig(BaseModel):
    conversions: List[ConversionConfig] = Field(default_factory=_default_conversions)
    labels: List[LabelConfig] = Field(default_factory=_default_labels)
    bins: List[BinConfig] = Field(default_factory=_default_bins)

    @model_validator(mode="after")
    def _validate(self) -> "DerivationsConfig":
        names = self.names()
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate derived column names: {dupes}")
        return self

    def names(self) -> List[str]:
        return (
            [c.name for c in self.conversions]
            + [lb.name for lb in self.labels]
            + [b.name for b in self.bins]
        )


class RawSchemaConfig(BaseModel):
    """Fixed schema of the raw dataset."""

    id_column: str = "model"
    measurement_columns: List[str] = Field(
        default_factory=lambda: [
            "mpg", "cyl", "disp", "hp", "drat", "wt", "qsec", "vs", "am", "gear", "carb",
        ]
    )

    def columns(self) -> List[str]:
        return [self.id_column] + list(self.measurement_columns)


class PathsConfig(BaseModel):
    raw_data: str = "examples/datasets/mtcars.csv"
    derived_dir: str = "analysis/data/derived_data"
    figures_dir: str = "analysis/figures"

    canonical: str = "mtcars_clean.csv"
    coefficients: str = "model_coefficients.csv"
    metrics: str = "model_metrics.csv"
    diagnostics: str = "model_diagnostics.csv"
    model: str = "simple_model.joblib"

    def canonical_path(self) -> Path:
        return Path(self.derived_dir) / self.canonical

    def coefficients_path(self) -> Path:
        return Path(self.derived_dir) / self.coefficients

    def metrics_path(self) -> Path:
        return Path(self.derived_dir) / self.metrics

    def diagnostics_path(self) -> Path:
        return Path(self.derived_dir) / self.diagnostics

    def model_path(self) -> Path:
        return Path(self.derived_dir) / self.model


class ModelConfig(BaseModel):
    target: str = "mpg"
    predictor: str = "wt"
    outlier_threshold: float = Field(default=2.5, gt=0)
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    normality_alpha: float = Field(default=0.05, gt=0, lt=1)


class FigureFileConfig(BaseModel):
    file: str
    width: float = 8.0
    height: float = 5.0


class FiguresConfig(BaseModel):
    group_column: str = "cyl_factor"
    group_title: str = "Cylinders"

    # Titles use the names, axes use the labels.
    target_name: str = "Fuel Efficiency"
    target_short: str = "MPG"
    predictor_name: str = "Weight"
    target_label: str = "Miles Per Gallon (MPG)"
    predictor_label: str = "Vehicle Weight (1000 lbs)"
    base_size: float = 12.0
    dpi: int = Field(default=300, gt=0)

    overview: FigureFileConfig = Field(
        default_factory=lambda: FigureFileConfig(file="eda-overview.png", width=10.0, height=4.0)
    )
    correlation: FigureFileConfig = Field(
        default_factory=lambda: FigureFileConfig(file="correlation-plot.png")
    )
    fit_plot: FigureFileConfig = Field(default_factory=lambda: FigureFileConfig(file="model-plot.png"))
    diagnostics: FigureFileConfig = Field(
        default_factory=lambda: FigureFileConfig(file="diagnostics-plot.png")
    )


class PipelineConfig(BaseModel):
    """Top-level config; defaults reproduce the vehicle-measurements analysis."""

    project_name: str = "mtcars"

    paths: PathsConfig = Field(default_factory=PathsConfig)
    raw: RawSchemaConfig = Field(default_factory=RawSchemaConfig)
    derivations: DerivationsConfig = Field(default_factory=DerivationsConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    figures: FiguresConfig = Field(default_factory=FiguresConfig)

    @model_validator(mode="after")
    def _validate(self) -> "PipelineConfig":
        clash = sorted(set(self.derivations.names()) & set(self.raw.columns()))
        if clash:
            raise ValueError(f"Derived columns would overwrite raw columns: {clash}")
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PipelineConfig":
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    @classmethod
    def load(cls, path: Optional[str | Path] = None) -> "PipelineConfig":
        """Load from YAML when a path is given, else return the built-in defaults."""
        if path is None:
            return cls()
        return cls.from_yaml(path)

    def canonical_columns(self) -> List[str]:
        return self.raw.columns() + self.derivations.names()

    def with_root(self, root: str | Path) -> "PipelineConfig":
        """Return a copy whose output directories live under ``root``."""
        root = Path(root)
        cfg = self.model_copy(deep=True)
        cfg.paths.derived_dir = str(root / cfg.paths.derived_dir)
        cfg.paths.figures_dir = str(root / cfg.paths.figures_dir)
        return cfg
