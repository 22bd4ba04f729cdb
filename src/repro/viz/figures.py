from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from repro.core.config import FigureFileConfig, PipelineConfig
from repro.core.data import require_columns, resolve_frame
from repro.core.errors import SchemaViolation
from repro.model.fit import STAGE_NAME as FIT_STAGE
from repro.model.ols import fit_ols
from repro.prepare.clean import STAGE_NAME as PREPARE_STAGE
from repro.viz.utils import Theme, compose, configure_theme, group_colors, is_valid_png, load_pyplot, palette, save

logger = logging.getLogger(__name__)

STAGE_NAME = "figures"

SUBTITLE_COLOR = "#666666"
BAND_COLOR = "#CCCCCC"
REFERENCE_COLOR = "red"


@dataclass(frozen=True)
class FigureArtifact:
    name: str
    path: Path
    width: float
    height: float
    dpi: int
    description: str = ""

    def is_valid(self) -> bool:
        return is_valid_png(self.path)


def _scatter_by_group(ax, df: pd.DataFrame, x: str, y: str, group: str, colors: Dict[str, str]) -> None:
    for level, color in colors.items():
        sub = df[df[group].astype(str) == level]
        ax.scatter(sub[x], sub[y], s=40, alpha=0.6, color=color, label=level, edgecolors="none")


def _bottom_legend(fig, ax, title: str) -> None:
    handles, labels = ax.get_legend_handles_labels()
    if handles:
        fig.legend(handles, labels, loc="outside lower center", ncol=len(labels), title=title)


def _titles(fig, ax, title: str, subtitle: Optional[str] = None) -> None:
    if subtitle:
        fig.suptitle(title, fontweight="bold", x=0.02, ha="left")
        ax.set_title(subtitle, loc="left", fontsize="small", fontweight="normal", color=SUBTITLE_COLOR)
    else:
        ax.set_title(title, loc="left")


def overview_figure(data: pd.DataFrame, cfg: PipelineConfig, theme: Theme, colors: Dict[str, str]):
    """Target distribution next to a per-group boxplot."""

    plt = load_pyplot()
    target = cfg.model.target
    group = cfg.figures.group_column
    y = pd.to_numeric(data[target], errors="coerce")
    fig_cfg = cfg.figures.overview

    with theme.context():
        fig_dist, ax = plt.subplots(figsize=(fig_cfg.width / 2, fig_cfg.height), layout="constrained")
        ax.hist(y.dropna(), bins=15, color=palette()["primary"], alpha=0.7, edgecolor="white")
        ax.set_title(f"Distribution of {cfg.figures.target_name}", loc="left")
        ax.set_xlabel(cfg.figures.target_label)
        ax.set_ylabel("Count")

        fig_box, ax = plt.subplots(figsize=(fig_cfg.width / 2, fig_cfg.height), layout="constrained")
        levels = list(colors)
        positions = list(range(1, len(levels) + 1))
        groups = [y[data[group].astype(str) == lv].dropna().to_numpy() for lv in levels]
        bp = ax.boxplot(groups, positions=positions, patch_artist=True, widths=0.6)
        for patch, lv in zip(bp["boxes"], levels):
            patch.set_facecolor(colors[lv])
            patch.set_alpha(0.7)
            patch.set_edgecolor("#4D4D4D")
        for key in ("medians", "whiskers", "caps"):
            for line in bp[key]:
                line.set_color("#4D4D4D")
        ax.set_xticks(positions)
        ax.set_xticklabels(levels)
        ax.set_title(f"{cfg.figures.target_short} by {cfg.figures.group_title}", loc="left")
        ax.set_xlabel(cfg.figures.group_title)
        ax.set_ylabel(cfg.figures.target_label)

        combined = compose(
            fig_dist, fig_box, columns=2, width=fig_cfg.width, height=fig_cfg.height, dpi=cfg.figures.dpi
        )

    plt.close(fig_dist)
    plt.close(fig_box)
    return combined


def correlation_figure(data: pd.DataFrame, cfg: PipelineConfig, theme: Theme, colors: Dict[str, str]):
    """Target vs predictor by group, with the overall least-squares line."""

    plt = load_pyplot()
    target, predictor = cfg.model.target, cfg.model.predictor
    x = data[predictor].to_numpy(dtype=float)
    y = data[target].to_numpy(dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    xs = np.linspace(x.min(), x.max(), 100)

    with theme.context():
        fig, ax = plt.subplots(figsize=(cfg.figures.correlation.width, cfg.figures.correlation.height), layout="constrained")
        _scatter_by_group(ax, data, predictor, target, cfg.figures.group_column, colors)
        ax.plot(xs, intercept + slope * xs, color="black", linestyle="--", linewidth=1.2)
        _titles(fig, ax, f"{cfg.figures.predictor_name} vs {cfg.figures.target_name}")
        ax.set_xlabel(cfg.figures.predictor_label)
        ax.set_ylabel(cfg.figures.target_label)
        _bottom_legend(fig, ax, cfg.figures.group_title)
    return fig


def model_fit_figure(data: pd.DataFrame, cfg: PipelineConfig, theme: Theme, colors: Dict[str, str]):
    """Scatter with the fitted regression line and its confidence band."""

    plt = load_pyplot()
    target, predictor = cfg.model.target, cfg.model.predictor
    model, _ = fit_ols(data, target, predictor, confidence_level=cfg.model.confidence_level)
    x = data[predictor].to_numpy(dtype=float)
    band = model.predict_interval(np.linspace(x.min(), x.max(), 100))
    pct = round(cfg.model.confidence_level * 100)

    with theme.context():
        fig, ax = plt.subplots(figsize=(cfg.figures.fit_plot.width, cfg.figures.fit_plot.height), layout="constrained")
        ax.fill_between(
            band[predictor], band["mean_ci_lower"], band["mean_ci_upper"], color=BAND_COLOR, alpha=0.3, linewidth=0
        )
        _scatter_by_group(ax, data, predictor, target, cfg.figures.group_column, colors)
        ax.plot(band[predictor], band["mean"], color="black", linewidth=1.2)
        _titles(
            fig,
            ax,
            f"Linear Model: {model.formula}",
            f"Gray band represents {pct}% confidence interval",
        )
        ax.set_xlabel(cfg.figures.predictor_label)
        ax.set_ylabel(cfg.figures.target_label)
        _bottom_legend(fig, ax, cfg.figures.group_title)
    return fig


def diagnostics_figure(diagnostics: pd.DataFrame, cfg: PipelineConfig, theme: Theme, colors: Dict[str, str]):
    """Predicted value vs standardized residual with 0 and ±2 reference lines."""

    plt = load_pyplot()
    with theme.context():
        fig, ax = plt.subplots(
            figsize=(cfg.figures.diagnostics.width, cfg.figures.diagnostics.height), layout="constrained"
        )
        _scatter_by_group(ax, diagnostics, "predicted", "std_resid", cfg.figures.group_column, colors)
        ax.axhline(0.0, color="black", linestyle="-", linewidth=1.0)
        for ref in (-2.0, 2.0):
            ax.axhline(ref, color=REFERENCE_COLOR, linestyle="--", linewidth=0.8, alpha=0.7)
        _titles(fig, ax, "Residual Diagnostics", "Red lines mark ±2 standard deviations")
        ax.set_xlabel(f"Predicted {cfg.figures.target_short}")
        ax.set_ylabel("Standardized Residuals")
        _bottom_legend(fig, ax, cfg.figures.group_title)
    return fig


def _save(fig, name: str, fig_cfg: FigureFileConfig, out_dir: Path, dpi: int, description: str) -> FigureArtifact:
    path = save(out_dir / fig_cfg.file, fig, width=fig_cfg.width, height=fig_cfg.height, dpi=dpi)
    return FigureArtifact(name=name, path=path, width=fig_cfg.width, height=fig_cfg.height, dpi=dpi, description=description)


def generate_figures(
    canonical_dataset: str | Path | pd.DataFrame,
    diagnostics_table: str | Path | pd.DataFrame,
    cfg: PipelineConfig,
    *,
    out_dir: Optional[str | Path] = None,
) -> List[FigureArtifact]:
    """Render the four report figures.

    Reads the canonical dataset (from the prepare stage) and the diagnostics
    table (from the fit stage); writes PNGs under ``out_dir`` (default
    ``cfg.paths.figures_dir``).
    """

    data = resolve_frame(canonical_dataset, producer=PREPARE_STAGE)
    diagnostics = resolve_frame(diagnostics_table, producer=FIT_STAGE)

    target, predictor = cfg.model.target, cfg.model.predictor
    group = cfg.figures.group_column
    require_columns(data, [target, predictor, group], where="Canonical dataset")
    require_columns(diagnostics, ["predicted", "std_resid", group], where="Diagnostics table")
    if len(diagnostics) != len(data):
        raise SchemaViolation(
            f"Diagnostics table has {len(diagnostics)} rows but the canonical dataset has {len(data)}. "
            "Re-run the 'fit' stage on the current canonical dataset."
        )

    theme = configure_theme(cfg.figures.base_size)
    colors = group_colors(data[group].dropna().astype(str))
    logger.info("Loaded %d observations; %d groups in '%s'", len(data), len(colors), group)

    out = Path(out_dir) if out_dir is not None else Path(cfg.paths.figures_dir)
    dpi = cfg.figures.dpi
    fig_cfg = cfg.figures

    artifacts = [
        _save(
            overview_figure(data, cfg, theme, colors),
            "overview",
            fig_cfg.overview,
            out,
            dpi,
            "Distribution and boxplot of the target",
        ),
        _save(
            correlation_figure(data, cfg, theme, colors),
            "correlation",
            fig_cfg.correlation,
            out,
            dpi,
            f"{predictor} vs {target} relationship",
        ),
        _save(
            model_fit_figure(data, cfg, theme, colors),
            "model_fit",
            fig_cfg.fit_plot,
            out,
            dpi,
            "Linear regression fit with confidence band",
        ),
        _save(
            diagnostics_figure(diagnostics, cfg, theme, colors),
            "diagnostics",
            fig_cfg.diagnostics,
            out,
            dpi,
            "Standardized residuals",
        ),
    ]

    for a in artifacts:
        logger.info("  %s (%.1f KB) - %s", a.path.name, a.path.stat().st_size / 1024, a.description)
    logger.info("Figures saved to: %s", out)
    return artifacts
