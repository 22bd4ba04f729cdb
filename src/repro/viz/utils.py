from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from repro.core.errors import EmptyComposition, NoFigureAvailable, RenderingError, SchemaViolation

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
MIN_FIGURE_BYTES = 1000

_PALETTE = (
    ("primary", "#FF6B6B"),
    ("secondary", "#4ECDC4"),
    ("tertiary", "#45B7D1"),
    ("quaternary", "#96CEB4"),
)


def load_pyplot():
    # Headless backend; pyplot is imported lazily.
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt  # noqa: E402

    return plt


@dataclass(frozen=True)
class Theme:
    """Minimal figure style.

    Figure builders render inside :meth:`context` so their output does not
    depend on whatever rcParams the process happens to have.
    """

    base_size: float = 12.0

    def rc(self) -> Dict[str, Any]:
        s = float(self.base_size)
        return {
            "font.size": s,
            "axes.titlesize": s,
            "axes.titleweight": "bold",
            "axes.labelsize": s * 0.9,
            "xtick.labelsize": s * 0.8,
            "ytick.labelsize": s * 0.8,
            "legend.fontsize": s * 0.8,
            "legend.title_fontsize": s * 0.8,
            "legend.frameon": False,
            "figure.facecolor": "white",
            "axes.facecolor": "white",
            "axes.edgecolor": "#333333",
            "axes.axisbelow": True,
            "axes.grid": True,
            "axes.grid.which": "major",
            "grid.color": "#EBEBEB",
            "grid.linewidth": 0.8,
            "axes.spines.top": False,
            "axes.spines.right": False,
            "axes.spines.left": False,
            "axes.spines.bottom": False,
            "xtick.major.size": 0,
            "ytick.major.size": 0,
        }

    def context(self):
        import matplotlib

        return matplotlib.rc_context(self.rc())


def configure_theme(base_size: float = 12.0) -> Theme:
    """Apply the minimal theme to matplotlib's process-wide defaults.

    Returns the :class:`Theme` so callers can also pass it explicitly.
    """

    import matplotlib

    theme = Theme(base_size=base_size)
    matplotlib.rcParams.update(theme.rc())
    return theme


def palette() -> Dict[str, str]:
    """Fixed named colors: primary, secondary, tertiary, quaternary."""

    return dict(_PALETTE)


def group_colors(levels: Sequence[str]) -> Dict[str, str]:
    """Assign palette colors to group labels in sorted order."""

    levels = sorted({str(v) for v in levels})
    colors = [c for _, c in _PALETTE]
    if len(levels) > len(colors):
        raise SchemaViolation(
            f"Grouping has {len(levels)} levels but the palette only has {len(colors)} colors: {levels}. "
            "Choose a grouping column with fewer levels."
        )
    return dict(zip(levels, colors))


def is_valid_png(path: str | Path, *, min_bytes: int = MIN_FIGURE_BYTES) -> bool:
    path = Path(path)
    if not path.is_file() or path.stat().st_size <= min_bytes:
        return False
    with path.open("rb") as f:
        return f.read(len(PNG_SIGNATURE)) == PNG_SIGNATURE


def save(
    path: str | Path,
    figure: Optional[Any],
    *,
    width: float = 8.0,
    height: float = 5.0,
    dpi: int = 300,
) -> Path:
    """Save ``figure`` as PNG with consistent settings and close it.

    Parameters
    ----------
    path:
        Output file; must end in ``.png``. Parent directories are created.
    figure:
        The matplotlib figure. Required: there is no implicit "last figure".
    width, height:
        Size in inches.
    dpi:
        Resolution in dots per inch.
    """

    if figure is None:
        raise NoFigureAvailable(
            "No figure to save. Pass the figure object to save() explicitly."
        )

    out_path = Path(path)
    if out_path.suffix.lower() != ".png":
        raise ValueError(f"Figures are saved as PNG; got '{out_path.suffix}' in {out_path}")

    plt = load_pyplot()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    figure.set_size_inches(width, height)
    try:
        figure.savefig(out_path, dpi=dpi, format="png")
    finally:
        plt.close(figure)

    if not is_valid_png(out_path):
        raise RenderingError(
            f"Rendering failed for {out_path}: file is not a PNG larger than {MIN_FIGURE_BYTES} bytes."
        )

    logger.info("Saved: %s (%.1f KB)", out_path, out_path.stat().st_size / 1024)
    return out_path.resolve()


def _rasterize(figure: Any, dpi: int):
    import matplotlib.image as mpimg

    buf = io.BytesIO()
    figure.savefig(buf, format="png", dpi=dpi)
    buf.seek(0)
    return mpimg.imread(buf, format="png")


def compose(
    *figures: Any,
    columns: int = 2,
    width: Optional[float] = None,
    height: Optional[float] = None,
    heights: Optional[Sequence[float]] = None,
    dpi: int = 150,
):
    """Combine figures into one grid figure, filling rows left to right.

    Each input is rasterized at ``dpi`` and placed in its own cell; figures
    beyond ``columns`` wrap to additional rows. ``heights`` sets relative row
    heights. Inputs are left open.
    """

    if len(figures) == 0:
        raise EmptyComposition("No figures provided; compose() needs at least one figure.")
    if columns < 1:
        raise ValueError("columns must be >= 1")
    if any(f is None for f in figures):
        raise NoFigureAvailable("compose() received None in place of a figure.")

    plt = load_pyplot()

    n = len(figures)
    ncols = min(n, columns)
    nrows = math.ceil(n / ncols)
    if heights is not None and len(heights) != nrows:
        raise ValueError(f"heights needs one entry per row ({nrows}), got {len(heights)}")

    sizes: List[Sequence[float]] = [f.get_size_inches() for f in figures]
    if width is None:
        width = max(s[0] for s in sizes) * ncols
    if height is None:
        height = max(s[1] for s in sizes) * nrows

    images = [_rasterize(f, dpi) for f in figures]

    fig, axes = plt.subplots(
        nrows,
        ncols,
        figsize=(width, height),
        squeeze=False,
        gridspec_kw={"height_ratios": list(heights)} if heights is not None else None,
    )
    fig.subplots_adjust(left=0.0, right=1.0, bottom=0.0, top=1.0, wspace=0.02, hspace=0.02)
    cells = axes.ravel()
    for ax, img in zip(cells, images):
        ax.imshow(img)
    for ax in cells:
        ax.set_axis_off()
    return fig
