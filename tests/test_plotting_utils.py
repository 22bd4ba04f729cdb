import re

import matplotlib
import matplotlib.pyplot as plt
import pytest

from repro.core.errors import EmptyComposition, NoFigureAvailable, SchemaViolation
from repro.viz.utils import (
    PNG_SIGNATURE,
    Theme,
    compose,
    configure_theme,
    group_colors,
    is_valid_png,
    palette,
    save,
)


def _scatter():
    fig, ax = plt.subplots()
    ax.scatter([2.62, 2.875, 2.32, 3.215, 3.44], [21.0, 21.0, 22.8, 21.4, 18.7])
    ax.set_xlabel("wt")
    ax.set_ylabel("mpg")
    return fig


def _png_size(path):
    header = path.read_bytes()[:24]
    return int.from_bytes(header[16:20], "big"), int.from_bytes(header[20:24], "big")


def test_configure_theme_sets_defaults():
    theme = configure_theme()
    assert isinstance(theme, Theme)
    assert matplotlib.rcParams["font.size"] == 12
    assert matplotlib.rcParams["axes.grid"] is True


def test_configure_theme_custom_base_size():
    theme = configure_theme(base_size=14)
    assert theme.base_size == 14
    assert matplotlib.rcParams["font.size"] == 14
    configure_theme()


def test_theme_context_does_not_leak():
    before = matplotlib.rcParams["font.size"]
    with Theme(base_size=20).context():
        assert matplotlib.rcParams["font.size"] == 20
    assert matplotlib.rcParams["font.size"] == before


def test_palette_names_and_hex():
    colors = palette()
    assert list(colors) == ["primary", "secondary", "tertiary", "quaternary"]
    assert all(re.fullmatch(r"#[0-9A-Fa-f]{6}", c) for c in colors.values())


def test_palette_is_stable():
    first = palette()
    first["primary"] = "#000000"
    assert palette() == palette()
    assert palette()["primary"] == "#FF6B6B"


def test_group_colors_sorted_and_bounded():
    assert group_colors(["8-cyl", "4-cyl", "6-cyl", "4-cyl"]) == {
        "4-cyl": "#FF6B6B",
        "6-cyl": "#4ECDC4",
        "8-cyl": "#45B7D1",
    }
    with pytest.raises(SchemaViolation):
        group_colors(list("abcde"))


def test_save_writes_png(tmp_path):
    target = tmp_path / "plot.png"
    result = save(target, _scatter())
    assert result == target.resolve()
    assert target.stat().st_size > 1000
    assert target.read_bytes()[:8] == PNG_SIGNATURE
    assert is_valid_png(target)


def test_save_creates_nested_directories(tmp_path):
    nested = tmp_path / "test_plots" / "subfolder" / "plot.png"
    save(nested, _scatter(), dpi=100)
    assert nested.is_file()


def test_save_respects_size(tmp_path):
    a = save(tmp_path / "a.png", _scatter(), width=4, height=4, dpi=100)
    b = save(tmp_path / "b.png", _scatter(), width=8, height=5, dpi=100)
    assert _png_size(a) == (400, 400)
    assert _png_size(b) == (800, 500)


def test_save_requires_figure(tmp_path):
    with pytest.raises(NoFigureAvailable):
        save(tmp_path / "plot.png", None)
    assert not (tmp_path / "plot.png").exists()


def test_save_rejects_other_formats(tmp_path):
    fig = _scatter()
    with pytest.raises(ValueError, match="PNG"):
        save(tmp_path / "plot.jpg", fig)
    plt.close(fig)


def test_compose_requires_figures():
    with pytest.raises(EmptyComposition):
        compose()


def test_compose_single_figure(tmp_path):
    fig = _scatter()
    combined = compose(fig)
    plt.close(fig)
    out = save(tmp_path / "single.png", combined, width=6, height=4, dpi=100)
    assert is_valid_png(out)


def test_compose_rasterizes_at_requested_dpi():
    fig = _scatter()
    fw, fh = fig.get_size_inches()
    combined = compose(fig, dpi=50)
    cell = combined.axes[0].images[0].get_array()
    assert cell.shape[:2] == (round(fh * 50), round(fw * 50))
    plt.close(fig)
    plt.close(combined)


def test_compose_row_heights():
    figs = [_scatter(), _scatter()]
    combined = compose(*figs, columns=1, heights=[2, 1], dpi=72)
    assert combined.axes[0].get_gridspec().get_height_ratios() == [2, 1]
    with pytest.raises(ValueError, match="one entry per row"):
        compose(*figs, columns=1, heights=[1])
    for f in figs + [combined]:
        plt.close(f)


def test_compose_wraps_rows():
    figs = [_scatter() for _ in range(3)]
    combined = compose(*figs, columns=2)
    assert len(combined.axes) == 4
    w, h = combined.get_size_inches()
    fw, fh = figs[0].get_size_inches()
    assert (w, h) == pytest.approx((2 * fw, 2 * fh))
    for f in figs + [combined]:
        plt.close(f)


def test_is_valid_png_rejects_tiny_files(tmp_path):
    tiny = tmp_path / "tiny.png"
    tiny.write_bytes(PNG_SIGNATURE)
    assert not is_valid_png(tiny)
    assert not is_valid_png(tmp_path / "absent.png")
