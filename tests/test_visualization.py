"""Tests for plotting utilities."""

import matplotlib.pyplot as plt
import numpy as np
import pytest
from matplotlib.colors import to_hex

from landcover.config import DEFAULT_BAND_NAMES
from landcover.exceptions import PaletteMismatchError
from landcover.training import ClassLegend, extract_training_samples
from landcover.validation import compute_confusion_matrix
from landcover.visualization import (
    DEFAULT_PALETTE,
    build_colormap,
    default_palette,
    plot_classification_map,
    plot_confusion_matrix,
    plot_rgb_composite,
    plot_training_spectra,
)

from conftest import ORIGIN, RES


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


def test_reference_palette():
    legend = ClassLegend(("soil", "urban", "vegetation", "water"))
    assert default_palette(legend) == DEFAULT_PALETTE


def test_fallback_palette_has_one_color_per_class():
    legend = ClassLegend(tuple(f"class{i}" for i in range(7)))
    palette = default_palette(legend)
    assert len(palette) == 7
    assert all(color.startswith("#") for color in palette)


def test_palette_length_must_match_legend():
    legend = ClassLegend(("a", "b", "c"))
    with pytest.raises(PaletteMismatchError) as exc:
        build_colormap(legend, ["#000000", "#ffffff"])
    assert (exc.value.n_colors, exc.value.n_classes) == (2, 3)


def test_colormap_follows_legend_order():
    legend = ClassLegend(("a", "b"))
    cmap = build_colormap(legend, ["#ff0000", "#0000ff"])
    assert cmap.N == 2
    assert [to_hex(color) for color in cmap.colors] == ["#ff0000", "#0000ff"]


def test_classification_map(tmp_path):
    legend = ClassLegend(("a", "b"))
    codes = np.array([[1, 1, 2], [0, 2, 2]], dtype=np.uint8)
    path = tmp_path / "map.png"

    fig = plot_classification_map(codes, legend, ["#ff0000", "#0000ff"], output_path=str(path))

    assert path.exists()
    labels = [text.get_text() for text in fig.axes[0].get_legend().get_texts()]
    assert labels == ["a (40.0%)", "b (60.0%)"]
    image = fig.axes[0].get_images()[0].get_array()
    assert image.mask[1, 0]


def test_rgb_composite(tmp_path, reflectance_stack):
    stack = reflectance_stack.copy(deep=True)
    stack["green"].values[0, 0] = np.nan
    path = tmp_path / "rgb.png"

    fig = plot_rgb_composite(stack, output_path=str(path))

    assert path.exists()
    image = fig.axes[0].get_images()[0]
    rgba = image.get_array()
    assert rgba.shape == (20, 20, 4)
    assert float(rgba.max()) <= 1.0
    assert rgba[0, 0, 3] == 0.0
    assert (rgba[1:, :, 3] == 1.0).all()
    assert image.get_extent() == pytest.approx(
        [ORIGIN[0], ORIGIN[0] + 20 * RES, ORIGIN[1] - 20 * RES, ORIGIN[1]]
    )


def test_plots_print_saved_path_only_when_verbose(tmp_path, capsys):
    legend = ClassLegend(("a", "b"))
    codes = np.array([[1, 2]], dtype=np.uint8)

    plot_classification_map(codes, legend, output_path=str(tmp_path / "quiet.png"), verbose=False)
    assert capsys.readouterr().out == ""

    plot_classification_map(codes, legend, output_path=str(tmp_path / "loud.png"))
    assert "Saved:" in capsys.readouterr().out


def test_confusion_matrix_plot(tmp_path):
    legend = ClassLegend(("a", "b"))
    cm = compute_confusion_matrix(np.array([1, 2, 2]), np.array([1, 2, 1]), legend)
    path = tmp_path / "cm.png"

    fig = plot_confusion_matrix(cm, output_path=str(path))

    assert path.exists()
    assert fig.axes[0].get_xlabel() == "Predicted"


def test_training_spectra(tmp_path, reflectance_stack, features):
    records, legend = extract_training_samples(reflectance_stack, features, verbose=False)
    path = tmp_path / "spectra.png"

    fig = plot_training_spectra(records, DEFAULT_BAND_NAMES, legend, output_path=str(path))

    assert path.exists()
    labels = [text.get_text() for text in fig.axes[0].get_legend().get_texts()]
    assert labels == list(legend.labels)
