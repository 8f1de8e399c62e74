"""
Visualization utilities for land-cover classification.

This module handles:
- Categorical land-cover maps with a fixed color/label legend
- True-color composites of the reflectance stack
- Confusion matrix heatmaps
- Per-class spectral signatures of the training data
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.colors import ListedColormap, to_hex
import seaborn as sns
from typing import List, Optional, Sequence, Tuple
import os

from .exceptions import PaletteMismatchError
from .training import ClassLegend


# Colors for the reference legend (sorted labels)
DEFAULT_CLASSES = ('soil', 'urban', 'vegetation', 'water')
DEFAULT_PALETTE = ['#C8A165', '#D7191C', '#1A9641', '#2B83BA']  # Tan, Red, Green, Blue


def default_palette(legend: ClassLegend) -> List[str]:
    """Reference palette for the reference classes, tab20 colors otherwise."""
    if tuple(legend.labels) == DEFAULT_CLASSES:
        return list(DEFAULT_PALETTE)
    cmap = plt.get_cmap('tab20')
    return [to_hex(cmap(i % cmap.N)) for i in range(len(legend))]


def build_colormap(legend: ClassLegend, palette: Optional[Sequence[str]] = None) -> ListedColormap:
    """
    One color per class code, in legend order.

    Raises
    ------
    PaletteMismatchError
        If the palette length differs from the number of classes
    """
    if palette is None:
        palette = default_palette(legend)
    if len(palette) != len(legend):
        raise PaletteMismatchError(len(palette), len(legend))
    return ListedColormap(list(palette), name='land_cover')


def plot_classification_map(
    classification,
    legend: ClassLegend,
    palette: Optional[Sequence[str]] = None,
    title: str = "Land Cover Classification",
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 10),
    verbose: bool = True
) -> plt.Figure:
    """
    Render a categorical land-cover map with legend.

    Parameters
    ----------
    classification : xr.DataArray or np.ndarray
        Class codes, 0 = no-data (drawn transparent)
    legend : ClassLegend
        Code to label mapping
    palette : sequence, optional
        One color per class, in legend order
    title : str
        Figure title
    output_path : str, optional
        Path to save figure
    figsize : tuple
        Figure size
    verbose : bool
        Print the saved path

    Returns
    -------
    plt.Figure
        The generated figure
    """
    cmap = build_colormap(legend, palette)
    codes = np.asarray(classification)
    masked = np.ma.masked_equal(codes, ClassLegend.NODATA_CODE)

    fig, ax = plt.subplots(figsize=figsize)
    ax.imshow(masked, cmap=cmap, vmin=0.5, vmax=len(legend) + 0.5, interpolation='nearest')
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.axis('off')

    n_valid = max(int((codes != ClassLegend.NODATA_CODE).sum()), 1)
    legend_elements = [
        mpatches.Patch(
            color=cmap.colors[code - 1],
            label=f"{label} ({100 * (codes == code).sum() / n_valid:.1f}%)",
        )
        for label, code in zip(legend.labels, legend.codes)
    ]
    ax.legend(handles=legend_elements, loc='lower right', fontsize=9)

    plt.tight_layout()

    if output_path:
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
        plt.savefig(output_path, dpi=300, bbox_inches='tight')
        if verbose:
            print(f"Saved: {output_path}")

    return fig


def plot_rgb_composite(
    stack,
    bands: Tuple[str, str, str] = ('red', 'green', 'blue'),
    title: str = "True Color Composite",
    vmin: float = 0,
    vmax: float = 25,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (8, 8),
    verbose: bool = True
) -> plt.Figure:
    """
    Plot a true-color composite of a reflectance stack in map coordinates.

    Pixels with no-data in any of the three bands are transparent.

    Parameters
    ----------
    stack : xr.Dataset
        Band stack in percent reflectance
    bands : tuple
        Band names mapped to R, G, B
    vmin, vmax : float
        Reflectance stretch range
    output_path : str, optional
        Path to save figure
    verbose : bool
        Print the saved path

    Returns
    -------
    plt.Figure
        The generated figure
    """
    dims = (stack.rio.y_dim, stack.rio.x_dim)
    channels = [
        np.clip((stack[name].transpose(*dims).values - vmin) / (vmax - vmin), 0, 1)
        for name in bands
    ]
    rgb = np.dstack(channels)
    valid = np.isfinite(rgb).all(axis=2)
    rgba = np.dstack([np.nan_to_num(rgb), valid.astype(float)])

    left, bottom, right, top = stack.rio.bounds()

    fig, ax = plt.subplots(figsize=figsize)
    ax.imshow(rgba, extent=[left, right, bottom, top], interpolation='nearest')
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.set_xlabel(f"Easting ({stack.rio.crs})", fontsize=10)
    ax.set_ylabel('Northing', fontsize=10)

    plt.tight_layout()

    if output_path:
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
        plt.savefig(output_path, dpi=300, bbox_inches='tight')
        if verbose:
            print(f"Saved: {output_path}")

    return fig


def plot_confusion_matrix(
    confusion_df: pd.DataFrame,
    title: str = "Training Confusion Matrix",
    cmap: str = 'Blues',
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (7, 6),
    verbose: bool = True
) -> plt.Figure:
    """
    Plot a confusion matrix as an annotated heatmap.

    Parameters
    ----------
    confusion_df : pd.DataFrame
        Counts, reference labels as index, predicted labels as columns
    output_path : str, optional
        Path to save figure

    Returns
    -------
    plt.Figure
        The generated figure
    """
    fig, ax = plt.subplots(figsize=figsize)

    sns.heatmap(
        confusion_df,
        annot=True,
        fmt='d',
        cmap=cmap,
        ax=ax,
        cbar_kws={'label': 'Records'},
        square=True,
        linewidths=0.5
    )

    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.set_xlabel('Predicted', fontsize=10)
    ax.set_ylabel('Reference', fontsize=10)

    plt.tight_layout()

    if output_path:
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
        plt.savefig(output_path, dpi=300, bbox_inches='tight')
        if verbose:
            print(f"Saved: {output_path}")

    return fig


def plot_training_spectra(
    records: pd.DataFrame,
    band_names: Sequence[str],
    legend: ClassLegend,
    palette: Optional[Sequence[str]] = None,
    title: str = "Training Spectral Signatures",
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (9, 5),
    verbose: bool = True
) -> plt.Figure:
    """
    Plot mean reflectance per band for each training class (± 1 std).

    Parameters
    ----------
    records : pd.DataFrame
        Training records with band columns and ``label``
    band_names : sequence
        Bands to plot, in x-axis order
    legend : ClassLegend
        Class ordering
    palette : sequence, optional
        One color per class, in legend order

    Returns
    -------
    plt.Figure
        The generated figure
    """
    cmap = build_colormap(legend, palette)
    colors = dict(zip(legend.labels, cmap.colors))

    long = records.melt(
        id_vars=['label'],
        value_vars=list(band_names),
        var_name='band',
        value_name='reflectance',
    )
    long['label'] = long['label'].astype(str)
    present = [label for label in legend.labels if label in set(long['label'])]

    fig, ax = plt.subplots(figsize=figsize)

    sns.lineplot(
        data=long,
        x='band',
        y='reflectance',
        hue='label',
        hue_order=present,
        palette=[colors[label] for label in present],
        errorbar='sd',
        marker='o',
        sort=False,
        ax=ax
    )

    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.set_xlabel('Band', fontsize=10)
    ax.set_ylabel('Reflectance (%)', fontsize=10)
    ax.legend(title='Class', fontsize=9)

    plt.tight_layout()

    if output_path:
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
        plt.savefig(output_path, dpi=300, bbox_inches='tight')
        if verbose:
            print(f"Saved: {output_path}")

    return fig
