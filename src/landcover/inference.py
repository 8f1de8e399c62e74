"""
Pixel-wise decision tree inference over band stacks.

This module handles:
- Binding stack bands to the model's feature order
- Row-block prediction, sequential or parallel with dask
- No-data propagation
- Saving and loading classification rasters with their legend
"""

import os
from typing import Dict, Optional, Tuple

import numpy as np
import xarray as xr
import rioxarray
import dask
from tqdm import tqdm

from .training import ClassLegend, TrainedClassifier


class RasterPredictor:
    """Applies a trained decision tree to every pixel of a band stack."""

    def __init__(
        self,
        model: TrainedClassifier,
        block_rows: int = 256,
        verbose: bool = True
    ):
        """
        Parameters
        ----------
        model : TrainedClassifier
            Fitted tree with its band mapping and legend
        block_rows : int
            Number of raster rows evaluated per block
        verbose : bool
            Print prediction summary
        """
        if block_rows < 1:
            raise ValueError(f"block_rows must be >= 1, got {block_rows}")
        self.model = model
        self.block_rows = block_rows
        self.verbose = verbose

    def predict_block(self, block: np.ndarray) -> np.ndarray:
        """
        Classify one block of pixels.

        Parameters
        ----------
        block : np.ndarray
            Shape (n_bands, rows, cols), bands in model order

        Returns
        -------
        np.ndarray
            Shape (rows, cols) uint8 class codes, 0 where any band is NaN
        """
        n_bands, rows, cols = block.shape
        pixels = block.reshape(n_bands, -1).T
        valid = np.isfinite(pixels).all(axis=1)

        codes = np.full(rows * cols, ClassLegend.NODATA_CODE, dtype=np.uint8)
        if valid.any():
            codes[valid] = self.model.predict_values(pixels[valid])

        return codes.reshape(rows, cols)

    def predict(
        self,
        stack: xr.Dataset,
        parallel: bool = False,
        show_progress: bool = True
    ) -> xr.DataArray:
        """
        Classify a full band stack.

        Blocks have no dependency on each other; with ``parallel`` they
        are evaluated by dask's threaded scheduler.

        Parameters
        ----------
        stack : xr.Dataset
            Band stack in the units the model was trained on
        parallel : bool
            Evaluate blocks with dask
        show_progress : bool
            Show progress bar (sequential mode)

        Returns
        -------
        xr.DataArray
            uint8 class codes on the stack grid, nodata = 0

        Raises
        ------
        BandMismatchError
            If the stack lacks a band the model was fit on
        """
        band_order = self.model.bind_bands(stack)
        values = np.stack(
            [stack[name].values.astype(np.float64) for name in band_order], axis=0
        )
        _, H, W = values.shape

        starts = list(range(0, H, self.block_rows))

        if parallel:
            delayed_results = [
                dask.delayed(self.predict_block)(values[:, y:y + self.block_rows])
                for y in starts
            ]
            blocks = dask.compute(*delayed_results, scheduler='threads')
        else:
            iterator = starts
            if show_progress:
                iterator = tqdm(iterator, desc="Classifying", total=len(starts))
            blocks = [self.predict_block(values[:, y:y + self.block_rows]) for y in iterator]

        class_map = np.concatenate(blocks, axis=0)

        y_dim, x_dim = stack.rio.y_dim, stack.rio.x_dim
        classification = xr.DataArray(
            class_map,
            dims=(y_dim, x_dim),
            coords={y_dim: stack[y_dim].values, x_dim: stack[x_dim].values},
            name='land_cover',
        )
        classification = classification.rio.write_crs(stack.rio.crs)
        classification = classification.rio.write_transform(stack.rio.transform())
        classification = classification.rio.write_nodata(ClassLegend.NODATA_CODE, encoded=False)
        classification.attrs['long_name'] = 'land cover class code'

        if self.verbose:
            n_valid = int((class_map != ClassLegend.NODATA_CODE).sum())
            print(f"Classified {n_valid}/{class_map.size} pixels ({H}x{W})")

        return classification


def predict_raster(
    stack: xr.Dataset,
    model: TrainedClassifier,
    block_rows: int = 256,
    parallel: bool = False,
    verbose: bool = True
) -> xr.DataArray:
    """Classify every pixel of ``stack`` with ``model``."""
    predictor = RasterPredictor(model, block_rows=block_rows, verbose=verbose)
    return predictor.predict(stack, parallel=parallel, show_progress=verbose)


def legend_path_for(raster_path: str) -> str:
    """Sidecar legend path of a classification raster."""
    return os.path.splitext(raster_path)[0] + '_legend.json'


def save_classification(
    classification: xr.DataArray,
    legend: ClassLegend,
    output_path: str,
    verbose: bool = True
) -> Dict[str, str]:
    """
    Write a classification raster as GeoTIFF plus a JSON legend sidecar.

    Returns
    -------
    dict
        'raster' and 'legend' paths
    """
    os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)

    classification.astype(np.uint8).rio.to_raster(output_path, dtype='uint8')
    legend_path = legend.save(legend_path_for(output_path))

    if verbose:
        print(f"Saved: {output_path}")
        print(f"Saved: {legend_path}")

    return {'raster': output_path, 'legend': legend_path}


def load_classification(
    raster_path: str,
    legend_path: Optional[str] = None
) -> Tuple[xr.DataArray, ClassLegend]:
    """
    Load a classification raster and its legend.

    Parameters
    ----------
    raster_path : str
        GeoTIFF written by ``save_classification``
    legend_path : str, optional
        Legend JSON. Defaults to the sidecar next to the raster.

    Returns
    -------
    tuple
        (classification, legend)
    """
    if not os.path.exists(raster_path):
        raise FileNotFoundError(f"Classification raster not found: {raster_path}")

    with rioxarray.open_rasterio(raster_path) as da:
        classification = da.load().squeeze('band', drop=True)

    legend = ClassLegend.load(legend_path or legend_path_for(raster_path))
    return classification, legend
