"""
Data loading utilities for per-band surface reflectance rasters and vectors.

This module handles:
- Band file discovery by naming convention
- Single-band raster loading into a named multi-band stack
- Post-load alignment checks (CRS, transform, shape)
- Study-area boundary and training feature loading
"""

import os
from typing import Dict, List, Optional, Sequence

import numpy as np
import xarray as xr
import rioxarray
import geopandas as gpd

from .config import DEFAULT_BAND_NAMES, LANDSAT_BAND_SUFFIXES
from .exceptions import (
    ConfigurationError,
    EmptyStudyAreaError,
    RasterAlignmentError,
    TrainingDataError,
)


RASTER_EXTENSIONS = ('.tif', '.tiff')
POLYGON_TYPES = ('Polygon', 'MultiPolygon')


def discover_band_files(
    directory: str,
    band_names: Sequence[str] = DEFAULT_BAND_NAMES,
    suffixes: Optional[Dict[str, str]] = None
) -> List[str]:
    """
    Find one raster file per band following a file-suffix convention.

    Parameters
    ----------
    directory : str
        Directory holding the band files
    band_names : sequence
        Semantic band names, in the order the paths are returned
    suffixes : dict, optional
        {band_name: suffix}. Defaults to Landsat Collection 2 SR suffixes.

    Returns
    -------
    list
        Band file paths ordered like ``band_names``

    Raises
    ------
    FileNotFoundError
        If a band has no matching file
    ConfigurationError
        If a band has no suffix or matches several files
    """
    if suffixes is None:
        suffixes = LANDSAT_BAND_SUFFIXES

    files = sorted(os.listdir(directory))
    paths = []

    for name in band_names:
        if name not in suffixes:
            raise ConfigurationError(
                f"No file suffix configured for band '{name}'", config_key='band_suffixes'
            )
        suffix = suffixes[name].upper()
        matches = [
            f for f in files
            if any(f.upper().endswith(suffix + ext.upper()) for ext in RASTER_EXTENSIONS)
        ]
        if len(matches) == 0:
            raise FileNotFoundError(
                f"No raster ending in '{suffixes[name]}' for band '{name}' in {directory}"
            )
        if len(matches) > 1:
            raise ConfigurationError(
                f"Band '{name}' matches several files: {matches}", config_key='band_suffixes'
            )
        paths.append(os.path.join(directory, matches[0]))

    return paths


def load_band(path: str) -> xr.DataArray:
    """
    Read a single-band raster into memory.

    No-data pixels declared by the file become NaN.

    Parameters
    ----------
    path : str
        Raster file path

    Returns
    -------
    xr.DataArray
        2D array with ``y``/``x`` coordinates and CRS
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Raster file not found: {path}")

    with rioxarray.open_rasterio(path, masked=True) as da:
        da = da.load()

    if da.sizes.get('band', 1) != 1:
        raise ConfigurationError(
            f"Expected a single-band raster, {path} has {da.sizes['band']} bands"
        )

    return da.squeeze('band', drop=True)


def check_alignment(bands: Dict[str, xr.DataArray]) -> None:
    """
    Verify that all bands share CRS, affine transform and shape.

    Raises
    ------
    RasterAlignmentError
        On the first band that differs from the first one
    """
    names = list(bands)
    ref_name = names[0]
    ref = bands[ref_name]
    ref_crs = ref.rio.crs
    ref_transform = ref.rio.transform()

    for name in names[1:]:
        band = bands[name]
        if band.rio.crs != ref_crs:
            raise RasterAlignmentError(
                name, ref_name, f"CRS {band.rio.crs} != {ref_crs}"
            )
        if band.rio.shape != ref.rio.shape:
            raise RasterAlignmentError(
                name, ref_name, f"shape {band.rio.shape} != {ref.rio.shape}"
            )
        if not band.rio.transform().almost_equals(ref_transform):
            raise RasterAlignmentError(
                name, ref_name, "different extent or resolution"
            )


def load_band_stack(
    band_paths: Sequence[str],
    band_names: Sequence[str] = DEFAULT_BAND_NAMES,
    verbose: bool = True
) -> xr.Dataset:
    """
    Load per-band raster files into a named multi-band stack.

    Parameters
    ----------
    band_paths : sequence
        One single-band raster per band
    band_names : sequence
        Semantic names assigned in file order
    verbose : bool
        Print loading information

    Returns
    -------
    xr.Dataset
        One data variable per band, all on the same grid

    Raises
    ------
    FileNotFoundError
        If a path does not exist
    RasterAlignmentError
        If the bands are not on the same grid
    """
    if len(band_paths) != len(band_names):
        raise ConfigurationError(
            f"{len(band_paths)} band files given for {len(band_names)} band names",
            config_key='band_paths',
        )

    bands = {}
    for name, path in zip(band_names, band_paths):
        if verbose:
            print(f"Loading {name} from {path}")
        bands[name] = load_band(path)

    check_alignment(bands)

    crs = bands[band_names[0]].rio.crs
    stack = xr.Dataset({name: da.rename(name) for name, da in bands.items()})
    stack = stack.rio.write_crs(crs)

    if verbose:
        info = describe_stack(stack)
        print(f"Stack: {info['n_bands']} bands, {info['height']}x{info['width']} px, {info['crs']}")

    return stack


def describe_stack(stack: xr.Dataset) -> Dict:
    """
    Summarize a band stack.

    Returns
    -------
    dict
        Band names, grid size, CRS, resolution, bounds and
        per-band valid-pixel fraction
    """
    names = list(stack.data_vars)
    height, width = stack.rio.shape

    return {
        'n_bands': len(names),
        'band_names': names,
        'height': int(height),
        'width': int(width),
        'crs': str(stack.rio.crs),
        'resolution': tuple(float(r) for r in stack.rio.resolution()),
        'bounds': tuple(float(b) for b in stack.rio.bounds()),
        'valid_fraction': {
            name: float(np.isfinite(stack[name].values).mean()) if stack[name].size else 0.0
            for name in names
        },
    }


def _read_vector(path: str) -> gpd.GeoDataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Vector file not found: {path}")

    gdf = gpd.read_file(path)
    if gdf.crs is None:
        raise ConfigurationError(f"Vector file has no CRS: {path}")

    return gdf[gdf.geometry.notna() & ~gdf.geometry.is_empty].copy()


def load_boundary(path: str) -> gpd.GeoDataFrame:
    """
    Load the study-area polygon(s).

    Parameters
    ----------
    path : str
        Vector file with polygon or multipolygon geometry

    Returns
    -------
    GeoDataFrame
        Non-empty polygon features with CRS
    """
    gdf = _read_vector(path)

    if len(gdf) == 0:
        raise EmptyStudyAreaError(f"Boundary file contains no geometry: {path}")

    bad = ~gdf.geom_type.isin(POLYGON_TYPES)
    if bad.any():
        raise ConfigurationError(
            f"Boundary must be polygonal, found {sorted(set(gdf.geom_type[bad]))}"
        )

    return gdf


def load_training_features(
    path: str,
    label_field: str = 'type',
    id_field: str = 'id',
    verbose: bool = True
) -> gpd.GeoDataFrame:
    """
    Load labeled training points or polygons.

    Parameters
    ----------
    path : str
        Vector file with a label and a unique id attribute
    label_field : str
        Land-cover label attribute
    id_field : str
        Unique feature identifier attribute
    verbose : bool
        Print a per-class summary

    Returns
    -------
    GeoDataFrame
        Features with string labels

    Raises
    ------
    TrainingDataError
        If an attribute is missing, ids repeat or no feature is labeled
    """
    gdf = _read_vector(path)

    for column in (label_field, id_field):
        if column not in gdf.columns:
            raise TrainingDataError(
                f"Training file {path} has no '{column}' attribute "
                f"(columns: {[c for c in gdf.columns if c != 'geometry']})"
            )

    duplicated = gdf[id_field][gdf[id_field].duplicated()]
    if len(duplicated) > 0:
        raise TrainingDataError(
            f"Training feature ids must be unique, repeated: {sorted(set(duplicated))[:10]}"
        )

    unlabeled = gdf[label_field].isna()
    if unlabeled.any():
        if verbose:
            print(f"Warning: dropping {int(unlabeled.sum())} unlabeled training features")
        gdf = gdf[~unlabeled].copy()

    if len(gdf) == 0:
        raise TrainingDataError(f"No labeled training features in {path}")

    gdf[label_field] = gdf[label_field].astype(str)

    if verbose:
        counts = gdf[label_field].value_counts().sort_index()
        print(f"Loaded {len(gdf)} training features:")
        for label, n in counts.items():
            print(f"  {label}: {n}")

    return gdf
