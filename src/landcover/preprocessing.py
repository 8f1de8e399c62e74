"""
Preprocessing utilities for surface reflectance band stacks.

This module handles:
- Reprojection of vector data onto the stack CRS
- Cropping to the study-area bounding box
- Masking of pixels outside the study-area polygon
- Out-of-range DN reclassification and DN to percent-reflectance conversion
"""

from typing import Optional, Tuple

import numpy as np
import xarray as xr
import rioxarray  # noqa: F401  (registers the .rio accessor)
import geopandas as gpd
from pyproj import CRS
from rasterio.features import geometry_mask

from .config import ReflectanceCalibration
from .exceptions import ConfigurationError, EmptyStudyAreaError


def reproject_to_stack(gdf: gpd.GeoDataFrame, stack: xr.Dataset) -> gpd.GeoDataFrame:
    """
    Reproject vector features to the CRS of a band stack.

    Returns the input unchanged when both CRS are already equal.
    """
    if gdf.crs is None:
        raise ConfigurationError("Vector data has no CRS")
    if stack.rio.crs is None:
        raise ConfigurationError("Band stack has no CRS")

    raster_crs = CRS.from_user_input(stack.rio.crs)
    if CRS.from_user_input(gdf.crs).equals(raster_crs):
        return gdf
    return gdf.to_crs(raster_crs)


def crop_to_bounds(
    stack: xr.Dataset,
    bounds: Tuple[float, float, float, float]
) -> xr.Dataset:
    """
    Crop a stack to pixels whose centre lies inside a bounding box.

    Parameters
    ----------
    stack : xr.Dataset
        Band stack with ``x``/``y`` coordinates
    bounds : tuple
        (xmin, ymin, xmax, ymax) in the stack CRS

    Returns
    -------
    xr.Dataset
        Cropped stack

    Raises
    ------
    EmptyStudyAreaError
        If the box does not overlap any pixel centre
    """
    xmin, ymin, xmax, ymax = bounds
    x = stack.x.values
    y = stack.y.values

    # North-up rasters have descending y
    x_slice = slice(xmin, xmax) if x[0] <= x[-1] else slice(xmax, xmin)
    y_slice = slice(ymax, ymin) if y[0] > y[-1] else slice(ymin, ymax)

    cropped = stack.sel(x=x_slice, y=y_slice)

    if cropped.sizes['x'] == 0 or cropped.sizes['y'] == 0:
        raise EmptyStudyAreaError(
            f"Study area bounds {tuple(round(b, 3) for b in bounds)} do not overlap "
            f"raster bounds {tuple(round(b, 3) for b in stack.rio.bounds())}"
        )

    return cropped.rio.write_transform(cropped.rio.transform())


def mask_outside(stack: xr.Dataset, geometries) -> xr.Dataset:
    """
    Set every pixel whose centre falls outside the geometries to NaN.

    Parameters
    ----------
    stack : xr.Dataset
        Band stack
    geometries : iterable
        Shapely geometries in the stack CRS

    Returns
    -------
    xr.Dataset
        Masked stack, same extent
    """
    inside = geometry_mask(
        list(geometries),
        out_shape=stack.rio.shape,
        transform=stack.rio.transform(),
        invert=True,
        all_touched=False,
    )
    inside = xr.DataArray(inside, dims=(stack.rio.y_dim, stack.rio.x_dim))
    return stack.where(inside)


def clip_to_study_area(
    stack: xr.Dataset,
    boundary: gpd.GeoDataFrame,
    verbose: bool = True
) -> xr.Dataset:
    """
    Crop a band stack to the study-area bounding box, then mask outside pixels.

    Cropping first only reduces the number of pixels tested against the
    polygon; the result equals masking the full extent.

    Parameters
    ----------
    stack : xr.Dataset
        Band stack
    boundary : GeoDataFrame
        Study-area polygon(s), any CRS
    verbose : bool
        Print extent information

    Returns
    -------
    xr.Dataset
        Cropped and masked stack (outside pixels = NaN)

    Raises
    ------
    EmptyStudyAreaError
        If the study area covers no valid pixel
    """
    boundary = reproject_to_stack(boundary, stack)

    cropped = crop_to_bounds(stack, tuple(boundary.total_bounds))
    masked = mask_outside(cropped, boundary.geometry.values)

    valid = np.zeros(masked.rio.shape, dtype=bool)
    for name in masked.data_vars:
        valid |= np.isfinite(masked[name].values)

    if not valid.any():
        raise EmptyStudyAreaError("No valid pixel left inside the study area")

    if verbose:
        height, width = masked.rio.shape
        print(
            f"Clipped to study area: {height}x{width} px "
            f"({100 * valid.mean():.1f}% inside boundary)"
        )

    return masked


def reclassify_out_of_range(
    stack: xr.Dataset,
    valid_range: Tuple[float, float]
) -> xr.Dataset:
    """
    Set values outside the closed interval [lo, hi] to NaN, per band.

    Both ``lo`` and ``hi`` are valid values.
    """
    lo, hi = valid_range
    return stack.where((stack >= lo) & (stack <= hi))


def to_reflectance(stack: xr.Dataset, scale: float, offset: float) -> xr.Dataset:
    """
    Convert DN to percent reflectance: ``(dn * scale + offset) * 100``.

    NaN pixels stay NaN.
    """
    with xr.set_options(keep_attrs=True):
        reflectance = (stack * scale + offset) * 100
    for name in reflectance.data_vars:
        reflectance[name].attrs['units'] = 'percent'
    return reflectance


def convert_to_reflectance(
    stack: xr.Dataset,
    calibration: Optional[ReflectanceCalibration] = None,
    verbose: bool = True
) -> xr.Dataset:
    """
    Reclassify out-of-range DN to NaN, then convert to percent reflectance.

    Parameters
    ----------
    stack : xr.Dataset
        Band stack in raw DN
    calibration : ReflectanceCalibration, optional
        Valid range and scale/offset. Landsat Collection 2 defaults.
    verbose : bool
        Print per-band counts of reclassified pixels

    Returns
    -------
    xr.Dataset
        Stack in percent reflectance, nominally [0, 100]
    """
    if calibration is None:
        calibration = ReflectanceCalibration()

    in_range = reclassify_out_of_range(stack, calibration.valid_range)

    if verbose:
        for name in stack.data_vars:
            before = int(np.isfinite(stack[name].values).sum())
            after = int(np.isfinite(in_range[name].values).sum())
            print(f"  {name}: {before - after} out-of-range pixels set to no-data")

    return to_reflectance(in_range, calibration.scale, calibration.offset)
