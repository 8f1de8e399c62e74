"""Shared fixtures: synthetic Landsat-like band rasters and training vectors."""

import json

import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rasterio
import rioxarray  # noqa: F401
import xarray as xr
from rasterio.transform import from_origin
from shapely.geometry import Point, box

from landcover.config import DEFAULT_BAND_NAMES, LANDSAT_OFFSET, LANDSAT_SCALE
from landcover.training import ClassLegend

CRS = "EPSG:32632"
ORIGIN = (500000.0, 5000000.0)
RES = 30.0
SIZE = 20

# Percent reflectance per band (blue, green, red, nir, swir1, swir2)
CLUSTERS = {
    "water": (4.0, 4.0, 3.0, 2.0, 1.0, 1.0),
    "urban": (12.0, 14.0, 18.0, 8.0, 25.0, 22.0),
    "vegetation": (3.0, 6.0, 4.0, 40.0, 18.0, 9.0),
    "soil": (10.0, 12.0, 14.0, 16.0, 15.0, 14.0),
}

# Quadrant layout of the synthetic scene
QUADRANTS = {
    "water": (slice(0, SIZE // 2), slice(0, SIZE // 2)),
    "urban": (slice(0, SIZE // 2), slice(SIZE // 2, SIZE)),
    "vegetation": (slice(SIZE // 2, SIZE), slice(0, SIZE // 2)),
    "soil": (slice(SIZE // 2, SIZE), slice(SIZE // 2, SIZE)),
}


def reflectance_to_dn(reflectance):
    return np.round((np.asarray(reflectance) / 100 - LANDSAT_OFFSET) / LANDSAT_SCALE).astype(np.uint16)


def pixel_center(row, col, origin=ORIGIN, res=RES):
    return origin[0] + (col + 0.5) * res, origin[1] - (row + 0.5) * res


def write_band(path, data, crs=CRS, origin=ORIGIN, res=RES, nodata=0):
    transform = from_origin(origin[0], origin[1], res, res)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=data.shape[0],
        width=data.shape[1],
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
    return str(path)


def make_stack(bands, crs=CRS, origin=ORIGIN, res=RES):
    """In-memory band stack with the same layout load_band_stack returns."""
    height, width = next(iter(bands.values())).shape
    x = origin[0] + (np.arange(width) + 0.5) * res
    y = origin[1] - (np.arange(height) + 0.5) * res
    stack = xr.Dataset(
        {name: (("y", "x"), np.asarray(values, dtype=np.float64)) for name, values in bands.items()},
        coords={"x": x, "y": y},
    )
    stack = stack.rio.write_crs(crs)
    return stack.rio.write_transform(from_origin(origin[0], origin[1], res, res))


def scene_labels():
    labels = np.empty((SIZE, SIZE), dtype=object)
    for label, (rows, cols) in QUADRANTS.items():
        labels[rows, cols] = label
    return labels


def scene_reflectance():
    """{band: 2D reflectance array} built purely from the cluster centres."""
    labels = scene_labels()
    bands = {}
    for i, name in enumerate(DEFAULT_BAND_NAMES):
        values = np.zeros((SIZE, SIZE))
        for label, spectrum in CLUSTERS.items():
            values[labels == label] = spectrum[i]
        bands[name] = values
    return bands


def training_features():
    """Five points per class plus one 2x2-pixel vegetation polygon."""
    records = []
    fid = 1
    offsets = [(2, 2), (2, 7), (5, 5), (7, 2), (7, 7)]
    for label, (rows, cols) in QUADRANTS.items():
        for dr, dc in offsets:
            x, y = pixel_center(rows.start + dr, cols.start + dc)
            records.append({"id": fid, "type": label, "geometry": Point(x, y)})
            fid += 1

    # Covers the centres of pixels (13..14, 3..4)
    x0, y0 = pixel_center(13, 3)
    x1, y1 = pixel_center(14, 4)
    polygon = box(x0 - 1, y1 - 1, x1 + 1, y0 + 1)
    records.append({"id": fid, "type": "vegetation", "geometry": polygon})

    return gpd.GeoDataFrame(records, geometry="geometry", crs=CRS)


@pytest.fixture
def clusters():
    return CLUSTERS


@pytest.fixture
def stack_factory():
    return make_stack


@pytest.fixture
def band_writer():
    return write_band


@pytest.fixture
def reflectance_stack():
    return make_stack(scene_reflectance())


@pytest.fixture
def expected_labels():
    return scene_labels()


@pytest.fixture
def features():
    return training_features()


@pytest.fixture
def scene(tmp_path):
    """Band files, boundary and training vectors on disk, plus a config file."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()

    band_paths = []
    for name, values in scene_reflectance().items():
        band_paths.append(write_band(data_dir / f"{name}.tif", reflectance_to_dn(values)))

    minx, maxy = ORIGIN
    boundary = gpd.GeoDataFrame(
        {"name": ["study area"]},
        geometry=[box(minx, maxy - SIZE * RES, minx + SIZE * RES, maxy)],
        crs=CRS,
    )
    boundary_path = data_dir / "boundary.gpkg"
    boundary.to_file(boundary_path, driver="GPKG")

    training_path = data_dir / "training.gpkg"
    training_features().to_file(training_path, driver="GPKG")

    config = {
        "band_paths": [f"data/{name}.tif" for name in DEFAULT_BAND_NAMES],
        "boundary_path": "data/boundary.gpkg",
        "training_path": "data/training.gpkg",
        "output_dir": "output",
        "parallel": True,
        "block_rows": 7,
    }
    config_path = tmp_path / "run.json"
    config_path.write_text(json.dumps(config))

    return {
        "root": tmp_path,
        "band_paths": band_paths,
        "boundary_path": str(boundary_path),
        "training_path": str(training_path),
        "config_path": str(config_path),
        "config": config,
    }


def hand_traced_records():
    """Twelve records whose CART tree is small enough to trace by hand."""
    rows = (
        [("vegetation", 40.0, 10.0, 5.0)] * 6
        + [("water", 5.0, 5.0, 2.0)] * 3
        + [("urban", 10.0, 30.0, 30.0)] * 3
    )
    records = pd.DataFrame(rows, columns=["label", "nir", "red", "swir1"])
    legend = ClassLegend.from_labels(records["label"])
    records["code"] = legend.encode(records["label"])
    return records, legend
