"""
Training data extraction and decision tree fitting.

This module handles:
- Sampling band values under training points and polygons
- Joining samples to feature labels and encoding class codes
- CART fitting with scikit-learn's DecisionTreeClassifier
- The explicit band mapping carried from training to prediction
- Model persistence and inspection
"""

import json
import math
import os
from dataclasses import asdict, dataclass
from typing import ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple

import joblib
import numpy as np
import pandas as pd
import xarray as xr
import geopandas as gpd
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from sklearn.tree import DecisionTreeClassifier, export_text

from .config import TreeConfig
from .exceptions import BandMismatchError, ConfigurationError, TrainingDataError
from .preprocessing import reproject_to_stack


# ---------------------------------------------------------------------------
# Class legend
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClassLegend:
    """
    Fixed mapping between class labels and integer class codes.

    Codes are 1-based positions in ``labels``; 0 marks no-data.
    """

    labels: Tuple[str, ...]

    NODATA_CODE: ClassVar[int] = 0

    def __post_init__(self):
        if len(self.labels) == 0:
            raise TrainingDataError("A class legend needs at least one label")
        if len(set(self.labels)) != len(self.labels):
            raise TrainingDataError(f"Duplicate class labels: {list(self.labels)}")
        if len(self.labels) > 255:
            raise TrainingDataError("At most 255 classes fit in a uint8 classification")

    @classmethod
    def from_labels(
        cls,
        labels: Sequence,
        class_order: Optional[Sequence[str]] = None
    ) -> "ClassLegend":
        """
        Build a legend from observed labels.

        Labels are sorted lexicographically unless ``class_order`` is
        given, in which case it must contain every observed label.
        """
        observed = sorted({str(label) for label in labels})
        if class_order is None:
            return cls(tuple(observed))

        order = tuple(str(label) for label in class_order)
        unknown = [label for label in observed if label not in order]
        if unknown:
            raise TrainingDataError(
                f"Labels {unknown} are missing from the configured class order {list(order)}"
            )
        return cls(order)

    def __len__(self) -> int:
        return len(self.labels)

    @property
    def codes(self) -> Tuple[int, ...]:
        return tuple(range(1, len(self.labels) + 1))

    def code_for(self, label: str) -> int:
        try:
            return self.labels.index(str(label)) + 1
        except ValueError:
            raise KeyError(f"Unknown class label: {label}") from None

    def label_for(self, code: int) -> str:
        code = int(code)
        if not 1 <= code <= len(self.labels):
            raise KeyError(f"Unknown class code: {code}")
        return self.labels[code - 1]

    def encode(self, labels: Sequence) -> np.ndarray:
        """Map labels to class codes."""
        return np.array([self.code_for(label) for label in labels], dtype=np.uint8)

    def to_dict(self) -> Dict:
        return {
            'labels': list(self.labels),
            'codes': {label: code for label, code in zip(self.labels, self.codes)},
            'nodata': self.NODATA_CODE,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "ClassLegend":
        return cls(tuple(data['labels']))

    def save(self, path: str) -> str:
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)
        return path

    @classmethod
    def load(cls, path: str) -> "ClassLegend":
        if not os.path.exists(path):
            raise FileNotFoundError(f"Legend file not found: {path}")
        with open(path, encoding='utf-8') as f:
            return cls.from_dict(json.load(f))


# ---------------------------------------------------------------------------
# Training sample extraction
# ---------------------------------------------------------------------------

def _pixel_window(bounds, transform: Affine, shape: Tuple[int, int]):
    """Row/col window (row_start, row_stop, col_start, col_stop) covering bounds."""
    minx, miny, maxx, maxy = bounds
    inverse = ~transform
    corners = [inverse * (x, y) for x in (minx, maxx) for y in (miny, maxy)]
    cols = [c for c, _ in corners]
    rows = [r for _, r in corners]

    height, width = shape
    row_start = max(0, int(math.floor(min(rows))))
    row_stop = min(height, int(math.ceil(max(rows))))
    col_start = max(0, int(math.floor(min(cols))))
    col_stop = min(width, int(math.ceil(max(cols))))
    return row_start, row_stop, col_start, col_stop


def _points_to_pixels(geom, transform: Affine, shape: Tuple[int, int]):
    points = geom.geoms if geom.geom_type == 'MultiPoint' else [geom]
    inverse = ~transform
    height, width = shape
    rows, cols = [], []
    for point in points:
        c, r = inverse * (point.x, point.y)
        r, c = int(math.floor(r)), int(math.floor(c))
        if 0 <= r < height and 0 <= c < width:
            rows.append(r)
            cols.append(c)
    return np.array(rows, dtype=int), np.array(cols, dtype=int)


def _polygon_to_pixels(geom, transform: Affine, shape: Tuple[int, int]):
    row_start, row_stop, col_start, col_stop = _pixel_window(geom.bounds, transform, shape)
    if row_stop <= row_start or col_stop <= col_start:
        return np.array([], dtype=int), np.array([], dtype=int)

    window_transform = transform * Affine.translation(col_start, row_start)
    inside = geometry_mask(
        [geom],
        out_shape=(row_stop - row_start, col_stop - col_start),
        transform=window_transform,
        invert=True,
        all_touched=False,
    )
    rows, cols = np.nonzero(inside)
    return rows + row_start, cols + col_start


def geometry_pixels(geom, transform: Affine, shape: Tuple[int, int]):
    """
    Pixel indices sampled for one training geometry.

    Points sample the pixel containing them. Polygons sample every
    pixel whose centre lies inside, the same rule used for masking.

    Returns
    -------
    tuple
        (rows, cols) integer arrays, possibly empty
    """
    if geom.geom_type in ('Point', 'MultiPoint'):
        return _points_to_pixels(geom, transform, shape)
    if geom.geom_type in ('Polygon', 'MultiPolygon'):
        return _polygon_to_pixels(geom, transform, shape)
    raise TrainingDataError(f"Unsupported training geometry type: {geom.geom_type}")


def extract_training_samples(
    stack: xr.Dataset,
    features: gpd.GeoDataFrame,
    label_field: str = 'type',
    id_field: str = 'id',
    class_order: Optional[Sequence[str]] = None,
    verbose: bool = True
) -> Tuple[pd.DataFrame, ClassLegend]:
    """
    Sample the band stack under each training feature.

    Parameters
    ----------
    stack : xr.Dataset
        Band stack in percent reflectance
    features : GeoDataFrame
        Training points/polygons with label and id attributes
    label_field : str
        Land-cover label attribute
    id_field : str
        Unique feature identifier shared by samples and labels
    class_order : sequence, optional
        Explicit class ordering for the legend
    verbose : bool
        Print sampling summary

    Returns
    -------
    tuple
        (records, legend). ``records`` has one row per sampled pixel with
        the feature id, one column per band, ``row``/``col``, the
        categorical ``label`` and its integer ``code``. Rows with
        any no-data band are dropped.

    Raises
    ------
    TrainingDataError
        If no complete training record remains
    """
    features = reproject_to_stack(features, stack)
    band_names = list(stack.data_vars)
    transform = stack.rio.transform()
    shape = stack.rio.shape
    values = np.stack([stack[name].values for name in band_names], axis=0)

    legend = ClassLegend.from_labels(features[label_field], class_order=class_order)

    samples = []
    for fid, geom in zip(features[id_field], features.geometry):
        rows, cols = geometry_pixels(geom, transform, shape)
        if len(rows) == 0:
            continue
        sample = pd.DataFrame(values[:, rows, cols].T, columns=band_names)
        sample.insert(0, id_field, fid)
        sample['row'] = rows
        sample['col'] = cols
        samples.append(sample)

    if not samples:
        raise TrainingDataError("No training feature overlaps the band stack")

    samples = pd.concat(samples, ignore_index=True)

    labels = features[[id_field, label_field]].rename(columns={label_field: 'label'})
    labels['label'] = labels['label'].astype(str)
    records = samples.merge(labels, on=id_field, how='inner', validate='many_to_one')

    complete = records[band_names].notna().all(axis=1)
    n_dropped = int((~complete).sum())
    records = records[complete].reset_index(drop=True)

    if len(records) == 0:
        raise TrainingDataError("All training samples contain no-data values")

    records['code'] = legend.encode(records['label'])
    records['label'] = pd.Categorical(records['label'], categories=list(legend.labels))

    if verbose:
        n_features = records[id_field].nunique()
        print(
            f"Extracted {len(records)} training records from {n_features} "
            f"features ({n_dropped} with no-data dropped)"
        )
        counts = records['label'].value_counts(sort=False)
        for label, n in counts.items():
            print(f"  {label}: {n}")

    return records, legend


# ---------------------------------------------------------------------------
# Decision tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TrainedClassifier:
    """
    A fitted decision tree with the band mapping and legend it was fit on.

    ``band_names[i]`` is the stack band fed to tree feature ``i``.
    """

    estimator: DecisionTreeClassifier
    band_names: Tuple[str, ...]
    legend: ClassLegend

    @property
    def n_leaves(self) -> int:
        return int(self.estimator.get_n_leaves())

    @property
    def depth(self) -> int:
        return int(self.estimator.get_depth())

    def bind_bands(self, stack: xr.Dataset) -> List[str]:
        """
        Resolve the stack bands in model feature order.

        Raises
        ------
        BandMismatchError
            If a model band is absent from the stack
        """
        available = list(stack.data_vars)
        missing = [name for name in self.band_names if name not in available]
        if missing:
            raise BandMismatchError(missing, available)
        return list(self.band_names)

    def predict_values(self, values: np.ndarray) -> np.ndarray:
        """Class codes for an (n_pixels, n_bands) array in model band order."""
        if values.ndim != 2 or values.shape[1] != len(self.band_names):
            raise ValueError(
                f"Expected (n, {len(self.band_names)}) values, got {values.shape}"
            )
        return self.estimator.predict(values).astype(np.uint8)


def train_decision_tree(
    records: pd.DataFrame,
    band_names: Sequence[str],
    legend: ClassLegend,
    config: Optional[TreeConfig] = None,
    verbose: bool = True
) -> TrainedClassifier:
    """
    Fit a CART decision tree mapping band values to class codes.

    Records with any missing predictor are left out of the fit.

    Parameters
    ----------
    records : pd.DataFrame
        Training records with band columns and ``code``
    band_names : sequence
        Predictor columns, in the order the model will expect them
    legend : ClassLegend
        Legend the codes refer to
    config : TreeConfig, optional
        Tree hyper-parameters
    verbose : bool
        Print tree size

    Returns
    -------
    TrainedClassifier
    """
    if config is None:
        config = TreeConfig()

    band_names = tuple(band_names)
    missing = [name for name in band_names + ('code',) if name not in records.columns]
    if missing:
        raise TrainingDataError(f"Training records lack columns {missing}")

    complete = records.dropna(subset=list(band_names))
    if len(complete) == 0:
        raise TrainingDataError("No complete training record to fit on")

    X = complete[list(band_names)].to_numpy(dtype=np.float64)
    y = complete['code'].to_numpy(dtype=int)

    estimator = DecisionTreeClassifier(**asdict(config))
    estimator.fit(X, y)

    model = TrainedClassifier(estimator=estimator, band_names=band_names, legend=legend)

    if verbose:
        print(
            f"Decision tree fit on {len(complete)} records: "
            f"{model.n_leaves} leaves, depth {model.depth}"
        )

    return model


def describe_tree(model: TrainedClassifier) -> str:
    """Text rendering of the tree with band names and class labels."""
    class_names = [model.legend.label_for(code) for code in model.estimator.classes_]
    return export_text(
        model.estimator,
        feature_names=list(model.band_names),
        class_names=class_names,
        decimals=3,
    )


def decision_path_for(model: TrainedClassifier, values: Mapping[str, float]) -> Dict:
    """
    Trace one pixel from the root to a leaf.

    Parameters
    ----------
    model : TrainedClassifier
        Fitted model
    values : mapping
        {band_name: value} for every model band

    Returns
    -------
    dict
        'steps': list of split tests taken, 'code' and 'label' of the leaf
    """
    missing = [name for name in model.band_names if name not in values]
    if missing:
        raise BandMismatchError(missing, list(values))

    tree = model.estimator.tree_
    node = 0
    steps = []

    while tree.children_left[node] != tree.children_right[node]:
        band = model.band_names[tree.feature[node]]
        threshold = float(tree.threshold[node])
        # sklearn casts features to float32, then compares against a float64 threshold
        value = float(np.float32(values[band]))
        go_left = value <= threshold
        steps.append({
            'node': int(node),
            'band': band,
            'threshold': threshold,
            'value': float(values[band]),
            'branch': 'left' if go_left else 'right',
        })
        node = tree.children_left[node] if go_left else tree.children_right[node]

    code = int(model.estimator.classes_[int(np.argmax(tree.value[node][0]))])
    return {'steps': steps, 'leaf': int(node), 'code': code, 'label': model.legend.label_for(code)}


def save_model(model: TrainedClassifier, path: str) -> str:
    """Persist a trained model with joblib."""
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    joblib.dump(model, path)
    return path


def load_model(path: str) -> TrainedClassifier:
    """Load a model written by ``save_model``."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model file not found: {path}")
    model = joblib.load(path)
    if not isinstance(model, TrainedClassifier):
        raise ConfigurationError(f"{path} does not contain a trained land-cover model")
    return model
