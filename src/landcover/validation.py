"""
Accuracy and area statistics for land-cover classifications.

Provides training-set accuracy (overall, kappa, per-class producer's and
user's accuracy, confusion matrix) and per-class area summaries of a
classification raster.
"""

import os
from typing import Dict, Optional

import numpy as np
import pandas as pd
import xarray as xr
from sklearn.metrics import accuracy_score, cohen_kappa_score, confusion_matrix

from .training import ClassLegend, TrainedClassifier


# ---------------------------------------------------------------------------
# A. Training accuracy
# ---------------------------------------------------------------------------

def compute_confusion_matrix(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    legend: ClassLegend,
) -> pd.DataFrame:
    """
    Confusion matrix indexed by reference label (rows) and predicted label (columns).
    """
    matrix = confusion_matrix(y_true, y_pred, labels=list(legend.codes))
    labels = pd.Index(legend.labels)
    return pd.DataFrame(
        matrix,
        index=labels.rename('reference'),
        columns=labels.rename('predicted'),
    )


def compute_training_accuracy(
    model: TrainedClassifier,
    records: pd.DataFrame,
) -> Dict:
    """
    Re-classify the training records and compare with their labels.

    Parameters
    ----------
    model : TrainedClassifier
        Fitted model
    records : pd.DataFrame
        Training records with band columns and ``code``

    Returns
    -------
    dict
        'accuracy', 'kappa', 'n_records', 'confusion_matrix' (DataFrame)
        and 'per_class' (DataFrame with producer's/user's accuracy)
    """
    complete = records.dropna(subset=list(model.band_names))
    X = complete[list(model.band_names)].to_numpy(dtype=np.float64)
    y_true = complete['code'].to_numpy(dtype=int)
    y_pred = model.predict_values(X).astype(int)

    cm = compute_confusion_matrix(y_true, y_pred, model.legend)

    reference_totals = cm.sum(axis=1).to_numpy()
    predicted_totals = cm.sum(axis=0).to_numpy()
    diagonal = np.diag(cm.to_numpy())

    per_class = pd.DataFrame({
        'label': list(model.legend.labels),
        'code': list(model.legend.codes),
        'n_reference': reference_totals,
        'n_predicted': predicted_totals,
        'producers_accuracy': diagonal / np.maximum(reference_totals, 1),
        'users_accuracy': diagonal / np.maximum(predicted_totals, 1),
    })

    # Kappa is undefined with a single class
    if len(np.union1d(y_true, y_pred)) > 1:
        kappa = float(cohen_kappa_score(y_true, y_pred))
    else:
        kappa = 1.0

    return {
        'accuracy': float(accuracy_score(y_true, y_pred)),
        'kappa': kappa,
        'n_records': int(len(complete)),
        'confusion_matrix': cm,
        'per_class': per_class,
    }


# ---------------------------------------------------------------------------
# B. Class areas
# ---------------------------------------------------------------------------

def compute_class_areas(
    classification: xr.DataArray,
    legend: ClassLegend,
) -> pd.DataFrame:
    """
    Pixel count, share of valid pixels and area per class.

    Area is in squared CRS units (m² for projected rasters).
    """
    codes = np.asarray(classification.values)
    counts = np.array([(codes == code).sum() for code in legend.codes], dtype=np.int64)
    n_valid = int(counts.sum())

    res_x, res_y = classification.rio.resolution()
    pixel_area = abs(res_x * res_y)

    return pd.DataFrame({
        'label': list(legend.labels),
        'code': list(legend.codes),
        'pixels': counts,
        'percent': 100 * counts / max(n_valid, 1),
        'area': counts * pixel_area,
    })


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def generate_report(
    model: TrainedClassifier,
    records: pd.DataFrame,
    classification: xr.DataArray,
    output_dir: Optional[str] = None,
    verbose: bool = True,
) -> Dict:
    """
    Compute accuracy and area statistics, optionally saving CSVs.

    Returns
    -------
    dict
        'accuracy' (training accuracy dict) and 'class_areas' (DataFrame)
    """
    accuracy = compute_training_accuracy(model, records)
    areas = compute_class_areas(classification, model.legend)

    if verbose:
        print(f"Training accuracy: {100 * accuracy['accuracy']:.1f}% "
              f"(kappa {accuracy['kappa']:.3f}, n={accuracy['n_records']})")
        for _, row in areas.iterrows():
            print(f"  {row['label']}: {row['percent']:.1f}%")

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        accuracy['per_class'].to_csv(os.path.join(output_dir, 'accuracy.csv'), index=False)
        accuracy['confusion_matrix'].to_csv(os.path.join(output_dir, 'confusion_matrix.csv'))
        areas.to_csv(os.path.join(output_dir, 'class_areas.csv'), index=False)

    return {'accuracy': accuracy, 'class_areas': areas}
