"""
End-to-end land-cover classification run.

Stages run strictly in order: load bands, clip to the study area,
convert to reflectance, extract training samples, fit the tree,
classify every pixel, then write statistics and figures. Any error
stops the run.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict

import matplotlib.pyplot as plt
import pandas as pd
import xarray as xr

from .config import RunContext
from .data_loader import (
    discover_band_files,
    load_band_stack,
    load_boundary,
    load_training_features,
)
from .preprocessing import clip_to_study_area, convert_to_reflectance
from .training import (
    ClassLegend,
    TrainedClassifier,
    describe_tree,
    extract_training_samples,
    save_model,
    train_decision_tree,
)
from .inference import predict_raster, save_classification
from .validation import generate_report
from .visualization import (
    build_colormap,
    plot_classification_map,
    plot_confusion_matrix,
    plot_rgb_composite,
    plot_training_spectra,
)


@dataclass
class PipelineResult:
    """Products of a pipeline run."""

    stack: xr.Dataset
    records: pd.DataFrame
    legend: ClassLegend
    model: TrainedClassifier
    classification: xr.DataArray
    report: Dict
    outputs: Dict[str, str] = field(default_factory=dict)


def _banner(title: str, verbose: bool) -> None:
    if verbose:
        print(f"\n{'='*50}")
        print(title)
        print('='*50)


def _save_figure(fig, path: str, outputs: Dict[str, str], key: str) -> None:
    plt.close(fig)
    outputs[key] = path


def run_pipeline(context: RunContext, verbose: bool = True) -> PipelineResult:
    """
    Run the full classification for one dataset.

    Parameters
    ----------
    context : RunContext
        Input paths, output directory and constants
    verbose : bool
        Print stage progress

    Returns
    -------
    PipelineResult
        Reflectance stack, training records, model, classification,
        statistics and the paths of every written artifact
    """
    context.validate()
    os.makedirs(context.output_dir, exist_ok=True)
    outputs = {}

    config_path = context.output_path('run_config.json')
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(context.to_dict(), f, indent=2)
    outputs['config'] = config_path

    # 1. Bands
    _banner("Loading band rasters", verbose)
    band_paths = context.band_paths or discover_band_files(
        context.band_dir, context.band_names, context.band_suffixes
    )
    stack = load_band_stack(band_paths, context.band_names, verbose=verbose)

    # 2. Study area
    _banner("Clipping to study area", verbose)
    boundary = load_boundary(context.boundary_path)
    stack = clip_to_study_area(stack, boundary, verbose=verbose)

    # 3. Reflectance
    _banner("Converting to reflectance", verbose)
    stack = convert_to_reflectance(stack, context.calibration, verbose=verbose)

    # 4. Training samples
    _banner("Extracting training samples", verbose)
    features = load_training_features(
        context.training_path, context.label_field, context.id_field, verbose=verbose
    )
    records, legend = extract_training_samples(
        stack,
        features,
        label_field=context.label_field,
        id_field=context.id_field,
        class_order=context.class_order,
        verbose=verbose,
    )
    # Fail before fitting if the palette cannot describe the legend
    build_colormap(legend, context.palette)

    samples_path = context.output_path('training_samples.csv')
    records.to_csv(samples_path, index=False)
    outputs['training_samples'] = samples_path

    # 5. Decision tree
    _banner("Training decision tree", verbose)
    model = train_decision_tree(
        records, context.band_names, legend, context.tree, verbose=verbose
    )
    outputs['model'] = save_model(model, context.output_path('decision_tree.joblib'))

    tree_path = context.output_path('decision_tree.txt')
    with open(tree_path, 'w', encoding='utf-8') as f:
        f.write(describe_tree(model))
    outputs['tree'] = tree_path

    # 6. Prediction
    _banner("Classifying raster", verbose)
    classification = predict_raster(
        stack,
        model,
        block_rows=context.block_rows,
        parallel=context.parallel,
        verbose=verbose,
    )
    saved = save_classification(
        classification, legend, context.output_path('classification.tif'), verbose=verbose
    )
    outputs['classification'] = saved['raster']
    outputs['legend'] = saved['legend']

    # 7. Statistics and figures
    _banner("Summary", verbose)
    report = generate_report(
        model, records, classification, output_dir=context.output_dir, verbose=verbose
    )
    outputs['accuracy'] = context.output_path('accuracy.csv')
    outputs['class_areas'] = context.output_path('class_areas.csv')

    map_path = context.output_path('classification_map.png')
    fig = plot_classification_map(
        classification, legend, context.palette, output_path=map_path, verbose=verbose
    )
    _save_figure(fig, map_path, outputs, 'map')

    cm_path = context.output_path('confusion_matrix.png')
    fig = plot_confusion_matrix(
        report['accuracy']['confusion_matrix'], output_path=cm_path, verbose=verbose
    )
    _save_figure(fig, cm_path, outputs, 'confusion_matrix')

    spectra_path = context.output_path('training_spectra.png')
    fig = plot_training_spectra(
        records, context.band_names, legend, context.palette,
        output_path=spectra_path, verbose=verbose
    )
    _save_figure(fig, spectra_path, outputs, 'spectra')

    if all(name in stack.data_vars for name in ('red', 'green', 'blue')):
        rgb_path = context.output_path('true_color.png')
        fig = plot_rgb_composite(stack, output_path=rgb_path, verbose=verbose)
        _save_figure(fig, rgb_path, outputs, 'true_color')

    return PipelineResult(
        stack=stack,
        records=records,
        legend=legend,
        model=model,
        classification=classification,
        report=report,
        outputs=outputs,
    )
