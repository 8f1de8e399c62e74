"""
Landcover: Supervised Decision-Tree Land-Cover Classification
=============================================================

Modules:
    config: Run context, calibration and tree settings
    data_loader: Band stack and vector loading
    preprocessing: Study-area clipping and reflectance conversion
    training: Training sample extraction and decision tree fitting
    inference: Pixel-wise raster classification
    validation: Accuracy and class area statistics
    visualization: Plotting utilities
    pipeline: End-to-end run
"""

from .config import (
    RunContext,
    ReflectanceCalibration,
    TreeConfig,
)

from .data_loader import (
    discover_band_files,
    load_band_stack,
    load_boundary,
    load_training_features,
)

from .preprocessing import (
    clip_to_study_area,
    reclassify_out_of_range,
    to_reflectance,
    convert_to_reflectance,
)

from .training import (
    ClassLegend,
    TrainedClassifier,
    extract_training_samples,
    train_decision_tree,
    describe_tree,
    decision_path_for,
    save_model,
    load_model,
)

from .inference import (
    RasterPredictor,
    predict_raster,
    save_classification,
    load_classification,
)

from .validation import (
    compute_training_accuracy,
    compute_class_areas,
)

from .visualization import (
    plot_classification_map,
    plot_confusion_matrix,
    plot_training_spectra,
    plot_rgb_composite,
)

from .pipeline import PipelineResult, run_pipeline

__version__ = "0.1.0"
