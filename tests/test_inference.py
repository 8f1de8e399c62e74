"""Tests for pixel-wise raster classification."""

import numpy as np
import pytest

from landcover.config import DEFAULT_BAND_NAMES
from landcover.exceptions import BandMismatchError
from landcover.inference import (
    RasterPredictor,
    legend_path_for,
    load_classification,
    predict_raster,
    save_classification,
)
from landcover.training import (
    ClassLegend,
    decision_path_for,
    extract_training_samples,
    train_decision_tree,
)


@pytest.fixture
def model(reflectance_stack, features):
    records, legend = extract_training_samples(reflectance_stack, features, verbose=False)
    return train_decision_tree(records, DEFAULT_BAND_NAMES, legend, verbose=False)


@pytest.fixture
def noisy_stack(reflectance_stack):
    rng = np.random.default_rng(42)
    stack = reflectance_stack.copy(deep=True)
    for name in stack.data_vars:
        stack[name].values += rng.normal(0, 4, stack[name].shape)
    return stack


def _codes_for(model, expected_labels):
    return np.vectorize(model.legend.code_for)(expected_labels).astype(np.uint8)


def test_classifies_scene(model, reflectance_stack, expected_labels):
    classification = predict_raster(reflectance_stack, model, block_rows=6, verbose=False)

    assert classification.dtype == np.uint8
    np.testing.assert_array_equal(classification.values, _codes_for(model, expected_labels))


def test_output_grid_matches_stack(model, reflectance_stack):
    classification = predict_raster(reflectance_stack, model, verbose=False)

    np.testing.assert_array_equal(classification.x.values, reflectance_stack.x.values)
    np.testing.assert_array_equal(classification.y.values, reflectance_stack.y.values)
    assert classification.rio.crs == reflectance_stack.rio.crs
    assert classification.rio.transform().almost_equals(reflectance_stack.rio.transform())
    assert classification.rio.nodata == ClassLegend.NODATA_CODE


def test_nodata_pixels_get_code_zero(model, reflectance_stack):
    stack = reflectance_stack.copy(deep=True)
    stack["swir1"].values[0, :] = np.nan
    stack["blue"].values[5, 5] = np.nan

    codes = predict_raster(stack, model, verbose=False).values

    assert (codes[0, :] == 0).all()
    assert codes[5, 5] == 0
    assert (codes != 0).sum() == codes.size - codes.shape[1] - 1


def test_matches_manual_traversal(model, noisy_stack):
    codes = predict_raster(noisy_stack, model, block_rows=4, verbose=False).values

    height, width = codes.shape
    for row in range(height):
        for col in range(width):
            values = {name: float(noisy_stack[name].values[row, col]) for name in DEFAULT_BAND_NAMES}
            assert decision_path_for(model, values)["code"] == codes[row, col]


def test_band_order_does_not_matter(model, noisy_stack):
    shuffled = noisy_stack[["swir2", "nir", "blue", "red", "swir1", "green"]]

    expected = predict_raster(noisy_stack, model, verbose=False).values
    actual = predict_raster(shuffled, model, verbose=False).values

    np.testing.assert_array_equal(actual, expected)


def test_extra_bands_are_ignored(model, reflectance_stack, expected_labels):
    stack = reflectance_stack.assign(ndvi=reflectance_stack["nir"] * 0)
    codes = predict_raster(stack, model, verbose=False).values
    np.testing.assert_array_equal(codes, _codes_for(model, expected_labels))


def test_missing_band_raises(model, reflectance_stack):
    with pytest.raises(BandMismatchError) as exc:
        predict_raster(reflectance_stack.drop_vars("nir"), model, verbose=False)
    assert exc.value.missing == ("nir",)


@pytest.mark.parametrize("block_rows", [1, 3, 7, 100])
def test_parallel_equals_sequential(model, noisy_stack, block_rows):
    predictor = RasterPredictor(model, block_rows=block_rows, verbose=False)

    sequential = predictor.predict(noisy_stack, parallel=False, show_progress=False)
    parallel = predictor.predict(noisy_stack, parallel=True)

    np.testing.assert_array_equal(parallel.values, sequential.values)


def test_block_rows_must_be_positive(model):
    with pytest.raises(ValueError):
        RasterPredictor(model, block_rows=0)


def test_predict_block_shape(model, clusters):
    block = np.stack([np.full((2, 3), value) for value in clusters["water"]])
    codes = RasterPredictor(model, verbose=False).predict_block(block)
    assert codes.shape == (2, 3)
    assert (codes == model.legend.code_for("water")).all()


def test_save_and_load_classification(tmp_path, model, reflectance_stack):
    stack = reflectance_stack.copy(deep=True)
    stack["red"].values[3, 4] = np.nan
    classification = predict_raster(stack, model, verbose=False)

    paths = save_classification(
        classification, model.legend, str(tmp_path / "out" / "classification.tif"), verbose=False
    )
    assert paths["legend"] == legend_path_for(paths["raster"])
    assert paths["legend"].endswith("classification_legend.json")

    loaded, legend = load_classification(paths["raster"])

    assert legend == model.legend
    assert loaded.dtype == np.uint8
    assert loaded.rio.nodata == 0
    assert loaded.rio.crs == stack.rio.crs
    np.testing.assert_array_equal(loaded.values, classification.values)
    assert loaded.values[3, 4] == 0
