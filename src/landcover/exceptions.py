"""
Exception hierarchy for the land-cover classification pipeline.

Every error is fatal to a run. Validation errors also subclass ValueError
so callers that catch ValueError keep working.
"""

from typing import Optional, Sequence


class LandCoverError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(LandCoverError, ValueError):
    """
    Invalid run configuration.

    Parameters
    ----------
    message : str
        Description of the problem
    config_key : str, optional
        Configuration key that caused the error
    """

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        super().__init__(message)


class RasterAlignmentError(LandCoverError, ValueError):
    """Band rasters do not share extent, resolution or CRS."""

    def __init__(self, band: str, reference: str, reason: str):
        self.band = band
        self.reference = reference
        self.reason = reason
        super().__init__(
            f"Band '{band}' is not aligned with '{reference}': {reason}"
        )


class EmptyStudyAreaError(LandCoverError, ValueError):
    """Cropping or masking left no valid pixel."""


class TrainingDataError(LandCoverError, ValueError):
    """Training features cannot produce a usable training set."""


class BandMismatchError(LandCoverError, ValueError):
    """Raster bands do not match the bands a model was fit on."""

    def __init__(self, missing: Sequence[str], available: Sequence[str]):
        self.missing = tuple(missing)
        self.available = tuple(available)
        super().__init__(
            f"Raster is missing model bands {list(self.missing)}; "
            f"available bands: {list(self.available)}"
        )


class PaletteMismatchError(LandCoverError, ValueError):
    """Palette length differs from the number of legend classes."""

    def __init__(self, n_colors: int, n_classes: int):
        self.n_colors = n_colors
        self.n_classes = n_classes
        super().__init__(
            f"Palette has {n_colors} colors but legend has {n_classes} classes"
        )
