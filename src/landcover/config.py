"""
Run configuration for the land-cover classification pipeline.

A RunContext carries every input path, the output directory and all
numeric constants. It is passed explicitly to each stage.
"""

import json
import os
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple

from .exceptions import ConfigurationError


DEFAULT_BAND_NAMES = ('blue', 'green', 'red', 'nir', 'swir1', 'swir2')

# Landsat 8/9 Collection 2 Level-2 surface reflectance file suffixes
LANDSAT_BAND_SUFFIXES = {
    'blue': 'SR_B2',
    'green': 'SR_B3',
    'red': 'SR_B4',
    'nir': 'SR_B5',
    'swir1': 'SR_B6',
    'swir2': 'SR_B7',
}

# Collection 2 Level-2 valid DN range and scale/offset
LANDSAT_VALID_RANGE = (7273, 43636)
LANDSAT_SCALE = 0.0000275
LANDSAT_OFFSET = -0.2


@dataclass(frozen=True)
class ReflectanceCalibration:
    """DN to percent-reflectance calibration, shared by all bands."""

    lo: float = LANDSAT_VALID_RANGE[0]
    hi: float = LANDSAT_VALID_RANGE[1]
    scale: float = LANDSAT_SCALE
    offset: float = LANDSAT_OFFSET

    @property
    def valid_range(self) -> Tuple[float, float]:
        return (self.lo, self.hi)


@dataclass(frozen=True)
class TreeConfig:
    """Hyper-parameters handed to sklearn's DecisionTreeClassifier."""

    criterion: str = 'gini'
    max_depth: Optional[int] = None
    min_samples_split: int = 2
    min_samples_leaf: int = 1
    min_impurity_decrease: float = 0.0
    random_state: int = 0


@dataclass
class RunContext:
    """
    Everything a pipeline run needs.

    Parameters
    ----------
    band_paths : list
        One single-band raster per entry of ``band_names``, same order.
        May be empty when ``band_dir`` is given.
    boundary_path : str
        Study-area polygon vector file
    training_path : str
        Training feature vector file
    output_dir : str
        Directory receiving every artifact of the run
    band_names : tuple
        Semantic band names, in file order
    band_dir : str, optional
        Directory scanned for band files by suffix
    band_suffixes : dict, optional
        {band_name: file suffix} used with ``band_dir``
    label_field, id_field : str
        Attribute names of the training features
    calibration : ReflectanceCalibration
        Valid DN range and scale/offset
    tree : TreeConfig
        Decision tree hyper-parameters
    class_order : list, optional
        Explicit class ordering. Sorted labels when None.
    palette : list, optional
        One color per class, in class order
    block_rows : int
        Rows per prediction block
    parallel : bool
        Evaluate prediction blocks with dask
    """

    boundary_path: str
    training_path: str
    output_dir: str
    band_paths: List[str] = field(default_factory=list)
    band_names: Tuple[str, ...] = DEFAULT_BAND_NAMES
    band_dir: Optional[str] = None
    band_suffixes: Optional[Dict[str, str]] = None
    label_field: str = 'type'
    id_field: str = 'id'
    calibration: ReflectanceCalibration = field(default_factory=ReflectanceCalibration)
    tree: TreeConfig = field(default_factory=TreeConfig)
    class_order: Optional[List[str]] = None
    palette: Optional[List[str]] = None
    block_rows: int = 256
    parallel: bool = True

    def __post_init__(self):
        self.band_names = tuple(self.band_names)
        self.band_paths = [str(p) for p in self.band_paths]

    @classmethod
    def from_dict(cls, config: Dict, base_dir: Optional[str] = None) -> "RunContext":
        """
        Build a RunContext from a plain dictionary.

        Relative paths are resolved against ``base_dir`` when given.
        """
        config = dict(config)

        def _resolve(path):
            if path is None or base_dir is None or os.path.isabs(path):
                return path
            return os.path.normpath(os.path.join(base_dir, path))

        for key in ('boundary_path', 'training_path', 'output_dir'):
            if key not in config:
                raise ConfigurationError(f"Missing required key '{key}'", config_key=key)
            config[key] = _resolve(config[key])

        config['band_paths'] = [_resolve(p) for p in config.get('band_paths', [])]
        if config.get('band_dir') is not None:
            config['band_dir'] = _resolve(config['band_dir'])

        try:
            config['calibration'] = ReflectanceCalibration(**config.get('calibration', {}))
            config['tree'] = TreeConfig(**config.get('tree', {}))
            return cls(**config)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_json(cls, path: str) -> "RunContext":
        """Load a RunContext from a JSON file."""
        if not os.path.exists(path):
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(path, encoding='utf-8') as f:
            try:
                config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
        return cls.from_dict(config, base_dir=os.path.dirname(os.path.abspath(path)))

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['band_names'] = list(self.band_names)
        return data

    def output_path(self, name: str) -> str:
        """Path of an artifact inside the output directory."""
        return os.path.join(self.output_dir, name)

    def validate(self) -> None:
        """
        Check the context before a run.

        Raises
        ------
        FileNotFoundError
            If an input file is missing
        ConfigurationError
            If lengths or numeric constants are inconsistent
        """
        if not self.band_names:
            raise ConfigurationError("No band names configured", config_key='band_names')
        if len(set(self.band_names)) != len(self.band_names):
            raise ConfigurationError(
                f"Duplicate band names: {list(self.band_names)}", config_key='band_names'
            )

        if self.band_paths:
            if len(self.band_paths) != len(self.band_names):
                raise ConfigurationError(
                    f"{len(self.band_paths)} band paths given for "
                    f"{len(self.band_names)} band names",
                    config_key='band_paths',
                )
        elif self.band_dir is None:
            raise ConfigurationError(
                "Either band_paths or band_dir must be set", config_key='band_paths'
            )
        elif not os.path.isdir(self.band_dir):
            raise FileNotFoundError(f"Band directory not found: {self.band_dir}")

        for path in list(self.band_paths) + [self.boundary_path, self.training_path]:
            if not os.path.exists(path):
                raise FileNotFoundError(f"Input file not found: {path}")

        cal = self.calibration
        if cal.lo >= cal.hi:
            raise ConfigurationError(
                f"Invalid valid range [{cal.lo}, {cal.hi}]", config_key='calibration'
            )
        if cal.scale == 0:
            raise ConfigurationError("Scale factor must be non-zero", config_key='calibration')

        if self.block_rows < 1:
            raise ConfigurationError("block_rows must be >= 1", config_key='block_rows')

        if self.palette is not None and self.class_order is not None:
            if len(self.palette) != len(self.class_order):
                raise ConfigurationError(
                    f"Palette has {len(self.palette)} colors for "
                    f"{len(self.class_order)} classes",
                    config_key='palette',
                )
