"""Configuration for the mesh optimizer.

Settings are plain dataclasses validated on construction and can be loaded
from a YAML file.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


class MeshOptimizerType(enum.Enum):
    """Available mesh solvers."""

    DISCONNECTED_MESH = "disconnected_mesh"
    CONNECTED_MESH = "connected_mesh"
    GTSAM_MESH = "gtsam_mesh"

    @classmethod
    def parse(cls, value: Union[str, "MeshOptimizerType"]) -> "MeshOptimizerType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = [m.value for m in cls]
            raise ValueError(f"Invalid solver_type: {value}. Must be one of {valid}") from None


@dataclass
class MeshOptimizationConfig:
    """Mesh optimizer settings.

    Attributes:
        solver_type: Which solver reconstructs the mesh
        debug_mode: Log intermediate systems and keep rendering diagnostics
        data_sigma: Standard deviation of the barycentric inverse-depth factors
        spring_sigma: Standard deviation of the smoothness springs
        spring_constant: Stiffness multiplying both ends of a spring
        min_datapoints_per_triangle: Triangles with fewer samples are skipped
        min_total_datapoints: Minimum number of samples matched to the mesh
        std_color_scale: Depth standard deviation mapped to the top of the colormap
        rank_tolerance: Relative threshold on the R diagonal of the QR factorization
        min_inverse_depth: Inverse depths below this magnitude cannot be inverted
    """

    solver_type: MeshOptimizerType = MeshOptimizerType.CONNECTED_MESH
    debug_mode: bool = False
    data_sigma: float = 1.0
    spring_sigma: float = 0.1
    spring_constant: float = 1.0
    min_datapoints_per_triangle: int = 3
    min_total_datapoints: int = 4
    std_color_scale: float = 0.1
    rank_tolerance: float = 1e-9
    min_inverse_depth: float = 1e-9

    def __post_init__(self) -> None:
        """Validate configuration."""
        self.solver_type = MeshOptimizerType.parse(self.solver_type)
        if self.data_sigma <= 0 or self.spring_sigma <= 0:
            raise ValueError("Noise sigmas must be positive")
        if self.spring_constant <= 0:
            raise ValueError("spring_constant must be positive")
        if self.min_datapoints_per_triangle < 3:
            raise ValueError("A triangle needs at least 3 datapoints to be solved")
        if self.min_total_datapoints < 1:
            raise ValueError("min_total_datapoints must be at least 1")
        if self.std_color_scale <= 0:
            raise ValueError("std_color_scale must be positive")
        if not 0 < self.rank_tolerance < 1:
            raise ValueError("rank_tolerance must be in (0, 1)")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeshOptimizationConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown mesh optimization settings: {sorted(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["solver_type"] = self.solver_type.value
        return data


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file, defaults to config.yaml at the repo root

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    logger.debug(f"Loaded configuration from {config_path}")
    return config


def load_optimization_config(config_path: Optional[Union[str, Path]] = None) -> MeshOptimizationConfig:
    """Load the ``mesh_optimization`` section of a YAML file."""
    config = load_config(config_path)
    return MeshOptimizationConfig.from_dict(config.get("mesh_optimization", {}))
