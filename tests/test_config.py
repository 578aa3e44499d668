"""Tests for the optimizer configuration."""

import os
import sys
import tempfile
import unittest
from pathlib import Path

import pytest
import yaml

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from meshopt.config import (
    DEFAULT_CONFIG_PATH,
    MeshOptimizationConfig,
    MeshOptimizerType,
    load_config,
    load_optimization_config,
)


class TestConfig(unittest.TestCase):
    """Test defaults, validation and YAML loading."""

    def test_defaults(self):
        config = MeshOptimizationConfig()
        self.assertEqual(config.solver_type, MeshOptimizerType.CONNECTED_MESH)
        self.assertFalse(config.debug_mode)
        self.assertEqual(config.min_datapoints_per_triangle, 3)
        self.assertEqual(config.min_total_datapoints, 4)

    def test_parse_solver_type(self):
        self.assertEqual(MeshOptimizerType.parse("gtsam_mesh"), MeshOptimizerType.GTSAM_MESH)
        self.assertEqual(MeshOptimizerType.parse("Connected_Mesh"), MeshOptimizerType.CONNECTED_MESH)
        self.assertEqual(
            MeshOptimizerType.parse(MeshOptimizerType.DISCONNECTED_MESH),
            MeshOptimizerType.DISCONNECTED_MESH
        )
        with pytest.raises(ValueError):
            MeshOptimizerType.parse("delaunay")

    def test_validation(self):
        with pytest.raises(ValueError):
            MeshOptimizationConfig(solver_type="unknown")
        with pytest.raises(ValueError):
            MeshOptimizationConfig(spring_sigma=0.0)
        with pytest.raises(ValueError):
            MeshOptimizationConfig(min_datapoints_per_triangle=2)
        with pytest.raises(ValueError):
            MeshOptimizationConfig(rank_tolerance=1.5)

    def test_from_dict(self):
        config = MeshOptimizationConfig.from_dict({"solver_type": "disconnected_mesh", "data_sigma": 0.5})
        self.assertEqual(config.solver_type, MeshOptimizerType.DISCONNECTED_MESH)
        self.assertEqual(config.data_sigma, 0.5)

        with pytest.raises(ValueError):
            MeshOptimizationConfig.from_dict({"solver": "connected_mesh"})

    def test_to_dict(self):
        data = MeshOptimizationConfig(solver_type="gtsam_mesh").to_dict()
        self.assertEqual(data["solver_type"], "gtsam_mesh")
        self.assertEqual(MeshOptimizationConfig.from_dict(data).solver_type, MeshOptimizerType.GTSAM_MESH)

    def test_default_file(self):
        self.assertTrue(DEFAULT_CONFIG_PATH.exists())
        config = load_config()
        self.assertIn("mesh_optimization", config)
        optimization_config = load_optimization_config()
        self.assertIsInstance(optimization_config.solver_type, MeshOptimizerType)

    def test_load_yaml(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "config.yaml")
            with open(path, "w") as f:
                yaml.safe_dump({"mesh_optimization": {"solver_type": "gtsam_mesh", "spring_sigma": 0.5}}, f)

            config = load_optimization_config(path)
            self.assertEqual(config.solver_type, MeshOptimizerType.GTSAM_MESH)
            self.assertEqual(config.spring_sigma, 0.5)

    def test_empty_yaml(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "config.yaml")
            open(path, "w").close()
            self.assertEqual(load_optimization_config(path), MeshOptimizationConfig())


if __name__ == "__main__":
    unittest.main()
