#!/usr/bin/env python
"""Mesh optimization command line tool.

This script loads a scene (point cloud, 2D mesh and camera calibration),
reconstructs the 3D mesh with the configured solver and writes the mesh,
metrics and log to an output directory.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Optional

import cv2
import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from meshopt import evaluate, io, visualise
from meshopt.config import MeshOptimizationConfig, MeshOptimizerType, load_config
from meshopt.optimizer import MeshOptimization
from meshopt.synthetic import make_planar_scene


# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("mesh_optimization")


def run_mesh_optimization(
    scene_path: Optional[str],
    output_dir: str,
    solver_type: Optional[str] = None,
    visualise_results: bool = False,
    config_path: Optional[str] = None,
    calibration_path: Optional[str] = None
) -> Dict:
    """Run mesh optimization on one scene.

    Args:
        scene_path: Path to a scene .npz, or None for a synthetic planar scene
        output_dir: Path to output directory
        solver_type: Overrides the configured solver
        visualise_results: Render the result interactively
        config_path: Path to configuration file
        calibration_path: YAML camera calibration, overrides the scene camera

    Returns:
        Dictionary of metrics
    """
    timer = evaluate.Timer("Mesh optimization run")
    timer.start()

    os.makedirs(output_dir, exist_ok=True)

    file_handler = logging.FileHandler(os.path.join(output_dir, "log.txt"))
    file_handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"))
    logging.getLogger().addHandler(file_handler)

    try:
        config = load_config(config_path)
        settings = config.get("mesh_optimization", {})
        if solver_type is not None:
            settings["solver_type"] = solver_type
        optimization_config = MeshOptimizationConfig.from_dict(settings)
        io_config = config.get("io", {})

        if optimization_config.debug_mode:
            logging.getLogger("meshopt").setLevel(logging.DEBUG)

        gt_depths = None
        if scene_path is None:
            logger.info("No scene given, generating a synthetic planar scene")
            camera_params = io.load_calibration(calibration_path) if calibration_path else None
            scene = make_planar_scene(camera_params=camera_params, noise_sigma=0.01)
            point_cloud, mesh_2d, camera_params = scene.point_cloud, scene.mesh_2d, scene.camera_params
            gt_depths = scene.gt_depths
            io.save_scene(os.path.join(output_dir, "scene.npz"), point_cloud, mesh_2d, camera_params)
        else:
            point_cloud, mesh_2d, camera_params = io.load_scene(scene_path, calibration_path)

        if optimization_config.debug_mode:
            height = int(np.ceil(2 * camera_params.cy)) or 480
            width = int(np.ceil(2 * camera_params.cx)) or 640
            overlay = visualise.render_association_image(mesh_2d, point_cloud, camera_params, (height, width))
            cv2.imwrite(os.path.join(output_dir, "association.png"), overlay)

        optimizer = MeshOptimization(optimization_config)
        output = optimizer.solve_optimal_mesh(point_cloud, camera_params, mesh_2d)

        mesh_format = io_config.get("mesh_format", "ply")
        io.save_mesh(
            output.optimized_mesh_3d,
            os.path.join(output_dir, f"mesh.{mesh_format}"),
            file_format=mesh_format
        )

        metrics = evaluate.OptimizationMetrics()
        metrics.compute_output_metrics(output, mesh_2d, point_cloud)
        if gt_depths is not None and output.solver_type != MeshOptimizerType.DISCONNECTED_MESH:
            metrics.update("depth_rmse", evaluate.depth_rmse(output.depths(), gt_depths))
        metrics.update("runtime_s", timer.elapsed)

        if io_config.get("save_metrics", True):
            with open(os.path.join(output_dir, "metrics.json"), "w") as f:
                json.dump(metrics.to_dict(), f, indent=2)

        logger.info("\n" + metrics.summary())

        if visualise_results:
            visualise.show(output, point_cloud)
    finally:
        logging.getLogger().removeHandler(file_handler)
        file_handler.close()

    return metrics.to_dict()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Mesh optimization from sparse depth")
    parser.add_argument(
        "--scene", "-s", dest="scene_path", default=None,
        help="Path to scene .npz (synthetic planar scene if omitted)"
    )
    parser.add_argument(
        "--output", "-o", dest="output_dir", default="results/mesh_optimization",
        help="Path to output directory"
    )
    parser.add_argument(
        "--solver", dest="solver_type", default=None,
        choices=[m.value for m in MeshOptimizerType],
        help="Mesh solver, overrides the configuration file"
    )
    parser.add_argument(
        "--visualise", "-v", dest="visualise", action="store_true",
        help="Visualize results"
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--calibration", dest="calibration_path", default=None,
        help="Path to YAML camera calibration (intrinsics, T_BS)"
    )

    args = parser.parse_args()

    try:
        run_mesh_optimization(
            args.scene_path,
            args.output_dir,
            args.solver_type,
            args.visualise,
            args.config_path,
            args.calibration_path
        )
    except Exception as e:
        logger.exception(f"Error running mesh optimization: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
