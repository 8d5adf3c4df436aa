"""End-to-end pipeline test: odometry then fusion, driven by pipeline.yaml."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np
import pytest
import yaml

from rangefuse.core.pipeline_runner import run_pipeline
from rangefuse.utils.io import load_surfel_map, load_trajectory

logger = logging.getLogger(__name__)


def _write_yaml(path: Path, data: dict) -> Path:
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


@pytest.mark.e2e
def test_pipeline_e2e(data_root: Path, sample_frames_dir: Path, ground_truth_json: Path, surface, tmp_path: Path):
    """
    Run S01 -> S02 from a pipeline config on synthetic frames.

    S02 receives frames_dir and trajectory_path from the S01 output.
    """
    configs = tmp_path / "configs"
    configs.mkdir()
    s01_config = _write_yaml(configs / "s01.yaml", {"num_levels": 3, "initial_guess": "previous_motion"})
    s02_config = _write_yaml(configs / "s02.yaml", {"export_ply": True, "fusion": {"max_normal_angle_deg": 20.0}})
    pipeline_config = _write_yaml(
        configs / "pipeline.yaml",
        {
            "project_name": "e2e",
            "data_root": str(data_root),
            "steps": [
                {
                    "name": "s01_frame_odometry",
                    "module": "rangefuse.steps.s01_frame_odometry",
                    "config_file": str(s01_config),
                    "inputs": {
                        "frames_dir": str(sample_frames_dir),
                        "ground_truth_path": str(ground_truth_json),
                    },
                },
                {
                    "name": "s02_surfel_fusion",
                    "module": "rangefuse.steps.s02_surfel_fusion",
                    "config_file": str(s02_config),
                    "depends_on": ["s01_frame_odometry"],
                },
            ],
        },
    )

    results = run_pipeline(pipeline_config)

    # ========== Step 01: Frame Odometry ==========
    s01 = results["s01_frame_odometry"]
    assert s01.num_frames == 4
    assert s01.num_converged == 3
    assert len(load_trajectory(s01.trajectory_path)) == 4
    with open(s01.metadata_path) as f:
        assert json.load(f)["mean_translation_error"] < 1e-3
    logger.info(f"S01 aligned {s01.num_converged}/{s01.num_frames - 1} frame pairs")

    # ========== Step 02: Surfel Fusion ==========
    s02 = results["s02_surfel_fusion"]
    assert s02.num_integrated_frames == 4
    assert s02.ply_path.exists()
    surfel_map = load_surfel_map(s02.surfels_path)
    assert len(surfel_map) == s02.num_surfels
    # Estimated poses are close enough that most samples merge instead of duplicating
    assert s02.num_surfels < 1.5 * len(surface)
    assert np.max(surfel_map.confidences) == pytest.approx(4.0)
