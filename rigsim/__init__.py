"""
Synthetic Camera Rig Simulation Package

A Python package to model rigid multi-camera rigs and to generate synthetic,
time-varying keypoint measurements for testing visual(-inertial) perception
pipelines without real hardware.

Data Flow:
    Trajectory T_W_B(t) → Rig extrinsics T_C_B → Camera projection → (u, v, track id)

Conventions:
    - Transformations T_A_B map points from frame B into frame A
    - Camera frame: X-right, Y-down, Z forward
    - Image frame: u-right, v-down (origin at top-left corner)

Supported Formats:
    - YAML rig descriptions (intrinsics, T_B_C, optional masks)
    - CSV pose-series trajectories (time, x, y, z, qx, qy, qz, qw)
"""

from .config import (
    CameraIntrinsics,
    CameraConfig,
    RigConfig,
    RigLoadOptions,
    SimulatorOptions,
)
from .transforms import Transformation
from .camera import CameraModel
from .camera_rig import CameraRig, identify_stereo_pairs_in_rig
from .camera_utils import overlapping_field_of_view
from .landmarks import Landmark, LandmarkMap
from .trajectory import PoseEpoch, TrajectoryInterpolator, load_trajectory_interpolator
from .simulator import (
    CameraMeasurements,
    CameraSimulator,
    SimulationReport,
    run_simulation,
)
from .rig_io import camera_rig_from_config, camera_rig_from_yaml, camera_rig_from_options

__version__ = "0.1.0"
__all__ = [
    "CameraIntrinsics",
    "CameraConfig",
    "RigConfig",
    "RigLoadOptions",
    "SimulatorOptions",
    "Transformation",
    "CameraModel",
    "CameraRig",
    "identify_stereo_pairs_in_rig",
    "overlapping_field_of_view",
    "Landmark",
    "LandmarkMap",
    "PoseEpoch",
    "TrajectoryInterpolator",
    "load_trajectory_interpolator",
    "CameraMeasurements",
    "CameraSimulator",
    "SimulationReport",
    "run_simulation",
    "camera_rig_from_config",
    "camera_rig_from_yaml",
    "camera_rig_from_options",
]
