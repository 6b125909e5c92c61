"""
Shared fixtures: small pinhole cameras, rigs and trajectories.
"""

import pytest
import numpy as np

from rigsim.camera import CameraModel
from rigsim.camera_rig import CameraRig
from rigsim.config import CameraIntrinsics
from rigsim.trajectory import TrajectoryInterpolator
from rigsim.transforms import Transformation


@pytest.fixture
def intrinsics():
    """VGA pinhole intrinsics without distortion."""
    return CameraIntrinsics(
        fx=300.0, fy=300.0, cx=320.0, cy=240.0,
        image_width=640, image_height=480,
    )


@pytest.fixture
def make_camera(intrinsics):
    """Factory for cameras sharing the default intrinsics."""
    def _make(label="cam", **overrides):
        params = dict(intrinsics.__dict__)
        params.update(overrides)
        return CameraModel(CameraIntrinsics(**params), label=label)
    return _make


@pytest.fixture
def make_stereo_rig(make_camera):
    """
    Factory for two forward-looking cameras separated along body X.

    Camera i sits at body position (x_i, 0, 0) with the body orientation,
    so T_C_B(i) = [I | -x_i].
    """
    def _make(baseline=0.12, label="stereo", **kwargs):
        T_C_B = [
            Transformation(translation=[baseline / 2.0, 0.0, 0.0]),
            Transformation(translation=[-baseline / 2.0, 0.0, 0.0]),
        ]
        cameras = [make_camera("cam0"), make_camera("cam1")]
        return CameraRig(T_C_B, cameras, label, **kwargs)
    return _make


@pytest.fixture
def sideways_trajectory():
    """Body translating along world X at 0.1 m/s for 10 s, no rotation."""
    times = np.linspace(0.0, 10.0, 11)
    poses = [Transformation(translation=[0.1 * t, 0.0, 0.0]) for t in times]
    return TrajectoryInterpolator.from_poses(times, poses)


@pytest.fixture
def turning_trajectory():
    """Body moving forward while yawing about its Y axis (camera down axis)."""
    times = np.linspace(0.0, 10.0, 21)
    poses = [
        Transformation.from_euler([0.0, 6.0 * t, 0.0], [0.0, 0.0, 0.2 * t])
        for t in times
    ]
    return TrajectoryInterpolator.from_poses(times, poses)
