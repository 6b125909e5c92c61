"""
Geometric helpers shared by the camera rig and the simulator.

    - Keypoint generation (uniform grid, uniform random)
    - Field-of-view overlap between two cameras of a rig
    - Sampling of random 3D points visible in a camera
"""

import numpy as np
from typing import Tuple, TYPE_CHECKING
import logging

from .camera import CameraModel
from .transforms import Transformation

if TYPE_CHECKING:
    from .camera_rig import CameraRig

logger = logging.getLogger(__name__)


def generate_uniform_keypoints(
    width: int,
    height: int,
    margin: float = 0.0,
    num_per_axis: int = 20,
) -> np.ndarray:
    """
    Generate a regular grid of keypoints covering the image.

    Args:
        width: Image width in pixels
        height: Image height in pixels
        margin: Border in pixels left free on every side
        num_per_axis: Number of samples along each image axis

    Returns:
        (num_per_axis**2)x2 array of (u, v) pixel coordinates
    """
    # Cell centers, so the grid never touches the far border
    step_u = (width - 2.0 * margin) / num_per_axis
    step_v = (height - 2.0 * margin) / num_per_axis
    us = margin + step_u * (np.arange(num_per_axis) + 0.5)
    vs = margin + step_v * (np.arange(num_per_axis) + 0.5)
    uu, vv = np.meshgrid(us, vs)
    return np.column_stack([uu.ravel(), vv.ravel()])


def generate_random_keypoints(
    width: int,
    height: int,
    margin: float,
    num_keypoints: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Draw keypoints uniformly inside the image shrunk by a margin.

    Returns:
        num_keypoints x 2 array of (u, v) pixel coordinates
    """
    u = rng.uniform(margin, width - margin, size=num_keypoints)
    v = rng.uniform(margin, height - margin, size=num_keypoints)
    return np.column_stack([u, v])


def overlapping_field_of_view(
    rig: "CameraRig",
    cam_a: int,
    cam_b: int,
    num_samples_per_axis: int = 20,
) -> float:
    """
    Fraction of camera A's image that camera B also sees.

    A uniform keypoint grid of camera A is back-projected to bearings and
    carried into camera B assuming the points lie at infinity, so only the
    relative rotation matters. The overlap is the fraction of bearings that
    land in front of B and inside B's image. Masks are ignored, so the
    result depends on rig geometry only.

    Args:
        rig: Camera rig holding both cameras
        cam_a: Index of camera A
        cam_b: Index of camera B
        num_samples_per_axis: Grid resolution in camera A

    Returns:
        Overlap in [0, 1]
    """
    camera_a = rig.at(cam_a)
    camera_b = rig.at(cam_b)

    # T_B_A maps camera A coordinates into camera B
    T_B_A = rig.T_C_B(cam_b) * rig.T_C_B(cam_a).inverse()

    px_a = generate_uniform_keypoints(
        camera_a.image_width, camera_a.image_height, 0.0, num_samples_per_axis
    )
    bearings_a = camera_a.back_project_batch(px_a)
    bearings_b = T_B_A.rotate(bearings_a)

    _, _, valid = camera_b.project_points_batch(bearings_b)

    return float(np.count_nonzero(valid)) / len(px_a)


def sample_visible_points(
    camera: CameraModel,
    num_points: int,
    margin: float,
    min_depth: float,
    max_depth: float,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Draw candidate 3D points that camera sees within a depth range.

    Pixels are drawn uniformly inside the image shrunk by margin and
    depths uniformly in [min_depth, max_depth]. Every candidate is
    re-projected; only candidates that pass the visibility test are kept,
    so fewer than num_points may be returned.

    Args:
        camera: Camera to sample in
        num_points: Number of candidates to draw
        margin: Keypoint border in pixels
        min_depth: Minimum depth along the optical axis
        max_depth: Maximum depth along the optical axis
        rng: Random generator

    Returns:
        Tuple of:
            - points_camera: Mx3 accepted points in camera frame
            - keypoints: Mx2 pixel coordinates of the accepted points
    """
    if num_points <= 0:
        return np.zeros((0, 3)), np.zeros((0, 2))

    keypoints = generate_random_keypoints(
        camera.image_width, camera.image_height, margin, num_points, rng
    )
    depths = rng.uniform(min_depth, max_depth, size=num_points)
    points_camera = camera.back_project_batch(keypoints) * depths[:, None]

    # Undistortion is iterative; re-check the round trip
    u, v, valid = camera.project_points_batch(points_camera)
    accepted = (
        valid
        & camera.keypoints_visible(u, v, margin)
        & (points_camera[:, 2] >= min_depth)
        & (points_camera[:, 2] <= max_depth)
    )

    return points_camera[accepted], np.column_stack([u, v])[accepted]


def camera_pose_in_world(
    T_W_B: Transformation,
    T_C_B: Transformation,
) -> Transformation:
    """Return T_W_C = T_W_B * T_C_B^-1."""
    return T_W_B * T_C_B.inverse()
