"""
Camera model module for projecting 3D points to image coordinates.

Implements the pinhole camera model with optional lens distortion and an
optional per-pixel visibility mask.

Coordinate System:
    - Camera frame: X-right, Y-down, Z forward (looking along +Z)
    - Image frame: u-right, v-down (origin at top-left corner)

Projection Model:
    1. Perspective projection: x' = X/Z, y' = Y/Z
    2. Distortion (optional): Apply radial and tangential distortion
    3. Pixel mapping: u = fx*x' + cx, v = fy*y' + cy
"""

import numpy as np
from typing import Tuple, Optional
import logging

from .config import CameraIntrinsics

logger = logging.getLogger(__name__)


class CameraModel:
    """
    Camera projection model implementing pinhole projection with distortion.

    The distortion model follows OpenCV conventions:
        - Radial distortion: k1, k2, k3
        - Tangential distortion: p1, p2

    Distortion equations (applied to normalized coordinates x', y'):
        r² = x'² + y'²
        x'' = x'(1 + k1*r² + k2*r⁴ + k3*r⁶) + 2*p1*x'*y' + p2*(r² + 2*x'²)
        y'' = y'(1 + k1*r² + k2*r⁴ + k3*r⁶) + p1*(r² + 2*y'²) + 2*p2*x'*y'

    A camera may carry a visibility mask (height x width, nonzero where
    keypoints are allowed). Cameras are shared by reference between a rig
    and its sub-rigs, so setting a mask is seen by every rig holding it.
    """

    def __init__(self, intrinsics: CameraIntrinsics, label: str = "camera"):
        """
        Initialize camera model with intrinsic parameters.

        Args:
            intrinsics: Camera intrinsic parameters (image size must be set)
            label: Camera name used in logs and rig summaries

        Raises:
            ValueError: If the image size or focal lengths are not positive
        """
        if intrinsics.image_width <= 0 or intrinsics.image_height <= 0:
            raise ValueError(
                f"Camera '{label}' needs a positive image size, got "
                f"{intrinsics.image_width}x{intrinsics.image_height}"
            )
        if intrinsics.fx <= 0 or intrinsics.fy <= 0:
            raise ValueError(f"Camera '{label}' needs positive focal lengths")

        self.label = label
        self.intrinsics = intrinsics

        self.fx = intrinsics.fx
        self.fy = intrinsics.fy
        self.cx = intrinsics.cx
        self.cy = intrinsics.cy

        # Distortion coefficients
        self.k1 = intrinsics.k1
        self.k2 = intrinsics.k2
        self.k3 = intrinsics.k3
        self.p1 = intrinsics.p1
        self.p2 = intrinsics.p2

        # Image dimensions
        self.image_width = intrinsics.image_width
        self.image_height = intrinsics.image_height

        # Check if distortion is significant
        self.has_distortion = not np.allclose(
            [self.k1, self.k2, self.k3, self.p1, self.p2], 0
        )

        # Camera matrix
        self.K = np.array([
            [self.fx, 0, self.cx],
            [0, self.fy, self.cy],
            [0, 0, 1]
        ])

        self._mask: Optional[np.ndarray] = None

        logger.debug(f"Camera model '{label}' initialized: fx={self.fx}, fy={self.fy}")
        logger.debug(f"Principal point: ({self.cx}, {self.cy})")
        logger.debug(f"Distortion enabled: {self.has_distortion}")

    @property
    def mask(self) -> Optional[np.ndarray]:
        """Boolean visibility mask (height x width) or None."""
        return self._mask

    def set_mask(self, mask: Optional[np.ndarray]) -> None:
        """
        Attach a visibility mask to the camera.

        Args:
            mask: Array of shape (image_height, image_width); nonzero pixels
                are usable. None removes the mask.

        Raises:
            ValueError: If the mask shape does not match the image size
        """
        if mask is None:
            self._mask = None
            return

        mask = np.asarray(mask)
        expected = (self.image_height, self.image_width)
        if mask.shape != expected:
            raise ValueError(
                f"Mask shape {mask.shape} does not match image size {expected} "
                f"of camera '{self.label}'"
            )
        self._mask = mask > 0
        logger.debug(
            f"Mask set on camera '{self.label}': "
            f"{int(self._mask.sum())}/{self._mask.size} usable pixels"
        )

    def field_of_view(self) -> float:
        """Horizontal field of view in radians (distortion ignored)."""
        return 2.0 * np.arctan2(self.image_width / 2.0, self.fx)

    def project_point(
        self,
        point_camera: np.ndarray,
        apply_distortion: bool = True,
    ) -> Tuple[float, float, bool]:
        """
        Project a 3D point in camera frame to image coordinates.

        Args:
            point_camera: 3D point in camera frame (X-right, Y-down, Z-forward)
            apply_distortion: Whether to apply lens distortion

        Returns:
            Tuple of (u, v, valid) where:
                - u: Horizontal pixel coordinate
                - v: Vertical pixel coordinate
                - valid: True if point is in front of camera and within image
        """
        X, Y, Z = point_camera

        # Check if point is behind camera
        if Z <= 0:
            return 0.0, 0.0, False

        # Perspective projection to normalized coordinates
        x_norm = X / Z
        y_norm = Y / Z

        # Apply distortion if enabled
        if apply_distortion and self.has_distortion:
            x_dist, y_dist = self._apply_distortion(x_norm, y_norm)
        else:
            x_dist, y_dist = x_norm, y_norm

        # Map to pixel coordinates
        u = self.fx * x_dist + self.cx
        v = self.fy * y_dist + self.cy

        valid = (0 <= u < self.image_width) and (0 <= v < self.image_height)

        return float(u), float(v), bool(valid)

    def _apply_distortion(self, x_norm, y_norm):
        """
        Apply lens distortion to normalized coordinates.

        Uses the Brown-Conrady distortion model (OpenCV convention). Works
        element-wise on scalars or numpy arrays.

        Args:
            x_norm: Normalized x coordinate (X/Z)
            y_norm: Normalized y coordinate (Y/Z)

        Returns:
            Distorted (x, y) normalized coordinates
        """
        r2 = x_norm ** 2 + y_norm ** 2
        r4 = r2 ** 2
        r6 = r2 ** 3

        # Radial distortion factor
        radial = 1 + self.k1 * r2 + self.k2 * r4 + self.k3 * r6

        # Tangential distortion
        x_tangential = 2 * self.p1 * x_norm * y_norm + self.p2 * (r2 + 2 * x_norm ** 2)
        y_tangential = self.p1 * (r2 + 2 * y_norm ** 2) + 2 * self.p2 * x_norm * y_norm

        # Combined distortion
        x_dist = x_norm * radial + x_tangential
        y_dist = y_norm * radial + y_tangential

        return x_dist, y_dist

    def project_points_batch(
        self,
        points_camera: np.ndarray,
        apply_distortion: bool = True,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Project multiple 3D points to image coordinates.

        Args:
            points_camera: Nx3 array of camera frame coordinates
            apply_distortion: Whether to apply lens distortion

        Returns:
            Tuple of:
                - u_coords: N-element array of u coordinates
                - v_coords: N-element array of v coordinates
                - valid: N-element boolean array indicating valid projections
        """
        points_camera = np.asarray(points_camera, dtype=np.float64).reshape(-1, 3)
        Z = points_camera[:, 2]
        in_front = Z > 0

        # Points behind the camera are pushed to Z=1 and masked out below
        safe_Z = np.where(in_front, Z, 1.0)
        x_norm = points_camera[:, 0] / safe_Z
        y_norm = points_camera[:, 1] / safe_Z

        if apply_distortion and self.has_distortion:
            x_dist, y_dist = self._apply_distortion(x_norm, y_norm)
        else:
            x_dist, y_dist = x_norm, y_norm

        u_coords = self.fx * x_dist + self.cx
        v_coords = self.fy * y_dist + self.cy

        valid = (
            in_front
            & (u_coords >= 0) & (u_coords < self.image_width)
            & (v_coords >= 0) & (v_coords < self.image_height)
        )
        u_coords = np.where(in_front, u_coords, 0.0)
        v_coords = np.where(in_front, v_coords, 0.0)

        return u_coords, v_coords, valid

    def undistort_point(
        self,
        u: float,
        v: float,
        max_iterations: int = 10,
        tolerance: float = 1e-8,
    ) -> Tuple[float, float]:
        """
        Remove distortion from pixel coordinates (inverse distortion).

        Uses iterative refinement to solve for undistorted coordinates.

        Args:
            u: Distorted u coordinate
            v: Distorted v coordinate
            max_iterations: Maximum iterations for convergence
            tolerance: Convergence tolerance

        Returns:
            Undistorted (u, v) pixel coordinates
        """
        rays = self.back_project_batch(
            np.array([[u, v]]), max_iterations=max_iterations, tolerance=tolerance
        )
        return (
            float(self.fx * rays[0, 0] + self.cx),
            float(self.fy * rays[0, 1] + self.cy),
        )

    def back_project_batch(
        self,
        pixels: np.ndarray,
        max_iterations: int = 10,
        tolerance: float = 1e-8,
    ) -> np.ndarray:
        """
        Back-project pixels to rays on the normalized image plane.

        Args:
            pixels: Nx2 array of (u, v) pixel coordinates
            max_iterations: Maximum undistortion iterations
            tolerance: Convergence tolerance on normalized coordinates

        Returns:
            Nx3 array of rays (x, y, 1); scaling a ray by d gives the
            camera-frame point at depth Z = d
        """
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        x_dist = (pixels[:, 0] - self.cx) / self.fx
        y_dist = (pixels[:, 1] - self.cy) / self.fy

        x_norm = x_dist.copy()
        y_norm = y_dist.copy()

        if self.has_distortion:
            # Fixed-point iteration: distorted = undistorted at start
            for _ in range(max_iterations):
                x_curr, y_curr = self._apply_distortion(x_norm, y_norm)
                dx = x_dist - x_curr
                dy = y_dist - y_curr
                x_norm += dx
                y_norm += dy
                if np.all(np.abs(dx) < tolerance) and np.all(np.abs(dy) < tolerance):
                    break

        return np.column_stack([x_norm, y_norm, np.ones_like(x_norm)])

    def keypoints_visible(
        self,
        u_coords: np.ndarray,
        v_coords: np.ndarray,
        margin: float = 0.0,
    ) -> np.ndarray:
        """
        Check which keypoints lie inside the image and the mask.

        Args:
            u_coords: N-element array of u coordinates
            v_coords: N-element array of v coordinates
            margin: Border in pixels a keypoint must keep from the image edge

        Returns:
            N-element boolean array
        """
        u_coords = np.asarray(u_coords, dtype=np.float64)
        v_coords = np.asarray(v_coords, dtype=np.float64)

        visible = (
            (u_coords >= margin) & (u_coords < self.image_width - margin)
            & (v_coords >= margin) & (v_coords < self.image_height - margin)
        )

        if self._mask is not None and np.any(visible):
            cols = np.floor(u_coords[visible]).astype(np.int64)
            rows = np.floor(v_coords[visible]).astype(np.int64)
            visible[visible] = self._mask[rows, cols]

        return visible

    def is_keypoint_visible(self, u: float, v: float, margin: float = 0.0) -> bool:
        """Single-keypoint form of keypoints_visible."""
        return bool(self.keypoints_visible(np.array([u]), np.array([v]), margin)[0])

    def __str__(self) -> str:
        return (
            f"  Label = {self.label}\n"
            f"  Model = pinhole{' + radtan' if self.has_distortion else ''}\n"
            f"  Size = {self.image_width}x{self.image_height}\n"
            f"  Focal length = ({self.fx}, {self.fy})\n"
            f"  Principal point = ({self.cx}, {self.cy})\n"
            f"  Field of view = {np.rad2deg(self.field_of_view()):.1f} deg\n"
            f"  Mask = {'yes' if self._mask is not None else 'no'}"
        )
