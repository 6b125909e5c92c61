"""
Rigid transformation module for rig and trajectory geometry.

A Transformation T_A_B maps point coordinates expressed in frame B into
frame A:

    p_A = R_A_B @ p_B + t_A_B

Frame Naming:
    - W: World (landmark map) frame
    - B: Body frame of the rig (the frame the trajectory moves)
    - C: Camera frame (X-right, Y-down, Z along the optical axis)

Composition follows the subscript chain, T_A_C = T_A_B * T_B_C, so the
extrinsic of camera i is T_C_B(i) and the camera pose in the world is
T_W_C = T_W_B * T_C_B(i).inverse().

Rotations are held as scipy Rotation objects; quaternions use the scipy
scalar-last convention (qx, qy, qz, qw).
"""

import numpy as np
from typing import Optional, Sequence
from scipy.spatial.transform import Rotation
import logging

logger = logging.getLogger(__name__)


class Transformation:
    """
    Rigid body transformation (rotation + translation).

    Instances are treated as immutable values: composition and inversion
    return new objects.
    """

    def __init__(
        self,
        rotation: Optional[Rotation] = None,
        translation: Optional[Sequence[float]] = None,
    ):
        """
        Initialize a transformation.

        Args:
            rotation: Rotation R_A_B (identity if omitted)
            translation: Translation t_A_B in meters (zero if omitted)
        """
        self.rotation = Rotation.identity() if rotation is None else rotation
        if translation is None:
            translation = np.zeros(3)
        self.translation = np.asarray(translation, dtype=np.float64).reshape(3)
        self._R = self.rotation.as_matrix()

    @classmethod
    def identity(cls) -> "Transformation":
        return cls()

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> "Transformation":
        """
        Build from a 4x4 homogeneous matrix.

        Args:
            T: 4x4 matrix whose upper-left 3x3 block is a rotation

        Returns:
            Transformation equivalent to T

        Raises:
            ValueError: If the matrix is not 4x4 or its rotation block is
                not a proper rotation
        """
        T = np.asarray(T, dtype=np.float64)
        if T.shape != (4, 4):
            raise ValueError(f"Expected a 4x4 matrix, got shape {T.shape}")

        R = T[:3, :3]
        if not validate_rotation_matrix(R, tol=1e-5):
            raise ValueError(f"Invalid rotation block in transformation:\n{R}")

        return cls(Rotation.from_matrix(R), T[:3, 3])

    @classmethod
    def from_quaternion(
        cls,
        quaternion: Sequence[float],
        translation: Optional[Sequence[float]] = None,
    ) -> "Transformation":
        """Build from a (qx, qy, qz, qw) quaternion and a translation."""
        return cls(Rotation.from_quat(quaternion), translation)

    @classmethod
    def from_euler(
        cls,
        angles: Sequence[float],
        translation: Optional[Sequence[float]] = None,
        order: str = 'xyz',
        degrees: bool = True,
    ) -> "Transformation":
        """Build from Euler angles (scipy convention) and a translation."""
        return cls(Rotation.from_euler(order, angles, degrees=degrees), translation)

    @property
    def position(self) -> np.ndarray:
        """Translation part, i.e. the origin of frame B expressed in frame A."""
        return self.translation.copy()

    @property
    def rotation_matrix(self) -> np.ndarray:
        return self._R.copy()

    def as_matrix(self) -> np.ndarray:
        """Return the 4x4 homogeneous matrix."""
        T = np.eye(4)
        T[:3, :3] = self._R
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> "Transformation":
        """
        Invert the transformation.

        For T_A_B returns T_B_A with R_B_A = R_A_B^T and t_B_A = -R_A_B^T t_A_B.
        """
        inv_rotation = self.rotation.inv()
        inv_translation = -(self._R.T @ self.translation)
        return Transformation(inv_rotation, inv_translation)

    def __mul__(self, other: "Transformation") -> "Transformation":
        """Compose T_A_B * T_B_C -> T_A_C."""
        if not isinstance(other, Transformation):
            return NotImplemented
        rotation = self.rotation * other.rotation
        translation = self._R @ other.translation + self.translation
        return Transformation(rotation, translation)

    def transform(self, points: np.ndarray) -> np.ndarray:
        """
        Transform points from frame B into frame A.

        Args:
            points: A single 3-vector or an Nx3 array

        Returns:
            Transformed point(s) with the same shape as the input
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            return self._R @ points + self.translation
        return points @ self._R.T + self.translation

    def rotate(self, vectors: np.ndarray) -> np.ndarray:
        """Apply only the rotation (directions, bearings at infinity)."""
        vectors = np.asarray(vectors, dtype=np.float64)
        if vectors.ndim == 1:
            return self._R @ vectors
        return vectors @ self._R.T

    def __repr__(self) -> str:
        q = self.rotation.as_quat()
        return (
            f"Transformation(q_xyzw={np.array2string(q, precision=6)}, "
            f"t={np.array2string(self.translation, precision=6)})"
        )


def validate_rotation_matrix(R: np.ndarray, tol: float = 1e-6) -> bool:
    """
    Validate that a matrix is a proper rotation matrix.

    A proper rotation matrix must:
        1. Be orthogonal: R @ R.T = I
        2. Have determinant = +1 (not a reflection)

    Args:
        R: 3x3 matrix to validate
        tol: Numerical tolerance

    Returns:
        True if R is a valid rotation matrix
    """
    if R.shape != (3, 3):
        return False

    # Check orthogonality
    should_be_identity = R @ R.T
    if not np.allclose(should_be_identity, np.eye(3), atol=tol):
        return False

    # Check determinant
    det = np.linalg.det(R)
    if not np.isclose(det, 1.0, atol=tol):
        return False

    return True
