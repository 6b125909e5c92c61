"""
Multi-camera rig module.

A CameraRig holds an ordered list of cameras together with their
body-to-camera extrinsics T_C_B, and identifies which camera pairs form
stereo pairs.

Stereo Pair Identification:
    For every camera pair (a, b) with a < b:
        overlap  = overlapping_field_of_view(rig, a, b)
        baseline = ||(T_C_B(b) * T_C_B(a)^-1).position||
    The pair is a stereo pair iff overlap > min_fov_overlap and
    baseline > min_baseline (both strict).

Structural violations (size mismatch, missing camera, index out of range)
are programming errors and raise immediately; a rig is never left
partially built.
"""

import numpy as np
from typing import List, Sequence, Tuple
import logging

from .camera import CameraModel
from .camera_utils import overlapping_field_of_view
from .config import DEFAULT_STEREO_MIN_FOV_OVERLAP, DEFAULT_STEREO_MIN_BASELINE
from .transforms import Transformation

logger = logging.getLogger(__name__)

StereoIndexPair = Tuple[int, int]


class CameraRig:
    """
    Ordered set of cameras with known extrinsics.

    The rig does not own its cameras exclusively: sub-rigs and callers
    hold the same CameraModel objects. The rig itself is immutable once
    constructed, including its stereo pairs.
    """

    def __init__(
        self,
        T_C_B: Sequence[Transformation],
        cameras: Sequence[CameraModel],
        label: str,
        stereo_min_fov_overlap: float = DEFAULT_STEREO_MIN_FOV_OVERLAP,
        stereo_min_baseline: float = DEFAULT_STEREO_MIN_BASELINE,
    ):
        """
        Initialize the rig and compute its stereo pairs.

        Args:
            T_C_B: Body-to-camera transform for each camera
            cameras: Camera models, same order and length as T_C_B
            label: Rig name
            stereo_min_fov_overlap: Overlap threshold for stereo pairs
            stereo_min_baseline: Baseline threshold for stereo pairs (meters)

        Raises:
            ValueError: If the sizes differ or a camera is None
        """
        T_C_B = list(T_C_B)
        cameras = list(cameras)

        if len(T_C_B) != len(cameras):
            raise ValueError(
                f"Rig '{label}': {len(T_C_B)} extrinsics for {len(cameras)} cameras"
            )
        for i, camera in enumerate(cameras):
            if camera is None:
                raise ValueError(f"Rig '{label}': camera {i} is None")

        self._T_C_B = T_C_B
        self._cameras = cameras
        self._label = label
        self._stereo_min_fov_overlap = stereo_min_fov_overlap
        self._stereo_min_baseline = stereo_min_baseline
        self._stereo_pairs: List[StereoIndexPair] = []

        if self.size() > 1:
            self._stereo_pairs = identify_stereo_pairs_in_rig(
                self, stereo_min_fov_overlap, stereo_min_baseline
            )

        logger.debug(
            f"Rig '{label}' with {self.size()} cameras, "
            f"stereo pairs:{format_stereo_pairs(self._stereo_pairs)}"
        )

    def size(self) -> int:
        return len(self._cameras)

    def __len__(self) -> int:
        return len(self._cameras)

    @property
    def label(self) -> str:
        return self._label

    @property
    def stereo_pairs(self) -> Tuple[StereoIndexPair, ...]:
        return tuple(self._stereo_pairs)

    @property
    def stereo_min_fov_overlap(self) -> float:
        return self._stereo_min_fov_overlap

    @property
    def stereo_min_baseline(self) -> float:
        return self._stereo_min_baseline

    @property
    def cameras(self) -> Tuple[CameraModel, ...]:
        return tuple(self._cameras)

    def _check_index(self, camera_index: int) -> None:
        if not 0 <= camera_index < self.size():
            raise IndexError(
                f"Camera index {camera_index} out of range for rig "
                f"'{self._label}' of size {self.size()}"
            )

    def at(self, camera_index: int) -> CameraModel:
        """Camera at camera_index (bounds-checked)."""
        self._check_index(camera_index)
        return self._cameras[camera_index]

    def at_shared(self, camera_index: int) -> CameraModel:
        """
        Camera at camera_index, as a handle meant to be kept or modified.

        Python references are shared already; this is the same object as
        at() and exists for call sites that attach state such as masks.
        """
        return self.at(camera_index)

    def T_C_B(self, camera_index: int) -> Transformation:
        """Body-to-camera transform of camera_index."""
        self._check_index(camera_index)
        return self._T_C_B[camera_index]

    def T_B_C(self, camera_index: int) -> Transformation:
        """Camera-to-body transform of camera_index."""
        return self.T_C_B(camera_index).inverse()

    def get_sub_rig(
        self,
        camera_indices: Sequence[int],
        label: str,
    ) -> "CameraRig":
        """
        Build an independent rig over a subset of this rig's cameras.

        The sub-rig shares the camera objects, keeps the order of
        camera_indices and recomputes its own stereo pairs. It inherits
        this rig's stereo thresholds, not the module defaults; construct a
        CameraRig directly to get the defaults.

        Raises:
            IndexError: If any index is out of range
        """
        cameras = []
        T = []
        for i in camera_indices:
            cameras.append(self.at_shared(i))
            T.append(self.T_C_B(i))
        return CameraRig(
            T,
            cameras,
            label,
            stereo_min_fov_overlap=self._stereo_min_fov_overlap,
            stereo_min_baseline=self._stereo_min_baseline,
        )

    def __str__(self) -> str:
        lines = [
            "Camera Rig:",
            f"  Label = {self._label}",
            f"  Stereo pairs ={format_stereo_pairs(self._stereo_pairs)}",
        ]
        for i in range(self.size()):
            lines.append(f"- Camera {i}")
            lines.append(str(self._cameras[i]))
            T_B_C = np.array2string(self.T_B_C(i).as_matrix(), precision=4, suppress_small=True)
            lines.append(f"    T_B_C = \n{T_B_C}")
        return "\n".join(lines)


def format_stereo_pairs(stereo_pairs: Sequence[StereoIndexPair]) -> str:
    """Format pairs as ' (0, 1) (1, 2)'."""
    return "".join(f" ({a}, {b})" for a, b in stereo_pairs)


def identify_stereo_pairs_in_rig(
    rig: CameraRig,
    min_fov_overlap: float,
    min_baseline: float,
) -> List[StereoIndexPair]:
    """
    Find camera pairs with enough overlap and baseline for stereo.

    Args:
        rig: Camera rig
        min_fov_overlap: Overlap the pair must strictly exceed
        min_baseline: Baseline (meters) the pair must strictly exceed

    Returns:
        Pairs (a, b) with a < b, ordered by a then b
    """
    pairs: List[StereoIndexPair] = []
    for cam_a in range(rig.size()):
        for cam_b in range(cam_a + 1, rig.size()):
            overlap = overlapping_field_of_view(rig, cam_a, cam_b)
            baseline = float(np.linalg.norm(
                (rig.T_C_B(cam_b) * rig.T_C_B(cam_a).inverse()).position
            ))

            if overlap > min_fov_overlap and baseline > min_baseline:
                logger.debug(
                    f"Camera {cam_a} and {cam_b}: Overlap = {overlap:.3f}, "
                    f"Baseline = {baseline:.4f} -> Stereo Rig."
                )
                pairs.append((cam_a, cam_b))
            else:
                logger.debug(
                    f"Camera {cam_a} and {cam_b}: Overlap = {overlap:.3f}, "
                    f"Baseline = {baseline:.4f} -> No stereo rig "
                    f"(baseline or overlap too small)"
                )
    return pairs
