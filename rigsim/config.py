"""
Configuration module for rig calibration and camera simulation.

Handles loading and validation of rig descriptions from YAML files and
the explicit option structures consumed by the simulator and rig loader.
"""

import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Any
import logging

logger = logging.getLogger(__name__)

# Default stereo thresholds used when a rig description does not set them
DEFAULT_STEREO_MIN_FOV_OVERLAP = 0.7
DEFAULT_STEREO_MIN_BASELINE = 0.04  # meters


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters."""
    fx: float  # Focal length in x (pixels)
    fy: float  # Focal length in y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)
    k1: float = 0.0  # Radial distortion coefficient
    k2: float = 0.0  # Radial distortion coefficient
    k3: float = 0.0  # Radial distortion coefficient
    p1: float = 0.0  # Tangential distortion coefficient
    p2: float = 0.0  # Tangential distortion coefficient
    image_width: int = 0  # Image width in pixels
    image_height: int = 0  # Image height in pixels

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CameraIntrinsics":
        return cls(
            fx=float(data['fx']),
            fy=float(data['fy']),
            cx=float(data['cx']),
            cy=float(data['cy']),
            k1=float(data.get('k1', 0.0)),
            k2=float(data.get('k2', 0.0)),
            k3=float(data.get('k3', 0.0)),
            p1=float(data.get('p1', 0.0)),
            p2=float(data.get('p2', 0.0)),
            image_width=int(data.get('image_width', 0)),
            image_height=int(data.get('image_height', 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fx': self.fx,
            'fy': self.fy,
            'cx': self.cx,
            'cy': self.cy,
            'k1': self.k1,
            'k2': self.k2,
            'k3': self.k3,
            'p1': self.p1,
            'p2': self.p2,
            'image_width': self.image_width,
            'image_height': self.image_height,
        }


@dataclass
class CameraConfig:
    """
    One camera entry of a rig description.

    Attributes:
        label: Camera name
        intrinsics: Intrinsic parameters
        T_B_C: 4x4 camera-to-body transform (row-major nested lists)
        mask: Optional path to a grayscale mask image (nonzero = usable)
    """
    label: str
    intrinsics: CameraIntrinsics
    T_B_C: List[List[float]] = field(default_factory=lambda: _identity_rows())
    mask: Optional[str] = None


def _identity_rows() -> List[List[float]]:
    return [[1.0 if r == c else 0.0 for c in range(4)] for r in range(4)]


@dataclass
class RigConfig:
    """
    Rig description: ordered cameras with extrinsics and stereo thresholds.

    Attributes:
        label: Free-form rig name
        cameras: Ordered camera entries
        stereo_min_fov_overlap: Overlap a pair must exceed to be a stereo pair
        stereo_min_baseline: Baseline (meters) a pair must exceed
    """
    label: str
    cameras: List[CameraConfig] = field(default_factory=list)
    stereo_min_fov_overlap: float = DEFAULT_STEREO_MIN_FOV_OVERLAP
    stereo_min_baseline: float = DEFAULT_STEREO_MIN_BASELINE

    @classmethod
    def from_yaml(cls, config_path: str) -> "RigConfig":
        """
        Load a rig description from a YAML file.

        Args:
            config_path: Path to the YAML rig file

        Returns:
            RigConfig with loaded parameters

        Example YAML structure:
            label: forward_stereo
            stereo_min_fov_overlap: 0.7
            stereo_min_baseline: 0.04
            cameras:
              - label: cam0
                intrinsics:
                  fx: 460.0
                  fy: 460.0
                  cx: 376.0
                  cy: 240.0
                  image_width: 752
                  image_height: 480
                T_B_C:
                  - [1.0, 0.0, 0.0, -0.06]
                  - [0.0, 1.0, 0.0, 0.0]
                  - [0.0, 0.0, 1.0, 0.0]
                  - [0.0, 0.0, 0.0, 1.0]
                mask: masks/cam0.png
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Rig file not found: {config_path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Rig file does not contain a mapping: {config_path}")

        logger.info(f"Loading rig description from {config_path}")

        # Resolve mask paths relative to rig file location
        config_dir = path.parent

        cameras = []
        for i, cam_data in enumerate(data.get('cameras') or []):
            mask_path = cam_data.get('mask')
            if mask_path:
                mask_path = str(config_dir / mask_path)

            cameras.append(CameraConfig(
                label=str(cam_data.get('label', f"cam{i}")),
                intrinsics=CameraIntrinsics.from_dict(cam_data['intrinsics']),
                T_B_C=cam_data.get('T_B_C') or _identity_rows(),
                mask=mask_path,
            ))

        return cls(
            label=str(data.get('label', path.stem)),
            cameras=cameras,
            stereo_min_fov_overlap=float(
                data.get('stereo_min_fov_overlap', DEFAULT_STEREO_MIN_FOV_OVERLAP)
            ),
            stereo_min_baseline=float(
                data.get('stereo_min_baseline', DEFAULT_STEREO_MIN_BASELINE)
            ),
        )

    def to_yaml(self, config_path: str) -> None:
        """Save the rig description to a YAML file."""
        data = {
            'label': self.label,
            'stereo_min_fov_overlap': self.stereo_min_fov_overlap,
            'stereo_min_baseline': self.stereo_min_baseline,
            'cameras': [
                {
                    'label': cam.label,
                    'intrinsics': cam.intrinsics.to_dict(),
                    'T_B_C': [[float(v) for v in row] for row in cam.T_B_C],
                    'mask': cam.mask,
                }
                for cam in self.cameras
            ],
        }

        with open(config_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=None, sort_keys=False)

        logger.info(f"Rig description saved to {config_path}")


@dataclass
class SimulatorOptions:
    """
    Camera simulator parameters.

    Attributes:
        min_depth: Minimum landmark depth along the optical axis (meters)
        max_depth: Maximum landmark depth along the optical axis (meters)
        max_num_landmarks: Upper bound on the active landmark pool
        keypoint_margin: Border (pixels) a keypoint must keep from the image edge
        seed: Seed of the landmark sampling generator
        max_sampling_attempts: Candidate budget per sampling round
    """
    min_depth: float = 1.0
    max_depth: float = 10.0
    max_num_landmarks: int = 1000
    keypoint_margin: float = 0.0
    seed: Optional[int] = 0
    max_sampling_attempts: int = 100000

    def validate(self) -> None:
        """Raise ValueError if the options are inconsistent."""
        if self.min_depth <= 0:
            raise ValueError(f"min_depth must be positive, got {self.min_depth}")
        if self.max_depth <= self.min_depth:
            raise ValueError(
                f"max_depth ({self.max_depth}) must exceed min_depth ({self.min_depth})"
            )
        if self.max_num_landmarks <= 0:
            raise ValueError(
                f"max_num_landmarks must be positive, got {self.max_num_landmarks}"
            )
        if self.keypoint_margin < 0:
            raise ValueError(
                f"keypoint_margin must be non-negative, got {self.keypoint_margin}"
            )
        if self.max_sampling_attempts <= 0:
            raise ValueError(
                f"max_sampling_attempts must be positive, got {self.max_sampling_attempts}"
            )


@dataclass
class RigLoadOptions:
    """
    Inputs of the rig loading entry point.

    Attributes:
        calib_filename: Path to the YAML rig description
        mask_paths: Camera index -> mask image path, applied after loading
        use_single_camera: Reduce the rig to its first camera
    """
    calib_filename: str
    mask_paths: Dict[int, str] = field(default_factory=dict)
    use_single_camera: bool = False
