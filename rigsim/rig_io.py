"""
Rig loading module.

Builds CameraRig objects from rig descriptions:
    - In-memory RigConfig (structural errors raise)
    - YAML rig files (load failures are logged and yield None)
    - RigLoadOptions: YAML file + single-camera reduction + per-camera masks

Mask images are read as grayscale with Pillow; nonzero pixels are usable.
"""

import numpy as np
from pathlib import Path
from typing import Optional
from PIL import Image
import logging

from .camera import CameraModel
from .camera_rig import CameraRig
from .config import RigConfig, RigLoadOptions
from .transforms import Transformation

logger = logging.getLogger(__name__)


def load_mask(path: str) -> np.ndarray:
    """
    Load a visibility mask image.

    Args:
        path: Image file readable by Pillow

    Returns:
        uint8 array of shape (height, width)

    Raises:
        FileNotFoundError: If the file does not exist
    """
    mask_path = Path(path)
    if not mask_path.exists():
        raise FileNotFoundError(f"Mask file not found: {path}")

    with Image.open(mask_path) as img:
        mask = np.asarray(img.convert('L'), dtype=np.uint8)

    logger.debug(f"Loaded mask {path} with shape {mask.shape}")
    return mask


def camera_rig_from_config(config: RigConfig) -> CameraRig:
    """
    Build a rig from a parsed rig description.

    Camera masks referenced by the description are loaded and attached.

    Args:
        config: Rig description

    Returns:
        Constructed CameraRig
    """
    cameras = []
    T_C_B = []
    for cam_config in config.cameras:
        camera = CameraModel(cam_config.intrinsics, label=cam_config.label)
        if cam_config.mask:
            camera.set_mask(load_mask(cam_config.mask))
        cameras.append(camera)
        T_C_B.append(Transformation.from_matrix(np.array(cam_config.T_B_C)).inverse())

    return CameraRig(
        T_C_B,
        cameras,
        config.label,
        stereo_min_fov_overlap=config.stereo_min_fov_overlap,
        stereo_min_baseline=config.stereo_min_baseline,
    )


def camera_rig_from_yaml(yaml_file: str) -> Optional[CameraRig]:
    """
    Load a rig from a YAML rig file.

    Args:
        yaml_file: Path to the rig file

    Returns:
        CameraRig, or None if the file cannot be parsed into a rig

    Raises:
        FileNotFoundError: If the file does not exist
    """
    if not Path(yaml_file).exists():
        raise FileNotFoundError(f"File does not exist: {yaml_file}")

    try:
        config = RigConfig.from_yaml(yaml_file)
        rig = camera_rig_from_config(config)
    except Exception as e:
        logger.error(f"Cannot load CameraRig from file: {yaml_file}\n{e}")
        return None

    logger.info(f"Loaded rig '{rig.label}' with {rig.size()} cameras from {yaml_file}")
    return rig


def camera_rig_from_options(options: RigLoadOptions) -> CameraRig:
    """
    Load a rig as configured by RigLoadOptions.

    Steps:
        1. Load the YAML rig file
        2. Reduce to camera 0 if use_single_camera is set
        3. Attach the masks of mask_paths to the cameras by index

    Args:
        options: Rig loading options

    Returns:
        Constructed CameraRig

    Raises:
        FileNotFoundError: If the rig file or a mask file is missing
        RuntimeError: If the rig file cannot be parsed
        IndexError: If a mask targets a camera the rig does not have
    """
    rig = camera_rig_from_yaml(options.calib_filename)
    if rig is None:
        raise RuntimeError(f"Failed to load camera rig from {options.calib_filename}")

    if options.use_single_camera:
        rig = rig.get_sub_rig([0], rig.label)

    for cam_idx, mask_path in sorted(options.mask_paths.items()):
        if cam_idx >= rig.size():
            raise IndexError(
                f"Mask given for camera {cam_idx} but rig '{rig.label}' "
                f"has {rig.size()} cameras"
            )
        rig.at_shared(cam_idx).set_mask(load_mask(mask_path))
        logger.info(f"Mask {mask_path} applied to camera {cam_idx}")

    return rig
