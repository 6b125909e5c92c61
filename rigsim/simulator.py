"""
Camera simulator module.

Generates synthetic, temporally coherent keypoint measurements for a
camera rig moving along a trajectory:

    1. initialize_map() samples landmarks visible from the pose at the
       trajectory start
    2. For each get_measurements(time):
        a. Get the body pose T_W_B(time)
        b. Transform every landmark into each camera frame
        c. Project and keep landmarks within the depth range, the image
           (minus margin) and the mask
        d. Evict landmarks seen by no camera; their ids are retired
        e. Sample new landmarks at the current pose to refill the map
           toward max_num_landmarks and report them in the same call

A measurement's track id is the id of the landmark producing it, so a
landmark keeps its track id for as long as it stays in the map.

Preconditions (raise instead of guessing):
    - get_measurements() requires initialize_map() to have run
    - query times lie within the trajectory range
    - query times are non-decreasing across calls

A simulator instance is not safe for concurrent use; use one simulator
per worker.
"""

import numpy as np
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import logging
import json
from pathlib import Path

from .camera_rig import CameraRig
from .camera_utils import camera_pose_in_world, sample_visible_points
from .config import SimulatorOptions
from .landmarks import LandmarkMap
from .trajectory import TrajectoryInterpolator
from .transforms import Transformation

logger = logging.getLogger(__name__)


@dataclass
class CameraMeasurements:
    """Keypoints observed by one camera at one time."""
    camera_index: int
    keypoints: np.ndarray  # Nx2 (u, v) pixel coordinates
    track_ids: np.ndarray  # N landmark ids

    def __len__(self) -> int:
        return len(self.track_ids)


@dataclass
class SimulationStep:
    """Measurements and map bookkeeping of one get_measurements() call."""
    time: float
    measurements: List[CameraMeasurements]
    num_landmarks: int = 0
    num_evicted: int = 0
    num_added: int = 0


@dataclass
class SimulationReport:
    """Summary of a simulation run over a trajectory."""
    rig_label: str = ""
    num_cameras: int = 0
    num_steps: int = 0
    start_time: float = 0.0
    end_time: float = 0.0

    # Map statistics
    max_num_landmarks: int = 0
    total_landmarks_created: int = 0
    total_evicted: int = 0

    # Track statistics
    num_tracks: int = 0
    mean_track_length: float = 0.0
    max_track_length: int = 0

    # Per-camera mean number of keypoints per step
    mean_keypoints_per_camera: Dict[int, float] = field(default_factory=dict)

    # Detailed results
    steps: List[SimulationStep] = field(default_factory=list)


class CameraSimulator:
    """
    Synthetic keypoint generator for a camera rig on a trajectory.

    Example usage:
        simulator = CameraSimulator(trajectory, rig, SimulatorOptions(max_num_landmarks=500))
        simulator.initialize_map()
        for time in np.arange(trajectory.start(), trajectory.end(), 0.05):
            measurements = simulator.get_measurements(time)
    """

    def __init__(
        self,
        trajectory: TrajectoryInterpolator,
        rig: CameraRig,
        options: Optional[SimulatorOptions] = None,
    ):
        """
        Initialize the simulator.

        Args:
            trajectory: Body trajectory providing start(), end() and pose_at(t)
            rig: Camera rig moved along the trajectory
            options: Simulator parameters (defaults if omitted)

        Raises:
            ValueError: If the options are inconsistent, the rig is empty or
                the keypoint margin leaves no usable area in some camera
        """
        self.options = options if options is not None else SimulatorOptions()
        self.options.validate()
        if rig.size() == 0:
            raise ValueError(f"Rig '{rig.label}' has no cameras")
        margin = self.options.keypoint_margin
        for cam_idx in range(rig.size()):
            camera = rig.at(cam_idx)
            if 2 * margin >= min(camera.image_width, camera.image_height):
                raise ValueError(
                    f"Keypoint margin {margin} leaves no usable area in camera {cam_idx} "
                    f"({camera.image_width}x{camera.image_height})"
                )

        self._trajectory = trajectory
        self._rig = rig
        self._landmarks = LandmarkMap()
        self._rng = np.random.default_rng(self.options.seed)
        self._initialized = False
        self._last_time: Optional[float] = None

        logger.info(
            f"Simulator initialized for rig '{rig.label}' ({rig.size()} cameras), "
            f"depth [{self.options.min_depth}, {self.options.max_depth}] m, "
            f"max {self.options.max_num_landmarks} landmarks"
        )

    @property
    def trajectory(self) -> TrajectoryInterpolator:
        return self._trajectory

    @property
    def rig(self) -> CameraRig:
        return self._rig

    @property
    def landmarks(self) -> LandmarkMap:
        """Active landmark map. Modify only through the simulator."""
        return self._landmarks

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def last_time(self) -> Optional[float]:
        return self._last_time

    def initialize_map(self) -> None:
        """
        Populate the landmark map from the pose at the trajectory start.

        Each accepted landmark lies within [min_depth, max_depth] of at
        least one camera and projects inside its image and mask.
        """
        T_W_B = self._trajectory.pose_at(self._trajectory.start())
        new_positions, _ = self._replenish(T_W_B)
        self._landmarks.add(new_positions)
        self._initialized = True

        logger.info(
            f"Landmark map initialized with {len(self._landmarks)}/"
            f"{self.options.max_num_landmarks} landmarks"
        )

    def get_measurements(self, time: float) -> List[CameraMeasurements]:
        """
        Simulate the keypoints every camera observes at the given time.

        Args:
            time: Query time, within the trajectory range and not earlier
                than the previous query

        Returns:
            One CameraMeasurements per camera, in rig order

        Raises:
            RuntimeError: If initialize_map() has not been called
            ValueError: If time is outside the trajectory or moves backward
        """
        return self.step(time).measurements

    def step(self, time: float) -> SimulationStep:
        """get_measurements() with the map bookkeeping of the call."""
        if not self._initialized:
            raise RuntimeError("get_measurements() called before initialize_map()")
        if self._last_time is not None and time < self._last_time:
            raise ValueError(
                f"Time moved backward: {time:.6f} < previous {self._last_time:.6f}"
            )

        T_W_B = self._trajectory.pose_at(time)

        # Observe the current map
        ids = self._landmarks.ids
        observations = self._observe(self._landmarks.positions, T_W_B)
        seen = _seen_by_any(observations, len(ids))

        evicted = self._landmarks.retain(seen)

        # Refill at the current pose; new landmarks are visible now
        new_positions, new_observations = self._replenish(T_W_B)
        new_ids = self._landmarks.add(new_positions)

        measurements = []
        for cam_idx in range(self._rig.size()):
            u, v, visible = observations[cam_idx]
            new_u, new_v, new_visible = new_observations[cam_idx]
            keypoints = np.vstack([
                np.column_stack([u[visible], v[visible]]),
                np.column_stack([new_u[new_visible], new_v[new_visible]]),
            ])
            track_ids = np.concatenate([ids[visible], new_ids[new_visible]])
            measurements.append(CameraMeasurements(cam_idx, keypoints, track_ids))

        self._last_time = time

        logger.debug(
            f"t={time:.4f}: {int(seen.sum())} tracked, {len(evicted)} evicted, "
            f"{len(new_ids)} added, {len(self._landmarks)} active"
        )

        return SimulationStep(
            time=time,
            measurements=measurements,
            num_landmarks=len(self._landmarks),
            num_evicted=len(evicted),
            num_added=len(new_ids),
        )

    def _observe(
        self,
        positions_world: np.ndarray,
        T_W_B: Transformation,
    ) -> List[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
        """
        Project world points into every camera.

        Returns:
            Per camera a tuple (u, v, visible) of N-element arrays
        """
        T_B_W = T_W_B.inverse()
        observations = []
        for cam_idx in range(self._rig.size()):
            camera = self._rig.at(cam_idx)
            T_C_W = self._rig.T_C_B(cam_idx) * T_B_W
            points_camera = T_C_W.transform(positions_world.reshape(-1, 3))

            depth = points_camera[:, 2]
            u, v, valid = camera.project_points_batch(points_camera)
            visible = (
                valid
                & (depth >= self.options.min_depth)
                & (depth <= self.options.max_depth)
                & camera.keypoints_visible(u, v, self.options.keypoint_margin)
            )
            observations.append((u, v, visible))
        return observations

    def _replenish(
        self,
        T_W_B: Transformation,
    ) -> Tuple[np.ndarray, List[Tuple[np.ndarray, np.ndarray, np.ndarray]]]:
        """
        Sample landmarks toward max_num_landmarks at the given pose.

        Candidates go through the same observation test as tracked
        landmarks; any candidate that fails it is dropped here.

        Returns:
            Tuple of:
                - positions: Mx3 world positions of the kept landmarks
                - observations: _observe() output restricted to them
        """
        positions = self._sample_landmarks(
            T_W_B, self.options.max_num_landmarks - len(self._landmarks)
        )
        observations = self._observe(positions, T_W_B)
        seen = _seen_by_any(observations, len(positions))
        if not np.all(seen):
            logger.debug(f"Dropped {int((~seen).sum())} sampled landmarks failing observation")
        observations = [(u[seen], v[seen], visible[seen]) for u, v, visible in observations]
        return positions[seen], observations

    def _sample_landmarks(self, T_W_B: Transformation, num_landmarks: int) -> np.ndarray:
        """
        Sample world points visible from the given body pose.

        Each candidate picks a camera uniformly at random. Candidates are
        drawn in rounds until num_landmarks are accepted or the
        max_sampling_attempts budget is spent.

        Returns:
            Mx3 world positions, M <= num_landmarks
        """
        if num_landmarks <= 0:
            return np.zeros((0, 3))

        accepted: List[np.ndarray] = []
        num_accepted = 0
        attempts = 0
        budget = self.options.max_sampling_attempts

        while num_accepted < num_landmarks and attempts < budget:
            batch = min(num_landmarks - num_accepted, budget - attempts)
            attempts += batch

            cam_choice = self._rng.integers(0, self._rig.size(), size=batch)
            for cam_idx in range(self._rig.size()):
                count = int(np.count_nonzero(cam_choice == cam_idx))
                if count == 0:
                    continue
                points_camera, _ = sample_visible_points(
                    self._rig.at(cam_idx),
                    count,
                    self.options.keypoint_margin,
                    self.options.min_depth,
                    self.options.max_depth,
                    self._rng,
                )
                T_W_C = camera_pose_in_world(T_W_B, self._rig.T_C_B(cam_idx))
                accepted.append(T_W_C.transform(points_camera))
                num_accepted += len(points_camera)

        if num_accepted < num_landmarks:
            logger.warning(
                f"Sampled only {num_accepted}/{num_landmarks} landmarks after "
                f"{attempts} attempts"
            )

        if not accepted:
            return np.zeros((0, 3))
        return np.vstack(accepted)[:num_landmarks]


def _seen_by_any(
    observations: List[Tuple[np.ndarray, np.ndarray, np.ndarray]],
    num_points: int,
) -> np.ndarray:
    """OR of the per-camera visibility flags."""
    seen = np.zeros(num_points, dtype=bool)
    for _, _, visible in observations:
        seen |= visible
    return seen


def simulation_times(
    trajectory: TrajectoryInterpolator,
    rate_hz: float,
    start: Optional[float] = None,
    end: Optional[float] = None,
) -> np.ndarray:
    """
    Regularly spaced query times within the trajectory range.

    Raises:
        ValueError: If the rate is not positive or the window is outside
            the trajectory
    """
    if rate_hz <= 0:
        raise ValueError(f"Rate must be positive, got {rate_hz}")
    start = trajectory.start() if start is None else start
    end = trajectory.end() if end is None else end
    if start < trajectory.start() or end > trajectory.end() or end < start:
        raise ValueError(
            f"Window [{start}, {end}] outside trajectory range "
            f"[{trajectory.start()}, {trajectory.end()}]"
        )
    num = int(np.floor((end - start) * rate_hz + 1e-9)) + 1
    # Rounding can push the last sample just past end
    return np.minimum(start + np.arange(num) / rate_hz, end)


def run_simulation(
    simulator: CameraSimulator,
    times: np.ndarray,
) -> SimulationReport:
    """
    Initialize the map if needed and simulate measurements at each time.

    Args:
        simulator: Simulator to drive
        times: Non-decreasing query times

    Returns:
        SimulationReport with statistics and every step
    """
    if not simulator.is_initialized:
        simulator.initialize_map()

    report = SimulationReport(
        rig_label=simulator.rig.label,
        num_cameras=simulator.rig.size(),
        total_landmarks_created=len(simulator.landmarks),
    )

    for time in times:
        step = simulator.step(float(time))
        report.steps.append(step)
        report.total_landmarks_created += step.num_added
        report.total_evicted += step.num_evicted

    _compute_statistics(report)

    logger.info(
        f"Simulation complete: {report.num_steps} steps, {report.num_tracks} tracks, "
        f"mean track length {report.mean_track_length:.1f}"
    )
    return report


def _compute_statistics(report: SimulationReport) -> None:
    """Compute statistics from simulation steps."""
    report.num_steps = len(report.steps)
    if not report.steps:
        return

    report.start_time = report.steps[0].time
    report.end_time = report.steps[-1].time
    report.max_num_landmarks = max(s.num_landmarks for s in report.steps)

    # Track length = number of steps a track is observed by any camera
    track_lengths: Dict[int, int] = {}
    for step in report.steps:
        ids_in_step = set()
        for m in step.measurements:
            ids_in_step.update(int(i) for i in m.track_ids)
        for track_id in ids_in_step:
            track_lengths[track_id] = track_lengths.get(track_id, 0) + 1

    report.num_tracks = len(track_lengths)
    if track_lengths:
        lengths = np.array(list(track_lengths.values()))
        report.mean_track_length = float(np.mean(lengths))
        report.max_track_length = int(np.max(lengths))

    for cam_idx in range(report.num_cameras):
        counts = [len(s.measurements[cam_idx]) for s in report.steps]
        report.mean_keypoints_per_camera[cam_idx] = float(np.mean(counts))


def save_summary(report: SimulationReport, output_path: str) -> None:
    """
    Save the simulation summary to a JSON file.

    Args:
        report: Simulation report to save
        output_path: Path for output JSON file
    """
    data = {
        'rig': {
            'label': report.rig_label,
            'num_cameras': report.num_cameras,
        },
        'time': {
            'num_steps': report.num_steps,
            'start': report.start_time,
            'end': report.end_time,
        },
        'landmarks': {
            'max_active': report.max_num_landmarks,
            'total_created': report.total_landmarks_created,
            'total_evicted': report.total_evicted,
        },
        'tracks': {
            'count': report.num_tracks,
            'mean_length': report.mean_track_length,
            'max_length': report.max_track_length,
        },
        'mean_keypoints_per_camera': {
            str(k): v for k, v in report.mean_keypoints_per_camera.items()
        },
    }

    with open(output_path, 'w') as f:
        json.dump(data, f, indent=2)

    logger.info(f"Summary saved to {output_path}")


def save_measurements_csv(report: SimulationReport, output_path: str) -> None:
    """
    Save every keypoint measurement to CSV.

    Columns: time, camera_index, track_id, u, v
    """
    import csv

    with open(output_path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(['time', 'camera_index', 'track_id', 'u', 'v'])

        for step in report.steps:
            for m in step.measurements:
                for track_id, (u, v) in zip(m.track_ids, m.keypoints):
                    writer.writerow([step.time, m.camera_index, int(track_id), u, v])

    logger.info(f"Measurements saved to {output_path}")


def write_outputs(report: SimulationReport, output_dir: str) -> Tuple[Path, Path]:
    """Write measurements.csv and summary.json into output_dir."""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    measurements_path = output_path / 'measurements.csv'
    summary_path = output_path / 'summary.json'
    save_measurements_csv(report, str(measurements_path))
    save_summary(report, str(summary_path))
    return measurements_path, summary_path
