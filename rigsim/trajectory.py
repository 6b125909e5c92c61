"""
Trajectory interpolation module.

Provides the continuous body pose T_W_B(t) the simulator moves the rig
along.

Trajectory data is typically provided at discrete epochs (e.g. a pose
series exported by an estimator or a ground-truth system). Query times
fall between epochs, so the pose is interpolated:
    - Position: linear interpolation
    - Orientation: spherical linear interpolation (scipy Slerp)

The trajectory is defined on [start(), end()]. Querying outside that
interval is a caller error and raises ValueError.

Trajectory File Format (CSV with header):
    time, x, y, z, qx, qy, qz, qw

    - time: monotonic time reference (seconds)
    - x, y, z: body position in world frame (meters)
    - qx, qy, qz, qw: body orientation R_W_B as a unit quaternion
"""

import numpy as np
from typing import List, Sequence
from dataclasses import dataclass
from pathlib import Path
from scipy.spatial.transform import Rotation, Slerp
import csv
import logging

from .transforms import Transformation

logger = logging.getLogger(__name__)


@dataclass
class PoseEpoch:
    """A single trajectory epoch with time and body pose T_W_B."""
    time: float
    T_W_B: Transformation


class TrajectoryInterpolator:
    """
    Interpolates body poses based on time.

    The trajectory must hold at least one epoch; epochs are sorted by time
    on construction. Duplicate times keep the first epoch.
    """

    def __init__(self, epochs: Sequence[PoseEpoch]):
        """
        Initialize interpolator with trajectory epochs.

        Args:
            epochs: Trajectory epochs (will be sorted by time)

        Raises:
            ValueError: If no epochs are given
        """
        if not epochs:
            raise ValueError("No trajectory epochs provided")

        # Sort epochs by time, dropping repeated stamps
        ordered = sorted(epochs, key=lambda e: e.time)
        self.epochs: List[PoseEpoch] = [ordered[0]]
        for epoch in ordered[1:]:
            if epoch.time > self.epochs[-1].time:
                self.epochs.append(epoch)

        # Extract times for fast lookup
        self.times = np.array([e.time for e in self.epochs])
        self.positions = np.array([e.T_W_B.translation for e in self.epochs])

        self.time_start = float(self.times[0])
        self.time_end = float(self.times[-1])

        self._slerp = None
        if len(self.epochs) > 1:
            rotations = Rotation.from_quat([e.T_W_B.rotation.as_quat() for e in self.epochs])
            self._slerp = Slerp(self.times, rotations)

        logger.info(
            f"Trajectory interpolator initialized with {len(self.epochs)} epochs, "
            f"time range: {self.time_start:.3f} to {self.time_end:.3f}"
        )

    def start(self) -> float:
        return self.time_start

    def end(self) -> float:
        return self.time_end

    def pose_at(self, time: float) -> Transformation:
        """
        Interpolate the body pose T_W_B at the given time.

        Args:
            time: Query time within [start(), end()]

        Returns:
            Interpolated T_W_B

        Raises:
            ValueError: If time is outside the trajectory range
        """
        if time < self.time_start or time > self.time_end:
            raise ValueError(
                f"Time {time:.3f} outside trajectory range "
                f"[{self.time_start:.3f}, {self.time_end:.3f}]"
            )

        if self._slerp is None:
            return self.epochs[0].T_W_B

        # Find bracketing epochs using binary search
        idx = int(np.searchsorted(self.times, time))
        if idx == 0:
            return self.epochs[0].T_W_B

        t0, t1 = self.times[idx - 1], self.times[idx]
        ratio = (time - t0) / (t1 - t0)

        p0, p1 = self.positions[idx - 1], self.positions[idx]
        position = p0 + (p1 - p0) * ratio
        rotation = self._slerp([time])[0]

        return Transformation(rotation, position)

    @classmethod
    def from_poses(
        cls,
        times: Sequence[float],
        poses: Sequence[Transformation],
    ) -> 'TrajectoryInterpolator':
        """Build from parallel sequences of times and T_W_B poses."""
        if len(times) != len(poses):
            raise ValueError(f"{len(times)} times for {len(poses)} poses")
        return cls([PoseEpoch(float(t), T) for t, T in zip(times, poses)])

    @classmethod
    def from_csv(
        cls,
        filepath: str,
        time_col: str = 'time',
    ) -> 'TrajectoryInterpolator':
        """
        Load trajectory from CSV file.

        Args:
            filepath: Path to CSV file
            time_col: Column name for time

        Returns:
            TrajectoryInterpolator instance

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If required columns are missing
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Trajectory file not found: {filepath}")

        epochs = []

        with open(path, 'r', newline='') as f:
            reader = csv.DictReader(f)

            required = {time_col, 'x', 'y', 'z', 'qx', 'qy', 'qz', 'qw'}
            if not required.issubset(reader.fieldnames or []):
                raise ValueError(
                    f"Missing required columns in {path}. "
                    f"Required: {sorted(required)}, Found: {reader.fieldnames}"
                )

            for row in reader:
                epoch = PoseEpoch(
                    time=float(row[time_col]),
                    T_W_B=Transformation.from_quaternion(
                        [float(row['qx']), float(row['qy']), float(row['qz']), float(row['qw'])],
                        [float(row['x']), float(row['y']), float(row['z'])],
                    ),
                )
                epochs.append(epoch)

        logger.info(f"Loaded {len(epochs)} trajectory epochs from {filepath}")
        return cls(epochs)

    def to_csv(self, filepath: str) -> None:
        """Write the epochs in the format read by from_csv."""
        with open(filepath, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['time', 'x', 'y', 'z', 'qx', 'qy', 'qz', 'qw'])
            for epoch in self.epochs:
                writer.writerow(
                    [epoch.time, *epoch.T_W_B.translation, *epoch.T_W_B.rotation.as_quat()]
                )


def load_trajectory_interpolator(filepath: str) -> TrajectoryInterpolator:
    """
    Load trajectory interpolator from file.

    Only the CSV pose-series format is supported.
    """
    path = Path(filepath)
    if path.suffix.lower() not in ('.csv', '.txt'):
        logger.warning(f"Unexpected trajectory extension '{path.suffix}', reading as CSV")
    return TrajectoryInterpolator.from_csv(filepath)
