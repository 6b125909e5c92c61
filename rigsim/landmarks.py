"""
Landmark map with persistent integer identities.

Ids are handed out from a monotonically increasing counter and are never
reused, also after a landmark has been removed.
"""

import numpy as np
from typing import Iterator, Optional, Sequence
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Landmark:
    """A 3D world point used as a synthetic visual feature."""
    id: int
    position: np.ndarray  # (3,) world frame, meters


class LandmarkMap:
    """
    Mutable set of world points keyed by id.

    Positions are kept in an Nx3 array parallel to an id array so the
    simulator can transform the whole map at once.
    """

    def __init__(self, first_id: int = 0):
        self._ids = np.zeros(0, dtype=np.int64)
        self._positions = np.zeros((0, 3))
        self._next_id = int(first_id)

    @property
    def ids(self) -> np.ndarray:
        return self._ids.copy()

    @property
    def positions(self) -> np.ndarray:
        return self._positions.copy()

    @property
    def next_id(self) -> int:
        return self._next_id

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, landmark_id: int) -> bool:
        return bool(np.any(self._ids == landmark_id))

    def __iter__(self) -> Iterator[Landmark]:
        for landmark_id, position in zip(self._ids, self._positions):
            yield Landmark(int(landmark_id), position.copy())

    def get(self, landmark_id: int) -> Optional[Landmark]:
        idx = np.flatnonzero(self._ids == landmark_id)
        if len(idx) == 0:
            return None
        return Landmark(int(landmark_id), self._positions[idx[0]].copy())

    def add(self, positions: np.ndarray) -> np.ndarray:
        """
        Insert new landmarks with fresh ids.

        Args:
            positions: Nx3 world positions

        Returns:
            N-element array of the assigned ids (consecutive, increasing)
        """
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        new_ids = np.arange(self._next_id, self._next_id + len(positions), dtype=np.int64)
        self._next_id += len(positions)

        self._ids = np.concatenate([self._ids, new_ids])
        self._positions = np.vstack([self._positions, positions])
        return new_ids

    def remove(self, landmark_ids: Sequence[int]) -> int:
        """
        Retire landmarks. Unknown ids are ignored.

        Returns:
            Number of landmarks removed
        """
        if len(landmark_ids) == 0:
            return 0
        keep = ~np.isin(self._ids, np.asarray(landmark_ids, dtype=np.int64))
        removed = int(len(self._ids) - np.count_nonzero(keep))
        self._ids = self._ids[keep]
        self._positions = self._positions[keep]
        return removed

    def retain(self, keep: np.ndarray) -> np.ndarray:
        """
        Keep only the landmarks selected by a boolean array aligned with ids.

        Returns:
            Ids of the dropped landmarks
        """
        keep = np.asarray(keep, dtype=bool)
        if keep.shape != self._ids.shape:
            raise ValueError(f"Selection of shape {keep.shape} for {len(self._ids)} landmarks")
        dropped = self._ids[~keep]
        self._ids = self._ids[keep]
        self._positions = self._positions[keep]
        return dropped
