"""
Point Cloud Data Model

This module defines the frame-tagged point cloud used throughout the
pipeline, its conversion to and from Open3D, and the lock-protected buffer
holding the most recent sensor cloud.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import open3d as o3d

from .errors import EmptyResult

logger = logging.getLogger(__name__)

IndexLike = Union[np.ndarray, Sequence[int]]


@dataclass(frozen=True, eq=False)
class PointCloud:
    """
    Ordered collection of 3D points tagged with a reference frame.

    Organized clouds keep the sensor pixel grid: `points` holds
    `width * height` rows in row-major order and invalid samples are NaN.
    Unorganized clouds have `height == 1`; a single-row image stays organized
    through the `grid` flag.

    Attributes:
        points: Nx3 float array
        frame_id: Reference frame identifier
        stamp: Acquisition time in seconds
        colors: Optional Nx3 array of RGB values in [0, 1]
        width: Number of columns (N for unorganized clouds)
        height: Number of rows (1 for unorganized clouds)
        grid: Whether the points keep the sensor pixel layout
    """

    points: np.ndarray
    frame_id: str = ""
    stamp: float = 0.0
    colors: Optional[np.ndarray] = None
    width: int = 0
    height: int = 1
    grid: bool = False

    def __post_init__(self):
        points = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)
        object.__setattr__(self, "points", points)

        if self.colors is not None:
            colors = np.asarray(self.colors, dtype=np.float64).reshape(-1, 3)
            if colors.shape[0] != points.shape[0]:
                raise ValueError(
                    f"colors ({colors.shape[0]}) and points ({points.shape[0]}) differ in length"
                )
            object.__setattr__(self, "colors", colors)

        if self.height > 1:
            object.__setattr__(self, "grid", True)

        if not self.grid:
            object.__setattr__(self, "height", 1)
            object.__setattr__(self, "width", points.shape[0])
        elif self.width * self.height != points.shape[0]:
            raise ValueError(
                f"organized cloud {self.width}x{self.height} needs "
                f"{self.width * self.height} points, got {points.shape[0]}"
            )

    @classmethod
    def organized(
        cls,
        grid: np.ndarray,
        frame_id: str = "",
        stamp: float = 0.0,
        colors: Optional[np.ndarray] = None
    ) -> "PointCloud":
        """
        Build an organized cloud from an HxWx3 grid.

        Args:
            grid: HxWx3 array of points (NaN for invalid samples)
            frame_id: Reference frame identifier
            stamp: Acquisition time in seconds
            colors: Optional HxWx3 array of colors

        Returns:
            Organized PointCloud
        """
        grid = np.asarray(grid, dtype=np.float64)
        if grid.ndim != 3 or grid.shape[2] != 3:
            raise ValueError(f"expected HxWx3 grid, got shape {grid.shape}")

        height, width = grid.shape[:2]
        flat_colors = None if colors is None else np.asarray(colors).reshape(-1, 3)
        return cls(
            points=grid.reshape(-1, 3),
            frame_id=frame_id,
            stamp=stamp,
            colors=flat_colors,
            width=width,
            height=height,
            grid=True
        )

    def __len__(self) -> int:
        return self.points.shape[0]

    @property
    def is_organized(self) -> bool:
        return self.grid

    @property
    def is_empty(self) -> bool:
        return self.points.shape[0] == 0

    def finite_mask(self) -> np.ndarray:
        """Boolean mask of points with all three coordinates finite."""
        return np.isfinite(self.points).all(axis=1)

    def at(self, col: int, row: int) -> np.ndarray:
        """
        Return the point stored at a pixel address of an organized cloud.

        Args:
            col: Column index
            row: Row index

        Returns:
            Point as a length-3 array (may contain NaN)
        """
        if not self.is_organized:
            raise IndexError("pixel addressing requires an organized cloud")
        if not (0 <= col < self.width and 0 <= row < self.height):
            raise IndexError(f"pixel ({col}, {row}) outside {self.width}x{self.height} grid")
        return self.points[row * self.width + col]

    def select(self, indices: IndexLike, invert: bool = False) -> "PointCloud":
        """
        Extract a subset of points as a new unorganized cloud.

        Args:
            indices: Integer indices or boolean mask
            invert: Keep every point except the selected ones

        Returns:
            Unorganized PointCloud with the same frame and stamp
        """
        mask = self._as_mask(indices)
        if invert:
            mask = ~mask

        colors = None if self.colors is None else self.colors[mask]
        return PointCloud(
            points=self.points[mask],
            frame_id=self.frame_id,
            stamp=self.stamp,
            colors=colors
        )

    def with_points(self, points: np.ndarray, frame_id: Optional[str] = None) -> "PointCloud":
        """Copy of this cloud with new coordinates, keeping organization and colors."""
        return PointCloud(
            points=points,
            frame_id=self.frame_id if frame_id is None else frame_id,
            stamp=self.stamp,
            colors=self.colors,
            width=self.width,
            height=self.height,
            grid=self.grid
        )

    def to_open3d(self) -> o3d.geometry.PointCloud:
        """
        Convert the finite points to an Open3D point cloud.

        Non-finite rows are dropped, so Open3D indices refer to
        `np.flatnonzero(self.finite_mask())` when the cloud has NaN rows.
        """
        mask = self.finite_mask()
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points[mask])
        if self.colors is not None:
            pcd.colors = o3d.utility.Vector3dVector(np.clip(self.colors[mask], 0.0, 1.0))
        return pcd

    @classmethod
    def from_open3d(
        cls,
        pcd: o3d.geometry.PointCloud,
        frame_id: str = "",
        stamp: float = 0.0
    ) -> "PointCloud":
        points = np.asarray(pcd.points)
        colors = np.asarray(pcd.colors) if pcd.has_colors() else None
        return cls(points=points.copy(), frame_id=frame_id, stamp=stamp,
                   colors=None if colors is None else colors.copy())

    def _as_mask(self, indices: IndexLike) -> np.ndarray:
        indices = np.asarray(indices)
        if indices.dtype == bool:
            if indices.shape[0] != len(self):
                raise ValueError("boolean mask length does not match the cloud")
            return indices
        mask = np.zeros(len(self), dtype=bool)
        if indices.size:
            mask[indices.astype(np.int64)] = True
        return mask


class RawCloudBuffer:
    """
    Holds the most recently delivered sensor cloud.

    The transport thread writes through `update` while pipeline invocations
    read through `snapshot`; both take the same lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._cloud: Optional[PointCloud] = None

    def update(self, cloud: PointCloud) -> None:
        with self._lock:
            self._cloud = cloud

    def snapshot(self) -> PointCloud:
        """
        Return the latest cloud.

        Raises:
            EmptyResult: If no cloud has been delivered yet
        """
        with self._lock:
            cloud = self._cloud
        if cloud is None:
            raise EmptyResult("no point cloud received yet", stage="buffer")
        return cloud

    @property
    def has_data(self) -> bool:
        with self._lock:
            return self._cloud is not None
