"""
Region Extraction Module

Looks up 3D geometry for 2D image regions of an organized cloud: a single
pixel, or the points inside a pixel bounding box (e.g. from a 2D detector).
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .cloud import PointCloud
from .config import FilterConfig
from .debug import DEBUG_TOPIC, DebugPublisher, publish_debug
from .errors import EmptyResult, InvalidPoint
from .filtering import remove_radius_outliers

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PointStamped:
    point: np.ndarray
    frame_id: str
    stamp: float


@dataclass(frozen=True, eq=False)
class RegionOfInterest:
    """
    Points recovered from a pixel bounding box after outlier removal.
    """

    cloud: PointCloud
    centroid: np.ndarray
    min_bound: np.ndarray
    max_bound: np.ndarray

    @property
    def size(self) -> int:
        return len(self.cloud)


class RegionExtractor:
    """
    Pixel-based lookups on a frame-normalized organized cloud.
    """

    def __init__(
        self,
        config: FilterConfig,
        debug_publisher: Optional[DebugPublisher] = None
    ):
        self.config = config
        self.debug_publisher = debug_publisher

    def get_3d_point(self, cloud: PointCloud, col: int, row: int) -> PointStamped:
        """
        Deproject one pixel.

        Args:
            cloud: Organized cloud in the fixed frame
            col: Pixel column
            row: Pixel row

        Returns:
            PointStamped

        Raises:
            InvalidPoint: If the sample is non-finite or the address is invalid
        """
        try:
            point = cloud.at(col, row)
        except IndexError as exc:
            raise InvalidPoint(str(exc), stage="deprojection") from exc

        if not np.all(np.isfinite(point)):
            raise InvalidPoint(f"the 3D point at ({col}, {row}) is not valid", stage="deprojection")

        return PointStamped(point=point.copy(), frame_id=cloud.frame_id, stamp=cloud.stamp)

    def get_object_from_bbox(self, cloud: PointCloud, bbox: Sequence[int]) -> RegionOfInterest:
        """
        Gather the points inside a pixel rectangle and clean them up.

        The rectangle covers columns col_min..col_max-1 and rows
        row_min..row_max-1, clipped to the image.

        Args:
            cloud: Organized cloud in the fixed frame
            bbox: (col_min, row_min, col_max, row_max)

        Returns:
            RegionOfInterest over the surviving points

        Raises:
            InvalidPoint: If the cloud is not organized
            EmptyResult: If nothing survives outlier removal
        """
        if not cloud.is_organized:
            raise InvalidPoint("bounding box lookup requires an organized cloud", stage="bbox")
        if len(bbox) != 4:
            raise ValueError(f"bbox needs 4 values, got {len(bbox)}")

        col_min, row_min, col_max, row_max = (int(v) for v in bbox)
        col_min, col_max = max(col_min, 0), min(col_max, cloud.width)
        row_min, row_max = max(row_min, 0), min(row_max, cloud.height)

        grid_idx = np.arange(len(cloud)).reshape(cloud.height, cloud.width)
        window = grid_idx[row_min:row_max, col_min:col_max].ravel()
        window = window[cloud.finite_mask()[window]]

        object_cloud = cloud.select(window)
        filtered, _ = remove_radius_outliers(
            object_cloud,
            self.config.outlier_radius_search,
            self.config.outlier_min_neighbors
        )

        if filtered.is_empty:
            raise EmptyResult("object cloud is empty after removing outliers", stage="bbox")

        points = filtered.points
        logger.debug("BBox %s: %d points, %d after outlier removal", tuple(bbox), window.size, len(filtered))
        publish_debug(self.debug_publisher, DEBUG_TOPIC, filtered)

        return RegionOfInterest(
            cloud=filtered,
            centroid=points.mean(axis=0),
            min_bound=points.min(axis=0),
            max_bound=points.max(axis=0)
        )
