"""
Tabletop Extraction Module

Selects the points standing on (or hanging under) a segmented plane: those
whose projection falls inside the plane's convex hull and whose height above
the plane lies within the configured band.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.spatial import Delaunay, QhullError

from .cloud import PointCloud
from .config import FilterConfig
from .debug import TABLETOP_TOPIC, DebugPublisher, publish_debug
from .errors import EmptyResult
from .plane_segmentation import Plane, normalize_plane, plane_basis

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class TabletopRegion:
    """
    Points selected above a reference plane.

    Attributes:
        cloud: Extracted points
        indices: Indices of those points in the working cloud
    """

    cloud: PointCloud
    indices: np.ndarray

    def __len__(self) -> int:
        return len(self.cloud)


class TabletopExtractor:
    """
    Polygonal prism extraction over a plane's convex hull.
    """

    def __init__(
        self,
        config: FilterConfig,
        debug_publisher: Optional[DebugPublisher] = None
    ):
        self.config = config
        self.debug_publisher = debug_publisher

    def signed_heights(self, points: np.ndarray, plane: Plane) -> np.ndarray:
        """
        Signed distance of each point to the plane.

        Positive values are on the same side as the configured viewpoint.
        """
        coefficients = normalize_plane(plane.coefficients)
        viewpoint = np.asarray(self.config.prism_viewpoint)
        if np.dot(coefficients[:3], viewpoint) + coefficients[3] < 0:
            coefficients = -coefficients
        return points @ coefficients[:3] + coefficients[3]

    def extract(self, cloud: PointCloud, plane: Plane) -> TabletopRegion:
        """
        Extract the prism above `plane` from the working cloud.

        Args:
            cloud: Working (cropped) cloud
            plane: Reference plane with its hull

        Returns:
            TabletopRegion

        Raises:
            EmptyResult: If no point lies inside the prism
        """
        min_height, max_height = self.config.prism_limits
        finite_idx = np.flatnonzero(cloud.finite_mask())
        points = cloud.points[finite_idx]

        heights = self.signed_heights(points, plane)
        in_band = (heights >= min_height) & (heights <= max_height)

        inside = np.zeros(len(points), dtype=bool)
        if in_band.any():
            inside[in_band] = self._inside_hull(points[in_band], plane)

        indices = finite_idx[inside]
        if indices.size == 0:
            raise EmptyResult("tabletop region is empty", stage="tabletop")

        region = TabletopRegion(cloud=cloud.select(indices), indices=indices)
        logger.info("Tabletop extracted: %d points", len(region))
        publish_debug(self.debug_publisher, TABLETOP_TOPIC, region.cloud)
        return region

    def _inside_hull(self, points: np.ndarray, plane: Plane) -> np.ndarray:
        u, v = plane_basis(plane.coefficients[:3])
        hull_2d = np.column_stack((plane.hull @ u, plane.hull @ v))
        points_2d = np.column_stack((points @ u, points @ v))

        if len(hull_2d) < 3:
            raise EmptyResult("reference hull has no area", stage="tabletop")
        try:
            triangulation = Delaunay(hull_2d)
        except QhullError as exc:
            raise EmptyResult("reference hull has no area", stage="tabletop") from exc

        return triangulation.find_simplex(points_2d) >= 0
