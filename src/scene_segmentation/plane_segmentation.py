"""
Plane Segmentation Module

This module fits planar surfaces (tables, shelves, walls) in the working
cloud with RANSAC, either a single plane constrained to a coordinate axis or
an iterative sequence of unconstrained planes.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

import numpy as np
import open3d as o3d
from scipy.spatial import ConvexHull, QhullError

from .cloud import PointCloud
from .config import SegmentationConfig
from .debug import PLANE_TOPIC, DebugPublisher, publish_debug
from .errors import NoPlaneFound

logger = logging.getLogger(__name__)

# Probability that at least one RANSAC sample is outlier free
RANSAC_PROBABILITY = 0.99


class Axis(Enum):
    X = "x"
    Y = "y"
    Z = "z"

    @property
    def vector(self) -> np.ndarray:
        return np.eye(3)[["x", "y", "z"].index(self.value)]

    @classmethod
    def parse(cls, value: Union["Axis", str]) -> "Axis":
        if isinstance(value, Axis):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"axis must be one of x, y, z; got {value!r}") from None


class PlaneOrientation(Enum):
    X_AXIS = "X"
    Y_AXIS = "Y"
    Z_AXIS = "Z"
    UNCLASSIFIED = "NO"


def classify_orientation(coefficients: np.ndarray) -> PlaneOrientation:
    """
    Classify a plane by which coordinate axis its normal is aligned with.

    An axis matches when its coefficient magnitude lies in [0.9, 1.1] and
    the other two lie in [0, 0.1]. Axes are tested in x, y, z order and the
    first match wins.

    Args:
        coefficients: Plane coefficients [a, b, c, d]

    Returns:
        PlaneOrientation
    """
    magnitudes = np.abs(np.asarray(coefficients, dtype=np.float64)[:3])
    for axis, orientation in enumerate(
        (PlaneOrientation.X_AXIS, PlaneOrientation.Y_AXIS, PlaneOrientation.Z_AXIS)
    ):
        others = np.delete(magnitudes, axis)
        if 0.9 <= magnitudes[axis] <= 1.1 and np.all(others <= 0.1):
            return orientation
    return PlaneOrientation.UNCLASSIFIED


@dataclass(frozen=True, eq=False)
class Plane:
    """
    A segmented planar surface.

    Attributes:
        coefficients: [a, b, c, d] with a*x + b*y + c*z + d = 0
        cloud: Inlier points
        hull: Kx3 convex hull ring on the plane, counter-clockwise around the normal
        centroid: Mean of the inliers
        min_bound: Per-axis minimum of the inliers
        max_bound: Per-axis maximum of the inliers
        orientation: Axis alignment of the normal
        inlier_indices: Indices of the inliers in the segmented cloud
        source_cloud: The working cloud the plane was segmented from
    """

    coefficients: np.ndarray
    cloud: PointCloud
    hull: np.ndarray
    centroid: np.ndarray
    min_bound: np.ndarray
    max_bound: np.ndarray
    orientation: PlaneOrientation
    inlier_indices: np.ndarray
    source_cloud: Optional[PointCloud] = None

    @property
    def size(self) -> int:
        return len(self.cloud)

    @property
    def normal(self) -> np.ndarray:
        n = self.coefficients[:3]
        return n / np.linalg.norm(n)

    @property
    def frame_id(self) -> str:
        return self.cloud.frame_id


def normalize_plane(coefficients: np.ndarray) -> np.ndarray:
    """Scale [a, b, c, d] so that (a, b, c) has unit length."""
    coefficients = np.asarray(coefficients, dtype=np.float64)
    return coefficients / np.linalg.norm(coefficients[:3])


def plane_basis(normal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Two orthonormal in-plane directions (u, v) with u x v == normal.
    """
    normal = np.asarray(normal, dtype=np.float64)
    normal = normal / np.linalg.norm(normal)
    helper = np.eye(3)[np.argmin(np.abs(normal))]
    u = np.cross(helper, normal)
    u /= np.linalg.norm(u)
    v = np.cross(normal, u)
    return u, v


def project_to_plane(points: np.ndarray, coefficients: np.ndarray) -> np.ndarray:
    """Orthogonal projection of Nx3 points onto the plane."""
    coefficients = normalize_plane(coefficients)
    distances = points @ coefficients[:3] + coefficients[3]
    return points - np.outer(distances, coefficients[:3])


def compute_convex_hull(points: np.ndarray, coefficients: np.ndarray) -> np.ndarray:
    """
    2D convex hull of points projected onto their plane.

    Args:
        points: Nx3 inlier points
        coefficients: Plane coefficients [a, b, c, d]

    Returns:
        Kx3 hull vertices on the plane, counter-clockwise around the normal
    """
    projected = project_to_plane(points, coefficients)
    u, v = plane_basis(coefficients[:3])
    coords = np.column_stack((projected @ u, projected @ v))

    if len(coords) >= 3:
        try:
            hull = ConvexHull(coords)
            return projected[hull.vertices]
        except QhullError:
            logger.warning("Degenerate plane inliers, using extent segment as hull")

    # Collinear or tiny inlier sets: the hull collapses to its extreme points
    first, last = np.argmin(coords[:, 0]), np.argmax(coords[:, 0])
    return projected[np.unique([first, last])]


def fit_plane_from_points(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> np.ndarray:
    """
    Fit a plane through three 3D points.

    Returns:
        Unit-normal coefficients [a, b, c, d]

    Raises:
        ValueError: If the points are collinear
    """
    normal = np.cross(p2 - p1, p3 - p1)
    norm = np.linalg.norm(normal)
    if norm < 1e-10:
        raise ValueError("Points are collinear")
    normal = normal / norm
    return np.append(normal, -np.dot(normal, p1))


def fit_plane_least_squares(points: np.ndarray) -> np.ndarray:
    """
    Total least-squares plane through a point set.

    Returns:
        Unit-normal coefficients [a, b, c, d]
    """
    centroid = points.mean(axis=0)
    _, _, vt = np.linalg.svd(points - centroid, full_matrices=False)
    normal = vt[-1]
    return np.append(normal, -np.dot(normal, centroid))


def ransac_perpendicular_plane(
    points: np.ndarray,
    axis: np.ndarray,
    eps_angle: float,
    distance_threshold: float,
    max_iterations: int,
    rng: np.random.Generator
) -> Tuple[Optional[np.ndarray], np.ndarray]:
    """
    RANSAC for a plane whose normal lies within `eps_angle` of `axis`.

    The iteration count adapts to the best inlier ratio seen so far and is
    capped by `max_iterations`. The winning model is refined by least
    squares over its inliers when the refined normal still satisfies the
    angular constraint.

    Args:
        points: Nx3 array of finite points
        axis: Unit axis vector
        eps_angle: Maximum angle between normal and axis (radians)
        distance_threshold: Maximum point-to-plane distance for inliers
        max_iterations: Iteration cap
        rng: Random generator

    Returns:
        Tuple of (coefficients or None, inlier indices)
    """
    n_points = len(points)
    empty = np.array([], dtype=np.int64)
    if n_points < 3:
        return None, empty

    min_cos = np.cos(eps_angle)
    best_model = None
    best_count = 0
    required = max_iterations
    iteration = 0

    while iteration < min(required, max_iterations):
        iteration += 1
        sample = rng.choice(n_points, 3, replace=False)
        try:
            model = fit_plane_from_points(*points[sample])
        except ValueError:
            continue

        if abs(np.dot(model[:3], axis)) < min_cos:
            continue

        count = int(np.count_nonzero(np.abs(points @ model[:3] + model[3]) <= distance_threshold))
        if count > best_count:
            best_count = count
            best_model = model

            inlier_ratio = count / n_points
            p_no_outliers = 1.0 - inlier_ratio ** 3
            p_no_outliers = min(max(p_no_outliers, np.finfo(float).eps), 1.0 - np.finfo(float).eps)
            required = int(np.ceil(np.log(1.0 - RANSAC_PROBABILITY) / np.log(p_no_outliers)))

    if best_model is None:
        return None, empty

    inliers = np.flatnonzero(np.abs(points @ best_model[:3] + best_model[3]) <= distance_threshold)

    refined = fit_plane_least_squares(points[inliers])
    if abs(np.dot(refined[:3], axis)) >= min_cos:
        refined_inliers = np.flatnonzero(
            np.abs(points @ refined[:3] + refined[3]) <= distance_threshold
        )
        if refined_inliers.size >= inliers.size:
            best_model, inliers = refined, refined_inliers

    # Point the normal along the requested axis
    if np.dot(best_model[:3], axis) < 0:
        best_model = -best_model

    logger.debug("Perpendicular-plane RANSAC: %d iterations, %d inliers", iteration, inliers.size)
    return best_model, inliers


class PlaneSegmenter:
    """
    Segments planar surfaces from the working cloud.
    """

    def __init__(
        self,
        config: SegmentationConfig,
        debug_publisher: Optional[DebugPublisher] = None
    ):
        """
        Args:
            config: Segmentation parameters
            debug_publisher: Receives inlier clouds when debugging
        """
        self.config = config
        self.debug_publisher = debug_publisher

    def segment_single(self, cloud: PointCloud, axis: Union[Axis, str]) -> Plane:
        """
        Fit one plane whose normal is within the angular tolerance of `axis`.

        Args:
            cloud: Working cloud
            axis: Target normal axis

        Returns:
            Plane

        Raises:
            NoPlaneFound: If the fit has no inliers
        """
        axis = Axis.parse(axis)
        logger.info("Segmenting single plane along %s axis...", axis.value)

        finite_idx = np.flatnonzero(cloud.finite_mask())
        rng = np.random.default_rng(self.config.random_seed)

        coefficients, inliers = ransac_perpendicular_plane(
            cloud.points[finite_idx],
            axis.vector,
            np.deg2rad(self.config.sac_eps_angle),
            self.config.sac_dist_thresh_single,
            self.config.sac_max_iter,
            rng
        )

        if coefficients is None or inliers.size == 0:
            raise NoPlaneFound("plane is empty", stage="single_plane")

        plane = self._build_plane(cloud, coefficients, finite_idx[inliers])
        logger.info("Plane segmented: %d points, axis: %s", plane.size, plane.orientation.value)
        publish_debug(self.debug_publisher, PLANE_TOPIC, plane.cloud)
        return plane

    def segment_multiple(self, cloud: PointCloud) -> List[Plane]:
        """
        Iteratively extract unconstrained planes until none is large enough.

        Args:
            cloud: Working cloud (left untouched)

        Returns:
            Planes in discovery order

        Raises:
            NoPlaneFound: If the very first fit has no inliers
        """
        planes, _ = self.segment_multiple_with_remainder(cloud)
        return planes

    def segment_multiple_with_remainder(self, cloud: PointCloud) -> Tuple[List[Plane], PointCloud]:
        """
        Same as `segment_multiple`, also returning the points left over.

        Returns:
            Tuple of (planes, remaining cloud)
        """
        if self.config.random_seed is not None:
            o3d.utility.random.seed(self.config.random_seed)

        # Indices into `cloud` of the points still in play
        remaining = np.flatnonzero(cloud.finite_mask())
        planes: List[Plane] = []

        while True:
            coefficients, inliers = self._fit_unconstrained(cloud.points[remaining])

            if inliers.size == 0:
                if not planes:
                    raise NoPlaneFound("no plane found", stage="multi_plane")
                break
            if inliers.size < self.config.sac_min_plane_size:
                break

            plane = self._build_plane(cloud, coefficients, remaining[inliers])
            planes.append(plane)
            logger.info(
                "%d. plane segmented! # of points: %d axis: %s",
                len(planes), plane.size, plane.orientation.value
            )
            publish_debug(self.debug_publisher, PLANE_TOPIC, plane.cloud)

            remaining = np.delete(remaining, inliers)

        return planes, cloud.select(remaining)

    def _fit_unconstrained(self, points: np.ndarray) -> Tuple[Optional[np.ndarray], np.ndarray]:
        if len(points) < 3:
            return None, np.array([], dtype=np.int64)

        pcd = o3d.geometry.PointCloud(o3d.utility.Vector3dVector(points))
        model, inliers = pcd.segment_plane(
            distance_threshold=self.config.sac_dist_thresh_multi,
            ransac_n=3,
            num_iterations=self.config.sac_max_iter
        )
        inliers = np.asarray(inliers, dtype=np.int64)
        if inliers.size == 0:
            return None, inliers
        return normalize_plane(model), inliers

    def _build_plane(
        self,
        cloud: PointCloud,
        coefficients: np.ndarray,
        inlier_indices: np.ndarray
    ) -> Plane:
        plane_cloud = cloud.select(inlier_indices)
        points = plane_cloud.points

        return Plane(
            coefficients=np.asarray(coefficients, dtype=np.float64),
            cloud=plane_cloud,
            hull=compute_convex_hull(points, coefficients),
            centroid=points.mean(axis=0),
            min_bound=points.min(axis=0),
            max_bound=points.max(axis=0),
            orientation=classify_orientation(coefficients),
            inlier_indices=np.asarray(inlier_indices, dtype=np.int64),
            source_cloud=cloud
        )
