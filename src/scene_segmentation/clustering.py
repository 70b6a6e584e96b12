"""
Object Clustering Module

This module partitions the tabletop region into spatially connected
clusters and turns each accepted cluster into an object with a pose.
"""

import logging
import numpy as np
import open3d as o3d
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .cloud import PointCloud
from .config import SegmentationConfig
from .errors import NoObjectsFound
from .pose_estimation import Pose, PoseEstimator
from .tabletop import TabletopExtractor, TabletopRegion
from .plane_segmentation import Plane

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class DetectedObject:
    """
    A connected cluster resting on the reference plane.

    Attributes:
        cloud: Cluster points
        normals: Per-point unit normals (Nx3)
        centroid: Mean of the cluster points
        pose: Position (centroid) and PCA orientation
        min_bound: Per-axis minimum
        max_bound: Per-axis maximum
        indices: Indices of the cluster points in the tabletop cloud
        eigenvalues: PCA eigenvalues, largest first
    """

    cloud: PointCloud
    normals: np.ndarray
    centroid: np.ndarray
    pose: Pose
    min_bound: np.ndarray
    max_bound: np.ndarray
    indices: np.ndarray
    eigenvalues: np.ndarray

    @property
    def size(self) -> int:
        return len(self.cloud)


def euclidean_clusters(
    points: np.ndarray,
    tolerance: float,
    min_cluster_size: int = 1,
    max_cluster_size: Optional[int] = None
) -> List[np.ndarray]:
    """
    Group points into connected components under a distance threshold.

    DBSCAN with a single required point reduces to plain distance
    connectivity: every point is a core point.

    Args:
        points: Nx3 array
        tolerance: Maximum gap between neighboring points of one cluster
        min_cluster_size: Smallest accepted cluster
        max_cluster_size: Largest accepted cluster (None for unbounded)

    Returns:
        List of index arrays, in the order the clustering emits them
    """
    if len(points) == 0:
        return []

    pcd = o3d.geometry.PointCloud(o3d.utility.Vector3dVector(points))
    labels = np.array(
        pcd.cluster_dbscan(
            eps=tolerance,
            min_points=1,
            print_progress=False
        )
    )

    if labels.size == 0 or labels.max() < 0:
        return []

    clusters = []
    for label in range(labels.max() + 1):
        idx = np.flatnonzero(labels == label)
        if idx.size < min_cluster_size:
            continue
        if max_cluster_size is not None and idx.size > max_cluster_size:
            continue
        clusters.append(idx)

    return clusters


class ObjectClusterer:
    """
    Extracts individual objects from the region above a plane.
    """

    def __init__(
        self,
        config: SegmentationConfig,
        tabletop_extractor: TabletopExtractor
    ):
        """
        Args:
            config: Clustering and normal estimation parameters
            tabletop_extractor: Extractor for the region above the plane
        """
        self.config = config
        self.tabletop_extractor = tabletop_extractor
        self.pose_estimator = PoseEstimator()

    def cluster(self, cloud: PointCloud, plane: Plane) -> List[DetectedObject]:
        """
        Extract the tabletop above `plane` and split it into objects.

        Args:
            cloud: Working (cropped) cloud
            plane: Supporting plane

        Returns:
            Objects in cluster emission order

        Raises:
            EmptyResult: If the tabletop region is empty
            NoObjectsFound: If no cluster falls within the size bounds
        """
        region = self.tabletop_extractor.extract(cloud, plane)
        return self.cluster_region(region)

    def cluster_region(self, region: TabletopRegion) -> List[DetectedObject]:
        """
        Split an already extracted tabletop region into objects.
        """
        tabletop = region.cloud
        clusters = euclidean_clusters(
            tabletop.points,
            self.config.ec_cluster_tol,
            self.config.ec_min_cluster_size,
            self.config.ec_max_cluster_size
        )

        if not clusters:
            raise NoObjectsFound("no clusters within size bounds", stage="clustering")
        logger.info("Number of objects: %d", len(clusters))

        objects = []
        for k, idx in enumerate(clusters, start=1):
            cluster_cloud = tabletop.select(idx)
            pose_data = self.pose_estimator.estimate_pose(
                cluster_cloud.points, self.config.ne_k_search
            )

            objects.append(DetectedObject(
                cloud=cluster_cloud,
                normals=pose_data['normals'],
                centroid=pose_data['centroid'],
                pose=pose_data['pose'],
                min_bound=pose_data['min_bound'],
                max_bound=pose_data['max_bound'],
                indices=idx,
                eigenvalues=pose_data['eigenvalues']
            ))
            logger.debug("# of points in object %d : %d", k, idx.size)

        return objects


def debug_scan_clustering(
    cloud: PointCloud,
    tolerances: Sequence[float] = (0.01, 0.015, 0.02, 0.03, 0.05),
    min_sizes: Sequence[int] = (20, 50, 100)
) -> List[dict]:
    """
    Helper for tuning the clustering tolerance and minimum size.

    Args:
        cloud: Tabletop cloud
        tolerances: Cluster tolerances to test
        min_sizes: Minimum cluster sizes to test

    Returns:
        One row per combination with 'tolerance', 'min_size' and 'clusters'
    """
    logger.info("Clustering parameter scan:")
    points = cloud.points[cloud.finite_mask()]

    rows = []
    for tol in tolerances:
        for min_size in min_sizes:
            n_clusters = len(euclidean_clusters(points, tol, min_size))
            logger.info("  tol=%.3f, min_size=%3d -> clusters=%d", tol, min_size, n_clusters)
            rows.append({'tolerance': tol, 'min_size': min_size, 'clusters': n_clusters})

    return rows
