"""
Point Cloud Filtering Module

Axis-aligned cropping, optional voxel downsampling and radius-based outlier
removal. The cropped cloud is the working cloud for every later stage.
"""

import logging
from typing import Tuple

import numpy as np

from .cloud import PointCloud
from .config import FilterConfig
from .errors import EmptyResult

logger = logging.getLogger(__name__)

AXIS_NAMES = ("x", "y", "z")


def passthrough(cloud: PointCloud, axis: int, limits: Tuple[float, float]) -> np.ndarray:
    """
    Mask of points whose coordinate on `axis` lies in the inclusive range.

    Args:
        cloud: Input cloud
        axis: 0, 1 or 2 for x, y, z
        limits: (min, max)

    Returns:
        Boolean mask (NaN coordinates never pass)
    """
    values = cloud.points[:, axis]
    return (values >= limits[0]) & (values <= limits[1])


def voxel_downsample(cloud: PointCloud, leaf_size: float) -> PointCloud:
    """
    Downsample using a voxel grid filter.

    Args:
        cloud: Input cloud
        leaf_size: Voxel edge length

    Returns:
        Unorganized cloud with one point per occupied voxel
    """
    pcd = cloud.to_open3d().voxel_down_sample(voxel_size=leaf_size)
    return PointCloud.from_open3d(pcd, frame_id=cloud.frame_id, stamp=cloud.stamp)


def remove_radius_outliers(
    cloud: PointCloud,
    radius: float,
    min_neighbors: int
) -> Tuple[PointCloud, np.ndarray]:
    """
    Remove points with too few neighbors within a radius.

    A point survives if at least `min_neighbors` other points lie within
    `radius` of it.

    Args:
        cloud: Input cloud (non-finite points are ignored)
        radius: Search radius
        min_neighbors: Minimum neighbor count, excluding the point itself

    Returns:
        Tuple of (filtered cloud, indices of survivors in `cloud`)
    """
    finite_idx = np.flatnonzero(cloud.finite_mask())
    if finite_idx.size == 0:
        return cloud.select(finite_idx), finite_idx

    # Open3D counts the query point as its own neighbor
    _, kept = cloud.to_open3d().remove_radius_outlier(
        nb_points=int(min_neighbors) + 1,
        radius=radius
    )
    survivors = finite_idx[np.asarray(kept, dtype=np.int64)]
    return cloud.select(survivors), survivors


class Cropper:
    """
    Reduces a normalized cloud to the configured working volume.
    """

    def __init__(self, config: FilterConfig):
        self.config = config

    def crop(self, cloud: PointCloud) -> PointCloud:
        """
        Apply the x, y and z pass-through filters in sequence.

        Args:
            cloud: Cloud in the fixed frame

        Returns:
            Unorganized working cloud

        Raises:
            EmptyResult: If no point survives
        """
        mask = cloud.finite_mask()
        for axis, limits in enumerate(self.config.axis_limits):
            mask &= passthrough(cloud, axis, limits)
            logger.debug(
                "Pass-through %s in [%.3f, %.3f]: %d points left",
                AXIS_NAMES[axis], limits[0], limits[1], int(mask.sum())
            )

        if not mask.any():
            raise EmptyResult("point cloud is empty after filtering", stage="crop")

        cropped = cloud.select(mask)

        if self.config.voxel_enabled:
            cropped = voxel_downsample(cropped, self.config.leaf_size)
            logger.debug("Voxel grid (leaf %.3f): %d points", self.config.leaf_size, len(cropped))

        logger.info("Point cloud filtered: %d of %d points kept", len(cropped), len(cloud))
        return cropped

