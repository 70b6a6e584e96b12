"""
Shared fixtures: synthetic clouds and small-scale configurations.
"""

import numpy as np
import pytest

from scene_segmentation.cloud import PointCloud
from scene_segmentation.config import FilterConfig, PipelineConfig, SegmentationConfig


def grid_patch(xs, ys, z=0.0):
    """Horizontal grid of points at height z."""
    gx, gy = np.meshgrid(xs, ys, indexing="ij")
    return np.column_stack((gx.ravel(), gy.ravel(), np.full(gx.size, z)))


def solid_block(origin, counts, spacing=0.01):
    """Solid grid of points starting at `origin`."""
    axes = [origin[i] + spacing * np.arange(counts[i]) for i in range(3)]
    gx, gy, gz = np.meshgrid(*axes, indexing="ij")
    return np.column_stack((gx.ravel(), gy.ravel(), gz.ravel()))


@pytest.fixture
def segmentation_config():
    return SegmentationConfig(
        sac_eps_angle=5.0,
        sac_dist_thresh_single=0.005,
        sac_dist_thresh_multi=0.01,
        sac_min_plane_size=40,
        sac_max_iter=1000,
        ne_k_search=10,
        ec_cluster_tol=0.02,
        ec_min_cluster_size=50,
        ec_max_cluster_size=1000,
        random_seed=42
    )


@pytest.fixture
def filter_config():
    return FilterConfig(
        leaf_size=0.01,
        voxel_enabled=False,
        pass_limits=(-5.0, 5.0, -5.0, 5.0, -5.0, 5.0),
        prism_limits=(0.01, 0.5),
        outlier_min_neighbors=5,
        outlier_radius_search=0.02,
        prism_viewpoint=(0.0, 0.0, 2.0)
    )


@pytest.fixture
def pipeline_config(segmentation_config, filter_config):
    return PipelineConfig(segmentation=segmentation_config, filters=filter_config)


@pytest.fixture
def table_points():
    """Table top at z=0 covering [0, 1] x [0, 1] with 2.5 cm spacing."""
    return grid_patch(np.linspace(0.0, 1.0, 41), np.linspace(0.0, 1.0, 41))


@pytest.fixture
def two_blocks():
    """Two 5x5x5 blocks (125 points each) resting 2 cm above the table, 30 cm apart."""
    first = solid_block((0.2, 0.2, 0.02), (5, 5, 5))
    second = solid_block((0.6, 0.6, 0.02), (5, 5, 5))
    return first, second


@pytest.fixture
def tabletop_scene(table_points, two_blocks):
    points = np.vstack([table_points, *two_blocks])
    return PointCloud(points=points, frame_id="base_link")
