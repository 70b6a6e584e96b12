import numpy as np
import pytest

from scene_segmentation.cloud import PointCloud
from scene_segmentation.config import FilterConfig
from scene_segmentation.errors import EmptyResult
from scene_segmentation.plane_segmentation import Axis, PlaneSegmenter
from scene_segmentation.tabletop import TabletopExtractor


@pytest.fixture
def scene_with_strays(tabletop_scene):
    strays = np.array([
        [1.5, 0.5, 0.05],    # beside the table
        [0.5, 0.5, 0.8],     # above the prism
        [0.5, 0.5, -0.05],   # under the table
    ])
    return PointCloud(points=np.vstack([tabletop_scene.points, strays]), frame_id="base_link")


def test_extracts_points_above_hull(scene_with_strays, two_blocks, segmentation_config, filter_config):
    plane = PlaneSegmenter(segmentation_config).segment_single(scene_with_strays, Axis.Z)

    region = TabletopExtractor(filter_config).extract(scene_with_strays, plane)

    expected = np.vstack(two_blocks)
    assert len(region) == len(expected)
    assert np.allclose(np.sort(region.cloud.points, axis=0), np.sort(expected, axis=0))
    assert np.allclose(scene_with_strays.points[region.indices], region.cloud.points)
    assert region.cloud.frame_id == "base_link"


def test_height_sign_follows_viewpoint(scene_with_strays, segmentation_config, filter_config):
    plane = PlaneSegmenter(segmentation_config).segment_single(scene_with_strays, Axis.Z)
    from_below = FilterConfig(
        pass_limits=filter_config.pass_limits,
        prism_limits=(0.01, 0.5),
        prism_viewpoint=(0.0, 0.0, -2.0)
    )

    region = TabletopExtractor(from_below).extract(scene_with_strays, plane)

    assert len(region) == 1
    assert np.allclose(region.cloud.points[0], [0.5, 0.5, -0.05])


def test_empty_prism_raises(table_points, segmentation_config, filter_config):
    cloud = PointCloud(points=table_points)
    plane = PlaneSegmenter(segmentation_config).segment_single(cloud, Axis.Z)

    with pytest.raises(EmptyResult):
        TabletopExtractor(filter_config).extract(cloud, plane)
