import threading

import numpy as np
import pytest

from scene_segmentation.cloud import PointCloud, RawCloudBuffer
from scene_segmentation.errors import EmptyResult


def make_organized(width=4, height=3):
    grid = np.zeros((height, width, 3))
    for row in range(height):
        for col in range(width):
            grid[row, col] = (col, row, 1.0)
    return PointCloud.organized(grid, frame_id="camera", stamp=1.5)


def test_organized_addressing():
    cloud = make_organized()

    assert cloud.is_organized
    assert (cloud.width, cloud.height) == (4, 3)
    assert np.allclose(cloud.at(2, 1), (2, 1, 1))


def test_at_outside_grid_raises():
    with pytest.raises(IndexError):
        make_organized().at(4, 0)


def test_unorganized_shape_is_normalized():
    cloud = PointCloud(points=np.zeros((5, 3)))

    assert not cloud.is_organized
    assert cloud.width == 5 and cloud.height == 1


def test_single_row_image_stays_organized():
    cloud = make_organized(width=6, height=1)

    assert cloud.is_organized
    assert (cloud.width, cloud.height) == (6, 1)
    assert np.allclose(cloud.at(5, 0), (5, 0, 1))
    assert cloud.with_points(cloud.points + 1.0).is_organized
    assert not cloud.select([0, 1]).is_organized


def test_organized_size_mismatch_rejected():
    with pytest.raises(ValueError):
        PointCloud(points=np.zeros((5, 3)), width=2, height=2)


def test_select_keeps_frame_and_colors():
    points = np.arange(12, dtype=float).reshape(4, 3)
    colors = np.full((4, 3), 0.5)
    cloud = PointCloud(points=points, frame_id="map", stamp=2.0, colors=colors)

    subset = cloud.select([0, 2])
    rest = cloud.select([0, 2], invert=True)

    assert np.allclose(subset.points, points[[0, 2]])
    assert subset.colors.shape == (2, 3)
    assert subset.frame_id == "map" and subset.stamp == 2.0
    assert np.allclose(rest.points, points[[1, 3]])


def test_to_open3d_drops_non_finite():
    points = np.array([[0, 0, 0], [np.nan, np.nan, np.nan], [1, 1, 1]], dtype=float)
    pcd = PointCloud(points=points).to_open3d()

    assert len(pcd.points) == 2


def test_buffer_snapshot_before_delivery_raises():
    with pytest.raises(EmptyResult):
        RawCloudBuffer().snapshot()


def test_buffer_returns_latest_cloud():
    buffer = RawCloudBuffer()
    clouds = [PointCloud(points=np.full((1, 3), float(i))) for i in range(20)]

    threads = [threading.Thread(target=buffer.update, args=(c,)) for c in clouds[:-1]]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    buffer.update(clouds[-1])

    assert buffer.has_data
    assert buffer.snapshot() is clouds[-1]
