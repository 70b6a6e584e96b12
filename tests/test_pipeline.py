import dataclasses
import threading

import numpy as np
import pytest

from scene_segmentation import (
    EmptyResult,
    InvalidPoint,
    PlaneOrientation,
    PointCloud,
    RigidTransform,
    ScenePipeline,
    StaticTransformService,
    TransformUnavailable,
)
from scene_segmentation.debug import PLANE_TOPIC, TABLETOP_TOPIC

CAMERA_HEIGHT = np.array([0.0, 0.0, 1.0])


@pytest.fixture
def transform_service():
    service = StaticTransformService()
    service.set_transform("base_link", "camera", RigidTransform(translation=CAMERA_HEIGHT))
    return service


@pytest.fixture
def camera_scene(tabletop_scene):
    """The tabletop scene expressed in the camera frame."""
    return PointCloud(points=tabletop_scene.points - CAMERA_HEIGHT, frame_id="camera", stamp=1.0)


def test_detect_tabletop_objects(pipeline_config, transform_service, camera_scene):
    with ScenePipeline(pipeline_config, transform_service) as pipeline:
        pipeline.point_cloud_callback(camera_scene)

        plane, objects = pipeline.detect_tabletop_objects()

    assert plane.orientation is PlaneOrientation.Z_AXIS
    assert plane.frame_id == "base_link"
    assert plane.coefficients[3] == pytest.approx(0.0, abs=1e-6)
    assert len(objects) == 2
    assert all(obj.cloud.frame_id == "base_link" for obj in objects)


def test_multi_plane_through_pipeline(pipeline_config, transform_service, camera_scene):
    pipeline = ScenePipeline(pipeline_config, transform_service)
    pipeline.point_cloud_callback(camera_scene)

    planes, remainder = pipeline.segment_multiple_planes_with_remainder()

    assert planes[0].size == 41 * 41
    assert len(remainder) + sum(p.size for p in planes) == len(camera_scene)


def test_get_3d_point_in_fixed_frame(pipeline_config, transform_service):
    grid = np.zeros((4, 6, 3))
    grid[..., 0] = np.arange(6) * 0.01
    cloud = PointCloud.organized(grid, frame_id="camera", stamp=5.0)
    pipeline = ScenePipeline(pipeline_config, transform_service)
    pipeline.point_cloud_callback(cloud)

    stamped = pipeline.get_3d_point(3, 2)

    assert np.allclose(stamped.point, [0.03, 0.0, 1.0])
    assert stamped.frame_id == "base_link"
    assert stamped.stamp == 5.0

    with pytest.raises(InvalidPoint):
        pipeline.get_3d_point(6, 0)


def test_debug_sink_receives_intermediate_clouds(pipeline_config, transform_service, camera_scene):
    received = []
    lock = threading.Lock()

    def sink(topic, cloud):
        with lock:
            received.append((topic, len(cloud)))

    with ScenePipeline(pipeline_config, transform_service, debug=True, debug_sink=sink) as pipeline:
        pipeline.point_cloud_callback(camera_scene)
        pipeline.detect_tabletop_objects()
        pipeline.debug_publisher.flush(timeout=2.0)

    assert (PLANE_TOPIC, 41 * 41) in received
    assert (TABLETOP_TOPIC, 250) in received


def test_debug_mode_needs_sink(pipeline_config, transform_service):
    with pytest.raises(ValueError):
        ScenePipeline(pipeline_config, transform_service, debug=True)


def test_missing_transform(pipeline_config, camera_scene):
    pipeline = ScenePipeline(pipeline_config, StaticTransformService(), transform_timeout=0.05)
    pipeline.point_cloud_callback(camera_scene)

    with pytest.raises(TransformUnavailable):
        pipeline.segment_single_plane()


def test_no_cloud_yet(pipeline_config, transform_service):
    pipeline = ScenePipeline(pipeline_config, transform_service)

    with pytest.raises(EmptyResult) as info:
        pipeline.segment_multiple_planes()

    assert info.value.stage == "buffer"


def test_triangulate_point_cloud(pipeline_config, transform_service):
    xs = np.linspace(0.0, 0.2, 21)
    gx, gy = np.meshgrid(xs, xs)
    sheet = PointCloud(points=np.column_stack((gx.ravel(), gy.ravel(), np.zeros(gx.size))))

    mesh = ScenePipeline(pipeline_config, transform_service).triangulate_point_cloud(sheet)

    assert len(mesh.vertices) > 0


def test_plane_is_paired_with_its_own_snapshot(pipeline_config, transform_service, camera_scene):
    pipeline = ScenePipeline(pipeline_config, transform_service)
    pipeline.point_cloud_callback(camera_scene)
    plane = pipeline.segment_single_plane()

    moved = PointCloud(points=camera_scene.points + [2.0, 0.0, 0.0], frame_id="camera", stamp=2.0)
    pipeline.point_cloud_callback(moved)

    region = pipeline.extract_tabletop(plane)
    objects = pipeline.cluster_objects(plane)

    assert len(region) == 250
    assert len(objects) == 2
    assert region.cloud.points[:, 0].max() < 1.0


def test_plane_without_source_needs_explicit_cloud(pipeline_config, transform_service, camera_scene):
    pipeline = ScenePipeline(pipeline_config, transform_service)
    pipeline.point_cloud_callback(camera_scene)
    plane = pipeline.segment_single_plane()
    detached = dataclasses.replace(plane, source_cloud=None)

    with pytest.raises(ValueError):
        pipeline.cluster_objects(detached)

    assert len(pipeline.cluster_objects(detached, pipeline.working_cloud())) == 2
