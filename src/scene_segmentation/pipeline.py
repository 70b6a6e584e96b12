"""
Scene Pipeline Module

This module orchestrates the complete scene decomposition pipeline. It
integrates frame normalization, cropping, plane segmentation, tabletop
extraction, object clustering and region lookups behind one facade fed by
the transport's point cloud callback.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

import open3d as o3d

from .cloud import PointCloud, RawCloudBuffer
from .clustering import DetectedObject, ObjectClusterer
from .config import PipelineConfig
from .debug import DebugPublisher, DebugSink
from .errors import SceneSegmentationError
from .filtering import Cropper
from .mesh import MeshReconstructor
from .plane_segmentation import Axis, Plane, PlaneSegmenter
from .region import PointStamped, RegionExtractor, RegionOfInterest
from .tabletop import TabletopExtractor, TabletopRegion
from .transforms import TRANSFORM_TIMEOUT, FrameNormalizer, TransformService

logger = logging.getLogger(__name__)


class ScenePipeline:
    """
    Complete scene decomposition system.

    Each public operation takes one snapshot of the latest sensor cloud and
    runs every stage on that snapshot, so a concurrent delivery never
    changes the data mid-invocation.
    """

    def __init__(
        self,
        config: PipelineConfig,
        transform_service: TransformService,
        debug: bool = False,
        debug_sink: Optional[DebugSink] = None,
        transform_timeout: float = TRANSFORM_TIMEOUT
    ):
        """
        Initialize the pipeline.

        Args:
            config: Pipeline configuration
            transform_service: Source of frame transforms
            debug: Publish intermediate clouds to `debug_sink`
            debug_sink: Callable receiving (topic, cloud) in debug mode
            transform_timeout: Seconds to wait for a transform
        """
        self.config = config
        self.buffer = RawCloudBuffer()

        self.debug_publisher = None
        if debug:
            if debug_sink is None:
                raise ValueError("debug mode needs a debug_sink")
            self.debug_publisher = DebugPublisher(debug_sink)

        self.normalizer = FrameNormalizer(
            transform_service, config.general.fixed_frame, transform_timeout
        )
        self.cropper = Cropper(config.filters)
        self.plane_segmenter = PlaneSegmenter(config.segmentation, self.debug_publisher)
        self.tabletop_extractor = TabletopExtractor(config.filters, self.debug_publisher)
        self.clusterer = ObjectClusterer(config.segmentation, self.tabletop_extractor)
        self.region_extractor = RegionExtractor(config.filters, self.debug_publisher)
        self.mesh_reconstructor = MeshReconstructor()

    def __enter__(self) -> "ScenePipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self.debug_publisher is not None:
            self.debug_publisher.close()

    def point_cloud_callback(self, cloud: PointCloud) -> None:
        """Transport delivery callback; safe to call from any thread."""
        self.buffer.update(cloud)

    def transform_point_cloud(self, snapshot: Optional[PointCloud] = None) -> PointCloud:
        """
        Snapshot the raw cloud (unless given) and move it to the fixed frame.
        """
        if snapshot is None:
            snapshot = self.buffer.snapshot()
        return self._run("transform", self.normalizer.normalize, snapshot)

    def filter_point_cloud(self, cloud: PointCloud) -> PointCloud:
        return self._run("filter", self.cropper.crop, cloud)

    def working_cloud(self) -> PointCloud:
        """Normalized and cropped cloud from a fresh snapshot."""
        return self.filter_point_cloud(self.transform_point_cloud())

    def segment_single_plane(self, axis: Union[Axis, str] = Axis.Z) -> Plane:
        """
        Segment the plane perpendicular to `axis` in the current scene.
        """
        cloud = self.working_cloud()
        return self._run("single_plane", self.plane_segmenter.segment_single, cloud, axis)

    def segment_multiple_planes(self) -> List[Plane]:
        planes, _ = self.segment_multiple_planes_with_remainder()
        return planes

    def segment_multiple_planes_with_remainder(self) -> Tuple[List[Plane], PointCloud]:
        """
        Segment every large plane in the current scene.

        Returns:
            Tuple of (planes in discovery order, points not on any plane)
        """
        cloud = self.working_cloud()
        return self._run(
            "multi_plane", self.plane_segmenter.segment_multiple_with_remainder, cloud
        )

    def extract_tabletop(self, plane: Plane, cloud: Optional[PointCloud] = None) -> TabletopRegion:
        """
        Extract the region above `plane`.

        Args:
            plane: Reference plane
            cloud: Working cloud; defaults to the cloud `plane` was segmented from
        """
        cloud = self._plane_cloud(plane, cloud)
        return self._run("tabletop", self.tabletop_extractor.extract, cloud, plane)

    def cluster_objects(self, plane: Plane, cloud: Optional[PointCloud] = None) -> List[DetectedObject]:
        """
        Detect the objects resting on `plane`.

        Args:
            plane: Supporting plane
            cloud: Working cloud; defaults to the cloud `plane` was segmented from
        """
        cloud = self._plane_cloud(plane, cloud)
        return self._run("clustering", self.clusterer.cluster, cloud, plane)

    def detect_tabletop_objects(
        self,
        axis: Union[Axis, str] = Axis.Z
    ) -> Tuple[Plane, List[DetectedObject]]:
        """
        Segment the supporting plane and the objects on it from one snapshot.

        Returns:
            Tuple of (plane, objects)
        """
        cloud = self.working_cloud()
        plane = self._run("single_plane", self.plane_segmenter.segment_single, cloud, axis)
        objects = self._run("clustering", self.clusterer.cluster, cloud, plane)
        return plane, objects

    def get_3d_point(self, col: int, row: int) -> PointStamped:
        cloud = self.transform_point_cloud()
        return self._run("deprojection", self.region_extractor.get_3d_point, cloud, col, row)

    def get_object_from_bbox(self, bbox: Sequence[int]) -> RegionOfInterest:
        """
        Recover the 3D extent of a pixel bounding box (col_min, row_min, col_max, row_max).
        """
        cloud = self.transform_point_cloud()
        return self._run("bbox", self.region_extractor.get_object_from_bbox, cloud, bbox)

    def triangulate_point_cloud(self, cloud: PointCloud) -> o3d.geometry.TriangleMesh:
        return self._run("mesh", self.mesh_reconstructor.reconstruct, cloud)

    def _plane_cloud(self, plane: Plane, cloud: Optional[PointCloud]) -> PointCloud:
        # The hull only describes the snapshot it was computed from
        if cloud is not None:
            return cloud
        if plane.source_cloud is None:
            raise ValueError("plane carries no source cloud; pass the working cloud explicitly")
        return plane.source_cloud

    def _run(self, stage: str, func, *args):
        try:
            return func(*args)
        except SceneSegmentationError as exc:
            logger.warning("Stage '%s' failed: %s", stage, exc)
            raise
