"""
Scene Segmentation

Decomposes organized depth-sensor point clouds into supporting planes,
tabletop regions and the objects resting on them, each with bounding
corners, centroid and pose.
"""

from .errors import (
    SceneSegmentationError,
    TransformUnavailable,
    EmptyResult,
    NoPlaneFound,
    NoObjectsFound,
    InvalidPoint,
    ConfigurationError,
)
from .config import PipelineConfig, GeneralConfig, SegmentationConfig, FilterConfig, load_config
from .cloud import PointCloud, RawCloudBuffer
from .transforms import RigidTransform, TransformService, StaticTransformService, FrameNormalizer
from .filtering import Cropper, remove_radius_outliers, voxel_downsample
from .plane_segmentation import Axis, Plane, PlaneOrientation, PlaneSegmenter, classify_orientation
from .tabletop import TabletopExtractor, TabletopRegion
from .pose_estimation import Pose, PoseEstimator
from .clustering import DetectedObject, ObjectClusterer, debug_scan_clustering
from .region import PointStamped, RegionExtractor, RegionOfInterest
from .mesh import MeshReconstructor
from .debug import DebugPublisher
from .pipeline import ScenePipeline

__version__ = "1.0.0"

__all__ = [
    "SceneSegmentationError",
    "TransformUnavailable",
    "EmptyResult",
    "NoPlaneFound",
    "NoObjectsFound",
    "InvalidPoint",
    "ConfigurationError",
    "PipelineConfig",
    "GeneralConfig",
    "SegmentationConfig",
    "FilterConfig",
    "load_config",
    "PointCloud",
    "RawCloudBuffer",
    "RigidTransform",
    "TransformService",
    "StaticTransformService",
    "FrameNormalizer",
    "Cropper",
    "remove_radius_outliers",
    "voxel_downsample",
    "Axis",
    "Plane",
    "PlaneOrientation",
    "PlaneSegmenter",
    "classify_orientation",
    "TabletopExtractor",
    "TabletopRegion",
    "Pose",
    "PoseEstimator",
    "DetectedObject",
    "ObjectClusterer",
    "debug_scan_clustering",
    "PointStamped",
    "RegionExtractor",
    "RegionOfInterest",
    "MeshReconstructor",
    "DebugPublisher",
    "ScenePipeline",
]
