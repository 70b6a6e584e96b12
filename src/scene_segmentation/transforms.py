"""
Frame Normalization Module

Rigid transforms, the Transform Service interface, and the Frame Normalizer
that moves a sensor cloud into the fixed reference frame.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .cloud import PointCloud
from .errors import TransformUnavailable

logger = logging.getLogger(__name__)

# Seconds to wait for a transform to become available
TRANSFORM_TIMEOUT = 2.0


@dataclass(frozen=True, eq=False)
class RigidTransform:
    """
    Rotation followed by translation.

    Attributes:
        translation: [x, y, z]
        rotation: Unit quaternion [x, y, z, w]
    """

    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self):
        translation = np.asarray(self.translation, dtype=np.float64).reshape(3)
        rotation = np.asarray(self.rotation, dtype=np.float64).reshape(4)
        norm = np.linalg.norm(rotation)
        if norm < 1e-12:
            raise ValueError("rotation quaternion must be non-zero")
        object.__setattr__(self, "translation", translation)
        object.__setattr__(self, "rotation", rotation / norm)

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls()

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "RigidTransform":
        matrix = np.asarray(matrix, dtype=np.float64)
        return cls(
            translation=matrix[:3, 3],
            rotation=Rotation.from_matrix(matrix[:3, :3]).as_quat()
        )

    def rotation_matrix(self) -> np.ndarray:
        return Rotation.from_quat(self.rotation).as_matrix()

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix."""
        m = np.eye(4)
        m[:3, :3] = self.rotation_matrix()
        m[:3, 3] = self.translation
        return m

    def apply(self, points: np.ndarray) -> np.ndarray:
        """
        Transform an Nx3 array of points. NaN rows stay NaN.

        Args:
            points: Nx3 array

        Returns:
            Transformed Nx3 array
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return points @ self.rotation_matrix().T + self.translation

    def inverse(self) -> "RigidTransform":
        R_inv = self.rotation_matrix().T
        return RigidTransform(
            translation=-R_inv @ self.translation,
            rotation=Rotation.from_matrix(R_inv).as_quat()
        )

    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """Transform equivalent to applying `other` first, then `self`."""
        return RigidTransform.from_matrix(self.matrix() @ other.matrix())


class TransformService(ABC):
    """Source of rigid transforms between named frames."""

    @abstractmethod
    def lookup(
        self,
        source_frame: str,
        target_frame: str,
        stamp: float,
        timeout: float
    ) -> RigidTransform:
        """
        Find the transform mapping points in `source_frame` into `target_frame`.

        Args:
            source_frame: Frame the points are expressed in
            target_frame: Frame to express them in
            stamp: Time of interest (0 means latest)
            timeout: Seconds to wait for availability

        Returns:
            RigidTransform from source to target

        Raises:
            TransformUnavailable: If not resolved within the timeout
        """


class StaticTransformService(TransformService):
    """
    In-process registry of fixed transforms.

    Transforms can be published from any thread; lookups block on a
    condition variable until the transform appears or the timeout expires.
    Inverse and identity lookups are resolved automatically.
    """

    def __init__(self):
        self._condition = threading.Condition()
        self._transforms: Dict[Tuple[str, str], RigidTransform] = {}

    def set_transform(
        self,
        target_frame: str,
        source_frame: str,
        transform: RigidTransform
    ) -> None:
        """
        Register the transform mapping `source_frame` points into `target_frame`.
        """
        with self._condition:
            self._transforms[(source_frame, target_frame)] = transform
            self._condition.notify_all()

    def lookup(
        self,
        source_frame: str,
        target_frame: str,
        stamp: float = 0.0,
        timeout: float = TRANSFORM_TIMEOUT
    ) -> RigidTransform:
        deadline = time.monotonic() + max(timeout, 0.0)

        with self._condition:
            while True:
                transform = self._resolve(source_frame, target_frame)
                if transform is not None:
                    return transform

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TransformUnavailable(
                        f"no transform from '{source_frame}' to '{target_frame}' "
                        f"after {timeout:.1f}s",
                        stage="transform"
                    )
                self._condition.wait(remaining)

    def _resolve(self, source_frame: str, target_frame: str) -> Optional[RigidTransform]:
        if source_frame == target_frame:
            return RigidTransform.identity()
        direct = self._transforms.get((source_frame, target_frame))
        if direct is not None:
            return direct
        reverse = self._transforms.get((target_frame, source_frame))
        if reverse is not None:
            return reverse.inverse()
        return None


class FrameNormalizer:
    """
    Moves clouds into the fixed reference frame.
    """

    def __init__(
        self,
        transform_service: TransformService,
        fixed_frame: str,
        timeout: float = TRANSFORM_TIMEOUT
    ):
        """
        Args:
            transform_service: Source of frame transforms
            fixed_frame: Frame every output cloud is expressed in
            timeout: Seconds to wait for a transform
        """
        self.transform_service = transform_service
        self.fixed_frame = fixed_frame
        self.timeout = timeout

    def normalize(self, cloud: PointCloud) -> PointCloud:
        """
        Transform every point of `cloud` into the fixed frame.

        Organization is preserved, so pixel lookups still work on the result.

        Args:
            cloud: Snapshot of the raw sensor cloud

        Returns:
            New cloud tagged with the fixed frame

        Raises:
            TransformUnavailable: If the lookup fails or times out
        """
        try:
            transform = self.transform_service.lookup(
                cloud.frame_id, self.fixed_frame, cloud.stamp, self.timeout
            )
        except TransformUnavailable:
            raise
        except (LookupError, TimeoutError) as exc:
            raise TransformUnavailable(str(exc), stage="transform") from exc

        transformed = cloud.with_points(transform.apply(cloud.points), frame_id=self.fixed_frame)
        logger.debug(
            "Transformed %d points from '%s' to '%s'",
            len(cloud), cloud.frame_id, self.fixed_frame
        )
        return transformed
