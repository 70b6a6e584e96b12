"""
Pose Estimation Module

This module provides 6D pose estimation (position + orientation) for object
clusters using Principal Component Analysis (PCA), together with per-point
surface normals and axis-aligned bounding corners.
"""

import numpy as np
import open3d as o3d
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple
from scipy.spatial.transform import Rotation


@dataclass(frozen=True, eq=False)
class Pose:
    """
    Object pose in the fixed frame.

    Attributes:
        position: [x, y, z]
        orientation: Unit quaternion [x, y, z, w]
    """

    position: np.ndarray
    orientation: np.ndarray

    def rotation_matrix(self) -> np.ndarray:
        return Rotation.from_quat(self.orientation).as_matrix()


class PoseEstimator:
    """
    Estimates object poses from point cloud clusters.

    Uses PCA-based orientation estimation, k-nearest-neighbor normal
    estimation and bounding box analysis.
    """

    @staticmethod
    def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
        """
        Convert 3x3 rotation matrix to a normalized quaternion.

        Args:
            R: 3x3 rotation matrix

        Returns:
            Array of [x, y, z, w]
        """
        quat = Rotation.from_matrix(R).as_quat()
        return quat / np.linalg.norm(quat)

    @staticmethod
    def compute_bounding_box(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute axis-aligned bounding corners.

        Args:
            points: Nx3 array of 3D points

        Returns:
            Tuple of (min corner, max corner)
        """
        return points.min(axis=0), points.max(axis=0)

    @staticmethod
    def estimate_orientation_pca(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Estimate object orientation using Principal Component Analysis.

        Args:
            points: Nx3 array of 3D points

        Returns:
            Tuple of (rotation matrix with eigenvectors as columns,
            eigenvalues in descending order)
        """
        # Center points
        centroid = points.mean(axis=0)
        points_centered = points - centroid

        # Compute covariance and eigenvectors
        cov = points_centered.T @ points_centered / max(len(points), 1)
        eigvals, eigvecs = np.linalg.eigh(cov)

        # Sort by eigenvalue (largest first)
        order = np.argsort(eigvals)[::-1]
        eigvals = eigvals[order]
        R = eigvecs[:, order]

        # Ensure right-handed coordinate system
        R[:, 2] = np.cross(R[:, 0], R[:, 1])

        return R, eigvals

    @staticmethod
    def estimate_normals(
        points: np.ndarray,
        k: int,
        viewpoint: Sequence[float] = (0.0, 0.0, 0.0)
    ) -> np.ndarray:
        """
        Estimate per-point surface normals by fitting planes to k neighbors.

        Normals are flipped to face `viewpoint`.

        Args:
            points: Nx3 array of 3D points
            k: Number of nearest neighbors
            viewpoint: Point the normals should face

        Returns:
            Nx3 array of unit normals
        """
        pcd = o3d.geometry.PointCloud(o3d.utility.Vector3dVector(points))
        pcd.estimate_normals(search_param=o3d.geometry.KDTreeSearchParamKNN(knn=k))
        pcd.orient_normals_towards_camera_location(np.asarray(viewpoint, dtype=np.float64))
        return np.asarray(pcd.normals).copy()

    @staticmethod
    def estimate_pose(points: np.ndarray, k_search: int) -> Dict:
        """
        Estimate pose and geometric properties for an object cluster.

        Args:
            points: Nx3 array of object points
            k_search: Neighbor count for normal estimation

        Returns:
            Dictionary containing pose estimation results
        """
        # Compute centroid
        centroid = points.mean(axis=0)

        # Estimate orientation
        R, eigvals = PoseEstimator.estimate_orientation_pca(points)
        quat = PoseEstimator.rotation_matrix_to_quaternion(R)

        # Compute bounding box
        min_bound, max_bound = PoseEstimator.compute_bounding_box(points)

        normals = PoseEstimator.estimate_normals(points, k_search)

        return {
            'centroid': centroid,
            'pose': Pose(position=centroid.copy(), orientation=quat),
            'min_bound': min_bound,
            'max_bound': max_bound,
            'normals': normals,
            'eigenvalues': eigvals,
            'rotation_matrix': R
        }
