"""
Mesh Reconstruction Module

Turns a point cloud into a triangle mesh: voxel downsampling, k-NN normal
estimation, then radius-bounded greedy triangulation (ball pivoting) whose
triangles are filtered by corner angle and surface angle limits.
"""

import logging
from typing import Union

import numpy as np
import open3d as o3d

from .cloud import PointCloud
from .errors import EmptyResult

logger = logging.getLogger(__name__)

LEAF_SIZE = 0.005
NORMAL_K_SEARCH = 20
SEARCH_RADIUS = 0.2
MU = 2.5
MAX_NEAREST_NEIGHBORS = 100
MAX_SURFACE_ANGLE = np.pi / 4     # 45 degrees
MIN_ANGLE = np.pi / 18            # 10 degrees
MAX_ANGLE = 2 * np.pi / 3         # 120 degrees


class MeshReconstructor:
    """
    Greedy surface triangulation of an arbitrary point cloud.
    """

    def __init__(
        self,
        leaf_size: float = LEAF_SIZE,
        k_search: int = NORMAL_K_SEARCH,
        search_radius: float = SEARCH_RADIUS,
        mu: float = MU,
        max_nearest_neighbors: int = MAX_NEAREST_NEIGHBORS,
        max_surface_angle: float = MAX_SURFACE_ANGLE,
        min_angle: float = MIN_ANGLE,
        max_angle: float = MAX_ANGLE,
        normal_consistency: bool = False
    ):
        """
        Args:
            leaf_size: Voxel size for downsampling
            k_search: Neighbors used for normal estimation
            search_radius: Upper bound on the triangulation radius
            mu: Multiplier of the point spacing giving the triangulation radius
            max_nearest_neighbors: Neighbor cap for normal orientation
            max_surface_angle: Maximum normal deviation inside a triangle (rad)
            min_angle: Minimum triangle corner angle (rad)
            max_angle: Maximum triangle corner angle (rad)
            normal_consistency: Orient normals consistently before triangulating
        """
        self.leaf_size = leaf_size
        self.k_search = k_search
        self.search_radius = search_radius
        self.mu = mu
        self.max_nearest_neighbors = max_nearest_neighbors
        self.max_surface_angle = max_surface_angle
        self.min_angle = min_angle
        self.max_angle = max_angle
        self.normal_consistency = normal_consistency

    def reconstruct(self, cloud: Union[PointCloud, o3d.geometry.PointCloud]) -> o3d.geometry.TriangleMesh:
        """
        Triangulate a cloud.

        Args:
            cloud: Input cloud in any frame

        Returns:
            Triangle mesh with vertex normals

        Raises:
            EmptyResult: If the input has no finite point
        """
        pcd = cloud.to_open3d() if isinstance(cloud, PointCloud) else o3d.geometry.PointCloud(cloud)
        if len(pcd.points) == 0:
            raise EmptyResult("cannot triangulate an empty cloud", stage="mesh")

        pcd = pcd.voxel_down_sample(voxel_size=self.leaf_size)
        pcd.estimate_normals(search_param=o3d.geometry.KDTreeSearchParamKNN(knn=self.k_search))
        if self.normal_consistency:
            pcd.orient_normals_consistent_tangent_plane(
                min(self.max_nearest_neighbors, max(len(pcd.points) - 1, 1))
            )

        if len(pcd.points) < 3:
            mesh = o3d.geometry.TriangleMesh()
            mesh.vertices = pcd.points
            logger.warning("Only %d points after downsampling, no triangles", len(pcd.points))
            return mesh

        mesh = o3d.geometry.TriangleMesh.create_from_point_cloud_ball_pivoting(
            pcd, o3d.utility.DoubleVector(self._radii(pcd))
        )

        keep = self._triangle_mask(mesh)
        mesh.remove_triangles_by_mask((~keep).tolist())
        mesh.remove_unreferenced_vertices()

        logger.info(
            "Mesh reconstructed: %d vertices, %d triangles (%d rejected)",
            len(mesh.vertices), len(mesh.triangles), int((~keep).sum())
        )
        return mesh

    def _radii(self, pcd: o3d.geometry.PointCloud) -> list:
        spacing = float(np.mean(pcd.compute_nearest_neighbor_distance()))
        spacing = max(spacing, self.leaf_size)
        radii = spacing * np.array([1.0, np.sqrt(self.mu), self.mu])
        return np.unique(np.minimum(radii, self.search_radius)).tolist()

    def _triangle_mask(self, mesh: o3d.geometry.TriangleMesh) -> np.ndarray:
        triangles = np.asarray(mesh.triangles)
        if triangles.size == 0:
            return np.zeros(0, dtype=bool)

        vertices = np.asarray(mesh.vertices)
        corners = vertices[triangles]                       # (T, 3, 3)

        angles = np.empty((len(triangles), 3))
        for i in range(3):
            a = corners[:, (i + 1) % 3] - corners[:, i]
            b = corners[:, (i + 2) % 3] - corners[:, i]
            cos = np.einsum("ij,ij->i", a, b) / (
                np.linalg.norm(a, axis=1) * np.linalg.norm(b, axis=1) + 1e-12
            )
            angles[:, i] = np.arccos(np.clip(cos, -1.0, 1.0))

        keep = (angles.min(axis=1) >= self.min_angle) & (angles.max(axis=1) <= self.max_angle)

        if mesh.has_vertex_normals():
            normals = np.asarray(mesh.vertex_normals)[triangles]
            max_deviation = np.zeros(len(triangles))
            for i, j in ((0, 1), (1, 2), (0, 2)):
                dots = np.einsum("ij,ij->i", normals[:, i], normals[:, j])
                if not self.normal_consistency:
                    dots = np.abs(dots)
                deviation = np.arccos(np.clip(dots, -1.0, 1.0))
                max_deviation = np.maximum(max_deviation, deviation)
            keep &= max_deviation <= self.max_surface_angle

        return keep
