"""
Configuration Module

Immutable tunables for the scene segmentation pipeline, grouped the same way
as the YAML document they are loaded from (general, segmentation, filters).
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneralConfig:
    point_cloud_topic: str = "/camera/depth_registered/points"
    fixed_frame: str = "base_link"


@dataclass(frozen=True)
class SegmentationConfig:
    """
    Plane fitting, normal estimation and clustering parameters.

    Distances are in meters, `sac_eps_angle` is in degrees.
    """

    sac_eps_angle: float = 5.0
    sac_dist_thresh_single: float = 0.01
    sac_dist_thresh_multi: float = 0.02
    sac_min_plane_size: int = 5000
    sac_max_iter: int = 1000
    ne_k_search: int = 20
    ec_cluster_tol: float = 0.02
    ec_min_cluster_size: int = 100
    ec_max_cluster_size: int = 25000
    random_seed: Optional[int] = None

    def __post_init__(self):
        for name in ("sac_min_plane_size", "sac_max_iter", "ne_k_search", "ec_min_cluster_size"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1", stage="config")
        for name in ("sac_dist_thresh_single", "sac_dist_thresh_multi", "ec_cluster_tol"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", stage="config")
        if self.ec_max_cluster_size < self.ec_min_cluster_size:
            raise ConfigurationError(
                "ec_max_cluster_size is smaller than ec_min_cluster_size", stage="config"
            )


@dataclass(frozen=True)
class FilterConfig:
    leaf_size: float = 0.01
    voxel_enabled: bool = False
    # xmin, xmax, ymin, ymax, zmin, zmax
    pass_limits: Tuple[float, ...] = (0.0, 2.0, -1.5, 1.5, 0.1, 2.0)
    # min, max height above the reference hull
    prism_limits: Tuple[float, ...] = (0.01, 0.5)
    outlier_min_neighbors: int = 5
    outlier_radius_search: float = 0.02
    prism_viewpoint: Tuple[float, ...] = (0.0, 0.0, 0.0)

    def __post_init__(self):
        if len(self.pass_limits) != 6:
            raise ConfigurationError(
                f"pass_limits needs 6 values, got {len(self.pass_limits)}", stage="config"
            )
        if len(self.prism_limits) != 2:
            raise ConfigurationError(
                f"prism_limits needs 2 values, got {len(self.prism_limits)}", stage="config"
            )
        if len(self.prism_viewpoint) != 3:
            raise ConfigurationError(
                f"prism_viewpoint needs 3 values, got {len(self.prism_viewpoint)}", stage="config"
            )
        # Normalize sequences loaded from YAML lists
        object.__setattr__(self, "pass_limits", tuple(float(v) for v in self.pass_limits))
        object.__setattr__(self, "prism_limits", tuple(float(v) for v in self.prism_limits))
        object.__setattr__(self, "prism_viewpoint", tuple(float(v) for v in self.prism_viewpoint))

    @property
    def axis_limits(self) -> Tuple[Tuple[float, float], ...]:
        """Pass-through limits as ((xmin, xmax), (ymin, ymax), (zmin, zmax))."""
        p = self.pass_limits
        return ((p[0], p[1]), (p[2], p[3]), (p[4], p[5]))


@dataclass(frozen=True)
class PipelineConfig:
    general: GeneralConfig = field(default_factory=GeneralConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PipelineConfig":
        """
        Build a configuration from a nested mapping.

        Args:
            data: Mapping with optional 'general', 'segmentation' and
                  'filters' sections; missing keys keep their defaults

        Returns:
            PipelineConfig instance

        Raises:
            ConfigurationError: On unknown sections or keys
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("configuration root must be a mapping", stage="config")

        sections = {
            "general": GeneralConfig,
            "segmentation": SegmentationConfig,
            "filters": FilterConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigurationError(
                f"unknown configuration sections: {sorted(unknown)}", stage="config"
            )

        kwargs = {}
        for name, section_cls in sections.items():
            kwargs[name] = _build_section(section_cls, data.get(name) or {}, name)
        return cls(**kwargs)


def _build_section(section_cls, values: Dict[str, Any], name: str):
    if not isinstance(values, dict):
        raise ConfigurationError(f"section '{name}' must be a mapping", stage="config")

    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(
            f"unknown keys in '{name}': {sorted(unknown)}", stage="config"
        )
    try:
        return section_cls(**values)
    except TypeError as exc:
        raise ConfigurationError(f"invalid section '{name}': {exc}", stage="config") from exc


def load_config(path: Union[str, Path]) -> PipelineConfig:
    """
    Load pipeline configuration from a YAML file.

    Args:
        path: Path to the YAML document

    Returns:
        PipelineConfig instance
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with path.open("r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"cannot parse {path}: {exc}", stage="config") from exc

    config = PipelineConfig.from_dict(data)
    logger.info("Loaded configuration from %s (fixed frame: %s)", path, config.general.fixed_frame)
    return config
