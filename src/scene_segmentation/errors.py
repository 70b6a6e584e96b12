"""
Error Taxonomy

Every pipeline stage fails fast by raising one of these exceptions. All of
them are recoverable: the caller decides whether to retry on the next
invocation or give up.
"""

from typing import Optional


class SceneSegmentationError(Exception):
    """
    Base class for all pipeline failures.

    Attributes:
        stage: Name of the stage that raised the error
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class TransformUnavailable(SceneSegmentationError):
    """Frame lookup failed or did not resolve within the timeout."""


class EmptyResult(SceneSegmentationError):
    """A filtering or extraction stage removed every point."""


class NoPlaneFound(SceneSegmentationError):
    """Robust plane fitting produced zero inliers."""


class NoObjectsFound(SceneSegmentationError):
    """Clustering produced no component within the size bounds."""


class InvalidPoint(SceneSegmentationError):
    """Requested pixel maps to a non-finite (or missing) sample."""


class ConfigurationError(SceneSegmentationError, ValueError):
    """Configuration document is malformed or has unknown keys."""
