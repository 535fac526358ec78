"""Exception types raised by the spatial analysis pipelines.

Geometry and CRS errors are fatal to a run: areal weights computed from
bad inputs are meaningless, so no partial result is returned. A missing
raster date only affects that date and is reported per date by the
extraction pipeline.
"""
from __future__ import annotations


class SpatialAnalysisError(Exception):
    """Base class for all pipeline data-shape errors."""


class InvalidCRS(SpatialAnalysisError):
    """Area or distance requested under a missing, geographic or mismatched CRS."""


class InvalidGeometry(SpatialAnalysisError):
    """Invalid (e.g. self-intersecting) polygons reached an overlay step unrepaired."""


class EmptyGeometry(SpatialAnalysisError):
    """A feature needed as an area denominator has zero (or near-zero) area."""


class EmptyResult(SpatialAnalysisError):
    """A target feature with no overlapping source feature has no estimate.

    By default interpolation omits the target's record (absence means zero);
    it raises this only when called with ``require_overlap=True``.
    """


class MissingTemporalMatch(SpatialAnalysisError):
    """A requested timestamp has no band on the raster time axis."""

    def __init__(self, timestamp, available=None):
        self.timestamp = timestamp
        self.available = list(available) if available is not None else []
        message = f"No raster band for {timestamp}"
        if self.available:
            message += (
                f" (time axis spans {min(self.available)} to {max(self.available)}, "
                f"{len(self.available)} bands)"
            )
        super().__init__(message)
