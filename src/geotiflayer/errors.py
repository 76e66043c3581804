"""Exception types raised by the tile layer.

All of them are terminal for the source they were raised for but local to
the layer instance; the layer logs them and never lets them escape its
background tasks.
"""


class GeoTiffLayerError(Exception):
    """Base class for all geotiflayer errors."""


class MissingGeoReferenceError(GeoTiffLayerError):
    """The raster carries no usable georeferencing (no CRS or no bounds)."""


class UnsupportedProjectionError(GeoTiffLayerError):
    """The raster CRS or the requested tile projection is not 4326/4490/3857."""


class DecodeFailureError(GeoTiffLayerError):
    """Reading raster bands or colorizing them failed."""


class FetchFailureError(GeoTiffLayerError):
    """The source bytes could not be fetched or parsed as a GeoTIFF."""


class QueueDrainedError(GeoTiffLayerError, RuntimeError):
    """A request was pushed to (or drained from) an already drained queue."""
