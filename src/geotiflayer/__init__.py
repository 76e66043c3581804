"""Serve map tiles cut from georeferenced GeoTIFF rasters."""
import logging

from . import config
from .colormap import (WIND_SPEED_LEGEND, ColorMapper, PassthroughRenderer, ScalarRenderer,
                       VectorMagnitudeRenderer, default_renderer)
from .config import LayerOptions, settings
from .decoder import DecodedSurface, RasterDecoder, ResolutionLevel
from .errors import (DecodeFailureError, FetchFailureError, GeoTiffLayerError,
                     MissingGeoReferenceError, QueueDrainedError, UnsupportedProjectionError)
from .georeference import BBox, forward, intersects, inverse, resolve, transform_bbox
from .layer import LayerStatus, TileLayer
from .pending import PendingTileQueue
from .source import GeoTiffSource, RasterSource, describe, open_source
from .tiles import TileExtractor, TileImage, TileRequest, pixel_window

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
