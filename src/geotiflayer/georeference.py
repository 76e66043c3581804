"""Georeference resolution and bounding-box reprojection.

Only the four corners of a bounding box are ever reprojected; the result
is the axis-aligned min/max box of the transformed corners. Transforms use
the spherical mercator of web map tiles (sphere radius 6378137 m, 256 px
reference tiles) through mercantile.
"""
import enum
import logging
from typing import NamedTuple, Optional

import mercantile
from pyproj import CRS
from pyproj.exceptions import CRSError

from .errors import MissingGeoReferenceError, UnsupportedProjectionError

logger = logging.getLogger(__name__)

GEOGRAPHIC_EPSG = (4326, 4490)
MERCATOR_EPSG = 3857
# Half the circumference of the web mercator sphere, in meters.
MAX_EXTENT = 20037508.342789244


class BBox(NamedTuple):
    """Axis-aligned rectangle ``(xmin, ymin, xmax, ymax)``."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    def corners(self):
        """Return the four corners, counter-clockwise from the lower left."""
        return [
            (self.xmin, self.ymin),
            (self.xmax, self.ymin),
            (self.xmax, self.ymax),
            (self.xmin, self.ymax),
        ]


class CrsKind(enum.Enum):
    GEOGRAPHIC = "geographic"
    MERCATOR = "mercator"
    OTHER = "other"


class ResolvedBounds(NamedTuple):
    geographic: BBox
    mercator: BBox


def crs_to_epsg(crs) -> Optional[int]:
    """Return the EPSG code of a CRS-like object, or None if it has none.

    Accepts integers, ``"EPSG:n"`` strings, WKT and rasterio or pyproj CRS
    objects.
    """
    if crs is None:
        return None
    if isinstance(crs, bool):
        return None
    if isinstance(crs, int):
        return crs
    try:
        return CRS.from_user_input(crs).to_epsg()
    except CRSError:
        logger.debug("Could not parse CRS %r", crs)
        return None


def classify_crs(crs) -> CrsKind:
    """Classify a CRS as geographic (4326/4490), mercator (3857) or other."""
    epsg = crs_to_epsg(crs)
    if epsg in GEOGRAPHIC_EPSG:
        return CrsKind.GEOGRAPHIC
    if epsg == MERCATOR_EPSG:
        return CrsKind.MERCATOR
    return CrsKind.OTHER


def _clamp(value: float) -> float:
    return max(-MAX_EXTENT, min(MAX_EXTENT, value))


def forward(lon: float, lat: float):
    """Project longitude/latitude degrees to spherical mercator meters.

    Output is clamped to the mercator extent, so poles and longitudes
    past the antimeridian map to the edge of the world instead of to
    infinite or wrapped values.
    """
    x, y = mercantile.xy(lon, lat)
    return _clamp(x), _clamp(y)


def inverse(x: float, y: float):
    """Unproject spherical mercator meters to longitude/latitude degrees."""
    lnglat = mercantile.lnglat(x, y)
    return lnglat.lng, lnglat.lat


_TRANSFORMS = {"forward": forward, "inverse": inverse}


def transform_bbox(bbox, direction: str) -> BBox:
    """Transform the corners of ``bbox`` and return their min/max box.

    Parameters
    ----------
    bbox : sequence of float
        ``(xmin, ymin, xmax, ymax)`` in the source system.
    direction : str
        'forward' (geographic to mercator) or 'inverse'.

    Returns
    -------
    BBox
        Axis-aligned bounding box of the transformed corners.
    """
    transform = _TRANSFORMS[direction]
    xs, ys = [], []
    for cx, cy in BBox(*bbox).corners():
        x, y = transform(cx, cy)
        xs.append(x)
        ys.append(y)
    return BBox(min(xs), min(ys), max(xs), max(ys))


def resolve(declared_bounds, crs) -> ResolvedBounds:
    """Produce geographic and mercator bounds for a raster.

    The declared bounds are taken as-is in their own system and the
    other one is derived from them with :func:`transform_bbox`.

    Raises
    ------
    MissingGeoReferenceError
        If either the bounds or the CRS is missing.
    UnsupportedProjectionError
        If the CRS is neither geographic nor web mercator.
    """
    if declared_bounds is None or crs is None:
        raise MissingGeoReferenceError("Raster has no georeferencing information")
    bbox = BBox(*(float(v) for v in declared_bounds))
    kind = classify_crs(crs)
    if kind is CrsKind.GEOGRAPHIC:
        return ResolvedBounds(geographic=bbox, mercator=transform_bbox(bbox, "forward"))
    if kind is CrsKind.MERCATOR:
        return ResolvedBounds(geographic=transform_bbox(bbox, "inverse"), mercator=bbox)
    raise UnsupportedProjectionError(f"Unsupported coordinate system: {crs}")


def intersects(a, b) -> bool:
    """Strict rectangle intersection; touching edges do not intersect."""
    return a[0] < b[2] and b[0] < a[2] and a[1] < b[3] and b[1] < a[3]


def projection_kind(projection_code: str) -> CrsKind:
    """Classify a map projection code such as ``"EPSG:3857"``."""
    code = str(projection_code)
    if "4326" in code or "4490" in code:
        return CrsKind.GEOGRAPHIC
    if "3857" in code:
        return CrsKind.MERCATOR
    return CrsKind.OTHER


def bounds_for_projection(source, projection_code: str) -> BBox:
    """Select the bounds of ``source`` matching a tile projection code.

    Raises
    ------
    UnsupportedProjectionError
        If the code is neither 4326/4490 nor 3857, or the source has no
        bounds in that system.
    """
    kind = projection_kind(projection_code)
    bounds = None
    if kind is CrsKind.GEOGRAPHIC:
        bounds = source.geographic_bounds
    elif kind is CrsKind.MERCATOR:
        bounds = source.mercator_bounds
    if bounds is None:
        raise UnsupportedProjectionError(
            f"Only EPSG:4326/4490 and EPSG:3857 are supported, got {projection_code!r}")
    return bounds
