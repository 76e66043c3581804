"""Cut fixed-size tiles out of a decoded surface.

A tile request is answered by intersecting the tile's projected bounding
box with the raster bounds, mapping the tile box into the surface's pixel
space and scaling that window onto a square tile.
"""
import io
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

import mercantile
import numpy as np
from PIL import Image

from .config import DEFAULT_TILE_SIZE, DEFAULT_QUALITY, IMAGE_FORMATS
from .errors import UnsupportedProjectionError
from .georeference import BBox, CrsKind, bounds_for_projection, intersects, projection_kind

logger = logging.getLogger(__name__)

# Substituted for a window width or height of exactly zero.
EPSILON_PIXELS = 0.1

TileBounds = Callable[[int, int, int, str], BBox]


def parse_tile_url(url: str) -> Tuple[int, int, int]:
    """Recover ``(x, y, z)`` from the query string of a tile URL."""
    query = parse_qs(urlsplit(str(url)).query)
    try:
        return tuple(int(query[key][0]) for key in ("x", "y", "z"))
    except (KeyError, ValueError) as exc:
        raise ValueError(f"No tile address in {url!r}") from exc


@dataclass
class TileRequest:
    """A tile asked for by the map renderer.

    ``target`` is whatever the renderer wants handed back with the tile.
    """

    x: int
    y: int
    z: int
    target: Any = None
    url: Optional[str] = None

    @classmethod
    def from_url(cls, url: str, target=None) -> "TileRequest":
        x, y, z = parse_tile_url(url)
        return cls(x=x, y=y, z=z, target=target, url=url)


@dataclass
class TileImage:
    """Result of one tile request.

    ``data`` holds encoded image bytes, a raw RGBA array, or None when
    the request failed (``error`` then says why).
    """

    x: int
    y: int
    z: int
    data: Any = field(default=None, repr=False)
    blank: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def mercator_tile_bounds(x: int, y: int, z: int) -> BBox:
    """Web mercator XYZ tile bounds in meters."""
    b = mercantile.xy_bounds(x, y, z)
    return BBox(b.left, b.bottom, b.right, b.top)


def geographic_tile_bounds(x: int, y: int, z: int) -> BBox:
    """Bounds in degrees of a tile of the 2x1 WGS84 quad grid.

    Zoom 0 has two 180 degree tiles side by side, rows count from the
    north.
    """
    size = 180.0 / 2 ** z
    xmin = -180.0 + x * size
    ymax = 90.0 - y * size
    return BBox(xmin, ymax - size, xmin + size, ymax)


def default_tile_bounds(x: int, y: int, z: int, projection_code: str) -> BBox:
    kind = projection_kind(projection_code)
    if kind is CrsKind.GEOGRAPHIC:
        return geographic_tile_bounds(x, y, z)
    if kind is CrsKind.MERCATOR:
        return mercator_tile_bounds(x, y, z)
    raise UnsupportedProjectionError(f"No tile grid for {projection_code!r}")


def pixel_window(tile_bbox, raster_bbox, width: float, height: float):
    """Map a tile bounding box into surface pixel space.

    Parameters
    ----------
    tile_bbox : sequence of float
        Tile ``(xmin, ymin, xmax, ymax)``.
    raster_bbox : sequence of float
        Raster bounds in the same system.
    width, height : float
        Surface size in pixels.

    Returns
    -------
    tuple of float
        ``(px, py, w, h)``; row 0 is the top of the raster. A width or
        height of exactly zero is replaced by ``EPSILON_PIXELS``.

    Raises
    ------
    ValueError
        If the raster bounds have no area.
    """
    txmin, tymin, txmax, tymax = tile_bbox
    bxmin, bymin, bxmax, bymax = raster_bbox
    if bxmax == bxmin or bymax == bymin:
        raise ValueError(f"Raster bounds {tuple(raster_bbox)} have no area")
    ax = width / (bxmax - bxmin)
    ay = height / (bymax - bymin)
    px = (txmin - bxmin) * ax
    py = height - (tymax - bymin) * ay
    w = (txmax - txmin) * ax
    h = (tymax - tymin) * ay
    if w == 0:
        w = EPSILON_PIXELS
    if h == 0:
        h = EPSILON_PIXELS
    return px, py, w, h


class TileExtractor:
    """Crop and scale tiles from a decoded surface.

    Parameters
    ----------
    tile_bounds : callable, optional
        ``tile_bounds(x, y, z, projection_code) -> BBox`` of the map's
        tile grid. Defaults to :func:`default_tile_bounds`.
    tile_size : int, optional
        Output tile size in pixels, by default 512.
    quality : float, optional
        Compression quality in (0, 1], by default 0.6.
    image_format : str, optional
        'png', 'webp' or 'jpeg'.
    raw : bool, optional
        Return RGBA ``uint8`` arrays instead of encoded bytes.

    Notes
    -----
    One scratch surface of tile size is reused for every extraction and
    cleared before each draw. Access to it is serialized, so extraction
    may be called from several threads.
    """

    def __init__(self, tile_bounds: Optional[TileBounds] = None,
                 tile_size: int = DEFAULT_TILE_SIZE,
                 quality: float = DEFAULT_QUALITY,
                 image_format: str = "png", raw: bool = False):
        if image_format not in IMAGE_FORMATS:
            raise ValueError(f"image_format must be one of {IMAGE_FORMATS}")
        self.tile_bounds = tile_bounds or default_tile_bounds
        self.tile_size = int(tile_size)
        self.quality = quality
        self.image_format = image_format
        self.raw = raw
        self._scratch = Image.new("RGBA", (self.tile_size, self.tile_size), (0, 0, 0, 0))
        self._lock = threading.Lock()
        self._blank = self._export(self._scratch)
        if raw:
            self._blank.setflags(write=False)

    @property
    def blank(self):
        """The shared blank transparent tile."""
        return self._blank

    def blank_tile(self, x: int, y: int, z: int) -> TileImage:
        return TileImage(x=x, y=y, z=z, data=self._blank, blank=True)

    def extract(self, x: int, y: int, z: int, projection_code: str,
                source, surface) -> TileImage:
        """Produce the tile at ``(x, y, z)``.

        Raises
        ------
        UnsupportedProjectionError
            If ``source`` has no bounds for ``projection_code``.
        """
        tile_bbox = self.tile_bounds(x, y, z, projection_code)
        raster_bbox = BBox(*bounds_for_projection(source, projection_code))
        if raster_bbox.width <= 0 or raster_bbox.height <= 0:
            logger.warning("Raster bounds %s of %s have no area", tuple(raster_bbox), source.url)
            return self.blank_tile(x, y, z)
        if not intersects(tile_bbox, raster_bbox):
            logger.debug("Tile %d/%d/%d outside raster bounds", z, x, y)
            return self.blank_tile(x, y, z)
        window = pixel_window(tile_bbox, raster_bbox, surface.width, surface.height)
        return TileImage(x=x, y=y, z=z, data=self.crop(surface.image, window))

    def crop(self, image: Image.Image, window):
        """Scale the pixel window ``(px, py, w, h)`` of ``image`` onto a tile.

        Parts of the window outside the image stay transparent; the part
        inside lands at its proportional position in the tile.
        """
        px, py, w, h = window
        size = self.tile_size
        img_w, img_h = image.size
        x0, y0 = max(px, 0.0), max(py, 0.0)
        x1, y1 = min(px + w, img_w), min(py + h, img_h)
        with self._lock:
            self._scratch.paste((0, 0, 0, 0), (0, 0, size, size))
            if x1 > x0 and y1 > y0:
                sx, sy = size / w, size / h
                dx0, dy0 = round((x0 - px) * sx), round((y0 - py) * sy)
                dx1, dy1 = round((x1 - px) * sx), round((y1 - py) * sy)
                patch = image.resize(
                    (max(1, dx1 - dx0), max(1, dy1 - dy0)),
                    Image.Resampling.BILINEAR,
                    box=(x0, y0, x1, y1),
                )
                self._scratch.paste(patch, (dx0, dy0))
            return self._export(self._scratch)

    def _export(self, image: Image.Image):
        if self.raw:
            return np.array(image, dtype=np.uint8)
        buf = io.BytesIO()
        if self.image_format == "png":
            image.save(buf, format="PNG")
        elif self.image_format == "jpeg":
            image.convert("RGB").save(buf, format="JPEG", quality=round(self.quality * 100))
        else:
            image.save(buf, format="WEBP", quality=round(self.quality * 100))
        return buf.getvalue()
