"""Open GeoTIFF sources and describe their georeferencing.

Local paths are opened directly with rasterio. ``http(s)://`` URLs are
fetched with requests and parsed from memory, so a fetch failure and a
parse failure both surface as :class:`FetchFailureError`.
"""
import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import rasterio
import requests
from rasterio.enums import Resampling
from rasterio.errors import RasterioError
from rasterio.io import MemoryFile

from . import config
from .errors import FetchFailureError, MissingGeoReferenceError, UnsupportedProjectionError
from .georeference import BBox, crs_to_epsg, resolve

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 30


@dataclass(frozen=True)
class RasterSource:
    """Resolved description of a GeoTIFF.

    ``width`` and ``height`` are the full-resolution pixel dimensions.
    Both bounds are None when the source carries no usable
    georeferencing.
    """

    url: str
    width: int
    height: int
    epsg: Optional[int]
    geographic_bounds: Optional[BBox]
    mercator_bounds: Optional[BBox]
    band_count: int = 1
    overview_count: int = 1
    error: Optional[Exception] = field(default=None, compare=False, repr=False)

    @property
    def usable(self) -> bool:
        return self.geographic_bounds is not None and self.mercator_bounds is not None


class GeoTiffSource:
    """Thread-safe wrapper around an open rasterio dataset.

    Level 0 is the full-resolution image, level ``n`` the ``n``-th
    internal overview; the last level is the coarsest.
    """

    def __init__(self, dataset, url: str, memfile=None):
        self._ds = dataset
        self._memfile = memfile
        self._lock = threading.Lock()
        self.url = url

    @property
    def width(self) -> int:
        return self._ds.width

    @property
    def height(self) -> int:
        return self._ds.height

    @property
    def count(self) -> int:
        return self._ds.count

    @property
    def crs(self):
        return self._ds.crs

    @property
    def bounds(self) -> Optional[BBox]:
        if self._ds.crs is None:
            return None
        return BBox(*self._ds.bounds)

    def _dataset(self):
        if self._ds is None:
            raise RasterioError(f"{self.url} is closed")
        return self._ds

    def overview_factors(self):
        with self._lock:
            return list(self._dataset().overviews(1))

    def overview_count(self) -> int:
        """Number of images in the file, the full resolution one included."""
        return 1 + len(self.overview_factors())

    def level_shape(self, level: int):
        """Return ``(height, width)`` of an image level."""
        with self._lock:
            return self._level_shape(self._dataset(), level)

    @staticmethod
    def _level_shape(ds, level):
        if level == 0:
            return ds.height, ds.width
        factor = ds.overviews(1)[level - 1]
        return (max(1, math.ceil(ds.height / factor)),
                max(1, math.ceil(ds.width / factor)))

    def read(self, level: int = 0) -> np.ndarray:
        """Read all bands of an image level as float32, NaN for nodata.

        Returns
        -------
        numpy.ndarray
            Array of shape (bands, height, width).
        """
        with self._lock:
            ds = self._dataset()
            height, width = self._level_shape(ds, level)
            data = ds.read(
                out_shape=(ds.count, height, width),
                resampling=Resampling.nearest,
                masked=True,
            )
        return data.astype(np.float32).filled(np.nan)

    def close(self) -> None:
        with self._lock:
            if self._ds is not None:
                self._ds.close()
                self._ds = None
            if self._memfile is not None:
                self._memfile.close()
                self._memfile = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self):
        return f"GeoTiffSource({self.url!r})"


def _is_remote(url: str) -> bool:
    return str(url).lower().startswith(("http://", "https://"))


def open_source(url: str, timeout: Optional[float] = None) -> GeoTiffSource:
    """Fetch and open a GeoTIFF. Blocking; run it in an executor.

    Raises
    ------
    FetchFailureError
        If the bytes cannot be fetched or are not a readable raster.
    """
    url = str(url)
    if timeout is None:
        timeout = config.settings.get("fetch_timeout", DEFAULT_FETCH_TIMEOUT)
    if _is_remote(url):
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchFailureError(f"Could not fetch {url}: {exc}") from exc
        memfile = MemoryFile(response.content)
        try:
            dataset = memfile.open()
        except RasterioError as exc:
            memfile.close()
            raise FetchFailureError(f"Could not parse {url}: {exc}") from exc
        return GeoTiffSource(dataset, url, memfile=memfile)
    try:
        dataset = rasterio.open(url)
    except RasterioError as exc:
        raise FetchFailureError(f"Could not open {url}: {exc}") from exc
    return GeoTiffSource(dataset, url)


def describe(handle) -> RasterSource:
    """Resolve the georeferencing of an open source.

    Missing or unsupported georeferencing is logged and yields a
    :class:`RasterSource` without bounds (``usable`` is False).
    """
    epsg = crs_to_epsg(handle.crs)
    try:
        overview_count = handle.overview_count()
    except Exception as exc:
        logger.warning("Overview count of %s unavailable (%s), assuming 1", handle.url, exc)
        overview_count = 1
    geographic = mercator = error = None
    try:
        resolved = resolve(handle.bounds, handle.crs)
    except MissingGeoReferenceError as exc:
        logger.error("No georeferencing found in %s", handle.url)
        error = exc
    except UnsupportedProjectionError as exc:
        logger.error("Coordinate system of %s not supported: %s", handle.url, handle.crs)
        error = exc
    else:
        geographic, mercator = resolved.geographic, resolved.mercator
    return RasterSource(
        url=handle.url,
        width=handle.width,
        height=handle.height,
        epsg=epsg,
        geographic_bounds=geographic,
        mercator_bounds=mercator,
        band_count=handle.count,
        overview_count=overview_count,
        error=error,
    )
