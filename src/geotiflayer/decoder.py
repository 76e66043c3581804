"""Staged raster decoding into RGBA surfaces.

Decoding happens twice per source: first on the coarsest overview for a
quick preview, then on the full-resolution image once the map has
settled. Reads and colorization run in an executor and only complete
surfaces are ever returned.
"""
import asyncio
import enum
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from PIL import Image

from .errors import DecodeFailureError

logger = logging.getLogger(__name__)

Renderer = Callable[[np.ndarray], np.ndarray]


class ResolutionLevel(enum.Enum):
    PREVIEW = "preview"
    FULL = "full"


@dataclass(frozen=True)
class DecodedSurface:
    """A colorized raster ready to be cropped into tiles."""

    image: Image.Image
    level: ResolutionLevel

    @property
    def width(self) -> int:
        return self.image.size[0]

    @property
    def height(self) -> int:
        return self.image.size[1]


def decode(bands, width: int, height: int, renderer: Renderer,
           level: ResolutionLevel = ResolutionLevel.PREVIEW,
           ignore_color: Optional[Tuple[int, int, int]] = None) -> DecodedSurface:
    """Colorize raster bands into an RGBA surface.

    Parameters
    ----------
    bands : numpy.ndarray
        Array of shape (bands, height, width); a 2D array is one band.
    width, height : int
        Expected pixel size of the bands.
    renderer : callable
        Maps the band array to a ``uint8`` (height, width, 4) RGBA array.
    level : ResolutionLevel, optional
        Tag stored on the surface.
    ignore_color : tuple of int, optional
        Pixels colorized to exactly this RGB color get alpha 0.

    Returns
    -------
    DecodedSurface
        The decoded surface.

    Raises
    ------
    DecodeFailureError
        If the bands have the wrong shape or the renderer fails.
    """
    bands = np.asarray(bands)
    if bands.ndim == 2:
        bands = bands[np.newaxis]
    if bands.ndim != 3 or bands.shape[1:] != (height, width):
        raise DecodeFailureError(
            f"Band array of shape {bands.shape} does not match {width}x{height}")
    try:
        rgba = np.array(renderer(bands), dtype=np.uint8)
    except Exception as exc:
        raise DecodeFailureError(f"Colorization failed: {exc}") from exc

    if rgba.shape != (height, width, 4):
        raise DecodeFailureError(
            f"Renderer returned shape {rgba.shape}, expected {(height, width, 4)}")
    if ignore_color is not None:
        hit = np.all(rgba[..., :3] == np.asarray(ignore_color, dtype=np.uint8), axis=-1)
        rgba[hit, 3] = 0
    return DecodedSurface(image=Image.fromarray(rgba), level=level)


class RasterDecoder:
    """Decode the preview and full-resolution surfaces of an open source.

    Parameters
    ----------
    handle : GeoTiffSource
        Open source providing ``overview_count()`` and ``read(level)``.
    renderer : callable
        Band-to-RGBA renderer.
    executor : concurrent.futures.Executor, optional
        Pool running the reads and colorization. None uses the loop's
        default executor.
    ignore_color : tuple of int, optional
        Passed on to :func:`decode`.
    """

    def __init__(self, handle, renderer: Renderer,
                 executor: Optional[Executor] = None,
                 ignore_color: Optional[Tuple[int, int, int]] = None):
        self.handle = handle
        self.renderer = renderer
        self.executor = executor
        self.ignore_color = ignore_color

    def overview_count(self) -> int:
        """Number of image levels, 1 if the query fails."""
        try:
            count = int(self.handle.overview_count())
        except Exception as exc:
            logger.warning("Overview query failed for %s (%s), using a single level",
                           self.handle, exc)
            return 1
        return max(1, count)

    def decode_level(self, level_index: int, level: ResolutionLevel) -> DecodedSurface:
        """Read and colorize one image level. Blocking."""
        try:
            bands = self.handle.read(level_index)
        except Exception as exc:
            raise DecodeFailureError(f"Reading level {level_index} failed: {exc}") from exc
        bands = np.asarray(bands)
        if bands.ndim == 2:
            bands = bands[np.newaxis]
        height, width = bands.shape[-2:]
        surface = decode(bands, width, height, self.renderer, level, self.ignore_color)
        logger.debug("Decoded %s level %d (%dx%d)", self.handle, level_index, width, height)
        return surface

    async def _run(self, level_index, level):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.decode_level, level_index, level)

    async def decode_preview(self) -> DecodedSurface:
        """Decode the coarsest overview, or the only image."""
        return await self._run(self.overview_count() - 1, ResolutionLevel.PREVIEW)

    async def decode_full(self) -> DecodedSurface:
        """Decode the full-resolution image."""
        return await self._run(0, ResolutionLevel.FULL)
