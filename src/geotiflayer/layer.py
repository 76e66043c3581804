"""Tile layer serving map tiles from a single GeoTIFF.

The layer moves through ``RESOLVING -> PREVIEW_READY -> FULL_READY`` for
each source. Tiles requested before the preview surface exists are
buffered and answered in arrival order once it does; the switch to the
full-resolution surface is driven by :meth:`TileLayer.viewport_settled`.

Every background step remembers the generation it was started for and
does nothing once :meth:`TileLayer.set_source` has moved the layer on.

Example::

    mapper = ColorMapper(WIND_SPEED_LEGEND, ratio=10)
    layer = TileLayer(VectorMagnitudeRenderer(mapper),
                      LayerOptions(source_url="wind.tif"))
    layer.on("cache_invalidate", lambda source: renderer.clear())
    layer.start()
    tile = await layer.request_tile(TileRequest(x=3, y=1, z=2), "EPSG:3857")
"""
import asyncio
import enum
import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from . import config
from .config import LayerOptions
from .decoder import RasterDecoder
from .errors import DecodeFailureError, FetchFailureError, UnsupportedProjectionError
from .pending import PendingTileQueue
from .source import describe, open_source
from .tiles import TileExtractor, TileImage, TileRequest

logger = logging.getLogger(__name__)

EVENTS = ("source_ready", "cache_invalidate", "source_error")


class LayerStatus(enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    PREVIEW_READY = "preview_ready"
    FULL_READY = "full_ready"
    UNUSABLE = "unusable"
    FAILED = "failed"


READY = (LayerStatus.PREVIEW_READY, LayerStatus.FULL_READY)


@dataclass
class _PendingTile:
    request: TileRequest
    projection_code: str
    future: asyncio.Future


def _close_when_done(future):
    """Close whatever handle an abandoned open call still returns."""
    def _close(f):
        if not f.cancelled() and f.exception() is None:
            f.result().close()
    future.add_done_callback(_close)


class TileLayer:
    """Serve tiles cut from a GeoTIFF to a map renderer.

    Parameters
    ----------
    renderer : callable
        Band-to-RGBA renderer, e.g. a ``ScalarRenderer``.
    options : LayerOptions, optional
        Layer options; read from the settings when omitted.
    tile_bounds : callable, optional
        Tile grid of the map, ``(x, y, z, projection_code) -> BBox``.
    executor : concurrent.futures.Executor, optional
        Pool for fetch and decode work. An owned thread pool is created
        when omitted and shut down by :meth:`close`.
    opener : callable, optional
        ``opener(url) -> GeoTiffSource``, defaults to ``open_source``.
    extractor : TileExtractor, optional
        Replaces the extractor built from ``options`` and ``tile_bounds``.

    Notes
    -----
    All methods must be called from the event loop thread.
    """

    def __init__(self, renderer, options: Optional[LayerOptions] = None,
                 tile_bounds=None, executor=None, opener=None,
                 extractor: Optional[TileExtractor] = None):
        self.options = options if options is not None else LayerOptions.from_settings()
        self.renderer = renderer
        self._opener = opener or open_source
        self._executor = executor
        self._owns_executor = executor is None
        if extractor is None:
            extractor = TileExtractor(
                tile_bounds=tile_bounds,
                tile_size=self.options.tile_size,
                quality=self.options.quality,
                image_format=self.options.image_format,
                raw=self.options.raw_output,
            )
        self.extractor = extractor
        self._listeners = defaultdict(list)
        self._queue = PendingTileQueue()
        self._generation = 0
        self._status = LayerStatus.IDLE
        self._source = None
        self._surface = None
        self._handle = None
        self._decoder = None
        self._resolve_task = None
        self._full_task = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> LayerStatus:
        return self._status

    @property
    def source(self):
        return self._source

    @property
    def surface(self):
        return self._surface

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def executor(self):
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=config.settings.get("decode_workers", 2),
                thread_name_prefix="geotiflayer",
            )
        return self._executor

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, callback) -> "TileLayer":
        """Register ``callback`` for ``event``.

        ``source_ready`` receives ``source`` and ``surface``,
        ``cache_invalidate`` receives ``source``, ``source_error``
        receives ``source`` and ``error`` as keyword arguments.
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown event {event!r}, expected one of {EVENTS}")
        self._listeners[event].append(callback)
        return self

    def off(self, event: str, callback) -> "TileLayer":
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)
        return self

    def _fire(self, event, **payload):
        for callback in list(self._listeners[event]):
            try:
                callback(**payload)
            except Exception:
                logger.exception("Listener for %r failed", event)

    # ------------------------------------------------------------------
    # Source lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Optional[asyncio.Task]:
        """Begin resolving ``options.source_url`` if one is configured."""
        if not self.options.source_url:
            return None
        return self.set_source(self.options.source_url)

    def set_source(self, url: str) -> asyncio.Task:
        """Point the layer at a new GeoTIFF.

        In-flight work for the previous source is cancelled, its source,
        surface and buffered requests are dropped, and resolution of
        ``url`` starts. Returns the resolution task.
        """
        self._discard()
        self.options.source_url = url
        self._status = LayerStatus.RESOLVING
        loop = asyncio.get_running_loop()
        self._resolve_task = loop.create_task(self._resolve(url, self._generation))
        return self._resolve_task

    def _discard(self):
        self._generation += 1
        for task in (self._resolve_task, self._full_task):
            if task is not None and not task.done():
                task.cancel()
        self._resolve_task = self._full_task = None
        for pending in self._queue.reset():
            if not pending.future.done():
                pending.future.cancel()
        handle = self._handle
        self._handle = self._decoder = self._source = self._surface = None
        self._status = LayerStatus.IDLE
        if handle is not None:
            self._release(handle)

    def _release(self, handle):
        # Closing waits for a read still running on the handle.
        self.executor.submit(handle.close)

    async def _resolve(self, url, generation):
        opening = self.executor.submit(self._opener, url)
        try:
            handle = await asyncio.wrap_future(opening)
        except asyncio.CancelledError:
            _close_when_done(opening)
            raise
        except FetchFailureError as exc:
            self._fail(generation, exc)
            return
        except Exception as exc:
            logger.exception("Opening %s failed", url)
            self._fail(generation, FetchFailureError(str(exc)))
            return
        if generation != self._generation:
            self._release(handle)
            return

        self._handle = handle
        source = describe(handle)
        self._source = source
        if not source.usable:
            self._status = LayerStatus.UNUSABLE
            self._fire("source_error", source=source, error=source.error)
            if generation == self._generation:
                self._queue.drain_into(self._answer_blank)
            return

        decoder = RasterDecoder(handle, self.renderer, self.executor,
                                ignore_color=self.options.ignore_color)
        self._decoder = decoder
        try:
            surface = await decoder.decode_preview()
        except DecodeFailureError as exc:
            self._fail(generation, exc)
            return
        except Exception as exc:
            logger.exception("Decoding preview of %s failed", url)
            self._fail(generation, DecodeFailureError(str(exc)))
            return
        if generation != self._generation:
            return

        self._surface = surface
        self._status = LayerStatus.PREVIEW_READY
        logger.info("Preview of %s ready (%dx%d)", url, surface.width, surface.height)
        self._fire("source_ready", source=source, surface=surface)
        if generation == self._generation:
            self._queue.drain_into(self._answer)

    def _fail(self, generation, exc):
        if generation != self._generation:
            return
        logger.error("Source %s failed: %s", self.options.source_url, exc)
        self._status = LayerStatus.FAILED
        self._fire("source_error", source=self._source, error=exc)

    def viewport_settled(self) -> Optional[asyncio.Task]:
        """Signal that the map finished rendering.

        The first signal after the preview is ready starts the
        full-resolution decode; any other signal is ignored.
        """
        if self._status is not LayerStatus.PREVIEW_READY or self._full_task is not None:
            return None
        loop = asyncio.get_running_loop()
        self._full_task = loop.create_task(self._decode_full(self._generation))
        return self._full_task

    async def _decode_full(self, generation):
        try:
            surface = await self._decoder.decode_full()
        except Exception as exc:
            if generation == self._generation:
                logger.error("Full resolution decode of %s failed, keeping preview: %s",
                             self.options.source_url, exc)
            return
        if generation != self._generation:
            return
        self._surface = surface
        self._status = LayerStatus.FULL_READY
        logger.info("Full resolution of %s ready (%dx%d)",
                    self.options.source_url, surface.width, surface.height)
        self._fire("cache_invalidate", source=self._source)

    async def close(self):
        """Cancel all work, release the source and an owned executor."""
        tasks = [t for t in (self._resolve_task, self._full_task) if t is not None]
        self._discard()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ------------------------------------------------------------------
    # Tiles
    # ------------------------------------------------------------------

    async def request_tile(self, request, projection_code: str = "EPSG:3857") -> TileImage:
        """Answer a tile request.

        ``request`` is a :class:`TileRequest` or a tile URL. Before the
        source is ready the request waits in the pending queue; after
        that it is extracted right away. Unusable sources answer blank
        tiles. A source that failed never answers.
        """
        if not isinstance(request, TileRequest):
            request = TileRequest.from_url(request)
        if self._status in READY:
            return self._extract(request, projection_code)
        if self._status is LayerStatus.UNUSABLE:
            return self.extractor.blank_tile(request.x, request.y, request.z)
        future = asyncio.get_running_loop().create_future()
        self._queue.push(_PendingTile(request, projection_code, future))
        return await future

    def _extract(self, request, projection_code) -> TileImage:
        # Read the surface once; a concurrent swap is seen whole or not at all.
        source, surface = self._source, self._surface
        try:
            return self.extractor.extract(request.x, request.y, request.z,
                                          projection_code, source, surface)
        except UnsupportedProjectionError as exc:
            logger.error("Tile %d/%d/%d: %s", request.z, request.x, request.y, exc)
            return TileImage(x=request.x, y=request.y, z=request.z, error=str(exc))

    def _answer(self, pending: _PendingTile):
        if pending.future.done():
            return
        try:
            tile = self._extract(pending.request, pending.projection_code)
        except Exception as exc:
            pending.future.set_exception(exc)
        else:
            pending.future.set_result(tile)

    def _answer_blank(self, pending: _PendingTile):
        if not pending.future.done():
            request = pending.request
            pending.future.set_result(self.extractor.blank_tile(request.x, request.y, request.z))
