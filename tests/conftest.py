"""Shared pytest fixtures for geotiflayer tests."""

import tempfile
import threading
import warnings
from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.enums import Resampling
from rasterio.errors import NotGeoreferencedWarning
from rasterio.transform import from_bounds

from geotiflayer.georeference import BBox

NODATA = -9999.0


def write_geotiff(path, data, crs=None, bounds=None, overviews=()):
    """Write a float32 GeoTIFF, optionally with internal overviews."""
    data = np.asarray(data, dtype=np.float32)
    if data.ndim == 2:
        data = data[np.newaxis]
    count, height, width = data.shape
    profile = dict(driver="GTiff", width=width, height=height, count=count,
                   dtype="float32", nodata=NODATA)
    if crs is not None:
        profile.update(crs=crs, transform=from_bounds(*bounds, width, height))
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", NotGeoreferencedWarning)
        with rasterio.open(path, "w", **profile) as dst:
            dst.write(data)
        if overviews:
            with rasterio.open(path, "r+") as dst:
                dst.build_overviews(list(overviews), Resampling.nearest)
    return Path(path)


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_data():
    """Provide a 32x64 ramp with one nodata pixel in the upper left corner."""
    data = np.arange(32 * 64, dtype=np.float32).reshape(32, 64)
    data[0, 0] = NODATA
    return data


@pytest.fixture
def geographic_tif(temp_dir, sample_data):
    """Provide an EPSG:4326 GeoTIFF over (0, 0, 40, 20) with two overviews."""
    return write_geotiff(temp_dir / "geographic.tif", sample_data, crs="EPSG:4326",
                         bounds=(0.0, 0.0, 40.0, 20.0), overviews=(2, 4))


@pytest.fixture
def mercator_tif(temp_dir, sample_data):
    """Provide an EPSG:3857 GeoTIFF without overviews."""
    return write_geotiff(temp_dir / "mercator.tif", sample_data, crs="EPSG:3857",
                         bounds=(0.0, 0.0, 2.0e6, 1.0e6))


@pytest.fixture
def utm_tif(temp_dir, sample_data):
    """Provide a GeoTIFF in a projection tiles cannot be cut from."""
    return write_geotiff(temp_dir / "utm.tif", sample_data, crs="EPSG:32633",
                         bounds=(500000.0, 6000000.0, 540000.0, 6020000.0))


@pytest.fixture
def plain_tif(temp_dir, sample_data):
    """Provide a TIFF without any georeferencing."""
    return write_geotiff(temp_dir / "plain.tif", sample_data)


class FakeHandle:
    """In-memory stand-in for an open GeoTiffSource.

    ``levels`` holds one (bands, height, width) array per image level.
    Reads block on ``gate`` when it is set and raise for levels listed in
    ``fail_levels``.
    """

    def __init__(self, levels, crs="EPSG:4326", bounds=(0.0, 0.0, 40.0, 20.0), url="fake.tif"):
        self.levels = [np.asarray(level, dtype=np.float32) for level in levels]
        self.crs = crs
        self.bounds = BBox(*bounds) if bounds is not None else None
        self.url = url
        self.reads = []
        self.fail_levels = set()
        self.gate = None
        self.closed = False

    @property
    def width(self):
        return self.levels[0].shape[2]

    @property
    def height(self):
        return self.levels[0].shape[1]

    @property
    def count(self):
        return self.levels[0].shape[0]

    def overview_count(self):
        return len(self.levels)

    def read(self, level=0):
        self.reads.append(level)
        if self.gate is not None:
            self.gate.wait(5)
        if level in self.fail_levels:
            raise RuntimeError(f"level {level} is corrupt")
        return self.levels[level].copy()

    def close(self):
        self.closed = True


@pytest.fixture
def make_handle():
    """Provide a factory for FakeHandle objects with a full and a preview level."""
    def _make(url="fake.tif", crs="EPSG:4326", bounds=(0.0, 0.0, 40.0, 20.0)):
        full = np.full((1, 32, 64), 5.0, dtype=np.float32)
        preview = np.full((1, 8, 16), 5.0, dtype=np.float32)
        return FakeHandle([full, preview], crs=crs, bounds=bounds, url=url)
    return _make


@pytest.fixture
def gate():
    """Provide an event for holding background work until the test releases it."""
    event = threading.Event()
    yield event
    event.set()
