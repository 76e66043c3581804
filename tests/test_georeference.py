"""Tests for the geotiflayer.georeference module."""

import pytest

from geotiflayer import georeference as geo
from geotiflayer.errors import MissingGeoReferenceError, UnsupportedProjectionError
from geotiflayer.georeference import MAX_EXTENT, BBox, CrsKind
from geotiflayer.source import RasterSource

# Latitude at which the web mercator square ends.
MAX_LAT = 85.0511287798066


class TestForwardInverse:
    """Tests for the forward and inverse transforms."""

    def test_origin(self):
        """The origin should map to the origin."""
        assert geo.forward(0, 0) == pytest.approx((0.0, 0.0), abs=1e-6)
        assert geo.inverse(0, 0) == pytest.approx((0.0, 0.0), abs=1e-9)

    def test_antimeridian(self):
        """Longitude 180 should map to the edge of the mercator extent."""
        x, y = geo.forward(180, 0)
        assert x == pytest.approx(MAX_EXTENT)
        assert y == pytest.approx(0.0, abs=1e-6)

    def test_poles_are_clamped(self):
        """The poles should be clamped to the extent instead of infinity."""
        assert geo.forward(0, 90) == (0.0, MAX_EXTENT)
        assert geo.forward(0, -90) == (0.0, -MAX_EXTENT)

    def test_longitude_overflow_is_clamped(self):
        """Longitudes past 180 should be clamped to the extent."""
        assert geo.forward(200, 0)[0] == MAX_EXTENT
        assert geo.forward(-200, 0)[0] == -MAX_EXTENT

    def test_inverse_of_extent(self):
        """The corner of the mercator square should invert to (180, MAX_LAT)."""
        lon, lat = geo.inverse(MAX_EXTENT, MAX_EXTENT)
        assert lon == pytest.approx(180.0)
        assert lat == pytest.approx(MAX_LAT, abs=1e-6)

    def test_roundtrip(self):
        """inverse(forward(p)) should return p inside the valid range."""
        for lon, lat in [(10.5, 59.9), (-70.0, -33.4), (179.0, 80.0)]:
            assert geo.inverse(*geo.forward(lon, lat)) == pytest.approx((lon, lat), abs=1e-7)


class TestTransformBbox:
    """Tests for the transform_bbox function."""

    def test_world_square(self):
        """The geographic world square should map to the mercator square."""
        bbox = geo.transform_bbox((-180, -MAX_LAT, 180, MAX_LAT), "forward")
        assert bbox == pytest.approx((-MAX_EXTENT, -MAX_EXTENT, MAX_EXTENT, MAX_EXTENT), rel=1e-6)

    def test_roundtrip_is_idempotent(self):
        """Transforming a box forward and back should give the same box."""
        bbox = BBox(10.0, 20.0, 30.0, 40.0)
        back = geo.transform_bbox(geo.transform_bbox(bbox, "forward"), "inverse")
        assert back == pytest.approx(bbox, abs=1e-7)

    def test_result_is_ordered(self):
        """The result should have min before max on both axes."""
        bbox = geo.transform_bbox((-20, -40, 20, 40), "forward")
        assert bbox.xmin < bbox.xmax
        assert bbox.ymin < bbox.ymax

    def test_unknown_direction(self):
        """An unknown direction should raise KeyError."""
        with pytest.raises(KeyError):
            geo.transform_bbox((0, 0, 1, 1), "sideways")


class TestIntersects:
    """Tests for the intersects function."""

    @pytest.mark.parametrize("a, b, expected", [
        ((0, 0, 10, 10), (5, 5, 15, 15), True),
        ((0, 0, 10, 10), (2, 2, 3, 3), True),
        ((0, 0, 10, 10), (10, 0, 20, 10), False),
        ((0, 0, 10, 10), (0, 10, 10, 20), False),
        ((0, 0, 10, 10), (11, 11, 20, 20), False),
        ((0, 0, 10, 10), (-5, 2, 15, 3), True),
    ])
    def test_cases(self, a, b, expected):
        """intersects should follow strict rectangle overlap."""
        assert geo.intersects(a, b) is expected

    def test_symmetric(self):
        """intersects(a, b) should equal intersects(b, a)."""
        boxes = [(0, 0, 10, 10), (10, 0, 20, 10), (5, 5, 15, 15), (-1, -1, 0, 0)]
        for a in boxes:
            for b in boxes:
                assert geo.intersects(a, b) == geo.intersects(b, a)


class TestCrs:
    """Tests for CRS parsing and classification."""

    @pytest.mark.parametrize("crs, expected", [
        ("EPSG:4326", CrsKind.GEOGRAPHIC),
        (4490, CrsKind.GEOGRAPHIC),
        ("EPSG:3857", CrsKind.MERCATOR),
        ("EPSG:32633", CrsKind.OTHER),
        (None, CrsKind.OTHER),
    ])
    def test_classify(self, crs, expected):
        """classify_crs should recognize 4326/4490 and 3857."""
        assert geo.classify_crs(crs) is expected

    def test_epsg_of_garbage(self):
        """An unparsable CRS should have no EPSG code."""
        assert geo.crs_to_epsg("not a crs") is None

    @pytest.mark.parametrize("code, expected", [
        ("EPSG:4326", CrsKind.GEOGRAPHIC),
        ("EPSG:4490", CrsKind.GEOGRAPHIC),
        ("EPSG:3857", CrsKind.MERCATOR),
        ("EPSG:27700", CrsKind.OTHER),
    ])
    def test_projection_kind(self, code, expected):
        """projection_kind should classify map projection codes."""
        assert geo.projection_kind(code) is expected


class TestResolve:
    """Tests for the resolve function."""

    def test_geographic_source(self):
        """Geographic bounds should be kept and projected forward."""
        resolved = geo.resolve((0, 0, 40, 20), "EPSG:4326")
        assert resolved.geographic == (0, 0, 40, 20)
        assert resolved.mercator == pytest.approx(geo.transform_bbox((0, 0, 40, 20), "forward"))

    def test_mercator_source(self):
        """Mercator bounds should be kept and projected back."""
        bounds = (0.0, 0.0, 1.0e6, 2.0e6)
        resolved = geo.resolve(bounds, "EPSG:3857")
        assert resolved.mercator == bounds
        assert resolved.geographic == pytest.approx(geo.transform_bbox(bounds, "inverse"))

    def test_missing_crs(self):
        """A missing CRS should raise MissingGeoReferenceError."""
        with pytest.raises(MissingGeoReferenceError):
            geo.resolve((0, 0, 1, 1), None)

    def test_missing_bounds(self):
        """Missing bounds should raise MissingGeoReferenceError."""
        with pytest.raises(MissingGeoReferenceError):
            geo.resolve(None, "EPSG:4326")

    def test_unsupported_crs(self):
        """Any other CRS should raise UnsupportedProjectionError."""
        with pytest.raises(UnsupportedProjectionError):
            geo.resolve((500000, 6000000, 540000, 6020000), "EPSG:32633")


class TestBoundsForProjection:
    """Tests for the bounds_for_projection function."""

    @pytest.fixture
    def source(self):
        return RasterSource(url="a.tif", width=4, height=2, epsg=4326,
                            geographic_bounds=BBox(0, 0, 40, 20),
                            mercator_bounds=BBox(0, 0, 4.0e6, 2.0e6))

    def test_selects_by_code(self, source):
        """The bounds matching the projection code should be returned."""
        assert geo.bounds_for_projection(source, "EPSG:4326") == (0, 0, 40, 20)
        assert geo.bounds_for_projection(source, "EPSG:4490") == (0, 0, 40, 20)
        assert geo.bounds_for_projection(source, "EPSG:3857") == (0, 0, 4.0e6, 2.0e6)

    def test_other_code(self, source):
        """Other projection codes should raise UnsupportedProjectionError."""
        with pytest.raises(UnsupportedProjectionError):
            geo.bounds_for_projection(source, "EPSG:27700")

    def test_source_without_bounds(self):
        """A source without bounds should raise UnsupportedProjectionError."""
        source = RasterSource(url="a.tif", width=4, height=2, epsg=None,
                              geographic_bounds=None, mercator_bounds=None)
        with pytest.raises(UnsupportedProjectionError):
            geo.bounds_for_projection(source, "EPSG:3857")
