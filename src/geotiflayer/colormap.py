"""Breakpoint color mapping and band renderers.

A :class:`ColorMapper` turns raster samples into RGB colors through a
sorted breakpoint table. Lookups snap to the nearest breakpoint of the
interval the sample falls in; colors are never interpolated.

Band renderers wrap a mapper into the callable the decoder expects,
``bands (B, H, W) -> uint8 (H, W, 4)``.
"""
import bisect
import math
import re
from typing import Iterable, Sequence, Tuple, Union

import numpy as np
import matplotlib

RGB = Tuple[int, int, int]
Color = Union[str, Sequence[int]]

TRANSPARENT = (0, 0, 0, 0)

_INT_RE = re.compile(r"\d+")


def parse_rgb(color: Color) -> RGB:
    """Convert a CSS ``rgb(...)`` string or a sequence to an RGB tuple.

    Strings are reduced to the integers they contain; a string without
    three integers falls back to black.
    """
    if isinstance(color, str):
        values = [int(v) for v in _INT_RE.findall(color)]
        if len(values) < 3:
            return (0, 0, 0)
        values = values[:3]
    else:
        values = [int(v) for v in list(color)[:3]]
        if len(values) != 3:
            raise ValueError(f"Expected an RGB color, got {color!r}")
    return tuple(max(0, min(255, v)) for v in values)


class ColorMapper:
    """Map scalar (or 2-component vector) samples to RGB colors.

    Parameters
    ----------
    breakpoints : iterable of (float, color)
        Breakpoint values and their colors. Colors may be RGB sequences
        or CSS ``rgb(r, g, b)`` strings. Sorted on construction.
    ratio : float, optional
        Samples are divided by this before lookup, by default 1.
    filter_values : iterable of float, optional
        Raw sample values that always map to black.

    Notes
    -----
    Within an interval ``[v_i, v_i+1)`` the closer endpoint wins and a
    tie goes to ``v_i``. Below the first breakpoint the first color is
    used, at or above the last one the last color. NaN maps to a fully
    transparent zero color.
    """

    def __init__(self, breakpoints: Iterable[Tuple[float, Color]],
                 ratio: float = 1.0, filter_values: Iterable[float] = ()):
        table = sorted(((float(v), parse_rgb(c)) for v, c in breakpoints),
                       key=lambda item: item[0])
        if ratio == 0:
            raise ValueError("ratio must be non-zero")
        self.ratio = float(ratio)
        self.filter_values = frozenset(float(v) for v in filter_values)
        self._values = [v for v, _ in table]
        self._colors = [c for _, c in table]
        self._value_array = np.asarray(self._values, dtype=np.float64)
        self._color_array = np.asarray(self._colors, dtype=np.uint8).reshape(-1, 3)

    def __len__(self):
        return len(self._values)

    def __repr__(self):
        return f"ColorMapper(breakpoints={len(self)}, ratio={self.ratio})"

    @property
    def breakpoints(self):
        return list(zip(self._values, self._colors))

    def map(self, sample) -> RGB:
        """Return the RGB color for one scalar or vector sample."""
        value = _reduce_sample(sample)
        if math.isnan(value) or not self._values:
            return (0, 0, 0)
        if value in self.filter_values:
            return (0, 0, 0)
        num = value / self.ratio
        values = self._values
        if num < values[0]:
            return self._colors[0]
        if num >= values[-1]:
            return self._colors[-1]
        i = bisect.bisect_right(values, num) - 1
        if abs(num - values[i]) <= abs(num - values[i + 1]):
            return self._colors[i]
        return self._colors[i + 1]

    def map_array(self, samples) -> np.ndarray:
        """Vectorised :meth:`map` returning an RGBA ``uint8`` array.

        The output has shape ``samples.shape + (4,)``. NaN samples get
        alpha 0, everything else alpha 255.
        """
        samples = np.asarray(samples, dtype=np.float64)
        out = np.zeros(samples.shape + (4,), dtype=np.uint8)
        valid = ~np.isnan(samples)
        if not self._values:
            out[valid, 3] = 255
            return out

        num = np.where(valid, samples, 0.0) / self.ratio
        values = self._value_array
        last = len(values) - 1
        idx = np.searchsorted(values, num, side="right") - 1
        lower = np.clip(idx, 0, last)
        upper = np.clip(idx + 1, 0, last)
        take_lower = np.abs(num - values[lower]) <= np.abs(num - values[upper])
        chosen = np.where(take_lower, lower, upper)
        chosen = np.where(idx < 0, 0, chosen)
        chosen = np.where(idx >= last, last, chosen)

        out[..., :3] = self._color_array[chosen]
        if self.filter_values:
            filtered = np.isin(samples, list(self.filter_values))
            out[filtered, :3] = 0
        out[..., 3] = np.where(valid, 255, 0)
        out[~valid] = TRANSPARENT
        return out

    @classmethod
    def from_cmap(cls, name: str, vmin: float, vmax: float,
                  steps: int = 32, **kwargs) -> "ColorMapper":
        """Build a breakpoint table by sampling a matplotlib colormap."""
        if steps < 2:
            raise ValueError("steps must be at least 2")
        cmap = matplotlib.colormaps[name]
        levels = np.linspace(vmin, vmax, steps)
        rgba = cmap(np.linspace(0.0, 1.0, steps))
        colors = np.round(rgba[:, :3] * 255).astype(int)
        return cls(zip(levels.tolist(), colors.tolist()), **kwargs)


def _reduce_sample(sample) -> float:
    if isinstance(sample, (tuple, list, np.ndarray)):
        components = [float(c) for c in sample]
        if len(components) == 2:
            return math.hypot(*components)
        return components[0] if components else math.nan
    if sample is None:
        return math.nan
    return float(sample)


class ScalarRenderer:
    """Colorize one band of a raster."""

    def __init__(self, mapper: ColorMapper, band: int = 0):
        self.mapper = mapper
        self.band = band

    def __call__(self, bands: np.ndarray) -> np.ndarray:
        return self.mapper.map_array(bands[self.band])


class VectorMagnitudeRenderer:
    """Colorize the magnitude of a two-band (u, v) raster.

    Pixels where either component is NaN become transparent.
    """

    def __init__(self, mapper: ColorMapper):
        self.mapper = mapper

    def __call__(self, bands: np.ndarray) -> np.ndarray:
        if bands.shape[0] < 2:
            raise ValueError("Vector magnitude rendering needs two bands")
        u = bands[0].astype(np.float64)
        v = bands[1].astype(np.float64)
        return self.mapper.map_array(np.hypot(u, v))


class PassthroughRenderer:
    """Use 3- or 4-band 8-bit imagery as-is; NaN pixels become transparent."""

    def __call__(self, bands: np.ndarray) -> np.ndarray:
        if bands.shape[0] not in (3, 4):
            raise ValueError(f"Passthrough rendering needs 3 or 4 bands, got {bands.shape[0]}")
        nodata = np.isnan(bands).any(axis=0)
        data = np.nan_to_num(bands, nan=0.0)
        rgba = np.full(bands.shape[1:] + (4,), 255, dtype=np.uint8)
        rgba[..., :bands.shape[0]] = np.clip(np.moveaxis(data, 0, -1), 0, 255).astype(np.uint8)
        rgba[nodata] = TRANSPARENT
        return rgba


def default_renderer(mapper: ColorMapper, band_count: int):
    """Pick a renderer from the number of bands in the raster."""
    if band_count == 2:
        return VectorMagnitudeRenderer(mapper)
    if band_count in (3, 4):
        return PassthroughRenderer()
    return ScalarRenderer(mapper)


# Wind speed legend, usually used with ratio=10 on decimetre-per-second data.
WIND_SPEED_LEGEND = [
    (0, "rgb(97, 113, 184)"),
    (1, "rgb(63, 110, 156)"),
    (2, "rgb(67, 130, 167)"),
    (3, "rgb(74, 148, 170)"),
    (4, "rgb(75, 145, 147)"),
    (5, "rgb(77, 142, 124)"),
    (6, "rgb(78, 153, 102)"),
    (7, "rgb(80, 165, 80)"),
    (8, "rgb(87, 164, 71)"),
    (9, "rgb(95, 164, 62)"),
    (10, "rgb(103, 164, 54)"),
    (11, "rgb(163, 158, 78)"),
    (12, "rgb(161, 142, 69)"),
    (13, "rgb(160, 126, 61)"),
    (14, "rgb(161, 121, 68)"),
    (15, "rgb(162, 109, 92)"),
    (16, "rgb(142, 75, 83)"),
    (17, "rgb(148, 72, 95)"),
    (18, "rgb(154, 69, 108)"),
    (19, "rgb(152, 72, 126)"),
    (20, "rgb(151, 75, 145)"),
    (21, "rgb(130, 84, 154)"),
    (22, "rgb(110, 94, 164)"),
    (23, "rgb(104, 99, 161)"),
    (24, "rgb(99, 104, 158)"),
    (25, "rgb(94, 109, 155)"),
    (26, "rgb(89, 114, 152)"),
    (27, "rgb(84, 119, 149)"),
    (28, "rgb(79, 124, 147)"),
    (29, "rgb(85, 130, 104)"),
    (30, "rgb(91, 136, 61)"),
]
