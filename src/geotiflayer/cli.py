"""Command-line interface for geotiflayer.

This module provides CLI commands for inspecting GeoTIFFs and cutting
single map tiles out of them using the Typer framework.
"""
import pathlib
from typing import Optional

import numpy as np
import typer

from . import config
from .colormap import WIND_SPEED_LEGEND, ColorMapper, default_renderer
from .config import LayerOptions
from .decoder import RasterDecoder, ResolutionLevel
from .errors import GeoTiffLayerError
from .source import describe, open_source
from .tiles import TileExtractor
from .utils import vprint

app = typer.Typer(add_completion=False)

LEGENDS = {"wind": WIND_SPEED_LEGEND}


@app.callback()
def callback():
    """Cut map tiles out of georeferenced GeoTIFF rasters."""


def _setup(env, verbose):
    if env != "DEFAULT":
        config.change_env(env)
    config.settings.set("verbose", verbose)


def _fmt(bbox):
    return ", ".join(f"{v:.6f}" for v in bbox)


def _open(source):
    try:
        return open_source(source)
    except GeoTiffLayerError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


def _auto_range(handle, level):
    data = handle.read(level)
    if data.shape[0] == 2:
        data = np.hypot(data[0], data[1])
    if np.isnan(data).all():
        return 0.0, 1.0
    return float(np.nanmin(data)), float(np.nanmax(data))


@app.command()
def info(source: str,
         env: str = typer.Option("DEFAULT", help="Settings environment."),
         verbose: bool = typer.Option(False, "--verbose", "-v")):
    """Show size, coordinate system and bounds of a GeoTIFF."""
    _setup(env, verbose)
    with _open(source) as handle:
        raster = describe(handle)
    typer.echo(f"Source:    {raster.url}")
    typer.echo(f"Size:      {raster.width} x {raster.height} px, {raster.band_count} band(s)")
    typer.echo(f"EPSG:      {raster.epsg}")
    typer.echo(f"Overviews: {raster.overview_count - 1}")
    if not raster.usable:
        typer.echo(f"Bounds:    unusable ({raster.error})")
        raise typer.Exit(code=2)
    typer.echo(f"EPSG:4326: {_fmt(raster.geographic_bounds)}")
    typer.echo(f"EPSG:3857: {_fmt(raster.mercator_bounds)}")


@app.command()
def tile(source: str, z: int, x: int, y: int,
         out: pathlib.Path = typer.Option(..., "--out", "-o", help="Output image file."),
         projection: str = typer.Option("EPSG:3857", help="Map projection code."),
         full: bool = typer.Option(False, "--full/--preview",
                                   help="Decode full resolution instead of the coarsest overview."),
         cmap: str = typer.Option("viridis", help="Matplotlib colormap for the value range."),
         vmin: Optional[float] = typer.Option(None, help="Lowest value of the color range."),
         vmax: Optional[float] = typer.Option(None, help="Highest value of the color range."),
         legend: Optional[str] = typer.Option(None, help="Built-in breakpoint legend ('wind')."),
         ratio: float = typer.Option(1.0, help="Divide samples by this before color lookup."),
         tile_size: Optional[int] = typer.Option(None, help="Tile size in pixels."),
         quality: Optional[float] = typer.Option(None, help="Compression quality in (0, 1]."),
         image_format: Optional[str] = typer.Option(None, "--format", help="png, webp or jpeg."),
         env: str = typer.Option("DEFAULT", help="Settings environment."),
         verbose: bool = typer.Option(False, "--verbose", "-v")):
    """Write the tile at Z/X/Y of a GeoTIFF to an image file."""
    _setup(env, verbose)
    overrides = {k: v for k, v in dict(tile_size=tile_size, quality=quality,
                                       image_format=image_format).items() if v is not None}
    try:
        options = LayerOptions.from_settings(source_url=source, raw_output=False, **overrides)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    if legend is not None and legend not in LEGENDS:
        raise typer.BadParameter(f"Unknown legend {legend!r}, choose from {sorted(LEGENDS)}")

    with _open(source) as handle:
        raster = describe(handle)
        if not raster.usable:
            typer.echo(f"Error: {raster.error}", err=True)
            raise typer.Exit(code=2)

        decoder = RasterDecoder(handle, None, ignore_color=options.ignore_color)
        level_index = 0 if full else decoder.overview_count() - 1
        if legend is not None:
            mapper = ColorMapper(LEGENDS[legend], ratio=ratio)
        else:
            if vmin is None or vmax is None:
                low, high = _auto_range(handle, level_index)
                vmin = low if vmin is None else vmin
                vmax = high if vmax is None else vmax
            vprint(f"Color range {vmin:.4f} to {vmax:.4f}")
            mapper = ColorMapper.from_cmap(cmap, vmin, vmax, ratio=ratio)
        decoder.renderer = default_renderer(mapper, raster.band_count)

        level = ResolutionLevel.FULL if full else ResolutionLevel.PREVIEW
        vprint(f"Decoding level {level_index} of {raster.url}")
        try:
            surface = decoder.decode_level(level_index, level)
        except GeoTiffLayerError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1)

    extractor = TileExtractor(tile_size=options.tile_size, quality=options.quality,
                              image_format=options.image_format)
    try:
        result = extractor.extract(x, y, z, projection, raster, surface)
    except GeoTiffLayerError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(result.data)
    state = "blank" if result.blank else f"{surface.width}x{surface.height} {level.value}"
    typer.echo(f"Wrote {z}/{x}/{y} ({state}) to {out}")


def main():
    app()
