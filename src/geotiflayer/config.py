"""Configuration management for geotiflayer.

This module handles loading and managing configuration settings using
Dynaconf. Settings are loaded from multiple locations in order of
increasing priority:

1. Global settings (/etc/geotiflayer/)
2. User settings (~/.config/geotiflayer/)
3. Current directory settings (./)
4. Environment variable specified file (GEOTIFLAYER_SETTINGS_FILE_FOR_DYNACONF)

Attributes
----------
USER_DIR : pathlib.Path
    Path to user configuration directory.
GLOB_DIR : pathlib.Path
    Path to global configuration directory.
CURR_DIR : pathlib.Path
    Path to current working directory.
settings : Dynaconf
    The Dynaconf settings object with loaded configuration.
"""
import os
import pathlib
from dataclasses import dataclass
from typing import Optional, Tuple

from dynaconf import Dynaconf

DEFAULT_TILE_SIZE = 512
DEFAULT_QUALITY = 0.6
DEFAULT_URL_TEMPLATE = "./tile?x={x}&y={y}&z={z}"
IMAGE_FORMATS = ("png", "webp", "jpeg")

USER_DIR = pathlib.Path("~/.config/geotiflayer").expanduser()
GLOB_DIR = pathlib.Path("/etc/geotiflayer/")
CURR_DIR = pathlib.Path("./").absolute()
settings_files = [
    GLOB_DIR / "settings.toml",
    GLOB_DIR / ".secrets.toml",
    USER_DIR / "settings.toml",
    USER_DIR / ".secrets.toml",
    CURR_DIR / "settings.toml",
    CURR_DIR / ".secrets.toml"
    ]
extra_file = os.getenv("GEOTIFLAYER_SETTINGS_FILE_FOR_DYNACONF")
if extra_file:
    settings_files.append(pathlib.Path(extra_file).absolute())

settings = Dynaconf(
    merge_enabled = True,
    envvar_prefix="GEOTIFLAYER",
    settings_files=settings_files,
    environments=True,
    load_dotenv=True,
)


def change_env(new_env):
    """Change the active Dynaconf environment.

    Parameters
    ----------
    new_env : str
        The environment name to switch to (e.g., 'development', 'production').
    """
    settings.setenv(new_env)
    settings.reload()


@dataclass
class LayerOptions:
    """Options recognized by a tile layer.

    Parameters
    ----------
    source_url : str, optional
        GeoTIFF path or URL. Resolution only starts once this is set.
    tile_size : int, optional
        Pixel size of the emitted square tiles, by default 512.
    quality : float, optional
        Output compression quality in (0, 1], by default 0.6.
    ignore_transparent_color : bool, optional
        Make pixels colorized to ``transparent_color`` fully transparent.
    transparent_color : tuple of int, optional
        The sentinel RGB color, by default black.
    image_format : str, optional
        Encoded tile format, one of 'png', 'webp', 'jpeg'.
    raw_output : bool, optional
        Return raw RGBA arrays instead of encoded images.
    url_template : str, optional
        Tile URL template the (x, y, z) address is recovered from.
    """

    source_url: Optional[str] = None
    tile_size: int = DEFAULT_TILE_SIZE
    quality: float = DEFAULT_QUALITY
    ignore_transparent_color: bool = False
    transparent_color: Tuple[int, int, int] = (0, 0, 0)
    image_format: str = "png"
    raw_output: bool = False
    url_template: str = DEFAULT_URL_TEMPLATE

    def __post_init__(self):
        self.tile_size = int(self.tile_size)
        self.quality = float(self.quality)
        self.transparent_color = tuple(int(c) for c in self.transparent_color)
        self.image_format = str(self.image_format).lower()
        if self.tile_size <= 0:
            raise ValueError(f"tile_size must be positive, got {self.tile_size}")
        if not 0 < self.quality <= 1:
            raise ValueError(f"quality must be in (0, 1], got {self.quality}")
        if len(self.transparent_color) != 3:
            raise ValueError("transparent_color must be an RGB triple")
        if self.image_format not in IMAGE_FORMATS:
            raise ValueError(f"image_format must be one of {IMAGE_FORMATS}")

    @property
    def ignore_color(self) -> Optional[Tuple[int, int, int]]:
        """The color to suppress during colorization, or None."""
        return self.transparent_color if self.ignore_transparent_color else None

    @classmethod
    def from_settings(cls, **overrides) -> "LayerOptions":
        """Build options from the Dynaconf settings, then apply overrides."""
        values = dict(
            source_url=settings.get("source_url", None),
            tile_size=settings.get("tile_size", DEFAULT_TILE_SIZE),
            quality=settings.get("quality", DEFAULT_QUALITY),
            ignore_transparent_color=settings.get("ignore_transparent_color", False),
            transparent_color=settings.get("transparent_color", (0, 0, 0)),
            image_format=settings.get("image_format", "png"),
            raw_output=settings.get("raw_output", False),
            url_template=settings.get("url_template", DEFAULT_URL_TEMPLATE),
        )
        values.update(overrides)
        return cls(**values)
