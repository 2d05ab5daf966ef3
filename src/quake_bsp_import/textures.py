"""
Texture Bank Module for the Quake BSP importer.

Turns the palette-indexed miptex entries of a Scene into images: sky
textures are split into their two layers, animated "+0" textures are
stacked into a vertical frame strip and palette-alpha (index 255) is
detected for masked materials.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set

import numpy as np
from PIL import Image

from .bsp_parser import MipTexture, Scene
from .constants import ANIMATED_PREFIX, PALETTE_SIZE, PALETTE_TRANSPARENT_INDEX, SKY_PREFIX

logger = logging.getLogger(__name__)


def sanitize_surface_name(name: str) -> str:
    """
    Make a texture name safe for use as an asset or slot name.

    A leading '*' becomes '-'; any other character that is not
    alphanumeric, '_' or '-' becomes '_'.
    """
    if name.startswith("*"):
        name = "-" + name[1:]
    return "".join(c if c.isalnum() or c in "_-" else "_" for c in name)


class Palette:
    """256-entry RGB palette used to expand palette-indexed textures."""

    def __init__(self, colors: np.ndarray):
        colors = np.asarray(colors, dtype=np.uint8)
        if colors.shape != (256, 3):
            raise ValueError(f"Palette must have 256 RGB entries, got shape {colors.shape}")
        self.colors = colors

    @classmethod
    def from_lmp(cls, data: bytes) -> Palette:
        """Create a palette from palette.lmp contents (768 bytes)."""
        if len(data) < PALETTE_SIZE:
            raise ValueError(f"Palette data too small ({len(data)} bytes, need {PALETTE_SIZE})")
        colors = np.frombuffer(data[:PALETTE_SIZE], dtype=np.uint8).reshape(256, 3)
        return cls(colors.copy())

    @classmethod
    def load(cls, filepath: str | Path) -> Palette:
        """Load a palette.lmp file."""
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Palette file not found: {filepath}")
        return cls.from_lmp(filepath.read_bytes())

    @classmethod
    def grayscale(cls) -> Palette:
        """Identity ramp; index i maps to (i, i, i)."""
        ramp = np.arange(256, dtype=np.uint8)
        return cls(np.stack([ramp, ramp, ramp], axis=1))


@dataclass
class TextureImage:
    """A palette-indexed image produced from one or more miptex entries."""
    name: str
    indices: np.ndarray  # Shape: (H, W) uint8
    source_name: str = ""

    @property
    def width(self) -> int:
        return int(self.indices.shape[1])

    @property
    def height(self) -> int:
        return int(self.indices.shape[0])

    @property
    def has_palette_alpha(self) -> bool:
        """True if any pixel uses the transparent palette index."""
        return bool(np.any(self.indices == PALETTE_TRANSPARENT_INDEX))

    @property
    def asset_name(self) -> str:
        return sanitize_surface_name(self.name)

    def to_rgba(self, palette: Palette) -> np.ndarray:
        """Expand to RGBA, alpha 0 where the palette index is 255."""
        rgba = np.empty((self.height, self.width, 4), dtype=np.uint8)
        rgba[..., :3] = palette.colors[self.indices]
        rgba[..., 3] = np.where(self.indices == PALETTE_TRANSPARENT_INDEX, 0, 255)
        return rgba

    def to_image(self, palette: Palette) -> Image.Image:
        """Convert to a Pillow RGBA image."""
        return Image.fromarray(self.to_rgba(palette))


def _indices(texture: MipTexture) -> np.ndarray:
    return np.frombuffer(texture.data, dtype=np.uint8).reshape(texture.height, texture.width)


def next_frame_name(name: str, frame: int) -> str:
    """Name of the frame that follows '+0name' by `frame` steps."""
    return name[0] + chr(ord(name[1]) + frame) + name[2:]


class TextureBank:
    """
    Images and masked flags for every embedded texture of a scene.

    `images` holds every image to export (sky textures contribute a _front
    and _back layer). `material_images` maps an original texture name to the
    image its material samples.
    """

    def __init__(self, scene: Scene, palette: Optional[Palette] = None):
        self.palette = palette or Palette.grayscale()
        self.images: List[TextureImage] = []
        self.material_images: Dict[str, TextureImage] = {}
        self._build(scene)

    @property
    def masked_texture_names(self) -> Set[str]:
        """Original texture names whose material image uses palette alpha."""
        return {
            name for name, image in self.material_images.items() if image.has_palette_alpha
        }

    def _build(self, scene: Scene) -> None:
        by_name = {t.name: t for t in scene.textures if not t.is_placeholder}

        for texture in scene.textures:
            if texture.is_placeholder:
                continue
            if texture.name in self.material_images:
                logger.debug(f"Duplicate texture name {texture.name}, keeping first")
                continue

            if texture.name.startswith(SKY_PREFIX):
                image = self._split_sky(texture)
            elif texture.name.startswith(ANIMATED_PREFIX + "0"):
                image = self._stack_frames(texture, by_name)
            else:
                image = TextureImage(texture.name, _indices(texture), texture.name)
                self.images.append(image)

            self.material_images[texture.name] = image

        logger.debug(
            f"Texture bank: {len(self.images)} images, "
            f"{len(self.masked_texture_names)} masked"
        )

    def _split_sky(self, texture: MipTexture) -> TextureImage:
        """Split a sky texture into front (left) and back (right) halves."""
        pixels = _indices(texture)
        half = texture.width // 2
        front = TextureImage(f"{texture.name}_front", pixels[:, :half].copy(), texture.name)
        back = TextureImage(f"{texture.name}_back", pixels[:, half:2 * half].copy(), texture.name)
        self.images.extend([front, back])
        return back

    def _stack_frames(self, texture: MipTexture, by_name: Dict[str, MipTexture]) -> TextureImage:
        """Stack '+0name', '+1name', ... vertically into one strip."""
        frames = [_indices(texture)]
        while True:
            frame = by_name.get(next_frame_name(texture.name, len(frames)))
            if frame is None:
                break
            if frame.width != texture.width or frame.height != texture.height:
                logger.warning(
                    f"Animation frame {frame.name} size {frame.width}x{frame.height} "
                    f"differs from {texture.name}, stopping strip"
                )
                break
            frames.append(_indices(frame))

        image = TextureImage(texture.name, np.vstack(frames), texture.name)
        self.images.append(image)
        return image
