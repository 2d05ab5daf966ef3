"""
Lightmap Atlas Module for the Quake BSP importer.

Computes per-face lightmap rectangles from the texture projection, shelf-packs
them into a square atlas, fills the atlas from the light lump (or a colored
.lit overlay) and remaps face S/T coordinates into atlas UVs.
"""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from .bsp_parser import Scene
from .constants import (
    ATLAS_PADDING,
    ATLAS_SIZES,
    LIT_HEADER_SIZE,
    LIT_MAGIC,
    LIT_VERSION,
    LUXEL_SIZE,
    NO_LIGHT_STYLE,
)

logger = logging.getLogger(__name__)


class AtlasError(Exception):
    """Base class for lightmap atlas failures."""


class NoLightData(AtlasError):
    """The scene has no light data or no face with a usable lightmap."""


class AtlasPackingError(AtlasError):
    """The face rectangles do not fit into the largest atlas size."""


@dataclass(frozen=True)
class FaceLightmapRect:
    """Lightmap extent of one face, in luxels."""
    face_index: int
    min_s: int
    min_t: int
    width: int
    height: int
    light_offset: int = 0


@dataclass(frozen=True)
class AtlasPlacement:
    """Where a face's luxels landed in the atlas (border excluded)."""
    face_index: int
    x: int
    y: int
    width: int
    height: int
    min_s: int
    min_t: int


@dataclass
class LightmapAtlas:
    """
    Packed lightmap atlas.

    pixels is (H, W) uint8 for monochrome light data or (H, W, 4) uint8
    RGBA when a colored overlay was used.
    """

    width: int
    height: int
    pixels: np.ndarray
    placements: Dict[int, AtlasPlacement] = field(default_factory=dict)

    @property
    def is_colored(self) -> bool:
        return self.pixels.ndim == 3

    def lightmap_uv(self, face_index: int, s: float, t: float) -> Tuple[float, float]:
        """
        Map a face's texel-space (S, T) to atlas UV.

        Faces without a placement map to (0, 0).
        """
        placement = self.placements.get(face_index)
        if placement is None or self.width <= 0 or self.height <= 0:
            return 0.0, 0.0

        lm_s = (s - placement.min_s) / LUXEL_SIZE
        lm_t = (t - placement.min_t) / LUXEL_SIZE
        u = (placement.x + lm_s + 0.5) / self.width
        v = (placement.y + lm_t + 0.5) / self.height
        return u, v

    def to_image(self) -> Image.Image:
        """Convert to a Pillow image (mode L or RGBA)."""
        return Image.fromarray(self.pixels)


# =============================================================================
# Face Rectangles
# =============================================================================

def compute_face_rect(scene: Scene, face_index: int) -> Optional[FaceLightmapRect]:
    """
    Compute the lightmap rectangle of a face.

    S/T extents are snapped outward to the 16-unit luxel grid; the size is
    extent / 16 + 1 luxels per axis.
    """
    face = scene.faces[face_index]
    texinfo = scene.texinfos[face.texinfo_index]

    points = np.array(
        [v.to_tuple() for v in scene.face_vertices(face)], dtype=np.float32
    )
    if len(points) == 0:
        return None

    vecs = np.array(texinfo.vecs, dtype=np.float32)
    st = points @ vecs[:, :3].T + vecs[:, 3]
    min_s, min_t = st.min(axis=0)
    max_s, max_t = st.max(axis=0)

    tex_min_s = math.floor(min_s / LUXEL_SIZE) * LUXEL_SIZE
    tex_min_t = math.floor(min_t / LUXEL_SIZE) * LUXEL_SIZE
    tex_max_s = math.ceil(max_s / LUXEL_SIZE) * LUXEL_SIZE
    tex_max_t = math.ceil(max_t / LUXEL_SIZE) * LUXEL_SIZE

    ext_s = max(0, tex_max_s - tex_min_s)
    ext_t = max(0, tex_max_t - tex_min_t)

    return FaceLightmapRect(
        face_index=face_index,
        min_s=tex_min_s,
        min_t=tex_min_t,
        width=ext_s // LUXEL_SIZE + 1,
        height=ext_t // LUXEL_SIZE + 1,
        light_offset=face.light_offset,
    )


def collect_face_rects(scene: Scene) -> List[FaceLightmapRect]:
    """Rectangles of every face that has usable light data."""
    rects = []
    for face_index, face in enumerate(scene.faces):
        if face.light_offset < 0 or face.styles[0] == NO_LIGHT_STYLE:
            continue

        rect = compute_face_rect(scene, face_index)
        if rect is None or rect.width <= 0 or rect.height <= 0:
            continue

        if face.light_offset + rect.width * rect.height > len(scene.light_data):
            logger.debug(f"Face {face_index} lightmap overruns the light lump, skipping")
            continue

        rects.append(rect)
    return rects


# =============================================================================
# Packing
# =============================================================================

def pack_rects(
    rects: Sequence[FaceLightmapRect],
    sizes: Sequence[int] = ATLAS_SIZES,
    padding: int = ATLAS_PADDING,
) -> Tuple[int, List[AtlasPlacement]]:
    """
    Shelf-pack rectangles into the smallest square canvas that fits.

    Rectangles are placed tallest first (then widest), left to right in rows.
    Each occupies its size plus `padding` on every side.

    Returns:
        Canvas size and placements, in packing order

    Raises:
        AtlasPackingError: If no canvas size fits every rectangle
    """
    ordered = sorted(rects, key=lambda r: (-r.height, -r.width))

    for size in sizes:
        placements = _shelf_pack(ordered, size, padding)
        if placements is not None:
            return size, placements

    raise AtlasPackingError(
        f"Could not pack {len(rects)} lightmaps into a {max(sizes)}x{max(sizes)} atlas"
    )


def _shelf_pack(
    rects: Sequence[FaceLightmapRect], size: int, padding: int
) -> Optional[List[AtlasPlacement]]:
    placements = []
    cursor_x = 0
    cursor_y = 0
    row_height = 0

    for rect in rects:
        padded_w = rect.width + padding * 2
        padded_h = rect.height + padding * 2
        if padded_w > size or padded_h > size:
            return None

        if cursor_x + padded_w > size:
            cursor_x = 0
            cursor_y += row_height
            row_height = 0

        if cursor_y + padded_h > size:
            return None

        placements.append(
            AtlasPlacement(
                face_index=rect.face_index,
                x=cursor_x + padding,
                y=cursor_y + padding,
                width=rect.width,
                height=rect.height,
                min_s=rect.min_s,
                min_t=rect.min_t,
            )
        )
        cursor_x += padded_w
        row_height = max(row_height, padded_h)

    return placements


# =============================================================================
# Colored Light Overlay (.lit)
# =============================================================================

def load_color_overlay(data: bytes, light_data_length: int) -> Optional[bytes]:
    """
    Validate .lit contents and return the RGB payload.

    The file must carry the QLIT magic, version 1 and exactly three bytes per
    byte of the BSP light lump. Anything else returns None.
    """
    if len(data) < LIT_HEADER_SIZE:
        logger.warning(f"Colored lightmap file too small ({len(data)} bytes)")
        return None

    magic = data[:4]
    (version,) = struct.unpack_from("<i", data, 4)
    payload = len(data) - LIT_HEADER_SIZE
    expected = light_data_length * 3

    if magic != LIT_MAGIC or version != LIT_VERSION or payload != expected:
        logger.warning(
            f"Ignoring colored lightmap (magic={magic!r} version={version} "
            f"payload={payload} expected={expected})"
        )
        return None
    return bytes(data[LIT_HEADER_SIZE:])


def load_color_overlay_file(filepath: str | Path, light_data_length: int) -> Optional[bytes]:
    """Read and validate a .lit file; a missing file returns None."""
    filepath = Path(filepath)
    if not filepath.exists():
        logger.debug(f"No colored lightmap at {filepath}")
        return None
    return load_color_overlay(filepath.read_bytes(), light_data_length)


# =============================================================================
# Atlas
# =============================================================================

def build_atlas(
    scene: Scene,
    color_overlay: Optional[bytes] = None,
    sizes: Sequence[int] = ATLAS_SIZES,
    padding: int = ATLAS_PADDING,
) -> LightmapAtlas:
    """
    Build the lightmap atlas for a scene.

    Args:
        scene: Decoded scene
        color_overlay: Validated RGB payload from a .lit file
        sizes: Candidate canvas sizes, smallest first
        padding: Border luxels around each face

    Returns:
        Filled atlas with per-face placements

    Raises:
        NoLightData: If there is no light lump or no face has a lightmap
        AtlasPackingError: If the lightmaps do not fit the largest size
    """
    if not scene.light_data:
        raise NoLightData("BSP has no light data")

    rects = collect_face_rects(scene)
    if not rects:
        raise NoLightData("No face has a usable lightmap")

    size, placements = pack_rects(rects, sizes, padding)
    offsets = {rect.face_index: rect.light_offset for rect in rects}

    if color_overlay is not None:
        source = np.frombuffer(color_overlay, dtype=np.uint8).reshape(-1, 3)
        pixels = np.zeros((size, size, 4), dtype=np.uint8)
    else:
        source = np.frombuffer(scene.light_data, dtype=np.uint8)
        pixels = np.zeros((size, size), dtype=np.uint8)

    for p in placements:
        start = offsets[p.face_index]
        block = source[start:start + p.width * p.height]
        if color_overlay is not None:
            block = block.reshape(p.height, p.width, 3)
            padded = np.pad(block, ((padding, padding), (padding, padding), (0, 0)), mode="edge")
            region = pixels[
                p.y - padding:p.y + p.height + padding,
                p.x - padding:p.x + p.width + padding,
            ]
            region[..., :3] = padded
            region[..., 3] = 255
        else:
            block = block.reshape(p.height, p.width)
            pixels[
                p.y - padding:p.y + p.height + padding,
                p.x - padding:p.x + p.width + padding,
            ] = np.pad(block, padding, mode="edge")

    logger.info(
        f"Packed {len(placements)} lightmaps into a {size}x{size} "
        f"{'RGBA' if color_overlay is not None else 'grayscale'} atlas"
    )
    return LightmapAtlas(
        width=size,
        height=size,
        pixels=pixels,
        placements={p.face_index: p for p in placements},
    )
