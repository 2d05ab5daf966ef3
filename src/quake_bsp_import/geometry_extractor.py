"""
Geometry Extractor Module for the Quake BSP importer.

Converts BSP faces into indexed triangle meshes with per-wedge normals,
texture UVs, lightmap UVs and per-triangle material slots. Also resolves
the parent material and collision profile for a mesh.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .bsp_parser import Scene
from .constants import (
    COLLISION_NONE,
    LIQUID_PREFIX,
    PLACEHOLDER_MATERIAL,
    SKY_PREFIX,
    TRIGGER_PREFIX,
    TRIGGER_TEXTURE,
)
from .lightmap_atlas import LightmapAtlas
from .textures import TextureBank, sanitize_surface_name
from .vector import BoundingBox, Vector3

logger = logging.getLogger(__name__)


@dataclass
class MeshBuffers:
    """
    Indexed triangle mesh in wedge layout.

    Positions are shared per BSP vertex; every triangle corner (wedge) has
    its own normal and UV sets.
    """

    positions: np.ndarray  # Shape: (V, 3) float32
    wedge_indices: np.ndarray  # Shape: (W,) int32, W = 3 * T
    normals: np.ndarray  # Shape: (W, 3) float32
    uv_surface: np.ndarray  # Shape: (W, 2) float32
    uv_lightmap: np.ndarray  # Shape: (W, 2) float32
    triangle_material_slot: np.ndarray  # Shape: (T,) int32
    slot_textures: List[str] = field(default_factory=list)
    has_lightmap_uvs: bool = False

    @classmethod
    def empty(cls) -> MeshBuffers:
        return cls(
            positions=np.zeros((0, 3), dtype=np.float32),
            wedge_indices=np.zeros(0, dtype=np.int32),
            normals=np.zeros((0, 3), dtype=np.float32),
            uv_surface=np.zeros((0, 2), dtype=np.float32),
            uv_lightmap=np.zeros((0, 2), dtype=np.float32),
            triangle_material_slot=np.zeros(0, dtype=np.int32),
        )

    @property
    def vertex_count(self) -> int:
        """Number of unique vertices in mesh."""
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        """Number of triangles in mesh."""
        return len(self.triangle_material_slot)

    @property
    def triangles(self) -> np.ndarray:
        """Vertex indices as (T, 3)."""
        return self.wedge_indices.reshape(-1, 3)

    @property
    def is_empty(self) -> bool:
        return self.triangle_count == 0

    @property
    def bounds(self) -> Optional[BoundingBox]:
        """Get mesh bounding box."""
        if len(self.positions) == 0:
            return None
        return BoundingBox(
            Vector3.from_array(self.positions.min(axis=0)),
            Vector3.from_array(self.positions.max(axis=0)),
        )

    def export_obj(self, filepath: str | Path) -> None:
        """
        Export mesh to Wavefront OBJ format.

        One `usemtl` group per material slot, named after the sanitized
        texture name. Surface UVs are written with V flipped for OBJ.

        Args:
            filepath: Output file path
        """
        with open(filepath, "w") as f:
            f.write("# Quake BSP Import Geometry Export\n")
            f.write(f"# Vertices: {self.vertex_count}\n")
            f.write(f"# Triangles: {self.triangle_count}\n\n")

            for v in self.positions:
                f.write(f"v {v[0]:.6f} {v[1]:.6f} {v[2]:.6f}\n")
            f.write("\n")

            for uv in self.uv_surface:
                f.write(f"vt {uv[0]:.6f} {1.0 - uv[1]:.6f}\n")
            f.write("\n")

            for n in self.normals:
                f.write(f"vn {n[0]:.6f} {n[1]:.6f} {n[2]:.6f}\n")
            f.write("\n")

            # OBJ uses 1-based indices; vt/vn are per wedge
            current_slot = None
            for tri_index, slot in enumerate(self.triangle_material_slot):
                if slot != current_slot:
                    current_slot = slot
                    f.write(f"usemtl {sanitize_surface_name(self.slot_textures[slot])}\n")
                corners = []
                for corner in range(3):
                    w = tri_index * 3 + corner
                    corners.append(f"{self.wedge_indices[w] + 1}/{w + 1}/{w + 1}")
                f.write(f"f {' '.join(corners)}\n")


class ChunkBuild:
    """
    Accumulates faces into one mesh.

    Output vertices are deduplicated by BSP vertex index; material slots are
    assigned per distinct texture id in first-seen order.
    """

    def __init__(self):
        self.positions: List[Tuple[float, float, float]] = []
        self.wedge_indices: List[int] = []
        self.normals: List[Tuple[float, float, float]] = []
        self.uv_surface: List[Tuple[float, float]] = []
        self.uv_lightmap: List[Tuple[float, float]] = []
        self.triangle_slots: List[int] = []
        self.slot_texture_ids: List[int] = []
        self._vertex_map: Dict[int, int] = {}
        self._slot_map: Dict[int, int] = {}

    @property
    def is_empty(self) -> bool:
        return not self.wedge_indices

    def vertex(self, scene: Scene, bsp_index: int, scale: float) -> int:
        """Local index of a BSP vertex, adding it on first use."""
        local = self._vertex_map.get(bsp_index)
        if local is None:
            local = len(self.positions)
            self._vertex_map[bsp_index] = local
            p = scene.vertices[bsp_index].flipped() * scale
            self.positions.append(p.to_tuple())
        return local

    def slot(self, texture_id: int) -> int:
        """Material slot of a texture id, adding it on first use."""
        slot = self._slot_map.get(texture_id)
        if slot is None:
            slot = len(self.slot_texture_ids)
            self._slot_map[texture_id] = slot
            self.slot_texture_ids.append(texture_id)
        return slot

    def add_face(
        self,
        scene: Scene,
        face_index: int,
        scale: float,
        atlas: Optional[LightmapAtlas] = None,
    ) -> int:
        """
        Fan-triangulate one face into the chunk.

        Returns:
            Number of triangles added
        """
        face = scene.faces[face_index]
        texinfo = scene.texinfos[face.texinfo_index]
        texture = scene.textures[texinfo.texture_index]
        normal = scene.planes[face.plane_index].normal.to_tuple()

        vertex_ids = scene.face_vertex_indices(face)
        surface_uvs = []
        lightmap_uvs = []
        for vertex_id in vertex_ids:
            s, t = texinfo.project(scene.vertices[vertex_id])
            if texture.is_placeholder:
                surface_uvs.append((0.0, 0.0))
            else:
                surface_uvs.append((s / texture.width, t / texture.height))
            if atlas is not None:
                lightmap_uvs.append(atlas.lightmap_uv(face_index, s, t))
            else:
                lightmap_uvs.append((0.0, 0.0))

        slot = self.slot(texinfo.texture_index)
        num_triangles = max(0, len(vertex_ids) - 2)
        for k in range(num_triangles):
            for corner in (0, k + 1, k + 2):
                self.wedge_indices.append(self.vertex(scene, vertex_ids[corner], scale))
                self.normals.append(normal)
                self.uv_surface.append(surface_uvs[corner])
                self.uv_lightmap.append(lightmap_uvs[corner])
            self.triangle_slots.append(slot)

        return num_triangles

    def finish(self, scene: Scene, has_lightmap_uvs: bool = False) -> MeshBuffers:
        """Freeze the accumulated data into numpy buffers."""
        if self.is_empty:
            return MeshBuffers.empty()

        return MeshBuffers(
            positions=np.array(self.positions, dtype=np.float32),
            wedge_indices=np.array(self.wedge_indices, dtype=np.int32),
            normals=np.array(self.normals, dtype=np.float32),
            uv_surface=np.array(self.uv_surface, dtype=np.float32),
            uv_lightmap=np.array(self.uv_lightmap, dtype=np.float32),
            triangle_material_slot=np.array(self.triangle_slots, dtype=np.int32),
            slot_textures=[scene.textures[i].name for i in self.slot_texture_ids],
            has_lightmap_uvs=has_lightmap_uvs,
        )


class GeometryExtractor:
    """
    Builds meshes from face lists of a scene.

    Args:
        scene: Decoded scene
        import_scale: Uniform scale applied after the X mirror
        atlas: Optional lightmap atlas for the second UV set
    """

    def __init__(
        self,
        scene: Scene,
        import_scale: float = 1.0,
        atlas: Optional[LightmapAtlas] = None,
    ):
        self.scene = scene
        self.import_scale = import_scale
        self.atlas = atlas

    def new_chunk(self) -> ChunkBuild:
        return ChunkBuild()

    def add_face(self, chunk: ChunkBuild, face_index: int) -> int:
        return chunk.add_face(self.scene, face_index, self.import_scale, self.atlas)

    def finish(self, chunk: ChunkBuild) -> MeshBuffers:
        return chunk.finish(self.scene, has_lightmap_uvs=self.atlas is not None)

    def build_mesh(self, faces: Iterable[int]) -> MeshBuffers:
        """Build one mesh from a list of face indices."""
        chunk = self.new_chunk()
        for face_index in faces:
            self.add_face(chunk, face_index)
        return self.finish(chunk)

    def face_centroid(self, face_index: int) -> Vector3:
        """Mean of a face's mirrored, unscaled vertex positions."""
        points = [v.flipped() for v in self.scene.face_vertices(self.scene.faces[face_index])]
        total = Vector3.zero()
        for p in points:
            total = total + p
        return total / len(points)


def build_mesh(
    scene: Scene,
    faces: Iterable[int],
    import_scale: float = 1.0,
    atlas: Optional[LightmapAtlas] = None,
) -> MeshBuffers:
    """Build one mesh from a list of face indices."""
    return GeometryExtractor(scene, import_scale, atlas).build_mesh(faces)


# =============================================================================
# Materials
# =============================================================================

class MaterialKind(Enum):
    """Parent material family of a texture."""
    SURFACE = "surface"
    TRANSPARENT = "transparent"
    SKY = "sky"
    TRIGGER = "trigger"
    MASKED = "masked"


def is_sky_texture(name: str) -> bool:
    return name.startswith(SKY_PREFIX)


def is_liquid_texture(name: str) -> bool:
    return name.startswith(LIQUID_PREFIX)


def is_transparent_surface_name(name: str) -> bool:
    """Liquids ('*' prefix) and the literal 'trigger' texture."""
    return name.startswith(LIQUID_PREFIX) or name.lower() == TRIGGER_TEXTURE


def is_trigger_texture(name: str) -> bool:
    return name.lower() == TRIGGER_TEXTURE


@dataclass
class MaterialParents:
    """Parent material per family; None falls back to the placeholder."""
    surface: Optional[str] = None
    transparent: Optional[str] = None
    sky: Optional[str] = None
    trigger: Optional[str] = None
    masked: Optional[str] = None

    def for_kind(self, kind: MaterialKind) -> Optional[str]:
        return getattr(self, kind.value)


def resolve_material_kind(
    name: str,
    has_palette_alpha: bool = False,
    parents: Optional[MaterialParents] = None,
) -> MaterialKind:
    """
    Pick the parent material family for a texture name.

    Masked wins when the texture uses palette alpha and a masked parent is
    configured. Otherwise: trigger prefix (only when a trigger parent is
    configured, if parents are given), sky prefix, liquid or palette alpha,
    the literal 'trigger' name, then plain surface.
    """
    if has_palette_alpha and parents is not None and parents.masked:
        return MaterialKind.MASKED
    if name.lower().startswith(TRIGGER_PREFIX) and (parents is None or parents.trigger):
        return MaterialKind.TRIGGER
    if is_sky_texture(name):
        return MaterialKind.SKY
    if is_liquid_texture(name) or has_palette_alpha:
        return MaterialKind.TRANSPARENT
    if is_transparent_surface_name(name):
        return MaterialKind.TRANSPARENT
    return MaterialKind.SURFACE


@dataclass(frozen=True)
class MaterialBinding:
    """Material instance description for one texture."""
    texture_name: str
    kind: MaterialKind
    parent: str
    image_name: str = ""
    masked: bool = False

    @property
    def instance_name(self) -> str:
        return "MI_" + sanitize_surface_name(self.texture_name)

    @property
    def slot_name(self) -> str:
        return sanitize_surface_name(self.texture_name)


class MaterialLibrary:
    """Texture name to material binding, with placeholder fallback."""

    def __init__(self, bindings: Dict[str, MaterialBinding]):
        self.bindings = bindings

    @classmethod
    def build(cls, bank: TextureBank, parents: Optional[MaterialParents] = None) -> MaterialLibrary:
        parents = parents or MaterialParents()
        bindings = {}
        for name, image in bank.material_images.items():
            masked = image.has_palette_alpha
            kind = resolve_material_kind(name, masked, parents)
            bindings[name] = MaterialBinding(
                texture_name=name,
                kind=kind,
                parent=parents.for_kind(kind) or PLACEHOLDER_MATERIAL,
                image_name=image.asset_name,
                masked=masked,
            )
        return cls(bindings)

    def material_for(self, texture_name: str) -> str:
        """Parent material of a texture, or the placeholder."""
        binding = self.bindings.get(texture_name)
        return binding.parent if binding else PLACEHOLDER_MATERIAL


# =============================================================================
# Collision
# =============================================================================

def effective_collision_profile(
    default_profile: Optional[str],
    masked_profile: Optional[str],
    masked: bool,
) -> Optional[str]:
    """Swap in the masked profile for meshes that use palette-alpha textures."""
    if masked and masked_profile and default_profile != COLLISION_NONE:
        return masked_profile
    return default_profile


def collision_enabled(profile: Optional[str]) -> bool:
    return bool(profile) and profile != COLLISION_NONE
