"""
Spatial Chunker Module for the Quake BSP importer.

Partitions world faces into meshes, either on a uniform 3D grid or per BSP
leaf, split by category (opaque, transparent, water, sky). Brush entity
submodels become one mesh each.
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, Hashable, Iterable, List, Optional, Tuple

from .bsp_parser import Scene
from .config import CollisionSettings
from .constants import COLLISION_NONE, LeafContents
from .geometry_extractor import (
    ChunkBuild,
    GeometryExtractor,
    MeshBuffers,
    collision_enabled,
    effective_collision_profile,
    is_liquid_texture,
    is_sky_texture,
    is_transparent_surface_name,
    is_trigger_texture,
)
from .lightmap_atlas import LightmapAtlas
from .vector import Vector3

logger = logging.getLogger(__name__)

WORLD_LIGHTMAP_RESOLUTION = 128
SUBMODEL_LIGHTMAP_RESOLUTION = 64


class ChunkCategory(Enum):
    """Mesh category of a face."""
    OPAQUE = "opaque"
    TRANSPARENT = "transparent"
    WATER = "water"
    SKY = "sky"


@dataclass
class MeshChunk:
    """One output mesh with its collision settings."""
    name: str
    category: ChunkCategory
    key: Tuple[int, ...]
    mesh: MeshBuffers
    collision_profile: Optional[str]
    masked: bool = False
    lightmap_resolution: int = WORLD_LIGHTMAP_RESOLUTION

    @property
    def collision_enabled(self) -> bool:
        return collision_enabled(self.collision_profile)


def classify_face(texture_name: str) -> ChunkCategory:
    """Category of a face from its texture name."""
    if is_sky_texture(texture_name):
        return ChunkCategory.SKY
    if is_liquid_texture(texture_name):
        return ChunkCategory.WATER
    if is_transparent_surface_name(texture_name):
        return ChunkCategory.TRANSPARENT
    return ChunkCategory.OPAQUE


def chunk_key(center: Vector3, chunk_size: int) -> Tuple[int, int, int]:
    """Grid cell of a point; a non-positive size maps everything to (0, 0, 0)."""
    if chunk_size <= 0:
        return (0, 0, 0)
    return (
        math.floor(center.x / chunk_size),
        math.floor(center.y / chunk_size),
        math.floor(center.z / chunk_size),
    )


def _grid_name(map_name: str, category: ChunkCategory, key: Tuple[int, ...]) -> str:
    x, y, z = key
    if category is ChunkCategory.WATER:
        return f"SM_{map_name}_BSP_World_Water_{x}_{y}_{z}"
    if category is ChunkCategory.SKY:
        return f"SM_{map_name}_BSP_World_Sky_{x}_{y}_{z}"
    suffix = "_Trans" if category is ChunkCategory.TRANSPARENT else ""
    return f"SM_{map_name}_BSP_World_{x}_{y}_{z}{suffix}"


def _leaf_name(map_name: str, category: ChunkCategory, key: Tuple[int, ...]) -> str:
    (leaf,) = key
    if category is ChunkCategory.WATER:
        return f"SM_{map_name}_BSP_World_Water_leaf_{leaf}"
    if category is ChunkCategory.SKY:
        return f"SM_{map_name}_BSP_World_Sky_leaf_{leaf}"
    suffix = "_Trans" if category is ChunkCategory.TRANSPARENT else ""
    return f"SM_{map_name}_BSP_World_leaf_{leaf}{suffix}"


# Output order of categories within a chunking pass.
CATEGORY_ORDER = (
    ChunkCategory.OPAQUE,
    ChunkCategory.TRANSPARENT,
    ChunkCategory.WATER,
    ChunkCategory.SKY,
)


class SpatialChunker:
    """
    Builds world and submodel meshes from a scene.

    Args:
        scene: Decoded scene
        map_name: Map name used in mesh names
        import_scale: Uniform scale applied to positions
        atlas: Optional lightmap atlas for the second UV set
        include_sky: Keep faces with 'sky' textures
        include_liquids: Keep faces with '*' textures
        collision: Collision profile names
        masked_texture_names: Textures that use palette alpha
    """

    def __init__(
        self,
        scene: Scene,
        map_name: str,
        import_scale: float = 1.0,
        atlas: Optional[LightmapAtlas] = None,
        include_sky: bool = True,
        include_liquids: bool = True,
        collision: Optional[CollisionSettings] = None,
        masked_texture_names: Iterable[str] = (),
    ):
        self.scene = scene
        self.map_name = map_name
        self.include_sky = include_sky
        self.include_liquids = include_liquids
        self.collision = collision or CollisionSettings()
        self.masked_texture_names: FrozenSet[str] = frozenset(masked_texture_names)
        self.extractor = GeometryExtractor(scene, import_scale, atlas)

    # -------------------------------------------------------------------------
    # World
    # -------------------------------------------------------------------------

    def world_faces(self) -> range:
        """Face range of submodel 0, or every face if there are no submodels."""
        world = self.scene.world
        if world is None:
            return range(len(self.scene.faces))
        return world.face_range

    def _face_category(self, face_index: int) -> Optional[ChunkCategory]:
        """Category of a face, or None if its category is excluded."""
        name = self.scene.texture_for_face(self.scene.faces[face_index]).name
        category = classify_face(name)
        if category is ChunkCategory.SKY and not self.include_sky:
            return None
        if category is ChunkCategory.WATER and not self.include_liquids:
            return None
        return category

    def grid_chunks(self, chunk_size: int) -> List[MeshChunk]:
        """
        Bucket world faces by the grid cell of their centroid.

        The centroid is taken over mirrored, unscaled positions.
        """
        return self._chunk(
            ((self._cell(face_index, chunk_size), face_index) for face_index in self.world_faces()),
            _grid_name,
        )

    def _cell(self, face_index: int, chunk_size: int) -> Tuple[int, int, int]:
        return chunk_key(self.extractor.face_centroid(face_index), chunk_size)

    def leaf_chunks(self) -> List[MeshChunk]:
        """
        Bucket faces by the BSP leaf that marks them.

        Solid leaves and leaves without marksurfaces are skipped; a face
        marked twice by the same leaf is added once.
        """
        return self._chunk(self._leaf_faces(), _leaf_name)

    def _leaf_faces(self):
        scene = self.scene
        for leaf_index, leaf in enumerate(scene.leaves):
            if leaf.num_marksurfaces == 0 or leaf.contents == LeafContents.SOLID:
                continue

            seen = set()
            for mark in range(leaf.first_marksurface, leaf.first_marksurface + leaf.num_marksurfaces):
                if not 0 <= mark < len(scene.marksurfaces):
                    continue
                face_index = scene.marksurfaces[mark]
                if not 0 <= face_index < len(scene.faces) or face_index in seen:
                    continue
                seen.add(face_index)
                yield (leaf_index,), face_index

    def _chunk(
        self,
        keyed_faces: Iterable[Tuple[Tuple[int, ...], int]],
        name_for: Callable[[str, ChunkCategory, Tuple[int, ...]], str],
    ) -> List[MeshChunk]:
        builds: Dict[ChunkCategory, Dict[Hashable, ChunkBuild]] = {
            category: OrderedDict() for category in CATEGORY_ORDER
        }

        for key, face_index in keyed_faces:
            category = self._face_category(face_index)
            if category is None:
                continue
            chunk = builds[category].get(key)
            if chunk is None:
                chunk = builds[category][key] = self.extractor.new_chunk()
            self.extractor.add_face(chunk, face_index)

        chunks = []
        for category in CATEGORY_ORDER:
            for key, build in builds[category].items():
                if build.is_empty:
                    continue
                chunks.append(
                    self._make_chunk(
                        name_for(self.map_name, category, key),
                        category,
                        key,
                        build,
                        self._default_profile(category),
                        WORLD_LIGHTMAP_RESOLUTION,
                    )
                )

        logger.debug(f"Built {len(chunks)} world chunks")
        return chunks

    def _default_profile(self, category: ChunkCategory) -> Optional[str]:
        if category is ChunkCategory.WATER:
            return self.collision.liquid
        if category is ChunkCategory.SKY:
            return self.collision.sky
        return self.collision.world_solid

    def _make_chunk(
        self,
        name: str,
        category: ChunkCategory,
        key: Tuple[int, ...],
        build: ChunkBuild,
        default_profile: Optional[str],
        lightmap_resolution: int,
    ) -> MeshChunk:
        mesh = self.extractor.finish(build)
        masked = any(name in self.masked_texture_names for name in mesh.slot_textures)
        return MeshChunk(
            name=name,
            category=category,
            key=key,
            mesh=mesh,
            collision_profile=effective_collision_profile(
                default_profile, self.collision.masked, masked
            ),
            masked=masked,
            lightmap_resolution=lightmap_resolution,
        )

    # -------------------------------------------------------------------------
    # Submodels
    # -------------------------------------------------------------------------

    def submodel_chunk(
        self,
        submodel_id: int,
        name: str,
        default_profile: Optional[str] = None,
    ) -> Optional[MeshChunk]:
        """
        Build one unchunked mesh for a submodel.

        Any face textured 'trigger' forces NoCollision.

        Returns:
            The mesh, or None for an invalid id or a submodel without faces
        """
        scene = self.scene
        if not 0 <= submodel_id < len(scene.submodels):
            logger.warning(f"Submodel {submodel_id} does not exist ({len(scene.submodels)} submodels)")
            return None

        build = self.extractor.new_chunk()
        any_trigger = False
        for face_index in scene.submodels[submodel_id].face_range:
            if not 0 <= face_index < len(scene.faces):
                continue
            texture = scene.texture_for_face(scene.faces[face_index])
            if is_trigger_texture(texture.name):
                any_trigger = True
            self.extractor.add_face(build, face_index)

        if build.is_empty:
            return None

        if default_profile is None:
            default_profile = self.collision.entity_solid
        profile = COLLISION_NONE if any_trigger else default_profile
        return self._make_chunk(
            name,
            ChunkCategory.OPAQUE,
            (submodel_id,),
            build,
            profile,
            SUBMODEL_LIGHTMAP_RESOLUTION,
        )
