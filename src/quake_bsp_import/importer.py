"""
Import orchestration for the Quake BSP importer.

Runs decode -> texture bank -> optional lightmap atlas -> meshes for the
world or for brush entities and returns owned result values. Decode
failures are reported through the result; atlas failures only drop the
lightmap UVs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .bsp_parser import BSPParser, DecodeError, Scene
from .chunker import ChunkCategory, MeshChunk, SpatialChunker
from .config import ImportConfig, WorldChunkMode
from .entities import BrushEntity, BrushEntityKind, parse_brush_entities
from .geometry_extractor import MaterialLibrary, MaterialParents
from .lightmap_atlas import AtlasError, LightmapAtlas, build_atlas, load_color_overlay_file
from .textures import Palette, TextureBank

logger = logging.getLogger(__name__)


@dataclass
class ImportRequest:
    """Input of one import call."""
    bsp_path: Path
    config: ImportConfig = field(default_factory=ImportConfig)
    palette: Optional[Palette] = None
    lit_path: Optional[Path] = None

    @property
    def map_name(self) -> str:
        return Path(self.bsp_path).stem

    @property
    def resolved_lit_path(self) -> Path:
        """Explicit .lit path, or the sibling <map>.lit."""
        if self.lit_path is not None:
            return Path(self.lit_path)
        return Path(self.bsp_path).with_suffix(".lit")


@dataclass
class SceneSummary:
    """Counts reported after decoding."""
    version: str
    vertices: int
    faces: int
    textures: int
    submodels: int
    leaves: int

    @classmethod
    def from_scene(cls, scene: Scene) -> SceneSummary:
        return cls(
            version=scene.version.value,
            vertices=len(scene.vertices),
            faces=len(scene.faces),
            textures=len(scene.textures),
            submodels=len(scene.submodels),
            leaves=len(scene.leaves),
        )


@dataclass
class WorldImportResult:
    """Meshes and materials produced by a world import."""
    map_name: str
    succeeded: bool
    message: str = ""
    summary: Optional[SceneSummary] = None
    chunks: List[MeshChunk] = field(default_factory=list)
    materials: Optional[MaterialLibrary] = None
    textures: Optional[TextureBank] = None
    atlas: Optional[LightmapAtlas] = None

    def chunks_of(self, category: ChunkCategory) -> List[MeshChunk]:
        return [c for c in self.chunks if c.category is category]

    @property
    def bsp_chunks(self) -> List[MeshChunk]:
        """Opaque and transparent world meshes."""
        return [
            c for c in self.chunks
            if c.category in (ChunkCategory.OPAQUE, ChunkCategory.TRANSPARENT)
        ]

    @property
    def water_chunks(self) -> List[MeshChunk]:
        return self.chunks_of(ChunkCategory.WATER)

    @property
    def sky_chunks(self) -> List[MeshChunk]:
        return self.chunks_of(ChunkCategory.SKY)


@dataclass
class EntityImportResult:
    """Meshes and materials produced by a brush entity import."""
    map_name: str
    succeeded: bool
    message: str = ""
    summary: Optional[SceneSummary] = None
    solid_chunks: List[MeshChunk] = field(default_factory=list)
    trigger_chunks: List[MeshChunk] = field(default_factory=list)
    materials: Optional[MaterialLibrary] = None
    textures: Optional[TextureBank] = None
    atlas: Optional[LightmapAtlas] = None

    @property
    def chunks(self) -> List[MeshChunk]:
        return self.solid_chunks + self.trigger_chunks


def load_scene(request: ImportRequest) -> Scene:
    """
    Decode the request's BSP file.

    Raises:
        DecodeError: If the file is not a valid BSP
        OSError: If the file cannot be read
    """
    logger.info(f"Parsing BSP file: {request.bsp_path}")
    scene = BSPParser().load(request.bsp_path)
    logger.info(f"  BSP version: {scene.version.value}")
    logger.info(f"  Vertices: {len(scene.vertices)}")
    logger.info(f"  Faces: {len(scene.faces)}")
    logger.info(f"  Textures: {len(scene.textures)}")
    logger.info(f"  Submodels: {len(scene.submodels)}")
    return scene


def load_atlas(scene: Scene, request: ImportRequest) -> Optional[LightmapAtlas]:
    """Build the lightmap atlas if requested; failures only disable it."""
    if not request.config.import_lightmaps:
        return None

    overlay = None
    if scene.light_data:
        overlay = load_color_overlay_file(request.resolved_lit_path, len(scene.light_data))
    try:
        return build_atlas(scene, overlay)
    except AtlasError as e:
        logger.warning(f"Lightmap atlas skipped: {e}")
        return None


def _prepare(request: ImportRequest, parents: MaterialParents, scene: Scene):
    textures = TextureBank(scene, request.palette)
    materials = MaterialLibrary.build(textures, parents)
    atlas = load_atlas(scene, request)
    chunker = SpatialChunker(
        scene,
        request.map_name,
        import_scale=request.config.import_scale,
        atlas=atlas,
        include_sky=request.config.include_sky,
        include_liquids=request.config.include_liquids,
        collision=request.config.collision,
        masked_texture_names=textures.masked_texture_names,
    )
    return textures, materials, atlas, chunker


def import_world(request: ImportRequest) -> WorldImportResult:
    """
    Import the world model (submodel 0) as chunked meshes.

    Args:
        request: File paths, configuration and palette

    Returns:
        Result with succeeded=False and a message if decoding failed
    """
    map_name = request.map_name
    config = request.config
    try:
        config.validate()
        scene = load_scene(request)
    except (DecodeError, ValueError) as e:
        logger.error(f"Import failed: {e}")
        return WorldImportResult(map_name=map_name, succeeded=False, message=str(e))
    except OSError as e:
        logger.error(f"File error: {e}")
        return WorldImportResult(map_name=map_name, succeeded=False, message=str(e))

    parents = config.materials.world_parents(config.import_lightmaps)
    textures, materials, atlas, chunker = _prepare(request, parents, scene)

    if config.world_chunk_mode is WorldChunkMode.GRID:
        logger.info(f"Chunking world on a {config.world_chunk_size} unit grid...")
        chunks = chunker.grid_chunks(config.world_chunk_size)
    else:
        logger.info("Chunking world by BSP leaf...")
        chunks = chunker.leaf_chunks()

    result = WorldImportResult(
        map_name=map_name,
        succeeded=True,
        summary=SceneSummary.from_scene(scene),
        chunks=chunks,
        materials=materials,
        textures=textures,
        atlas=atlas,
    )
    logger.info(
        f"  World meshes: {len(result.bsp_chunks)} solid, "
        f"{len(result.water_chunks)} water, {len(result.sky_chunks)} sky"
    )
    return result


def wanted_entity(entity: BrushEntity, config: ImportConfig) -> bool:
    """Whether the entity filters select this brush entity."""
    kind = entity.kind
    if kind is BrushEntityKind.DOOR:
        return config.entities.doors
    if kind is BrushEntityKind.PLAT:
        return config.entities.plats
    if kind is BrushEntityKind.TRIGGER:
        return config.entities.triggers
    return False


def import_entities(request: ImportRequest) -> EntityImportResult:
    """
    Import brush entities (doors, plats, triggers) as one mesh each.

    Args:
        request: File paths, configuration and palette

    Returns:
        Result with succeeded=False and a message if decoding failed
    """
    map_name = request.map_name
    config = request.config
    try:
        config.validate()
        scene = load_scene(request)
    except (DecodeError, ValueError) as e:
        logger.error(f"Import failed: {e}")
        return EntityImportResult(map_name=map_name, succeeded=False, message=str(e))
    except OSError as e:
        logger.error(f"File error: {e}")
        return EntityImportResult(map_name=map_name, succeeded=False, message=str(e))

    parents = config.materials.entity_parents(config.import_lightmaps)
    textures, materials, atlas, chunker = _prepare(request, parents, scene)

    result = EntityImportResult(
        map_name=map_name,
        succeeded=True,
        summary=SceneSummary.from_scene(scene),
        materials=materials,
        textures=textures,
        atlas=atlas,
    )

    entities = parse_brush_entities(scene.entities)
    logger.info(f"  Brush entities: {len(entities)}")

    for entity in entities:
        if not wanted_entity(entity, config):
            continue

        is_trigger = entity.kind is BrushEntityKind.TRIGGER
        name = f"SM_{map_name}_BSP_Entity_{entity.safe_classname}_{entity.ordinal}"
        profile = config.collision.entity_trigger if is_trigger else config.collision.entity_solid
        chunk = chunker.submodel_chunk(entity.submodel_index, name, profile)
        if chunk is None:
            continue

        if is_trigger:
            result.trigger_chunks.append(chunk)
        else:
            result.solid_chunks.append(chunk)

    logger.info(
        f"  Entity meshes: {len(result.solid_chunks)} solid, "
        f"{len(result.trigger_chunks)} trigger"
    )
    return result
