"""
Quake BSP Importer

Decodes Quake BSP29 and BSP2 map files and turns them into chunked triangle
meshes with texture UVs, a packed lightmap atlas and per-mesh material and
collision settings.
"""

__version__ = "0.1.0"
__author__ = "Quake BSP Import Team"

from .bsp_parser import BSPParser, DecodeError, Scene, decode
from .chunker import ChunkCategory, MeshChunk, SpatialChunker
from .config import ImportConfig, WorldChunkMode
from .geometry_extractor import GeometryExtractor, MaterialLibrary, MeshBuffers
from .importer import ImportRequest, import_entities, import_world
from .lightmap_atlas import LightmapAtlas, build_atlas
from .textures import Palette, TextureBank

__all__ = [
    "BSPParser",
    "DecodeError",
    "Scene",
    "decode",
    "GeometryExtractor",
    "MeshBuffers",
    "MaterialLibrary",
    "SpatialChunker",
    "ChunkCategory",
    "MeshChunk",
    # Lightmaps
    "LightmapAtlas",
    "build_atlas",
    # Textures
    "Palette",
    "TextureBank",
    # Import
    "ImportConfig",
    "WorldChunkMode",
    "ImportRequest",
    "import_world",
    "import_entities",
]
