"""Tests for world chunking and submodel meshes."""

import pytest

from quake_bsp_import.bsp_parser import decode
from quake_bsp_import.chunker import (
    SUBMODEL_LIGHTMAP_RESOLUTION,
    WORLD_LIGHTMAP_RESOLUTION,
    ChunkCategory,
    SpatialChunker,
    chunk_key,
    classify_face,
)
from quake_bsp_import.config import CollisionSettings
from quake_bsp_import.constants import COLLISION_BLOCK_ALL, COLLISION_NONE
from quake_bsp_import.vector import Vector3

from conftest import BSPBuilder, add_quad


def _world_bsp():
    """Wall quads in two grid cells plus water and sky quads in the first."""
    b = BSPBuilder()
    wall = b.add_texinfo(b.add_texture("wall"))
    water = b.add_texinfo(b.add_texture("*water1"))
    sky = b.add_texinfo(b.add_texture("sky1", 16, 4))
    add_quad(b, wall, origin=(0, 0, 0))
    add_quad(b, wall, origin=(600, 0, 0))
    add_quad(b, water, origin=(64, 0, 0))
    add_quad(b, sky, origin=(0, 0, 128))
    b.add_model(0, 4)
    return b


class TestClassify:
    """Tests for classify_face and chunk_key."""

    def test_categories(self):
        assert classify_face("sky3") is ChunkCategory.SKY
        assert classify_face("*lava1") is ChunkCategory.WATER
        assert classify_face("trigger") is ChunkCategory.TRANSPARENT
        assert classify_face("wall") is ChunkCategory.OPAQUE

    def test_chunk_key_floors(self):
        assert chunk_key(Vector3(-1.0, 511.0, 512.0), 512) == (-1, 0, 1)

    def test_chunk_key_non_positive_size(self):
        assert chunk_key(Vector3(9000.0, 1.0, 1.0), 0) == (0, 0, 0)


class TestGridChunks:
    """Tests for grid chunking."""

    def test_cells_and_categories(self):
        chunker = SpatialChunker(decode(_world_bsp().build()), "e1m1")
        chunks = chunker.grid_chunks(512)
        names = [c.name for c in chunks]
        assert names == [
            "SM_e1m1_BSP_World_-1_0_0",
            "SM_e1m1_BSP_World_-2_0_0",
            "SM_e1m1_BSP_World_Water_-1_0_0",
            "SM_e1m1_BSP_World_Sky_-1_0_0",
        ]

    def test_sky_disabled(self):
        chunker = SpatialChunker(decode(_world_bsp().build()), "e1m1", include_sky=False)
        chunks = chunker.grid_chunks(512)
        assert not any(c.category is ChunkCategory.SKY for c in chunks)

    def test_liquids_disabled(self):
        chunker = SpatialChunker(decode(_world_bsp().build()), "e1m1", include_liquids=False)
        chunks = chunker.grid_chunks(512)
        assert not any(c.category is ChunkCategory.WATER for c in chunks)

    def test_collision_defaults(self):
        chunker = SpatialChunker(decode(_world_bsp().build()), "e1m1")
        by_category = {c.category: c for c in chunker.grid_chunks(512)}
        assert by_category[ChunkCategory.OPAQUE].collision_profile == COLLISION_BLOCK_ALL
        assert by_category[ChunkCategory.OPAQUE].collision_enabled
        assert by_category[ChunkCategory.WATER].collision_profile == COLLISION_NONE
        assert not by_category[ChunkCategory.SKY].collision_enabled

    def test_lightmap_resolution(self):
        chunker = SpatialChunker(decode(_world_bsp().build()), "e1m1")
        assert all(
            c.lightmap_resolution == WORLD_LIGHTMAP_RESOLUTION for c in chunker.grid_chunks(512)
        )

    def test_masked_profile(self):
        b = BSPBuilder()
        fence = b.add_texinfo(b.add_texture("fence", 2, 2, fill=255))
        add_quad(b, fence)
        collision = CollisionSettings(masked="OverlapAll")
        chunker = SpatialChunker(
            decode(b.build()), "e1m1", collision=collision, masked_texture_names={"fence"}
        )
        (chunk,) = chunker.grid_chunks(512)
        assert chunk.masked
        assert chunk.collision_profile == "OverlapAll"

    def test_only_world_faces(self):
        b = _world_bsp()
        add_quad(b, 0, origin=(0, 0, 512))
        b.add_model(4, 1)
        chunker = SpatialChunker(decode(b.build()), "e1m1")
        total = sum(c.mesh.triangle_count for c in chunker.grid_chunks(512))
        assert total == 8

    def test_scale_does_not_change_cells(self):
        scene = decode(_world_bsp().build())
        a = [c.name for c in SpatialChunker(scene, "m", import_scale=1.0).grid_chunks(512)]
        b = [c.name for c in SpatialChunker(scene, "m", import_scale=4.0).grid_chunks(512)]
        assert a == b


class TestLeafChunks:
    """Tests for leaf chunking."""

    def test_leaf_names(self):
        b = _world_bsp()
        b.add_leaf([], contents=-2)
        b.add_leaf([0, 2, 0])
        b.add_leaf([1, 3])
        chunker = SpatialChunker(decode(b.build()), "e1m1")
        chunks = chunker.leaf_chunks()
        assert [c.name for c in chunks] == [
            "SM_e1m1_BSP_World_leaf_1",
            "SM_e1m1_BSP_World_leaf_2",
            "SM_e1m1_BSP_World_Water_leaf_1",
            "SM_e1m1_BSP_World_Sky_leaf_2",
        ]

    def test_duplicate_marksurface_added_once(self):
        b = _world_bsp()
        b.add_leaf([0, 0, 0])
        (chunk,) = SpatialChunker(decode(b.build()), "e1m1").leaf_chunks()
        assert chunk.mesh.triangle_count == 2

    def test_solid_leaf_skipped(self):
        b = _world_bsp()
        b.add_leaf([0], contents=-2)
        assert SpatialChunker(decode(b.build()), "e1m1").leaf_chunks() == []


class TestSubmodelChunk:
    """Tests for submodel meshes."""

    def _bsp(self, texture="door"):
        b = BSPBuilder()
        wall = b.add_texinfo(b.add_texture("wall"))
        other = b.add_texinfo(b.add_texture(texture))
        add_quad(b, wall)
        add_quad(b, other, origin=(0, 0, 64))
        b.add_model(0, 1)
        b.add_model(1, 1)
        return decode(b.build())

    def test_submodel(self):
        chunker = SpatialChunker(self._bsp(), "e1m1")
        chunk = chunker.submodel_chunk(1, "SM_door")
        assert chunk.name == "SM_door"
        assert chunk.mesh.triangle_count == 2
        assert chunk.collision_profile == COLLISION_BLOCK_ALL
        assert chunk.lightmap_resolution == SUBMODEL_LIGHTMAP_RESOLUTION

    def test_trigger_texture_disables_collision(self):
        chunker = SpatialChunker(self._bsp("trigger"), "e1m1")
        chunk = chunker.submodel_chunk(1, "SM_trigger", COLLISION_BLOCK_ALL)
        assert chunk.collision_profile == COLLISION_NONE
        assert not chunk.collision_enabled

    @pytest.mark.parametrize("submodel_id", [-1, 2, 99])
    def test_invalid_id(self, submodel_id):
        chunker = SpatialChunker(self._bsp(), "e1m1")
        assert chunker.submodel_chunk(submodel_id, "SM_bad") is None
