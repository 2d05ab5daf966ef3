"""Tests for constants module."""

from quake_bsp_import.constants import (
    ATLAS_SIZES,
    DOOR_CLASSNAMES,
    HEADER_LUMPS,
    BSPLump,
    BSPVersion,
    LeafContents,
)


class TestBSPLump:
    """Tests for BSPLump enum."""

    def test_lump_values(self):
        assert BSPLump.ENTITIES == 0
        assert BSPLump.TEXTURES == 2
        assert BSPLump.FACES == 7
        assert BSPLump.MODELS == 14

    def test_lump_count(self):
        assert len(BSPLump) == HEADER_LUMPS


class TestBSPVersion:
    """Tests for BSPVersion."""

    def test_wide_layouts(self):
        assert not BSPVersion.BSP29.wide
        assert BSPVersion.BSP2.wide
        assert BSPVersion.BSP2RMQ.wide


class TestLeafContents:
    """Tests for LeafContents."""

    def test_known_value(self):
        assert LeafContents.from_value(-2) is LeafContents.SOLID

    def test_unknown_value(self):
        assert LeafContents.from_value(-99) is LeafContents.EMPTY


class TestTables:
    """Tests for lookup tables."""

    def test_atlas_sizes_ascending(self):
        assert list(ATLAS_SIZES) == sorted(ATLAS_SIZES)

    def test_door_classnames(self):
        assert "func_door" in DOOR_CLASSNAMES
        assert "func_plat" not in DOOR_CLASSNAMES
