"""Tests for texture images, palettes and name sanitizing."""

import numpy as np
import pytest

from quake_bsp_import.bsp_parser import decode
from quake_bsp_import.textures import (
    Palette,
    TextureBank,
    TextureImage,
    next_frame_name,
    sanitize_surface_name,
)

from conftest import BSPBuilder, add_quad


def _scene_with(*textures):
    b = BSPBuilder()
    for name, width, height, pixels in textures:
        b.textures.append((name, width, height, pixels))
    add_quad(b, b.add_texinfo(0))
    return decode(b.build())


class TestSanitize:
    """Tests for sanitize_surface_name."""

    def test_liquid_prefix(self):
        assert sanitize_surface_name("*water1") == "-water1"

    def test_animated_prefix(self):
        assert sanitize_surface_name("+0slime") == "_0slime"

    def test_plain(self):
        assert sanitize_surface_name("wall_2-b") == "wall_2-b"

    def test_other_characters(self):
        assert sanitize_surface_name("a.b c") == "a_b_c"


class TestPalette:
    """Tests for Palette."""

    def test_from_lmp(self):
        data = bytes(range(256)) * 3
        palette = Palette.from_lmp(data)
        assert palette.colors.shape == (256, 3)
        assert tuple(palette.colors[1]) == (3, 4, 5)

    def test_too_small(self):
        with pytest.raises(ValueError):
            Palette.from_lmp(b"\x00" * 100)

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Palette.load(tmp_path / "palette.lmp")

    def test_grayscale(self):
        palette = Palette.grayscale()
        assert tuple(palette.colors[200]) == (200, 200, 200)


class TestTextureImage:
    """Tests for TextureImage."""

    def test_palette_alpha(self):
        indices = np.array([[0, 255], [1, 2]], dtype=np.uint8)
        image = TextureImage("fence", indices)
        assert image.has_palette_alpha
        rgba = image.to_rgba(Palette.grayscale())
        assert rgba[0, 1, 3] == 0
        assert rgba[0, 0, 3] == 255
        assert tuple(rgba[1, 1, :3]) == (2, 2, 2)

    def test_no_palette_alpha(self):
        image = TextureImage("wall", np.zeros((4, 4), dtype=np.uint8))
        assert not image.has_palette_alpha

    def test_to_image(self):
        image = TextureImage("wall", np.zeros((4, 8), dtype=np.uint8))
        pil = image.to_image(Palette.grayscale())
        assert pil.size == (8, 4)
        assert pil.mode == "RGBA"


class TestTextureBank:
    """Tests for TextureBank."""

    def test_plain_texture(self):
        scene = _scene_with(("wall", 16, 16, b"\x01" * 256))
        bank = TextureBank(scene)
        assert [image.name for image in bank.images] == ["wall"]
        assert bank.material_images["wall"].width == 16

    def test_sky_split(self):
        pixels = bytes([1] * 8 + [2] * 8) * 4
        scene = _scene_with(("sky1", 16, 4, pixels))
        bank = TextureBank(scene)
        names = [image.name for image in bank.images]
        assert names == ["sky1_front", "sky1_back"]
        front, back = bank.images
        assert front.width == 8
        assert np.all(front.indices == 1)
        assert np.all(back.indices == 2)
        assert bank.material_images["sky1"] is back

    def test_animated_frames_stacked(self):
        scene = _scene_with(
            ("+0lava", 4, 4, b"\x00" * 16),
            ("+1lava", 4, 4, b"\x01" * 16),
            ("+2lava", 4, 4, b"\x02" * 16),
        )
        bank = TextureBank(scene)
        strip = bank.material_images["+0lava"]
        assert (strip.width, strip.height) == (4, 12)
        assert strip.indices[4, 0] == 1
        assert strip.indices[11, 0] == 2

    def test_animated_frame_size_mismatch_stops(self):
        scene = _scene_with(
            ("+0lava", 4, 4, b"\x00" * 16),
            ("+1lava", 8, 8, b"\x01" * 64),
        )
        strip = TextureBank(scene).material_images["+0lava"]
        assert strip.height == 4

    def test_masked_names(self):
        scene = _scene_with(
            ("fence", 2, 2, bytes([0, 255, 0, 0])),
            ("wall", 2, 2, b"\x00" * 4),
        )
        bank = TextureBank(scene)
        assert bank.masked_texture_names == {"fence"}

    def test_placeholder_skipped(self):
        b = BSPBuilder()
        b.add_missing_texture()
        add_quad(b, b.add_texinfo(0))
        bank = TextureBank(decode(b.build()))
        assert bank.images == []
        assert bank.material_images == {}

    def test_duplicate_name_keeps_first(self):
        scene = _scene_with(
            ("wall", 2, 2, b"\x01" * 4),
            ("wall", 2, 2, b"\x02" * 4),
        )
        bank = TextureBank(scene)
        assert len(bank.images) == 1
        assert bank.images[0].indices[0, 0] == 1


class TestFrameNames:
    """Tests for next_frame_name."""

    def test_next_frame(self):
        assert next_frame_name("+0slime", 1) == "+1slime"
        assert next_frame_name("+0slime", 3) == "+3slime"
