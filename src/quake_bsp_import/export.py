"""
File output for import results.

Writes one OBJ per mesh chunk, PNGs for textures and the lightmap atlas,
and a JSON manifest describing chunks, material slots and collision.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .chunker import MeshChunk
from .geometry_extractor import MaterialLibrary
from .lightmap_atlas import LightmapAtlas
from .textures import TextureBank

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


def chunk_record(chunk: MeshChunk, materials: Optional[MaterialLibrary] = None) -> Dict[str, Any]:
    """Manifest entry for one mesh chunk."""
    mesh = chunk.mesh
    bounds = mesh.bounds
    slots = []
    for slot, texture_name in enumerate(mesh.slot_textures):
        slot_entry = {"slot": slot, "texture": texture_name}
        if materials is not None:
            binding = materials.bindings.get(texture_name)
            slot_entry["parent"] = materials.material_for(texture_name)
            if binding is not None:
                slot_entry["instance"] = binding.instance_name
                slot_entry["image"] = binding.image_name
                slot_entry["kind"] = binding.kind.value
        slots.append(slot_entry)

    return {
        "name": chunk.name,
        "category": chunk.category.value,
        "key": list(chunk.key),
        "vertices": mesh.vertex_count,
        "triangles": mesh.triangle_count,
        "bounds": None if bounds is None else {
            "min": list(bounds.mins.to_tuple()),
            "max": list(bounds.maxs.to_tuple()),
        },
        "collision_profile": chunk.collision_profile,
        "collision_enabled": chunk.collision_enabled,
        "masked": chunk.masked,
        "lightmap_resolution": chunk.lightmap_resolution,
        "has_lightmap_uvs": mesh.has_lightmap_uvs,
        "slots": slots,
    }


def write_chunks(chunks: Sequence[MeshChunk], output_dir: Path) -> List[Path]:
    """Write each chunk as <name>.obj; returns the written paths."""
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for chunk in chunks:
        path = output_dir / f"{chunk.name}.obj"
        chunk.mesh.export_obj(path)
        paths.append(path)
    logger.info(f"Wrote {len(paths)} meshes to {output_dir}")
    return paths


def write_textures(bank: TextureBank, output_dir: Path) -> List[Path]:
    """Write every texture image as an RGBA PNG; empty images are skipped."""
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for image in bank.images:
        if image.width == 0 or image.height == 0:
            logger.debug(f"Skipping empty texture {image.name}")
            continue
        path = output_dir / f"{image.asset_name}.png"
        image.to_image(bank.palette).save(path)
        paths.append(path)
    logger.info(f"Wrote {len(paths)} textures to {output_dir}")
    return paths


def write_atlas(atlas: LightmapAtlas, filepath: Path) -> Path:
    """Write the lightmap atlas as a PNG."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    atlas.to_image().save(filepath)
    logger.info(f"Wrote lightmap atlas: {filepath}")
    return filepath


def write_manifest(
    filepath: Path,
    map_name: str,
    world_chunks: Sequence[MeshChunk] = (),
    entity_chunks: Sequence[MeshChunk] = (),
    materials: Optional[MaterialLibrary] = None,
    atlas_file: Optional[str] = None,
    summary: Optional[Dict[str, Any]] = None,
) -> Path:
    """Write the JSON manifest of an import."""
    manifest = {
        "map": map_name,
        "summary": summary or {},
        "lightmap_atlas": atlas_file,
        "world": [chunk_record(c, materials) for c in world_chunks],
        "entities": [chunk_record(c, materials) for c in entity_chunks],
    }
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w") as f:
        json.dump(manifest, f, indent=2)
    logger.info(f"Wrote manifest: {filepath}")
    return filepath
