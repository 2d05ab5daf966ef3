"""
Import configuration for the Quake BSP importer.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .constants import COLLISION_BLOCK_ALL, COLLISION_NONE
from .geometry_extractor import MaterialParents


class WorldChunkMode(Enum):
    """How world faces are split into meshes."""
    GRID = "grid"
    LEAVES = "leaves"


@dataclass
class MaterialSettings:
    """Parent materials handed to the material instances."""
    solid: Optional[str] = "/QuakeImport/M_BSP_Solid"
    solid_lightmap: Optional[str] = "/QuakeImport/M_BSP_Solid_Lightmap"
    liquid: Optional[str] = "/QuakeImport/M_BSP_Liquid"
    sky: Optional[str] = "/QuakeImport/M_BSP_Sky"
    trigger: Optional[str] = "/QuakeImport/M_BSP_Trigger"
    masked: Optional[str] = None

    def _solid_parent(self, lightmaps: bool) -> Optional[str]:
        if lightmaps and self.solid_lightmap:
            return self.solid_lightmap
        return self.solid

    def world_parents(self, lightmaps: bool = False) -> MaterialParents:
        """Parents for the world import (no trigger override)."""
        return MaterialParents(
            surface=self._solid_parent(lightmaps),
            transparent=self.liquid,
            sky=self.sky,
            masked=self.masked,
        )

    def entity_parents(self, lightmaps: bool = False) -> MaterialParents:
        """Parents for the brush entity import."""
        return MaterialParents(
            surface=self._solid_parent(lightmaps),
            transparent=self.liquid,
            sky=self.sky,
            trigger=self.trigger,
            masked=self.masked,
        )


@dataclass
class CollisionSettings:
    """Collision profile names per mesh category."""
    world_solid: Optional[str] = COLLISION_BLOCK_ALL
    masked: Optional[str] = None
    liquid: Optional[str] = COLLISION_NONE
    sky: Optional[str] = COLLISION_NONE
    entity_solid: Optional[str] = COLLISION_BLOCK_ALL
    entity_trigger: Optional[str] = COLLISION_NONE


@dataclass
class EntityFilters:
    """Which brush entity families the entity import produces."""
    doors: bool = True  # func_door, func_door_secret, func_button, gates
    plats: bool = True
    triggers: bool = False


@dataclass
class ImportConfig:
    """Configuration for a BSP import."""
    world_chunk_mode: WorldChunkMode = WorldChunkMode.GRID
    world_chunk_size: int = 512
    import_scale: float = 2.5

    include_sky: bool = True
    include_liquids: bool = True
    import_lightmaps: bool = False

    materials: MaterialSettings = field(default_factory=MaterialSettings)
    collision: CollisionSettings = field(default_factory=CollisionSettings)
    entities: EntityFilters = field(default_factory=EntityFilters)

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ValueError: If a setting is out of range
        """
        if self.world_chunk_size < 1:
            raise ValueError(f"World chunk size must be at least 1, got {self.world_chunk_size}")
        if self.import_scale <= 0:
            raise ValueError(f"Import scale must be positive, got {self.import_scale}")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> ImportConfig:
        """Create config from parsed command line arguments."""
        config = cls(
            world_chunk_mode=WorldChunkMode(args.chunk_mode),
            world_chunk_size=args.chunk_size,
            import_scale=args.scale,
            include_sky=not args.no_sky,
            include_liquids=not args.no_liquids,
            import_lightmaps=args.lightmaps,
            entities=EntityFilters(
                doors=not args.no_doors,
                plats=not args.no_plats,
                triggers=args.triggers,
            ),
        )
        if args.masked_material:
            config.materials.masked = args.masked_material
        if args.masked_collision:
            config.collision.masked = args.masked_collision
        return config
