"""
Constants and enumerations for the Quake BSP importer.

Contains lump indices, header identifiers, leaf contents, decode limits,
lightmap atlas parameters and entity/collision names.
"""

from enum import Enum, IntEnum
from typing import FrozenSet


# =============================================================================
# BSP Header
# =============================================================================

BSP29_VERSION = 29
BSP2_IDENT = b"BSP2"
BSP2RMQ_IDENT = b"2PSB"

HEADER_LUMPS = 15
LUMP_ENTRY_SIZE = 8  # position:i32 + length:i32


class BSPLump(IntEnum):
    """Quake BSP lump indices."""
    ENTITIES = 0
    PLANES = 1
    TEXTURES = 2
    VERTEXES = 3
    VISIBILITY = 4
    NODES = 5
    TEXINFO = 6
    FACES = 7
    LIGHTING = 8
    CLIPNODES = 9
    LEAFS = 10
    MARKSURFACES = 11
    EDGES = 12
    SURFEDGES = 13
    MODELS = 14


class BSPVersion(Enum):
    """Header family of a decoded BSP."""
    BSP29 = "BSP29"
    BSP2 = "BSP2"
    BSP2RMQ = "2PSB"

    @property
    def wide(self) -> bool:
        """True for the 32-bit index layouts."""
        return self is not BSPVersion.BSP29


# =============================================================================
# Leaf Contents
# =============================================================================

class LeafContents(IntEnum):
    """Leaf content types (CONTENTS_* values)."""
    EMPTY = -1
    SOLID = -2
    WATER = -3
    SLIME = -4
    LAVA = -5
    SKY = -6
    ORIGIN = -7
    CLIP = -8

    @classmethod
    def from_value(cls, value: int) -> "LeafContents":
        """Map a raw contents value, treating unknown values as EMPTY."""
        try:
            return cls(value)
        except ValueError:
            return cls.EMPTY


# =============================================================================
# Decode Limits
# =============================================================================

MAX_TEXTURE_DIMENSION = 8192
MAX_TEXTURE_BYTES = 512 * 1024 * 1024
MAX_HEADER_TEXTURE_COUNT = 131072  # BSP2 header probe
MAX_LUMP_TEXTURE_COUNT = 16384     # texture lump decode
MIPTEX_NAME_LENGTH = 16
MIPTEX_HEADER_SIZE = 40

NO_LIGHT_STYLE = 255


# =============================================================================
# Lightmap Atlas
# =============================================================================

LUXEL_SIZE = 16
ATLAS_SIZES = (1024, 2048, 4096)
ATLAS_PADDING = 2

LIT_MAGIC = b"QLIT"
LIT_VERSION = 1
LIT_HEADER_SIZE = 8


# =============================================================================
# Textures & Materials
# =============================================================================

PALETTE_SIZE = 768
PALETTE_TRANSPARENT_INDEX = 255

SKY_PREFIX = "sky"
LIQUID_PREFIX = "*"
TRIGGER_PREFIX = "trigger"
TRIGGER_TEXTURE = "trigger"
ANIMATED_PREFIX = "+"

PLACEHOLDER_MATERIAL = "/Engine/EngineMaterials/WorldGridMaterial"


# =============================================================================
# Collision Profiles
# =============================================================================

COLLISION_BLOCK_ALL = "BlockAll"
COLLISION_NONE = "NoCollision"


# =============================================================================
# Brush Entity Classnames
# =============================================================================

DOOR_CLASSNAMES: FrozenSet[str] = frozenset(
    {
        "func_door",
        "func_door_secret",
        "func_button",
        "func_bossgate",
        "func_episodegate",
    }
)

PLAT_CLASSNAMES: FrozenSet[str] = frozenset({"func_plat"})

TRIGGER_CLASS_PREFIX = "trigger"
