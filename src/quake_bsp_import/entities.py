"""
Entity Text Module for the Quake BSP importer.

Scans the entities lump for brush entities (those whose "model" key names an
inline submodel such as "*3") and classifies them for the entity import.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .constants import DOOR_CLASSNAMES, PLAT_CLASSNAMES, TRIGGER_CLASS_PREFIX
from .textures import sanitize_surface_name

# Leading integer, as C atoi() reads it.
_ATOI_PATTERN = re.compile(r"\s*([+-]?\d+)")


class BrushEntityKind(Enum):
    """Import filter category of a brush entity."""
    DOOR = "door"
    PLAT = "plat"
    TRIGGER = "trigger"
    OTHER = "other"


@dataclass(frozen=True)
class BrushEntity:
    """Entity that references an inline submodel."""
    classname: str
    submodel_index: int
    ordinal: int  # index of the {...} block in the entities text

    @property
    def kind(self) -> BrushEntityKind:
        return classify_brush_entity(self.classname)

    @property
    def safe_classname(self) -> str:
        return sanitize_surface_name(self.classname)


def classify_brush_entity(classname: str) -> BrushEntityKind:
    """Classify a classname into the door / plat / trigger import filters."""
    name = classname.lower()
    if name in DOOR_CLASSNAMES:
        return BrushEntityKind.DOOR
    if name in PLAT_CLASSNAMES:
        return BrushEntityKind.PLAT
    if name.startswith(TRIGGER_CLASS_PREFIX):
        return BrushEntityKind.TRIGGER
    return BrushEntityKind.OTHER


def parse_atoi(text: str) -> int:
    """Parse a leading integer; 0 if there is none."""
    match = _ATOI_PATTERN.match(text)
    return int(match.group(1)) if match else 0


def _find_value(block: str, key: str) -> str:
    """Value of the first quoted key in a block, or "" if absent."""
    key_pos = block.find(f'"{key}"')
    if key_pos == -1:
        return ""
    value_start = block.find('"', key_pos + len(key) + 2)
    if value_start == -1:
        return ""
    value_start += 1
    value_end = block.find('"', value_start)
    if value_end == -1:
        return ""
    return block[value_start:value_end]


def iter_entity_blocks(text: str):
    """Yield (ordinal, block body) for each {...} block, left to right."""
    ordinal = 0
    pos = 0
    while pos < len(text):
        open_pos = text.find("{", pos)
        if open_pos == -1:
            break
        close_pos = text.find("}", open_pos + 1)
        if close_pos == -1:
            break
        yield ordinal, text[open_pos + 1:close_pos]
        ordinal += 1
        pos = close_pos + 1


def parse_brush_entity(block: str, ordinal: int) -> Optional[BrushEntity]:
    classname = _find_value(block, "classname")
    model = _find_value(block, "model")
    if not classname or not model or not model.startswith("*"):
        return None

    submodel_index = parse_atoi(model[1:])
    if submodel_index <= 0:
        return None
    return BrushEntity(classname=classname, submodel_index=submodel_index, ordinal=ordinal)


def parse_brush_entities(text: str) -> List[BrushEntity]:
    """
    Extract brush entities from entities-lump text.

    Every {...} block consumes one ordinal whether or not it yields an
    entity. Blocks without a classname, without a "*N" model, or with
    N <= 0 are skipped.

    Args:
        text: Entities lump text

    Returns:
        Brush entities in file order
    """
    result = []
    for ordinal, block in iter_entity_blocks(text):
        entity = parse_brush_entity(block, ordinal)
        if entity is not None:
            result.append(entity)
    return result
