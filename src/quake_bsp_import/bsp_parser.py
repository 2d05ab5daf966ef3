"""
BSP Parser Module for Quake BSP files (BSP29, BSP2 and 2PSB).

Decodes a level file into an immutable Scene: geometry lumps, the BSP tree,
embedded textures, the entities text and raw light/visibility data.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from .constants import (
    BSP29_VERSION,
    BSP2_IDENT,
    BSP2RMQ_IDENT,
    HEADER_LUMPS,
    LUMP_ENTRY_SIZE,
    MAX_HEADER_TEXTURE_COUNT,
    MAX_LUMP_TEXTURE_COUNT,
    MAX_TEXTURE_BYTES,
    MAX_TEXTURE_DIMENSION,
    MIPTEX_HEADER_SIZE,
    MIPTEX_NAME_LENGTH,
    BSPLump,
    BSPVersion,
    LeafContents,
)
from .vector import Plane, Vector3

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Errors
# =============================================================================

class DecodeError(ValueError):
    """Base class for BSP decode failures."""


class UnrecognizedFormat(DecodeError):
    """The buffer does not start with a known BSP header."""


class InvalidHeader(DecodeError):
    """No acceptable lump directory could be read from the header."""


class LumpOutOfBounds(DecodeError):
    """A lump's byte range lies outside the file."""


class LumpSizeMismatch(DecodeError):
    """A lump's length is not a multiple of its record size."""


class InvalidReference(DecodeError):
    """A record references an index outside its target array."""


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class LumpInfo:
    """Position and length of a lump inside the file."""
    position: int
    length: int

    @property
    def end(self) -> int:
        return self.position + self.length


@dataclass(frozen=True)
class Edge:
    """BSP edge connecting two vertices."""
    v1: int
    v2: int


@dataclass(frozen=True)
class Face:
    """BSP face structure."""
    plane_index: int
    side: int
    first_edge: int
    num_edges: int
    texinfo_index: int
    styles: Tuple[int, int, int, int]
    light_offset: int


@dataclass(frozen=True)
class Leaf:
    """BSP leaf structure."""
    contents: LeafContents
    vis_offset: int
    mins: Tuple[int, int, int]
    maxs: Tuple[int, int, int]
    first_marksurface: int
    num_marksurfaces: int
    ambient_levels: Tuple[int, int, int, int]


@dataclass(frozen=True)
class Node:
    """BSP node structure. Negative children are ~leaf indices."""
    plane_index: int
    children: Tuple[int, int]
    mins: Tuple[int, int, int]
    maxs: Tuple[int, int, int]
    first_face: int
    num_faces: int


@dataclass(frozen=True)
class Submodel:
    """BSP model: the world (index 0) or a brush entity."""
    mins: Vector3
    maxs: Vector3
    origin: Vector3
    head_nodes: Tuple[int, int, int, int]
    visleafs: int
    first_face: int
    num_faces: int

    @property
    def face_range(self) -> range:
        return range(self.first_face, self.first_face + self.num_faces)


@dataclass(frozen=True)
class TexInfo:
    """Texture projection: S and T vectors (xyz + offset), miptex index, flags."""
    vecs: Tuple[Tuple[float, float, float, float], Tuple[float, float, float, float]]
    texture_index: int
    flags: int

    def project(self, point: Vector3) -> Tuple[float, float]:
        """Project a BSP-space point into texel space (S, T)."""
        s_vec, t_vec = self.vecs
        s = point.x * s_vec[0] + point.y * s_vec[1] + point.z * s_vec[2] + s_vec[3]
        t = point.x * t_vec[0] + point.y * t_vec[1] + point.z * t_vec[2] + t_vec[3]
        return s, t


@dataclass(frozen=True)
class MipTexture:
    """Embedded texture: name, size and palette-indexed mip level 0."""
    name: str
    width: int
    height: int
    data: bytes = b""

    @property
    def is_placeholder(self) -> bool:
        """True when the entry could not be decoded (0x0, no pixels)."""
        return self.width == 0 or self.height == 0

    @classmethod
    def placeholder(cls, index: int) -> MipTexture:
        return cls(name=f"missing_{index}", width=0, height=0)


@dataclass(frozen=True)
class Scene:
    """Decoded BSP contents. Built once per import and never mutated."""
    version: BSPVersion
    vertices: Tuple[Vector3, ...]
    edges: Tuple[Edge, ...]
    surfedges: Tuple[int, ...]
    planes: Tuple[Plane, ...]
    faces: Tuple[Face, ...]
    marksurfaces: Tuple[int, ...]
    leaves: Tuple[Leaf, ...]
    nodes: Tuple[Node, ...]
    submodels: Tuple[Submodel, ...]
    texinfos: Tuple[TexInfo, ...]
    textures: Tuple[MipTexture, ...]
    entities: str = ""
    light_data: bytes = b""
    vis_data: bytes = b""

    @property
    def world(self) -> Optional[Submodel]:
        """Submodel 0, if present."""
        return self.submodels[0] if self.submodels else None

    def face_vertex_indices(self, face: Face) -> List[int]:
        """
        Get the vertex indices of a face in output winding order.

        Surfedges are walked in reverse; a negative surfedge uses the second
        vertex of the referenced edge.
        """
        indices = []
        for e in range(face.num_edges - 1, -1, -1):
            surfedge = self.surfedges[face.first_edge + e]
            edge = self.edges[abs(surfedge)]
            indices.append(edge.v1 if surfedge >= 0 else edge.v2)
        return indices

    def face_vertices(self, face: Face) -> List[Vector3]:
        """Get the BSP-space vertices of a face in output winding order."""
        return [self.vertices[i] for i in self.face_vertex_indices(face)]

    def texture_for_face(self, face: Face) -> MipTexture:
        """Get the texture referenced by a face's texinfo."""
        return self.textures[self.texinfos[face.texinfo_index].texture_index]


# =============================================================================
# Header Layouts
# =============================================================================

@dataclass(frozen=True)
class HeaderVariant:
    """One BSP2/2PSB header shape: ident, optional version word, directory."""
    name: str
    directory_offset: int

    @property
    def header_size(self) -> int:
        return self.directory_offset + HEADER_LUMPS * LUMP_ENTRY_SIZE


# Tried in order; the first directory that passes the sanity probe wins.
BSP2_HEADER_VARIANTS: Tuple[HeaderVariant, ...] = (
    HeaderVariant("ident+version", directory_offset=8),
    HeaderVariant("ident", directory_offset=4),
)

BSP29_HEADER = HeaderVariant("version", directory_offset=4)

# Lumps that must be non-empty for a BSP2 directory candidate to be accepted.
REQUIRED_LUMPS = (
    BSPLump.VERTEXES,
    BSPLump.EDGES,
    BSPLump.FACES,
    BSPLump.TEXINFO,
    BSPLump.MODELS,
)


@dataclass(frozen=True)
class RecordLayouts:
    """struct formats for the records whose width depends on the BSP family."""
    edge: str
    marksurface: str
    face: str
    leaf: str
    node: str


BSP29_LAYOUT = RecordLayouts(
    edge="<HH",
    marksurface="<H",
    face="<hhihh4Bi",
    leaf="<ii3h3hHH4B",
    node="<i2h3h3hHH",
)

BSP2_LAYOUT = RecordLayouts(
    edge="<II",
    marksurface="<I",
    face="<iiiii4Bi",
    leaf="<ii3h3hii4B",
    node="<i2i3h3hii",
)

VERTEX_FORMAT = "<fff"
PLANE_FORMAT = "<ffffi"
SURFEDGE_FORMAT = "<i"
TEXINFO_FORMAT = "<8fii"
MODEL_FORMAT = "<9f7i"
MIPTEX_FORMAT = f"<{MIPTEX_NAME_LENGTH}sII4I"


# =============================================================================
# Parser
# =============================================================================

class BSPParser:
    """
    Parser for Quake BSP files.

    Supports BSP29 and the BSP2 / 2PSB 32-bit index extensions. Decoding is
    all-or-nothing: any structural problem raises a DecodeError subclass.
    """

    def __init__(self):
        self._data: bytes = b""
        self._lumps: List[LumpInfo] = []
        self._version: Optional[BSPVersion] = None

    def load(self, filepath: str | Path) -> Scene:
        """
        Load and parse a BSP file.

        Args:
            filepath: Path to the .bsp file

        Returns:
            Decoded Scene

        Raises:
            DecodeError: If the file is not a valid BSP
            FileNotFoundError: If file doesn't exist
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"BSP file not found: {filepath}")

        with open(filepath, "rb") as f:
            data = f.read()

        logger.debug(f"Read {len(data)} bytes from {filepath}")
        return self.parse(data)

    def parse(self, data: bytes) -> Scene:
        """Decode a BSP from an in-memory buffer."""
        self._data = bytes(data)
        self._version, self._lumps = self._read_header()
        self._validate_lumps()

        layout = BSP2_LAYOUT if self._version.wide else BSP29_LAYOUT

        scene = Scene(
            version=self._version,
            vertices=self._read_vertices(),
            edges=self._read_edges(layout),
            surfedges=self._read_surfedges(),
            planes=self._read_planes(),
            faces=self._read_faces(layout),
            marksurfaces=self._read_marksurfaces(layout),
            leaves=self._read_leaves(layout),
            nodes=self._read_nodes(layout),
            submodels=self._read_models(),
            texinfos=self._read_texinfo(),
            textures=self._read_textures(),
            entities=self._read_entities(),
            light_data=self._read_lump_data(BSPLump.LIGHTING),
            vis_data=self._read_lump_data(BSPLump.VISIBILITY),
        )
        validate_references(scene)

        logger.debug(
            f"Decoded {scene.version.value}: {len(scene.vertices)} vertices, "
            f"{len(scene.faces)} faces, {len(scene.textures)} textures, "
            f"{len(scene.submodels)} submodels"
        )
        return scene

    # -------------------------------------------------------------------------
    # Header
    # -------------------------------------------------------------------------

    def _read_header(self) -> Tuple[BSPVersion, List[LumpInfo]]:
        """Detect the header family and read the lump directory."""
        if len(self._data) < 4:
            raise UnrecognizedFormat(f"File too small for a BSP header ({len(self._data)} bytes)")

        magic = self._data[:4]
        if magic in (BSP2_IDENT, BSP2RMQ_IDENT):
            version = BSPVersion.BSP2 if magic == BSP2_IDENT else BSPVersion.BSP2RMQ
            return version, self._read_bsp2_directory()

        (file_version,) = struct.unpack_from("<i", self._data, 0)
        if file_version != BSP29_VERSION:
            raise UnrecognizedFormat(
                f"Unsupported BSP version or ident {magic!r} ({file_version})"
            )
        if len(self._data) < BSP29_HEADER.header_size:
            raise UnrecognizedFormat(
                f"File too small for a BSP29 header ({len(self._data)} bytes)"
            )
        return BSPVersion.BSP29, self._read_directory(BSP29_HEADER)

    def _read_directory(self, variant: HeaderVariant) -> List[LumpInfo]:
        lumps = []
        for i in range(HEADER_LUMPS):
            position, length = struct.unpack_from(
                "<ii", self._data, variant.directory_offset + i * LUMP_ENTRY_SIZE
            )
            lumps.append(LumpInfo(position, length))
        return lumps

    def _read_bsp2_directory(self) -> List[LumpInfo]:
        """Try each BSP2 header shape in order and keep the first plausible one."""
        for variant in BSP2_HEADER_VARIANTS:
            if len(self._data) < variant.header_size:
                continue
            lumps = self._read_directory(variant)
            if self._is_plausible_directory(lumps):
                logger.debug(f"Using BSP2 header layout '{variant.name}'")
                return lumps

        raise InvalidHeader("Failed to parse BSP2 header (no valid lump directory found)")

    def _is_plausible_directory(self, lumps: Sequence[LumpInfo]) -> bool:
        size = len(self._data)
        textures = lumps[BSPLump.TEXTURES]
        if textures.position < 0 or textures.length < 4 or textures.position + 4 > size:
            return False

        (num_textures,) = struct.unpack_from("<i", self._data, textures.position)
        if num_textures < 0 or num_textures > MAX_HEADER_TEXTURE_COUNT:
            return False
        if num_textures > 0 and textures.position + 4 + 4 * num_textures > size:
            return False

        return all(lumps[lump].length > 0 for lump in REQUIRED_LUMPS)

    def _validate_lumps(self) -> None:
        """Every lump's byte range must lie within the file."""
        size = len(self._data)
        for index, lump in enumerate(self._lumps):
            if lump.position < 0 or lump.length < 0 or lump.end > size:
                raise LumpOutOfBounds(
                    f"Lump {BSPLump(index).name} out of bounds "
                    f"(pos={lump.position} len={lump.length} size={size})"
                )

    # -------------------------------------------------------------------------
    # Lumps
    # -------------------------------------------------------------------------

    def _read_lump_data(self, lump: BSPLump) -> bytes:
        """Read raw lump data."""
        info = self._lumps[lump]
        if info.length == 0:
            return b""
        return self._data[info.position:info.end]

    def _read_records(
        self, lump: BSPLump, fmt: str, build: Callable[[tuple], T]
    ) -> Tuple[T, ...]:
        """Unpack a lump of fixed-size records."""
        data = self._read_lump_data(lump)
        size = struct.calcsize(fmt)
        if len(data) % size != 0:
            raise LumpSizeMismatch(
                f"Lump {lump.name} length {len(data)} is not a multiple of {size}"
            )
        return tuple(build(values) for values in struct.iter_unpack(fmt, data))

    def _read_vertices(self) -> Tuple[Vector3, ...]:
        """Read vertex lump (12 bytes per vertex: 3 floats)."""
        return self._read_records(BSPLump.VERTEXES, VERTEX_FORMAT, lambda v: Vector3(*v))

    def _read_planes(self) -> Tuple[Plane, ...]:
        """Read plane lump (20 bytes per plane)."""
        return self._read_records(
            BSPLump.PLANES,
            PLANE_FORMAT,
            lambda v: Plane(Vector3(v[0], v[1], v[2]), v[3], v[4]),
        )

    def _read_edges(self, layout: RecordLayouts) -> Tuple[Edge, ...]:
        """Read edge lump (2 unsigned shorts, or 2 unsigned ints for BSP2)."""
        return self._read_records(BSPLump.EDGES, layout.edge, lambda v: Edge(v[0], v[1]))

    def _read_surfedges(self) -> Tuple[int, ...]:
        """Read surfedge lump (4 bytes per surfedge: signed int)."""
        return self._read_records(BSPLump.SURFEDGES, SURFEDGE_FORMAT, lambda v: v[0])

    def _read_marksurfaces(self, layout: RecordLayouts) -> Tuple[int, ...]:
        return self._read_records(BSPLump.MARKSURFACES, layout.marksurface, lambda v: v[0])

    def _read_faces(self, layout: RecordLayouts) -> Tuple[Face, ...]:
        """Read face lump (20 bytes per face, 28 for BSP2)."""
        return self._read_records(
            BSPLump.FACES,
            layout.face,
            lambda v: Face(
                plane_index=v[0],
                side=v[1],
                first_edge=v[2],
                num_edges=v[3],
                texinfo_index=v[4],
                styles=(v[5], v[6], v[7], v[8]),
                light_offset=v[9],
            ),
        )

    def _read_leaves(self, layout: RecordLayouts) -> Tuple[Leaf, ...]:
        """Read leaf lump. Bounds stay 16-bit on disk in both families."""
        return self._read_records(
            BSPLump.LEAFS,
            layout.leaf,
            lambda v: Leaf(
                contents=LeafContents.from_value(v[0]),
                vis_offset=v[1],
                mins=(v[2], v[3], v[4]),
                maxs=(v[5], v[6], v[7]),
                first_marksurface=v[8],
                num_marksurfaces=v[9],
                ambient_levels=(v[10], v[11], v[12], v[13]),
            ),
        )

    def _read_nodes(self, layout: RecordLayouts) -> Tuple[Node, ...]:
        return self._read_records(
            BSPLump.NODES,
            layout.node,
            lambda v: Node(
                plane_index=v[0],
                children=(v[1], v[2]),
                mins=(v[3], v[4], v[5]),
                maxs=(v[6], v[7], v[8]),
                first_face=v[9],
                num_faces=v[10],
            ),
        )

    def _read_models(self) -> Tuple[Submodel, ...]:
        """Read model lump (64 bytes per model)."""
        return self._read_records(
            BSPLump.MODELS,
            MODEL_FORMAT,
            lambda v: Submodel(
                mins=Vector3(v[0], v[1], v[2]),
                maxs=Vector3(v[3], v[4], v[5]),
                origin=Vector3(v[6], v[7], v[8]),
                head_nodes=(v[9], v[10], v[11], v[12]),
                visleafs=v[13],
                first_face=v[14],
                num_faces=v[15],
            ),
        )

    def _read_texinfo(self) -> Tuple[TexInfo, ...]:
        """Read texinfo lump (40 bytes per texinfo)."""
        return self._read_records(
            BSPLump.TEXINFO,
            TEXINFO_FORMAT,
            lambda v: TexInfo(
                vecs=(tuple(v[0:4]), tuple(v[4:8])),
                texture_index=v[8],
                flags=v[9],
            ),
        )

    def _read_textures(self) -> Tuple[MipTexture, ...]:
        """
        Read the texture lump: a count, an offset table and miptex entries.

        Entries are validated independently; a bad entry becomes a 0x0
        placeholder instead of failing the decode.
        """
        data = self._read_lump_data(BSPLump.TEXTURES)
        if len(data) < 4:
            if data:
                logger.warning(f"Texture lump too small ({len(data)} bytes)")
            return ()

        (num_textures,) = struct.unpack_from("<i", data, 0)
        if num_textures < 0:
            logger.warning(f"Texture count invalid ({num_textures})")
            return ()
        if 4 + 4 * num_textures > len(data):
            logger.warning("Texture offset table out of bounds")
            return ()

        num_decoded = min(num_textures, MAX_LUMP_TEXTURE_COUNT)
        if num_decoded < num_textures:
            logger.warning(
                f"Texture count {num_textures} exceeds {MAX_LUMP_TEXTURE_COUNT}, "
                f"using placeholders for the rest"
            )

        offsets = struct.unpack_from(f"<{num_decoded}i", data, 4)
        textures = [
            self._read_miptex(data, index, offset) for index, offset in enumerate(offsets)
        ]
        textures.extend(MipTexture.placeholder(i) for i in range(num_decoded, num_textures))
        return tuple(textures)

    def _read_miptex(self, data: bytes, index: int, offset: int) -> MipTexture:
        # Offset -1 marks a texture that is not embedded in the BSP.
        if offset <= 0 or offset + MIPTEX_HEADER_SIZE > len(data):
            return MipTexture.placeholder(index)

        raw_name, width, height, *mip_offsets = struct.unpack_from(MIPTEX_FORMAT, data, offset)
        name = raw_name.split(b"\x00", 1)[0].decode("latin-1")

        if (
            width == 0
            or height == 0
            or width > MAX_TEXTURE_DIMENSION
            or height > MAX_TEXTURE_DIMENSION
        ):
            logger.warning(f"Invalid texture size {name} ({width} x {height})")
            return MipTexture.placeholder(index)

        num_bytes = width * height
        if num_bytes <= 0 or num_bytes > MAX_TEXTURE_BYTES:
            logger.warning(f"Texture byte size invalid {name} ({num_bytes})")
            return MipTexture.placeholder(index)

        mip0 = mip_offsets[0]
        start = offset + mip0
        if mip0 <= 0 or start + num_bytes > len(data):
            logger.warning(f"Mip0 out of bounds for {name}")
            return MipTexture.placeholder(index)

        return MipTexture(name=name, width=width, height=height, data=data[start:start + num_bytes])

    def _read_entities(self) -> str:
        """Read the entity lump verbatim, up to the first NUL."""
        data = self._read_lump_data(BSPLump.ENTITIES)
        return data.split(b"\x00", 1)[0].decode("latin-1")


# =============================================================================
# Reference Validation
# =============================================================================

def _check_range(kind: str, index: int, first: int, count: int, limit: int) -> None:
    if first < 0 or count < 0 or first + count > limit:
        raise InvalidReference(
            f"{kind} {index} references range [{first}, {first + count}) "
            f"outside 0..{limit}"
        )


def validate_references(scene: Scene) -> None:
    """
    Check that every index in the scene resolves inside its target array.

    Raises:
        InvalidReference: On the first dangling index found
    """
    num_vertices = len(scene.vertices)
    for i, edge in enumerate(scene.edges):
        if edge.v1 >= num_vertices or edge.v2 >= num_vertices:
            raise InvalidReference(f"Edge {i} references a missing vertex")

    num_edges = len(scene.edges)
    for i, surfedge in enumerate(scene.surfedges):
        if abs(surfedge) >= num_edges:
            raise InvalidReference(f"Surfedge {i} references missing edge {surfedge}")

    for i, face in enumerate(scene.faces):
        if face.num_edges < 3:
            raise InvalidReference(f"Face {i} has {face.num_edges} edges")
        _check_range("Face", i, face.first_edge, face.num_edges, len(scene.surfedges))
        if not 0 <= face.plane_index < len(scene.planes):
            raise InvalidReference(f"Face {i} references missing plane {face.plane_index}")
        if not 0 <= face.texinfo_index < len(scene.texinfos):
            raise InvalidReference(
                f"Face {i} references missing texinfo {face.texinfo_index}"
            )

    for i, texinfo in enumerate(scene.texinfos):
        if not 0 <= texinfo.texture_index < len(scene.textures):
            raise InvalidReference(
                f"Texinfo {i} references missing texture {texinfo.texture_index}"
            )

    num_faces = len(scene.faces)
    for i, mark in enumerate(scene.marksurfaces):
        if mark >= num_faces:
            raise InvalidReference(f"Marksurface {i} references missing face {mark}")

    for i, leaf in enumerate(scene.leaves):
        _check_range(
            "Leaf", i, leaf.first_marksurface, leaf.num_marksurfaces, len(scene.marksurfaces)
        )

    num_nodes = len(scene.nodes)
    num_leaves = len(scene.leaves)
    for i, node in enumerate(scene.nodes):
        if not 0 <= node.plane_index < len(scene.planes):
            raise InvalidReference(f"Node {i} references missing plane {node.plane_index}")
        for child in node.children:
            if child >= 0 and child >= num_nodes:
                raise InvalidReference(f"Node {i} references missing node {child}")
            if child < 0 and ~child >= num_leaves:
                raise InvalidReference(f"Node {i} references missing leaf {~child}")
        _check_range("Node", i, node.first_face, node.num_faces, num_faces)

    for i, model in enumerate(scene.submodels):
        _check_range("Submodel", i, model.first_face, model.num_faces, num_faces)


def decode(data: bytes) -> Scene:
    """Decode a BSP buffer into a Scene."""
    return BSPParser().parse(data)
