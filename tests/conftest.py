"""Shared fixtures: synthetic Quake BSP files built with struct."""

import struct
from typing import List, Optional, Sequence, Tuple

import pytest

HEADER_LUMPS = 15

ENTITIES, PLANES, TEXTURES, VERTEXES, VISIBILITY, NODES, TEXINFO, FACES = range(8)
LIGHTING, CLIPNODES, LEAFS, MARKSURFACES, EDGES, SURFEDGES, MODELS = range(8, 15)

NO_LIGHT = (255, 255, 255, 255)


def pack_textures(textures: Sequence[Optional[Tuple[str, int, int, bytes]]]) -> bytes:
    """Texture lump; a None entry is written with offset -1."""
    count = len(textures)
    offsets = []
    blobs = []
    pos = 4 + 4 * count
    for texture in textures:
        if texture is None:
            offsets.append(-1)
            continue
        name, width, height, pixels = texture
        header = struct.pack("<16sII4I", name.encode("latin-1"), width, height, 40, 40, 40, 40)
        blob = header + pixels
        offsets.append(pos)
        blobs.append(blob)
        pos += len(blob)
    return struct.pack(f"<i{count}i", count, *offsets) + b"".join(blobs)


class BSPBuilder:
    """
    Assembles a minimal BSP29 or BSP2 file.

    Faces get their own vertices and edges; edge 0 is the unused dummy edge
    that real compilers emit.
    """

    def __init__(self, version: str = "bsp29"):
        self.version = version
        self.vertices: List[Tuple[float, float, float]] = []
        self.edges: List[Tuple[int, int]] = [(0, 0)]
        self.surfedges: List[int] = []
        self.planes: List[Tuple[float, float, float, float, int]] = []
        self.faces: List[tuple] = []
        self.texinfos: List[tuple] = []
        self.textures: List[Optional[Tuple[str, int, int, bytes]]] = []
        self.leaves: List[tuple] = []
        self.nodes: List[tuple] = []
        self.marksurfaces: List[int] = []
        self.models: List[Tuple[int, int]] = []
        self.entities = ""
        self.light = b""

    def add_texture(self, name: str, width: int = 64, height: int = 64, fill: int = 0) -> int:
        self.textures.append((name, width, height, bytes([fill]) * (width * height)))
        return len(self.textures) - 1

    def add_missing_texture(self) -> int:
        self.textures.append(None)
        return len(self.textures) - 1

    def add_texinfo(
        self,
        texture: int,
        s: Tuple[float, float, float, float] = (1.0, 0.0, 0.0, 0.0),
        t: Tuple[float, float, float, float] = (0.0, 1.0, 0.0, 0.0),
    ) -> int:
        self.texinfos.append((*s, *t, texture, 0))
        return len(self.texinfos) - 1

    def add_plane(self, normal=(0.0, 0.0, 1.0), dist: float = 0.0) -> int:
        self.planes.append((*normal, dist, 2))
        return len(self.planes) - 1

    def add_face(
        self,
        points: Sequence[Tuple[float, float, float]],
        texinfo: int,
        plane: Optional[int] = None,
        light_offset: int = -1,
        styles: Tuple[int, int, int, int] = NO_LIGHT,
        negative_edges: bool = False,
    ) -> int:
        if plane is None:
            plane = self.add_plane()

        base = len(self.vertices)
        self.vertices.extend(points)
        first_edge = len(self.surfedges)
        n = len(points)
        for i in range(n):
            a = base + i
            b = base + (i + 1) % n
            if negative_edges:
                self.edges.append((b, a))
                self.surfedges.append(-(len(self.edges) - 1))
            else:
                self.edges.append((a, b))
                self.surfedges.append(len(self.edges) - 1)

        self.faces.append((plane, 0, first_edge, n, texinfo, *styles, light_offset))
        return len(self.faces) - 1

    def add_leaf(
        self,
        faces: Sequence[int],
        contents: int = -1,
        mins: Tuple[int, int, int] = (0, 0, 0),
        maxs: Tuple[int, int, int] = (0, 0, 0),
    ) -> int:
        first = len(self.marksurfaces)
        self.marksurfaces.extend(faces)
        self.leaves.append((contents, -1, *mins, *maxs, first, len(faces), 0, 0, 0, 0))
        return len(self.leaves) - 1

    def add_node(
        self,
        children: Tuple[int, int],
        plane: Optional[int] = None,
        mins: Tuple[int, int, int] = (0, 0, 0),
        maxs: Tuple[int, int, int] = (0, 0, 0),
        first_face: int = 0,
        num_faces: int = 0,
    ) -> int:
        """Children are node indices, or ~leaf for leaves."""
        if plane is None:
            plane = self.add_plane()
        self.nodes.append((plane, *children, *mins, *maxs, first_face, num_faces))
        return len(self.nodes) - 1

    def add_model(self, first_face: int, num_faces: int) -> int:
        self.models.append((first_face, num_faces))
        return len(self.models) - 1

    # -------------------------------------------------------------------------

    @property
    def wide(self) -> bool:
        return self.version != "bsp29"

    def lumps(self) -> List[bytes]:
        wide = self.wide
        edge_fmt = "<II" if wide else "<HH"
        mark_fmt = "<I" if wide else "<H"
        face_fmt = "<iiiii4Bi" if wide else "<hhihh4Bi"
        leaf_fmt = "<ii3h3hii4B" if wide else "<ii3h3hHH4B"
        node_fmt = "<i2i3h3hii" if wide else "<i2h3h3hHH"

        models = self.models or [(0, len(self.faces))]

        lumps = [b""] * HEADER_LUMPS
        lumps[ENTITIES] = self.entities.encode("latin-1") + b"\x00" if self.entities else b""
        lumps[PLANES] = b"".join(struct.pack("<ffffi", *p) for p in self.planes)
        lumps[TEXTURES] = pack_textures(self.textures)
        lumps[VERTEXES] = b"".join(struct.pack("<fff", *v) for v in self.vertices)
        lumps[NODES] = b"".join(struct.pack(node_fmt, *n) for n in self.nodes)
        lumps[TEXINFO] = b"".join(struct.pack("<8fii", *t) for t in self.texinfos)
        lumps[FACES] = b"".join(struct.pack(face_fmt, *f) for f in self.faces)
        lumps[LIGHTING] = self.light
        lumps[LEAFS] = b"".join(struct.pack(leaf_fmt, *leaf) for leaf in self.leaves)
        lumps[MARKSURFACES] = b"".join(struct.pack(mark_fmt, m) for m in self.marksurfaces)
        lumps[EDGES] = b"".join(struct.pack(edge_fmt, *e) for e in self.edges)
        lumps[SURFEDGES] = b"".join(struct.pack("<i", s) for s in self.surfedges)
        lumps[MODELS] = b"".join(
            struct.pack("<9f7i", *([0.0] * 9), 0, 0, 0, 0, 0, first, count)
            for first, count in models
        )
        return lumps

    def build(self, header: str = "ident+version") -> bytes:
        """
        Serialize the file.

        header selects the BSP2 shape: "ident+version" (directory at 8) or
        "ident" (directory at 4). BSP29 always writes the version word.
        """
        if self.version == "bsp29":
            prefix = struct.pack("<i", 29)
        else:
            ident = b"BSP2" if self.version == "bsp2" else b"2PSB"
            prefix = ident + (struct.pack("<i", 0) if header == "ident+version" else b"")

        lumps = self.lumps()
        pos = len(prefix) + HEADER_LUMPS * 8
        directory = b""
        body = b""
        for data in lumps:
            directory += struct.pack("<ii", pos, len(data))
            body += data
            pos += len(data)
        return prefix + directory + body


def add_quad(
    builder: BSPBuilder,
    texinfo: int,
    origin: Tuple[float, float, float] = (0.0, 0.0, 0.0),
    size: float = 64.0,
    **kwargs,
) -> int:
    """Axial quad in the XY plane."""
    x, y, z = origin
    points = [
        (x, y, z),
        (x + size, y, z),
        (x + size, y + size, z),
        (x, y + size, z),
    ]
    return builder.add_face(points, texinfo, **kwargs)


@pytest.fixture
def builder():
    return BSPBuilder()


@pytest.fixture
def quad_bsp() -> bytes:
    """One 64x64 quad textured with a 64x64 texture."""
    b = BSPBuilder()
    texture = b.add_texture("wall", 64, 64)
    add_quad(b, b.add_texinfo(texture))
    return b.build()


@pytest.fixture
def quad_file(tmp_path, quad_bsp):
    path = tmp_path / "e1m1.bsp"
    path.write_bytes(quad_bsp)
    return path
