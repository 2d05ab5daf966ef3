"""
Command Line Interface for the Quake BSP importer.

Imports the world (and optionally brush entities) of a .bsp file and writes
OBJ meshes, texture and lightmap PNGs and a JSON manifest.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import ImportConfig, WorldChunkMode
from .export import MANIFEST_NAME, write_atlas, write_chunks, write_manifest, write_textures
from .importer import ImportRequest, import_entities, import_world
from .textures import Palette


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)
logger = logging.getLogger("quake_bsp_import")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="quake-bsp-import",
        description="Convert Quake BSP maps into chunked meshes, textures and lightmaps.",
        epilog="""
Examples:
  quake-bsp-import e1m1.bsp
  quake-bsp-import --palette palette.lmp --lightmaps e1m1.bsp out/
  quake-bsp-import --chunk-mode leaves --entities --triggers start.bsp
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Positional arguments
    parser.add_argument(
        "input",
        type=Path,
        help="Input .bsp file",
    )
    parser.add_argument(
        "output",
        type=Path,
        nargs="?",
        help="Output directory (default: <map>_import next to the input)",
    )

    # World options
    world = parser.add_argument_group("World Options")
    world.add_argument(
        "--chunk-mode",
        choices=[mode.value for mode in WorldChunkMode],
        default=WorldChunkMode.GRID.value,
        help="Split the world on a grid or per BSP leaf (default: grid)",
    )
    world.add_argument(
        "--chunk-size",
        type=int,
        default=512,
        metavar="N",
        help="Grid cell size in map units (default: 512)",
    )
    world.add_argument(
        "-s", "--scale",
        type=float,
        default=2.5,
        metavar="FLOAT",
        help="Uniform import scale (default: 2.5)",
    )
    world.add_argument(
        "--no-sky",
        action="store_true",
        help="Skip faces with sky textures",
    )
    world.add_argument(
        "--no-liquids",
        action="store_true",
        help="Skip faces with liquid (*) textures",
    )
    world.add_argument(
        "--no-world",
        action="store_true",
        help="Skip the world import (entities only)",
    )

    # Texture and lightmap options
    textures = parser.add_argument_group("Texture Options")
    textures.add_argument(
        "--palette",
        type=Path,
        metavar="FILE",
        help="Quake palette.lmp (default: grayscale)",
    )
    textures.add_argument(
        "--no-textures",
        action="store_true",
        help="Do not write texture PNGs",
    )
    textures.add_argument(
        "--lightmaps",
        action="store_true",
        help="Build the lightmap atlas and second UV set",
    )
    textures.add_argument(
        "--lit",
        type=Path,
        metavar="FILE",
        help="Colored lightmap .lit file (default: <map>.lit next to the input)",
    )
    textures.add_argument(
        "--masked-material",
        type=str,
        metavar="PATH",
        help="Parent material for textures with palette transparency",
    )
    textures.add_argument(
        "--masked-collision",
        type=str,
        metavar="PROFILE",
        help="Collision profile for meshes with masked textures",
    )

    # Entity options
    entities = parser.add_argument_group("Entity Options")
    entities.add_argument(
        "--entities",
        action="store_true",
        help="Also import brush entities",
    )
    entities.add_argument(
        "--no-doors",
        action="store_true",
        help="Skip doors, buttons and gates",
    )
    entities.add_argument(
        "--no-plats",
        action="store_true",
        help="Skip platforms",
    )
    entities.add_argument(
        "--triggers",
        action="store_true",
        help="Import trigger volumes",
    )

    # Verbosity
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )
    verbosity.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Quiet mode",
    )

    # Version
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def run_import(
    bsp_path: Path,
    output_dir: Optional[Path],
    config: ImportConfig,
    palette_path: Optional[Path] = None,
    lit_path: Optional[Path] = None,
    include_world: bool = True,
    include_entities: bool = False,
    write_texture_files: bool = True,
    verbose: bool = False,
) -> int:
    """
    Import a BSP file and write the results.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    if not bsp_path.exists():
        logger.error(f"Input file not found: {bsp_path}")
        return 1

    if not bsp_path.suffix.lower() == ".bsp":
        logger.warning(f"Input file may not be a BSP file: {bsp_path}")

    if output_dir is None:
        output_dir = bsp_path.with_name(f"{bsp_path.stem}_import")

    logger.info(f"Processing: {bsp_path}")

    try:
        config.validate()

        palette = None
        if palette_path is not None:
            logger.info(f"Loading palette: {palette_path}")
            palette = Palette.load(palette_path)

        request = ImportRequest(bsp_path, config, palette=palette, lit_path=lit_path)

        world = None
        if include_world:
            world = import_world(request)
            if not world.succeeded:
                logger.error(f"World import failed: {world.message}")
                return 1

        entity_result = None
        if include_entities:
            entity_result = import_entities(request)
            if not entity_result.succeeded:
                logger.error(f"Entity import failed: {entity_result.message}")
                return 1

        primary = world or entity_result
        if primary is None:
            logger.warning("Nothing to import (world and entities both disabled)")
            return 0

        world_chunks = world.chunks if world else []
        entity_chunks = entity_result.chunks if entity_result else []

        logger.info(f"Writing output: {output_dir}")
        write_chunks(world_chunks + entity_chunks, output_dir / "meshes")

        if write_texture_files and primary.textures is not None:
            write_textures(primary.textures, output_dir / "textures")

        atlas_file = None
        if primary.atlas is not None:
            atlas_file = f"{request.map_name}_lightmap.png"
            write_atlas(primary.atlas, output_dir / atlas_file)

        summary = vars(primary.summary) if primary.summary else None
        write_manifest(
            output_dir / MANIFEST_NAME,
            request.map_name,
            world_chunks=world_chunks,
            entity_chunks=entity_chunks,
            materials=primary.materials,
            atlas_file=atlas_file,
            summary=summary,
        )

        if verbose:
            for chunk in world_chunks + entity_chunks:
                logger.info(
                    f"  {chunk.name}: {chunk.mesh.triangle_count} triangles, "
                    f"{len(chunk.mesh.slot_textures)} slots, collision={chunk.collision_profile}"
                )

        logger.info("Done!")
        return 0

    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return 1
    except OSError as e:
        logger.error(f"File error: {e}")
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Configure logging level
    if args.quiet:
        logger.setLevel(logging.WARNING)
    elif args.verbose:
        logger.setLevel(logging.DEBUG)

    if args.no_world and not args.entities:
        logger.error("--no-world requires --entities")
        return 1

    return run_import(
        bsp_path=args.input,
        output_dir=args.output,
        config=ImportConfig.from_args(args),
        palette_path=args.palette,
        lit_path=args.lit,
        include_world=not args.no_world,
        include_entities=args.entities,
        write_texture_files=not args.no_textures,
        verbose=args.verbose,
    )


if __name__ == "__main__":
    sys.exit(main())
