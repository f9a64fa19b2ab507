import logging
import sys
from typing import Optional

from tiled_importer.errors import ImportFailed
from tiled_importer.importer import (
    ImportedGroupLayer, ImportedImageLayer, ImportedMap, ImportedObjectLayer, ImportedTileLayer, ImportSettings, import_map
)
from tiled_importer.layer_data import decode_layer, encode_payload
from tiled_importer.model import TileLayer


USAGE = "usage: python main.py [-v] [--strict] [--reencode] map.tmx"


def print_summary(imported: ImportedMap) -> None:
    tiled_map = imported.map
    print(f"Map {imported.name}: {tiled_map.orientation} {tiled_map.width}x{tiled_map.height} tiles of {tiled_map.tilewidth}x{tiled_map.tileheight}px, "
          f"sort order {imported.sort_order.name}")
    if imported.background is not None:
        print(f"  background {tuple(imported.background)}")

    for tileset in imported.tilesets:
        print(f"  tileset {tileset.name}: gids {tileset.first_gid}-{tileset.last_gid}, {tileset.kind.name.lower()}")

    depth = {id(layer): 0 for layer in imported.layers}
    for layer in imported.iter_layers():
        indent = "  " * (depth[id(layer)] + 1)
        if isinstance(layer, ImportedTileLayer):
            print(f"{indent}tile layer {layer.name}: {len(layer.cells)} tiles")
        elif isinstance(layer, ImportedObjectLayer):
            print(f"{indent}object layer {layer.name}: {len(layer.objects)} objects")
        elif isinstance(layer, ImportedImageLayer):
            print(f"{indent}image layer {layer.name}: {layer.image_path}")
        elif isinstance(layer, ImportedGroupLayer):
            print(f"{indent}group {layer.name}: {len(layer.children)} layers")
            for child in layer.children:
                depth[id(child)] = depth[id(layer)] + 1

    if not imported.report.clean:
        print(f"  skipped {imported.report.skipped_count} tiles, {len(imported.report.warnings)} warnings")


def print_reencoded(imported: ImportedMap) -> None:
    for layer, _ in imported.map.iter_layers():
        if isinstance(layer, TileLayer) and not imported.map.infinite:
            grid = decode_layer(layer, False)
            gids = [grid[(x, y)] for y in range(layer.height) for x in range(layer.width)]
            print(f"<!-- {layer.name} -->")
            print(f"<data encoding=\"csv\">{encode_payload(gids, layer.width)}</data>")


def main(args: list[str]) -> int:
    verbose = "-v" in args
    strict = "--strict" in args
    reencode = "--reencode" in args
    files = [arg for arg in args if not arg.startswith("-")]

    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    filename: Optional[str] = files[0] if len(files) == 1 else None
    if filename is None:
        print(USAGE)
        return 2

    try:
        imported = import_map(filename, ImportSettings(strict=strict))
    except ImportFailed as e:
        print(f"Failed to import {filename}: {e.kind}: {e.cause}")
        return 1

    print_summary(imported)
    if reencode:
        print_reencoded(imported)
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
