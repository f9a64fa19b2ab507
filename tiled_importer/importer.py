import logging
import os
from typing import Callable, Iterator, NamedTuple, Optional

from pygame import Color
from pygame.math import Vector2

from tiled_importer.errors import ImportFailed, MalformedDocument, TiledImportError
from tiled_importer.gids import Affine, GidResolver, ResolvedGid, TileTransform
from tiled_importer.layer_data import decode_layer
from tiled_importer.model import (
    BaseLayer, Ellipse, GroupLayer, Image, ImageLayer, LayerKind, MapObject, ObjectLayer, Polygon, Polyline, Properties, TiledMap,
    TileLayer
)
from tiled_importer.orientation import GridTransform, SortOrder
from tiled_importer.parser import Document, parse_map
from tiled_importer.report import ImportReport
from tiled_importer.templates import TemplateCache, initialise_unset_values
from tiled_importer.tilesets import Loader, ResolvedTileset, TileRecord, TilesetResolver, full_path, read_file


logger = logging.getLogger(__name__)


class ImportSettings:
    def __init__(self, strict: bool = False, loader: Loader = read_file, pixels_per_unit: Optional[int] = None) -> None:
        # strict: unresolvable tiles and broken chunks fail the import instead of being skipped with a warning
        self.strict = strict
        self.loader = loader
        self.pixels_per_unit = pixels_per_unit


class PlacedTile(NamedTuple):
    gid: int
    tile: TileRecord
    tileset: ResolvedTileset
    transform: TileTransform
    affine: Affine


# where an object's pivot sits, as proportions of its size from the corner Tiled positions it by (y down)
SHAPE_PIVOT = (0.5, 0.5)
# tile objects are positioned by their bottom-left corner
TILE_PIVOT = (0.5, -0.5)


class PlacedObject:
    """An object after template merge. Corner, size, pivot and points are in target units."""

    def __init__(self, obj: MapObject, resolved: ResolvedGid, grid: GridTransform, template_path: Optional[str] = None) -> None:
        self.object = obj
        self.tile = resolved.tile
        self.tileset = resolved.tileset
        self.transform = resolved.transform
        self.affine = resolved.affine
        self.template_path = template_path

        width, height = obj.width.value, obj.height.value
        self.corner = grid.pixel_to_units(obj.x.value, obj.y.value)
        self.size = grid.size_to_units(width, height)
        self.pivot = self.corner + grid.pivot_offset(width, height, SHAPE_PIVOT if resolved.is_empty else TILE_PIVOT)
        points = obj.shape.points if isinstance(obj.shape, (Polygon, Polyline)) else []
        self.points: list[Vector2] = [grid.scale_to_units(point.x, point.y) for point in points]

    def __repr__(self) -> str:
        return f"PlacedObject({self.name!r}, corner={tuple(self.corner)}, tile={self.tile is not None})"

    @property
    def name(self) -> str:
        return self.object.name or ""

    @property
    def rotation(self) -> float:
        return self.object.rotation.value

    @property
    def visible(self) -> bool:
        return self.object.visible.value

    @property
    def pixel_size(self) -> Vector2:
        return Vector2(self.object.width.value, self.object.height.value)

    @property
    def radii(self) -> Optional[Vector2]:
        return self.size * 0.5 if isinstance(self.object.shape, Ellipse) else None

    @property
    def properties(self) -> Properties:
        return self.object.properties if self.object.properties is not None else Properties()


class ImportedLayer:
    def __init__(self, source: BaseLayer, offset: Vector2, order: int) -> None:
        self.source = source
        self.kind = source.kind
        self.name = source.name
        self.visible = source.visible
        self.opacity = source.opacity
        self.properties = source.properties
        self.offset = offset
        self.order = order

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class ImportedTileLayer(ImportedLayer):
    def __init__(self, source: TileLayer, offset: Vector2, order: int, position_offset: Vector2) -> None:
        super().__init__(source, offset, order)
        self.position_offset = position_offset
        self.cells: dict[tuple[int, int], PlacedTile] = {}

    @property
    def has_collision(self) -> bool:
        return any(placed.tile.has_collision for placed in self.cells.values())


class ImportedObjectLayer(ImportedLayer):
    def __init__(self, source: ObjectLayer, offset: Vector2, order: int) -> None:
        super().__init__(source, offset, order)
        self.color: Color = Color(source.color) if source.color is not None else Color(255, 255, 255)
        if source.opacity != 1.0:
            self.color.a = int(round(source.opacity * 255))
        self.objects: list[PlacedObject] = []


class ImportedImageLayer(ImportedLayer):
    def __init__(self, source: ImageLayer, offset: Vector2, order: int, image_path: Optional[str]) -> None:
        super().__init__(source, offset, order)
        self.image: Optional[Image] = source.image
        self.image_path = image_path


class ImportedGroupLayer(ImportedLayer):
    def __init__(self, source: GroupLayer, offset: Vector2, order: int) -> None:
        super().__init__(source, offset, order)
        self.children: list[ImportedLayer] = []


class ImportedMap:
    def __init__(self, tiled_map: TiledMap, tilesets: list[ResolvedTileset], layers: list[ImportedLayer],
                 grid: GridTransform, sort_order: SortOrder, pixels_per_unit: int, report: ImportReport) -> None:
        self.map = tiled_map
        self.name = tiled_map.name
        self.tilesets = tilesets
        self.layers = layers
        self.grid = grid
        self.sort_order = sort_order
        self.pixels_per_unit = pixels_per_unit
        self.background: Optional[Color] = tiled_map.backgroundcolor
        self.properties = tiled_map.properties
        self.report = report

    def iter_layers(self) -> Iterator[ImportedLayer]:
        stack = list(reversed(self.layers))
        while stack:
            layer = stack.pop()
            yield layer
            if isinstance(layer, ImportedGroupLayer):
                stack.extend(reversed(layer.children))

    def layer(self, name: str) -> ImportedLayer:
        for layer in self.iter_layers():
            if layer.name == name:
                return layer
        raise KeyError(f"No layer with name {name}")


class ImportSession:
    """State of one import run. Caches (tilesets, templates) live and die with the session."""

    def __init__(self, base_dir: Optional[str], settings: Optional[ImportSettings] = None) -> None:
        self.settings = settings if settings is not None else ImportSettings()
        self.base_dir = base_dir
        self.report = ImportReport()
        self.tileset_resolver = TilesetResolver(self.settings.loader)
        self.templates = TemplateCache(self.tileset_resolver, self.settings.loader)

        self.map: Optional[TiledMap] = None
        self.tilesets: list[ResolvedTileset] = []
        self.grid: Optional[GridTransform] = None
        self.gids: Optional[GidResolver] = None
        self._template_gids: dict[int, GidResolver] = {}
        self._order = 0

    def import_document(self, data: Document, name: str = "<map>") -> ImportedMap:
        try:
            return self._import(data, name)
        except ImportFailed:
            raise
        except TiledImportError as e:
            logger.error(f"Import of {name} failed: {e}")
            raise ImportFailed(e, name) from e

    def _import(self, data: Document, name: str) -> ImportedMap:
        tiled_map = parse_map(data, name)
        tiled_map.filename = name
        self.map = tiled_map

        # every tileset is resolved before any layer is looked at
        self.tilesets = [self.tileset_resolver.resolve(reference, self.base_dir) for reference in tiled_map.tilesets]

        self.grid = GridTransform.for_map(tiled_map, name)
        self.gids = GidResolver(self.tilesets, tiled_map.tilewidth, tiled_map.tileheight, self.settings.strict, self.report)
        self._order = 0

        layers = self._import_layers(tiled_map.layers, name)

        pixels_per_unit = self.settings.pixels_per_unit or max(tiled_map.tilewidth, tiled_map.tileheight)
        logger.info(f"Imported {name}: {len(self.tilesets)} tilesets, {len(layers)} top level layers, {self.report.skipped_count} skipped tiles")
        return ImportedMap(tiled_map, self.tilesets, layers, self.grid, self.grid.sort_order(tiled_map.renderorder), pixels_per_unit, self.report)

    def _import_layers(self, layers: list[BaseLayer], context: str) -> list[ImportedLayer]:
        return [self._import_layer(layer, f"{context} > {layer.name}") for layer in layers]

    def _import_layer(self, layer: BaseLayer, context: str) -> ImportedLayer:
        return LAYER_IMPORTERS[layer.kind](self, layer, context)

    def _next_order(self) -> int:
        order = self._order
        self._order += 1
        return order

    def _import_tile_layer(self, layer: TileLayer, context: str) -> ImportedTileLayer:
        imported = ImportedTileLayer(layer, self.grid.layer_offset(layer.offset), self._next_order(), self.grid.position_offset)
        tile_grid = decode_layer(layer, self.map.infinite, context, self.settings.strict, self.report)
        for x, y, raw_gid in tile_grid.iter_data():
            resolved = self.gids.resolve(raw_gid, f"{context} ({x}, {y})")
            if resolved.is_empty:
                continue
            imported.cells[self.grid.cell_position(x, y)] = PlacedTile(raw_gid, resolved.tile, resolved.tileset, resolved.transform, resolved.affine)
        return imported

    def _import_object_layer(self, layer: ObjectLayer, context: str) -> ImportedObjectLayer:
        imported = ImportedObjectLayer(layer, self.grid.layer_offset(layer.offset), self._next_order())
        for obj in layer.objects:
            imported.objects.append(self.import_object(obj, f"{context} > {obj.name or obj.id.value_or('?')}"))
        return imported

    def _import_image_layer(self, layer: ImageLayer, context: str) -> ImportedImageLayer:
        image_path = full_path(self.base_dir, layer.image.source) if layer.image is not None and layer.image.source else None
        return ImportedImageLayer(layer, self.grid.layer_offset(layer.offset), self._next_order(), image_path)

    def _import_group_layer(self, layer: GroupLayer, context: str) -> ImportedGroupLayer:
        imported = ImportedGroupLayer(layer, self.grid.layer_offset(layer.offset), self._order)
        imported.children = self._import_layers(layer.layers, context)
        return imported

    def import_object(self, obj: MapObject, context: str) -> PlacedObject:
        template_path = full_path(self.base_dir, obj.template) if obj.template is not None else None
        merged, template_tileset = self.templates.resolve(obj, self.base_dir)
        initialise_unset_values(merged)

        resolver = self.gids if template_tileset is None else self._template_resolver(template_tileset)
        resolved = resolver.resolve(merged.gid.value, context)
        return PlacedObject(merged, resolved, self.grid, template_path)

    def _template_resolver(self, tileset: ResolvedTileset) -> GidResolver:
        resolver = self._template_gids.get(id(tileset))
        if resolver is None:
            resolver = GidResolver([tileset], self.map.tilewidth, self.map.tileheight, self.settings.strict, self.report)
            self._template_gids[id(tileset)] = resolver
        return resolver


LAYER_IMPORTERS: dict[LayerKind, Callable[[ImportSession, BaseLayer, str], ImportedLayer]] = {
    LayerKind.TILE: ImportSession._import_tile_layer,
    LayerKind.OBJECT: ImportSession._import_object_layer,
    LayerKind.IMAGE: ImportSession._import_image_layer,
    LayerKind.GROUP: ImportSession._import_group_layer,
}

if set(LAYER_IMPORTERS) != set(LayerKind):
    raise TypeError(f"Layer kinds without importer: {set(LayerKind) - set(LAYER_IMPORTERS)}")


def import_map(path: str, settings: Optional[ImportSettings] = None) -> ImportedMap:
    settings = settings if settings is not None else ImportSettings()
    path = os.path.abspath(path)
    try:
        data = settings.loader(path)
    except OSError as e:
        cause = MalformedDocument(f"Cannot read map: {e}", path)
        raise ImportFailed(cause, path) from e

    session = ImportSession(os.path.dirname(path), settings)
    return session.import_document(data, path)
